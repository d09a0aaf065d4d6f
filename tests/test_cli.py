# Copyright 2025 Gowtham Rao <rao@ohdsi.org>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from py_load_portal.cli import SyncTarget, app, arun_sync, load_config
from py_load_portal.client import ResourceKind
from py_load_portal.config import Settings
from py_load_portal.errors import ExternalCallError
from py_load_portal.models import WebhookResult

pytestmark = pytest.mark.unit

runner = CliRunner()


def _json_output(result) -> dict:
    """The command's JSON document, ignoring any log lines before it."""
    return json.loads(result.stdout[result.stdout.index("{"):])


def test_load_config_reads_yaml(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("facility_id: '99'\nhttp_timeout: 5\n")

    assert load_config(str(config_file)) == {"facility_id": "99", "http_timeout": 5}


def test_load_config_missing_file_returns_empty(tmp_path):
    assert load_config(str(tmp_path / "absent.yaml")) == {}
    assert load_config(None) == {}


@pytest.mark.asyncio
@patch("py_load_portal.cli.PortalClient")
@patch("py_load_portal.cli.PostgresLoader")
async def test_arun_sync_all_loads_signups_before_codes(
    MockLoader, MockClient, settings: Settings,
):
    """Users and courses are loaded before the codes that reference them."""
    calls = []

    def handler(kind):
        async def run(*args):
            calls.append(kind)
            return WebhookResult(response={"data": []})
        return run

    handlers = {kind: handler(kind) for kind in ResourceKind}
    with patch.dict("py_load_portal.cli.SYNC_HANDLERS", handlers):
        results = await arun_sync(settings, SyncTarget.ALL)

    assert calls == [ResourceKind.FACILITY_SIGNUPS, ResourceKind.ELEARNING_CODES]
    assert list(results) == ["facility-signups", "elearning-codes"]


@patch("py_load_portal.cli.arun_sync", new_callable=AsyncMock)
def test_sync_command_prints_results(mock_arun_sync):
    mock_arun_sync.return_value = {"elearning-codes": {"status": "success"}}

    result = runner.invoke(app, ["sync", "elearning-codes"])

    assert result.exit_code == 0
    assert _json_output(result) == {"elearning-codes": {"status": "success"}}
    assert mock_arun_sync.await_args.args[1] is SyncTarget.ELEARNING_CODES


@patch("py_load_portal.cli.arun_sync", new_callable=AsyncMock)
def test_sync_command_exits_nonzero_on_portal_failure(mock_arun_sync):
    mock_arun_sync.side_effect = ExternalCallError("External call failed: refused")

    result = runner.invoke(app, ["sync", "facility-signups"])

    assert result.exit_code == 1
    assert _json_output(result)["status"] == "error"


@patch("py_load_portal.cli.arun_init_db", new_callable=AsyncMock)
def test_init_db_requires_database_url(mock_init_db):
    result = runner.invoke(app, ["init-db"])

    assert result.exit_code == 1
    mock_init_db.assert_not_called()


@patch("py_load_portal.cli.arun_init_db", new_callable=AsyncMock)
def test_init_db_creates_tables(mock_init_db, monkeypatch):
    monkeypatch.setenv("PORTAL_DATABASE_URL", "postgresql://u:p@db/portal")

    result = runner.invoke(app, ["init-db"])

    assert result.exit_code == 0
    mock_init_db.assert_awaited_once()


@patch("py_load_portal.cli.uvicorn")
def test_serve_runs_uvicorn(mock_uvicorn: MagicMock):
    result = runner.invoke(app, ["serve", "--port", "8080"])

    assert result.exit_code == 0
    mock_uvicorn.run.assert_called_once()
    assert mock_uvicorn.run.call_args.kwargs["port"] == 8080
