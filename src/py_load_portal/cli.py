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
"""Command line entry point: run the webhook server or a one-off sync."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import typer
import uvicorn
import yaml

from .client import PortalClient, ResourceKind
from .config import Settings
from .errors import PortalBridgeError
from .loader.postgres import PostgresLoader
from .pipeline import SYNC_HANDLERS

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)

app = typer.Typer(help="Load portal signups and e-learning codes into PostgreSQL.")


class SyncTarget(str, Enum):
    FACILITY_SIGNUPS = "facility-signups"
    ELEARNING_CODES = "elearning-codes"
    ALL = "all"


# Users and courses must land before the codes that reference them.
SYNC_ORDER = {
    SyncTarget.FACILITY_SIGNUPS: [ResourceKind.FACILITY_SIGNUPS],
    SyncTarget.ELEARNING_CODES: [ResourceKind.ELEARNING_CODES],
    SyncTarget.ALL: [ResourceKind.FACILITY_SIGNUPS, ResourceKind.ELEARNING_CODES],
}


def load_config(config_file: str | None) -> dict[str, Any]:
    """Loads configuration overrides from a YAML file."""
    if config_file:
        try:
            with open(config_file) as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s", config_file)
    return {}


def build_settings(config_file: str | None) -> Settings:
    """Environment settings, overridden by any keys in the YAML file."""
    return Settings(**load_config(config_file))


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


async def arun_sync(settings: Settings, target: SyncTarget) -> dict[str, Any]:
    """Run the webhook pipeline(s) for `target` once and collect the results."""
    results: dict[str, Any] = {}
    async with PostgresLoader(settings) as loader, PortalClient(settings) as client:
        for kind in SYNC_ORDER[target]:
            result = await SYNC_HANDLERS[kind](settings, client, loader)
            results[kind.value] = result.model_dump(mode="json")
    return results


async def arun_init_db(settings: Settings) -> None:
    async with PostgresLoader(settings) as loader:
        await loader.prepare_schema()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Interface to bind."),
    port: int = typer.Option(3000, help="Port to listen on."),
    log_level: str = typer.Option("INFO", help="Logging level."),
) -> None:
    """Run the webhook HTTP server."""
    configure_logging(log_level)
    uvicorn.run("py_load_portal.api:app", host=host, port=port, log_level=log_level.lower())


@app.command("init-db")
def init_db(
    config_file: str = typer.Option(None, help="Path to YAML config file."),
) -> None:
    """Create the signups, courses and e-learning code tables."""
    settings = build_settings(config_file)
    configure_logging(settings.log_level)
    try:
        settings.require("database_url")
        asyncio.run(arun_init_db(settings))
    except PortalBridgeError as e:
        logger.error("init-db failed: %s", e)
        raise typer.Exit(code=1) from e
    typer.echo("Database tables are ready.")


@app.command()
def sync(
    target: SyncTarget = typer.Argument(SyncTarget.ALL, help="What to load."),
    config_file: str = typer.Option(None, help="Path to YAML config file."),
) -> None:
    """Authenticate, fetch and upsert once, printing the JSON result."""
    settings = build_settings(config_file)
    configure_logging(settings.log_level)
    start_time = datetime.now(timezone.utc)
    try:
        results = asyncio.run(arun_sync(settings, target))
    except PortalBridgeError as e:
        logger.error("Sync failed: %s", e)
        typer.echo(json.dumps({"status": "error", "error": str(e)}))
        raise typer.Exit(code=1) from e
    finally:
        duration = datetime.now(timezone.utc) - start_time
        logger.info("Sync of %s finished in %s.", target.value, duration)
    typer.echo(json.dumps(results, indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
