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

from unittest.mock import AsyncMock, MagicMock

import pytest

from py_load_portal.config import Settings
from py_load_portal.errors import ConfigurationError, ExternalCallError, PersistenceError
from py_load_portal.models import SessionCredential, SessionSource, UpsertResult
from py_load_portal.pipeline import sync_elearning_codes, sync_facility_signups

pytestmark = pytest.mark.unit

SESSION = SessionCredential(
    cookies={"ITIAuthToken": "abc"}, xsrf="xyz", source=SessionSource.NESTED,
)


def make_client(payload: dict) -> MagicMock:
    client = MagicMock()
    client.authenticate = AsyncMock(return_value=SESSION)
    client.fetch_facility_signups = AsyncMock(return_value=payload)
    client.fetch_elearning_codes = AsyncMock(return_value=payload)
    return client


def make_loader() -> MagicMock:
    loader = MagicMock()
    loader.upsert_facility_signups = AsyncMock(
        side_effect=lambda users: UpsertResult(
            count=len(users), message=f"Inserted/Updated {len(users)} users",
        ),
    )
    loader.upsert_course_info = AsyncMock(
        side_effect=lambda courses: UpsertResult(
            count=sum(len(c) for c in courses.values()), message="courses",
        ),
    )
    loader.upsert_elearning_codes = AsyncMock(
        side_effect=lambda codes: UpsertResult(count=len(codes), message="codes"),
    )
    return loader


@pytest.mark.asyncio
async def test_signups_are_split_into_users_and_courses(
    settings: Settings, signups_payload, signup_u1, signup_u2, course_c1,
):
    client = make_client(signups_payload)
    loader = make_loader()

    result = await sync_facility_signups(settings, client, loader)

    client.authenticate.assert_awaited_once_with("42")
    client.fetch_facility_signups.assert_awaited_once_with("42", SESSION)
    loader.upsert_facility_signups.assert_awaited_once_with([signup_u1, signup_u2])
    loader.upsert_course_info.assert_awaited_once_with({"AgencyA": [course_c1]})
    assert result.status == "success"
    assert result.response == signups_payload
    assert result.database["users"].count == 2
    assert result.database["courses"].count == 1


@pytest.mark.asyncio
async def test_course_failure_is_reported_inline(settings: Settings, signups_payload):
    client = make_client(signups_payload)
    loader = make_loader()
    loader.upsert_course_info.side_effect = PersistenceError(
        "Failed to upsert courses: deadlock detected", kind="courses",
    )

    result = await sync_facility_signups(settings, client, loader)

    assert result.status == "success"
    assert result.database["users"].success is True
    assert result.database["users"].count == 2
    assert result.database["courses"].success is False
    assert "deadlock detected" in result.database["courses"].error


@pytest.mark.asyncio
async def test_missing_facility_id_fails_before_any_call(settings: Settings):
    settings.facility_id = None
    client = make_client({"data": []})
    loader = make_loader()

    with pytest.raises(ConfigurationError, match="facility_id"):
        await sync_facility_signups(settings, client, loader)

    client.authenticate.assert_not_called()
    client.fetch_facility_signups.assert_not_called()
    loader.upsert_facility_signups.assert_not_called()


@pytest.mark.asyncio
async def test_missing_database_url_fails_before_any_call():
    settings = Settings(external_webhook_url="https://auth.test", facility_id="42")
    client = make_client({"data": []})

    with pytest.raises(ConfigurationError, match="database_url"):
        await sync_elearning_codes(settings, client, make_loader())

    client.authenticate.assert_not_called()


@pytest.mark.asyncio
async def test_auth_transport_error_propagates(settings: Settings):
    client = make_client({"data": []})
    client.authenticate.side_effect = ExternalCallError("External call failed: DNS")
    loader = make_loader()

    with pytest.raises(ExternalCallError):
        await sync_facility_signups(settings, client, loader)

    client.fetch_facility_signups.assert_not_called()
    loader.upsert_facility_signups.assert_not_called()


@pytest.mark.asyncio
async def test_raw_payload_skips_persistence(settings: Settings):
    client = make_client({"raw": "<html>Session expired</html>"})
    loader = make_loader()

    result = await sync_facility_signups(settings, client, loader)

    assert result.response == {"raw": "<html>Session expired</html>"}
    assert result.database == {}
    loader.upsert_facility_signups.assert_not_called()
    loader.upsert_course_info.assert_not_called()


@pytest.mark.asyncio
async def test_signups_without_courses_only_persist_users(settings: Settings, signup_u1):
    client = make_client({"data": [signup_u1]})
    loader = make_loader()

    result = await sync_facility_signups(settings, client, loader)

    assert set(result.database) == {"users"}
    loader.upsert_course_info.assert_not_called()


@pytest.mark.asyncio
async def test_elearning_codes_are_persisted(settings: Settings, elearning_code):
    client = make_client({"data": [elearning_code]})
    loader = make_loader()

    result = await sync_elearning_codes(settings, client, loader)

    client.fetch_elearning_codes.assert_awaited_once_with("42", SESSION)
    loader.upsert_elearning_codes.assert_awaited_once_with([elearning_code])
    assert result.database["elearning_codes"].count == 1
