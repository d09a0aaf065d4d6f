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
"""Orchestrates authenticate -> fetch -> upsert for one webhook invocation.

Configuration and portal transport errors propagate to the caller and are
turned into HTTP 500 by the API layer. Persistence errors never propagate:
each record kind reports a PersistOutcome in the returned WebhookResult.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from .client import PortalClient, ResourceKind
from .config import REQUIRED_SETTINGS, Settings
from .errors import PersistenceError
from .loader.base import BaseLoader
from .models import PersistOutcome, SessionCredential, UpsertResult, WebhookResult

logger = logging.getLogger(__name__)


async def persist(
    label: str, upsert: Callable[[], Awaitable[UpsertResult]],
) -> PersistOutcome:
    """Run one upsert routine and turn its result or failure into data."""
    try:
        result = await upsert()
    except PersistenceError as e:
        logger.error("Persisting %s failed: %s", label, e)
        return PersistOutcome.failed(str(e))
    logger.info("%s", result.message)
    return PersistOutcome.ok(result)


def _record_list(payload: Mapping[str, Any]) -> list[Any] | None:
    data = payload.get("data")
    return data if isinstance(data, list) else None


def _course_groups(payload: Mapping[str, Any]) -> dict[str, list[Any]] | None:
    courses = payload.get("courses")
    if not isinstance(courses, Mapping):
        return None
    return {
        str(agency): course_list
        for agency, course_list in courses.items()
        if isinstance(course_list, list)
    }


async def _authenticate(
    settings: Settings, client: PortalClient,
) -> tuple[str, SessionCredential]:
    settings.require(*REQUIRED_SETTINGS)
    facility_id = settings.facility_id

    session = await client.authenticate(facility_id)
    logger.info(
        "Session obtained (%s envelope, %d cookies)",
        session.source.value, len(session.cookies),
    )
    return facility_id, session


def _check_payload(kind: ResourceKind, payload: Mapping[str, Any]) -> None:
    if "data" not in payload:
        logger.warning(
            "%s response has no 'data' field; nothing to persist", kind.value,
        )


async def sync_facility_signups(
    settings: Settings, client: PortalClient, loader: BaseLoader,
) -> WebhookResult:
    """Fetch facility signups and upsert the users and their courses."""
    facility_id, session = await _authenticate(settings, client)
    payload = await client.fetch_facility_signups(facility_id, session)
    _check_payload(ResourceKind.FACILITY_SIGNUPS, payload)
    database: dict[str, PersistOutcome] = {}

    users = _record_list(payload)
    if users is not None:
        database["users"] = await persist(
            "users", lambda: loader.upsert_facility_signups(users),
        )

    courses = _course_groups(payload)
    if courses is not None:
        database["courses"] = await persist(
            "courses", lambda: loader.upsert_course_info(courses),
        )

    return WebhookResult(response=payload, database=database)


async def sync_elearning_codes(
    settings: Settings, client: PortalClient, loader: BaseLoader,
) -> WebhookResult:
    """Fetch e-learning codes and upsert them."""
    facility_id, session = await _authenticate(settings, client)
    payload = await client.fetch_elearning_codes(facility_id, session)
    _check_payload(ResourceKind.ELEARNING_CODES, payload)
    database: dict[str, PersistOutcome] = {}

    codes = _record_list(payload)
    if codes is not None:
        database["elearning_codes"] = await persist(
            "elearning_codes", lambda: loader.upsert_elearning_codes(codes),
        )

    return WebhookResult(response=payload, database=database)


SYNC_HANDLERS = {
    ResourceKind.FACILITY_SIGNUPS: sync_facility_signups,
    ResourceKind.ELEARNING_CODES: sync_elearning_codes,
}
