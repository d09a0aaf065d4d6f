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
"""Provides a client for the portal's auth broker and resource endpoints."""

import logging
from enum import Enum
from typing import Any

import httpx

from .config import Settings
from .errors import ConfigurationError, ExternalCallError
from .models import SessionCredential
from .session import extract_session

USER_AGENT = "py-load-portal/0.1.0"
XSRF_HEADER = "X-XSRF-TOKEN"

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """A portal resource fetched with a replayed session."""

    FACILITY_SIGNUPS = "facility-signups"
    ELEARNING_CODES = "elearning-codes"

    @property
    def path(self) -> str:
        return _RESOURCE_PATHS[self][0]

    @property
    def referer_path(self) -> str:
        return _RESOURCE_PATHS[self][1]


_RESOURCE_PATHS = {
    ResourceKind.FACILITY_SIGNUPS: ("/api/facility/signups", "/facility/signups"),
    ResourceKind.ELEARNING_CODES: ("/api/facility/elearning-codes", "/facility/elearning"),
}


def parse_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a JSON object body, or wrap anything else as {"raw": text}."""
    try:
        body = response.json()
    except ValueError:
        return {"raw": response.text}
    if not isinstance(body, dict):
        return {"raw": response.text}
    return body


class PortalClient:
    """Client for authenticating against the portal and fetching resources.

    The client never retries. Transport failures raise ExternalCallError;
    any response that arrives, whatever its status, is returned as data.
    """

    def __init__(
        self, settings: Settings, client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client with settings and an optional HTTP client."""
        self.settings = settings
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
            timeout=settings.http_timeout,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "PortalClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _send(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        # Session values come from the auth broker; non-ASCII ones cannot be
        # sent as header bytes.
        try:
            response = await self.client.request(method, url, **kwargs)
        except (httpx.TransportError, httpx.InvalidURL, UnicodeEncodeError) as e:
            logger.error("%s %s failed: %s", method, url, e)
            raise ExternalCallError(str(e)) from e

        if response.is_error:
            logger.warning(
                "%s %s returned HTTP %d", method, url, response.status_code,
            )
        return parse_body(response)

    async def authenticate(self, facility_id: str) -> SessionCredential:
        """Ask the auth broker for session cookies and an XSRF token."""
        url = self.settings.external_webhook_url
        if not url:
            msg = "Missing required configuration: external_webhook_url"
            raise ConfigurationError(msg, missing=["external_webhook_url"])

        logger.info("Authenticating facility %s via %s", facility_id, url)
        body = await self._send(
            "POST", url, json={"function": "authme", "facility_id": facility_id},
        )
        return extract_session(body)

    def build_headers(
        self, kind: ResourceKind, session: SessionCredential,
    ) -> dict[str, str]:
        """Headers that replay `session` against the resource `kind`."""
        base = self.settings.portal_base_url.rstrip("/")
        return {
            "Accept": "application/json",
            "Cookie": session.cookie_header(),
            XSRF_HEADER: session.xsrf,
            "Referer": f"{base}{kind.referer_path}",
            "X-Requested-With": "XMLHttpRequest",
        }

    async def fetch_resource(
        self, kind: ResourceKind, facility_id: str, session: SessionCredential,
    ) -> dict[str, Any]:
        """Fetch one resource for the facility using the session cookies."""
        url = f"{self.settings.portal_base_url.rstrip('/')}{kind.path}"
        logger.info("Fetching %s for facility %s", kind.value, facility_id)
        return await self._send(
            "GET",
            url,
            params={"facility_id": facility_id},
            headers=self.build_headers(kind, session),
        )

    async def fetch_facility_signups(
        self, facility_id: str, session: SessionCredential,
    ) -> dict[str, Any]:
        """Fetch `{data: [signups], courses: {agency: [courses]}}`."""
        return await self.fetch_resource(
            ResourceKind.FACILITY_SIGNUPS, facility_id, session,
        )

    async def fetch_elearning_codes(
        self, facility_id: str, session: SessionCredential,
    ) -> dict[str, Any]:
        """Fetch `{data: [codes]}`."""
        return await self.fetch_resource(
            ResourceKind.ELEARNING_CODES, facility_id, session,
        )
