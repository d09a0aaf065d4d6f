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
"""Decodes the auth broker's reply into a SessionCredential."""

import logging
from collections.abc import Callable, Mapping
from typing import Any

from .models import SessionCredential, SessionSource

logger = logging.getLogger(__name__)


def _normalize_cookies(cookies: Any) -> dict[str, str] | None:
    """Accept a name->value mapping or a list of {name, value} objects."""
    if isinstance(cookies, Mapping):
        return {str(name): str(value) for name, value in cookies.items()}
    if isinstance(cookies, list) and all(
        isinstance(item, Mapping) and "name" in item for item in cookies
    ):
        return {str(item["name"]): str(item.get("value", "")) for item in cookies}
    return None


def _decode(envelope: Any, source: SessionSource) -> SessionCredential | None:
    if not isinstance(envelope, Mapping) or "cookies" not in envelope:
        return None
    cookies = _normalize_cookies(envelope["cookies"])
    if cookies is None:
        return None
    return SessionCredential(
        cookies=cookies, xsrf=str(envelope.get("xsrf") or ""), source=source,
    )


def _decode_nested(payload: Mapping[str, Any]) -> SessionCredential | None:
    return _decode(payload.get("response"), SessionSource.NESTED)


def _decode_flat(payload: Mapping[str, Any]) -> SessionCredential | None:
    return _decode(payload, SessionSource.FLAT)


# Tried in order; the first decoder that recognises the envelope wins.
DECODERS: tuple[Callable[[Mapping[str, Any]], SessionCredential | None], ...] = (
    _decode_nested,
    _decode_flat,
)


def extract_session(auth_response: Any) -> SessionCredential:
    """Extract cookies and the XSRF token from an auth broker response.

    Accepts `{"response": {"cookies", "xsrf"}}` or `{"cookies", "xsrf"}`.
    Anything else (including the `{"raw": text}` wrapper for non-JSON
    replies) yields an empty credential instead of an error, so the portal
    itself rejects the unauthenticated fetch that follows.
    """
    if isinstance(auth_response, Mapping):
        for decoder in DECODERS:
            credential = decoder(auth_response)
            if credential is not None:
                return credential

    logger.warning(
        "Auth response did not contain cookies/xsrf; continuing unauthenticated.",
    )
    return SessionCredential(source=SessionSource.EMPTY)
