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
"""Exception hierarchy shared by the client, loader and webhook layers."""


class PortalBridgeError(Exception):
    """Base class for all errors raised by py-load-portal."""


class ConfigurationError(PortalBridgeError):
    """A required setting is absent; raised before any external call."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = list(missing or [])


class ExternalCallError(PortalBridgeError):
    """The auth broker or portal could not be reached (DNS, TLS, timeout...)."""


class PersistenceError(PortalBridgeError):
    """An upsert transaction failed and was rolled back."""

    def __init__(self, message: str, kind: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
