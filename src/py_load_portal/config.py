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
"""Manages the application's configuration using Pydantic."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

# Settings every resource webhook needs before it may call out.
REQUIRED_SETTINGS = ("external_webhook_url", "facility_id", "database_url")


class Settings(BaseSettings):
    """Manages configuration for the application.

    Reads settings from environment variables with the prefix 'PORTAL_'
    (and from a local '.env' file when present). The three connection
    settings are optional at construction time so the server can start
    without them; `require()` enforces them per invocation.
    """

    model_config = SettingsConfigDict(
        env_prefix="PORTAL_", env_file=".env", extra="ignore",
    )

    # Auth broker that answers {"function": "authme"} with session cookies.
    external_webhook_url: str | None = None
    facility_id: str | None = None
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PORTAL_DATABASE_URL", "DATABASE_URL", "database_url"),
    )

    # Portal host serving the session-cookie protected resources.
    portal_base_url: str = "https://portal.itiportal.com"

    http_timeout: float = 30.0

    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_pool_timeout: float = 30.0
    db_statement_timeout_ms: int = 60_000

    # Skip FK triggers while bulk loading codes whose users/courses
    # may arrive in a later batch.
    suspend_foreign_keys: bool = True

    signups_table: str = "get_facility_signups"
    courses_table: str = "course_info"
    elearning_codes_table: str = "get_elearning_codes"

    log_level: str = "INFO"

    def missing(self, *names: str) -> list[str]:
        """Return the names among `names` whose value is unset or empty."""
        return [name for name in names if not getattr(self, name)]

    def require(self, *names: str) -> None:
        """Raise ConfigurationError naming every unset required setting."""
        missing = self.missing(*(names or REQUIRED_SETTINGS))
        if missing:
            msg = f"Missing required configuration: {', '.join(missing)}"
            raise ConfigurationError(msg, missing=missing)
