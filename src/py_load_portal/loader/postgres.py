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
"""Provides a PostgreSQL loader that upserts portal records over a pool."""

import importlib.resources
import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from jinja2 import Environment, FileSystemLoader
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool
from pydantic import ValidationError

from ..config import Settings
from ..errors import ConfigurationError, PersistenceError
from ..models import (
    CourseRecord,
    ElearningCodeRecord,
    PortalRecord,
    SignupRecord,
    UpsertResult,
)
from .base import BaseLoader

logger = logging.getLogger(__name__)


def _adapt_row(row: dict[str, Any], json_columns: Iterable[str]) -> dict[str, Any]:
    """Wrap dict/list blobs so psycopg sends them as JSONB."""
    for column in json_columns:
        if isinstance(row.get(column), (dict, list)):
            row[column] = Jsonb(row[column])
    return row


class PostgresLoader(BaseLoader):
    """A database loader for PostgreSQL backed by a psycopg connection pool.

    One instance is meant to live for the whole process: `open()` at startup,
    `close()` at shutdown. Each upsert routine holds a single pooled
    connection for the duration of its transaction.
    """

    def __init__(
        self, settings: Settings, pool: AsyncConnectionPool | None = None,
    ) -> None:
        """Initialize the loader with settings and an optional prebuilt pool.

        Args:
            settings: Application settings; `database_url` and the pool
                      sizing/timeout options are read from here.
            pool: An existing pool to use instead of building one.

        """
        self.settings = settings
        self.pool = pool
        # The SQL templates ship inside the package's sql/ directory.
        sql_path = importlib.resources.files("py_load_portal") / "sql"
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(sql_path)),
            autoescape=False,  # SQL is not HTML
            keep_trailing_newline=True,
        )

    async def open(self) -> None:
        if self.pool is None:
            if not self.settings.database_url:
                msg = "Missing required configuration: database_url"
                raise ConfigurationError(msg, missing=["database_url"])
            self.pool = AsyncConnectionPool(
                self.settings.database_url,
                min_size=self.settings.db_pool_min_size,
                max_size=self.settings.db_pool_max_size,
                timeout=self.settings.db_pool_timeout,
                kwargs={"row_factory": dict_row},
                open=False,
            )
        await self.pool.open()
        logger.info(
            "Database pool opened (max_size=%d)", self.settings.db_pool_max_size,
        )

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            logger.info("Database pool closed")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Yield a pooled connection inside a transaction.

        Commits on success, rolls back on error, and always releases the
        connection back to the pool.
        """
        if self.pool is None:
            await self.open()
        async with self.pool.connection() as conn, conn.transaction():
            logger.debug("Database transaction started")
            await conn.execute(
                "SELECT set_config('statement_timeout', %s, true)",
                (str(self.settings.db_statement_timeout_ms),),
            )
            yield conn

    def render(self, template_name: str, **kwargs: Any) -> str:
        """Render one of the package SQL templates."""
        return self.jinja_env.get_template(template_name).render(**kwargs)

    async def prepare_schema(self) -> None:
        ddl = self.render(
            "create_tables.sql",
            signups_table=self.settings.signups_table,
            courses_table=self.settings.courses_table,
            elearning_codes_table=self.settings.elearning_codes_table,
        )
        async with self.transaction() as conn:
            await conn.execute(ddl)
        logger.info("Database tables are ready.")

    def upsert_sql(self, model: type[PortalRecord], table: str) -> str:
        return self.render(
            "upsert.sql",
            table=table,
            columns=model.COLUMNS,
            key=model.KEY,
            update_columns=model.update_columns(),
        )

    async def _upsert(
        self,
        label: str,
        model: type[PortalRecord],
        table: str,
        records: list[Mapping[str, Any]],
        suspend_foreign_keys: bool = False,
    ) -> UpsertResult:
        logger.info("Starting database insertion for %d %s", len(records), label)
        query = self.upsert_sql(model, table)

        try:
            async with self.transaction() as conn:
                if suspend_foreign_keys:
                    logger.info("Temporarily disabling foreign key constraints...")
                    await conn.execute("SET LOCAL session_replication_role = replica")

                async with conn.cursor() as cur:
                    for i, raw in enumerate(records):
                        row = model.model_validate(raw).to_row()
                        if i == 0:
                            logger.info(
                                "Processing first of %s: %s=%s",
                                label, model.KEY, row[model.KEY],
                            )
                        await cur.execute(query, _adapt_row(row, model.JSON_COLUMNS))
                        if i % 100 == 0:
                            logger.info("Processed %d %s...", i + 1, label)

                if suspend_foreign_keys:
                    logger.info("Re-enabling foreign key constraints...")
                    await conn.execute("SET LOCAL session_replication_role = DEFAULT")
        except (psycopg.Error, ValidationError) as e:
            logger.error(
                "Database error during %s insertion, rolled back: %s", label, e,
            )
            msg = f"Failed to upsert {label}: {e}"
            raise PersistenceError(msg, kind=label) from e

        logger.info("Database transaction committed for %d %s", len(records), label)
        return UpsertResult(
            count=len(records), message=f"Inserted/Updated {len(records)} {label}",
        )

    async def upsert_facility_signups(
        self, users: Iterable[Mapping[str, Any]],
    ) -> UpsertResult:
        return await self._upsert(
            "users", SignupRecord, self.settings.signups_table, list(users),
        )

    async def upsert_course_info(
        self, courses: Mapping[str, Iterable[Mapping[str, Any]]],
    ) -> UpsertResult:
        # The agency key only groups the entries; each course carries its own agency.
        flattened = [
            course for course_list in courses.values() for course in course_list
        ]
        return await self._upsert(
            "courses", CourseRecord, self.settings.courses_table, flattened,
        )

    async def upsert_elearning_codes(
        self, codes: Iterable[Mapping[str, Any]],
    ) -> UpsertResult:
        return await self._upsert(
            "e-learning codes",
            ElearningCodeRecord,
            self.settings.elearning_codes_table,
            list(codes),
            suspend_foreign_keys=self.settings.suspend_foreign_keys,
        )
