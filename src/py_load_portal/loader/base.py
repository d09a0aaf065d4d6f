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
"""Defines the abstract base class for database loaders."""

import abc
from collections.abc import Iterable, Mapping
from contextlib import AbstractAsyncContextManager
from typing import Any

from ..models import UpsertResult


class BaseLoader(abc.ABC):
    """Abstract Base Class for all database loaders.

    This class defines the interface that all database-specific loaders must
    implement. Every upsert routine is all-or-nothing: it runs inside one
    transaction, commits when every record was written and rolls back the
    whole batch otherwise, raising PersistenceError.
    """

    @abc.abstractmethod
    async def open(self) -> None:
        """Create the process-wide connection pool."""
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self) -> None:
        """Tear down the connection pool."""
        raise NotImplementedError

    async def __aenter__(self) -> "BaseLoader":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @abc.abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[Any]:
        """Acquire a pooled connection and begin a transaction.

        Yields the connection; commits on a clean exit, rolls back on any
        exception, and always returns the connection to the pool.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def prepare_schema(self) -> None:
        """Create the target tables if they do not exist yet (idempotent)."""
        raise NotImplementedError

    @abc.abstractmethod
    async def upsert_facility_signups(
        self, users: Iterable[Mapping[str, Any]],
    ) -> UpsertResult:
        """Insert or update signup records keyed on `user_id`.

        Args:
            users: The `data` array of the facility-signups resource.

        """
        raise NotImplementedError

    @abc.abstractmethod
    async def upsert_course_info(
        self, courses: Mapping[str, Iterable[Mapping[str, Any]]],
    ) -> UpsertResult:
        """Insert or update course records keyed on `course_id`.

        Args:
            courses: Mapping of agency name to that agency's course entries.
                     The agency name itself is not stored.

        """
        raise NotImplementedError

    @abc.abstractmethod
    async def upsert_elearning_codes(
        self, codes: Iterable[Mapping[str, Any]],
    ) -> UpsertResult:
        """Insert or update e-learning code records keyed on `id`.

        Referenced users and courses need not exist yet.

        Args:
            codes: The `data` array of the e-learning-codes resource.

        """
        raise NotImplementedError
