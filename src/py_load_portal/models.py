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
"""Defines the Pydantic data models for the application."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

JsonBlob = dict[str, Any] | list[Any] | str | None


def _or(value: Any, default: Any) -> Any:
    """Return `default` when `value` is falsy (None, 0, "" ...)."""
    return value or default


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _falsy_to_none(value: Any) -> Any:
    """Map falsy scalars to None ahead of number-to-string coercion.

    Without this a 0 would reach `to_row` as the truthy string "0" and skip
    its default. Empty dicts and lists are kept as they are.
    """
    if isinstance(value, (int, float, str)) and not value:
        return None
    return value


class SessionSource(str, Enum):
    """Which auth-response envelope a credential was decoded from."""

    NESTED = "nested"
    FLAT = "flat"
    EMPTY = "empty"


class SessionCredential(BaseModel):
    """Cookies and XSRF token replayed against the portal for one request."""

    model_config = ConfigDict(frozen=True)

    cookies: dict[str, str] = Field(default_factory=dict)
    xsrf: str = ""
    source: SessionSource = SessionSource.EMPTY

    @property
    def is_empty(self) -> bool:
        return not self.cookies and not self.xsrf

    def cookie_header(self) -> str:
        """Serialize the cookies as a `Cookie` header value."""
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())


class PortalRecord(BaseModel):
    """Base for records received from the portal.

    Unknown keys are dropped; `COLUMNS` lists the table columns in insert
    order, `KEY` the natural unique key, and `IMMUTABLE` the columns that a
    re-ingestion must never overwrite.
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    COLUMNS: ClassVar[tuple[str, ...]] = ()
    KEY: ClassVar[str] = ""
    IMMUTABLE: ClassVar[tuple[str, ...]] = ()
    JSON_COLUMNS: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def update_columns(cls) -> tuple[str, ...]:
        skip = {cls.KEY, *cls.IMMUTABLE}
        return tuple(column for column in cls.COLUMNS if column not in skip)

    def to_row(self) -> dict[str, Any]:
        """Return the normalized column values for the upsert."""
        return {column: getattr(self, column) for column in self.COLUMNS}


class SignupRecord(PortalRecord):
    """One portal member returned by the facility-signups resource."""

    COLUMNS: ClassVar[tuple[str, ...]] = (
        "user_id", "id", "facility_id", "user_uuid", "username", "name", "email",
        "email_verified_at", "password", "remember_token", "created_at", "updated_at",
        "created_user_id", "updated_user_id", "instance_id", "prefix_id", "first_name",
        "middle_name", "last_name", "suffix_id", "gender", "member_number", "region_id",
        "login_count", "login_stamp", "status_id", "user_level_id", "admin_level_id",
        "dob", "meta_data", "external_ids", "biometric_key", "biometric_expiration",
        "reward_program", "member_added_date",
    )
    KEY: ClassVar[str] = "user_id"
    IMMUTABLE: ClassVar[tuple[str, ...]] = ("created_at",)
    JSON_COLUMNS: ClassVar[tuple[str, ...]] = ("meta_data", "external_ids")

    user_id: int
    id: int | None = None
    facility_id: int | None = None
    user_uuid: str | None = None
    username: str | None = None
    name: str | None = None
    email: str | None = None
    email_verified_at: str | None = None
    password: str | None = None
    remember_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    created_user_id: int | None = None
    updated_user_id: int | None = None
    instance_id: int | None = None
    prefix_id: int | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    suffix_id: int | None = None
    gender: int | None = None
    member_number: int | None = None
    region_id: int | None = None
    login_count: int | None = None
    login_stamp: str | None = None
    status_id: int | None = None
    user_level_id: int | None = None
    admin_level_id: int | None = None
    dob: str | None = None
    meta_data: JsonBlob = None
    external_ids: JsonBlob = None
    biometric_key: str | None = None
    biometric_expiration: str | None = None
    reward_program: str | None = None
    member_added_date: str | None = None

    @field_validator("updated_at", "login_stamp", mode="before")
    @classmethod
    def _blank_falsy(cls, value: Any) -> Any:
        return _falsy_to_none(value)

    def to_row(self) -> dict[str, Any]:
        row = super().to_row()
        row["updated_at"] = _or(self.updated_at, self.created_at)
        row["login_stamp"] = _or(self.login_stamp, self.created_at)
        for column in (
            "created_user_id", "updated_user_id", "instance_id", "prefix_id",
            "suffix_id", "gender", "member_number", "region_id", "login_count",
        ):
            row[column] = _or(row[column], 0)
        # 1 is the portal's "active" status and default level.
        for column in ("status_id", "user_level_id", "admin_level_id"):
            row[column] = _or(row[column], 1)
        return row


class CourseRecord(PortalRecord):
    """A course offered by an agency, as listed under `courses` in signups."""

    COLUMNS: ClassVar[tuple[str, ...]] = ("course_id", "agency", "agency_id", "label")
    KEY: ClassVar[str] = "course_id"

    course_id: int
    agency: str | None = None
    agency_id: int | None = None
    label: str | None = None


class ElearningCodeRecord(PortalRecord):
    """A learning code issued to a user for a course."""

    COLUMNS: ClassVar[tuple[str, ...]] = (
        "id", "user_id", "course_id", "user_name", "first_name", "middle_name",
        "last_name", "dob", "email", "facility_id", "facility_name", "facility_number",
        "office_id", "agency_id", "agency", "course_name", "course_meta", "moodle_id",
        "instance_id", "prefix_id", "suffix_id", "status_id", "status_label",
        "signup_code", "signup_date", "help_date", "created_at", "updated_at",
    )
    KEY: ClassVar[str] = "id"
    IMMUTABLE: ClassVar[tuple[str, ...]] = ("created_at",)
    JSON_COLUMNS: ClassVar[tuple[str, ...]] = ("course_meta",)

    NUMERIC: ClassVar[tuple[str, ...]] = (
        "id", "user_id", "course_id", "facility_id", "facility_number", "office_id",
        "agency_id", "moodle_id", "instance_id", "prefix_id", "suffix_id", "status_id",
    )
    TEXT: ClassVar[tuple[str, ...]] = (
        "user_name", "first_name", "middle_name", "last_name", "email",
        "facility_name", "agency", "course_name", "status_label", "signup_code",
    )
    NULLABLE: ClassVar[tuple[str, ...]] = ("dob", "course_meta", "signup_date", "help_date")

    id: int | None = None
    user_id: int | None = None
    course_id: int | None = None
    user_name: str | None = None
    first_name: str | None = None
    middle_name: str | None = None
    last_name: str | None = None
    dob: str | None = None
    email: str | None = None
    facility_id: int | None = None
    facility_name: str | None = None
    facility_number: int | None = None
    office_id: int | None = None
    agency_id: int | None = None
    agency: str | None = None
    course_name: str | None = None
    course_meta: JsonBlob = None
    moodle_id: int | None = None
    instance_id: int | None = None
    prefix_id: int | None = None
    suffix_id: int | None = None
    status_id: int | None = None
    status_label: str | None = None
    signup_code: str | None = None
    signup_date: str | None = None
    help_date: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator(*TEXT, *NULLABLE, "created_at", "updated_at", mode="before")
    @classmethod
    def _blank_falsy(cls, value: Any) -> Any:
        return _falsy_to_none(value)

    def to_row(self) -> dict[str, Any]:
        row = super().to_row()
        for column in self.NUMERIC:
            row[column] = _or(row[column], 0)
        for column in self.TEXT:
            row[column] = _or(row[column], "")
        for column in self.NULLABLE:
            row[column] = _or(row[column], None)
        now = _utc_now_iso()
        row["created_at"] = _or(self.created_at, now)
        row["updated_at"] = _or(self.updated_at, now)
        return row


class UpsertResult(BaseModel):
    """Outcome of one committed upsert transaction."""

    success: bool = True
    count: int
    message: str


class PersistOutcome(BaseModel):
    """Per record kind result reported back to the webhook caller.

    Either `ok` (with `count`) or `failed` (with `error`); never both.
    """

    success: bool
    count: int | None = None
    message: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, result: UpsertResult) -> "PersistOutcome":
        return cls(success=True, count=result.count, message=result.message)

    @classmethod
    def failed(cls, error: str) -> "PersistOutcome":
        return cls(success=False, error=error)


class WebhookResult(BaseModel):
    """Body of a successful resource webhook response."""

    status: str = "success"
    message: str = "Successfully Called and Responded"
    timestamp: str = Field(default_factory=_utc_now_iso)
    response: dict[str, Any]
    database: dict[str, PersistOutcome] = Field(default_factory=dict)


class WebhookError(BaseModel):
    """Body of a failed webhook response (HTTP 500)."""

    status: str = "error"
    message: str = "Error processing webhook"
    timestamp: str = Field(default_factory=_utc_now_iso)
    error: str
