"""Data models shared by the client components."""
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


def _as_str(value: Any) -> Any:
    # Ids are opaque to the client; UUIDs and ints are normalized to strings
    if value is None or isinstance(value, str):
        return value
    return str(value)


def _as_aware(value: datetime | None) -> datetime | None:
    # Timestamps without an offset are taken to be UTC so they compare with aware ones
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Bookmark(BaseModel):
    """A bookmark record as returned by the API and carried on the change feed."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    title: str
    url: str
    user_id: str
    created_at: datetime
    updated_at: datetime | None = None

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def normalize_id(cls, v: Any) -> Any:
        """Accept UUIDs and integers as ids."""
        return _as_str(v)

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def ensure_timezone(cls, v: datetime | None) -> datetime | None:
        """Make naive timestamps timezone-aware (UTC)."""
        return _as_aware(v)

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Newest-first ordering key: creation time, then id."""
        return (self.created_at, self.id)


class DeletedRecord(BaseModel):
    """Identity of a deleted row."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v: Any) -> Any:
        """Accept UUIDs and integers as ids."""
        return _as_str(v)


class ChangeEvent(BaseModel):
    """
    A row-level change notification from the change feed.

    INSERT and UPDATE carry the full row in `new`; DELETE carries the removed id in `old`.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    event_type: Literal["INSERT", "UPDATE", "DELETE"]
    table: str = "bookmarks"
    user_id: str
    new: Bookmark | None = None
    old: DeletedRecord | None = None
    commit_timestamp: datetime | None = None

    @field_validator("user_id", mode="before")
    @classmethod
    def normalize_user_id(cls, v: Any) -> Any:
        """Accept UUIDs and integers as ids."""
        return _as_str(v)

    @model_validator(mode="after")
    def check_payload(self) -> "ChangeEvent":
        """Ensure the payload matching the event type is present."""
        if self.event_type in ("INSERT", "UPDATE") and self.new is None:
            raise ValueError(f"{self.event_type} event is missing the new record")
        if self.event_type == "DELETE" and self.old is None:
            raise ValueError("DELETE event is missing the old record")
        return self

    @property
    def record_id(self) -> str:
        """Id of the row this event is about."""
        if self.new is not None:
            return self.new.id
        if self.old is not None:
            return self.old.id
        raise ValueError(f"{self.event_type} event has no record")


@dataclass(frozen=True)
class Session:
    """An authenticated session: who the user is and the token proving it."""

    user_id: str
    email: str | None
    access_token: str
