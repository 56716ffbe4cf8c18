"""Schemas for row-level change events published on the bookmark change feed."""
from datetime import UTC, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from schemas.bookmark import BookmarkResponse

ChangeEventType = Literal["INSERT", "UPDATE", "DELETE"]


class DeletedRecord(BaseModel):
    """Identity of a row that no longer exists."""

    id: UUID


class ChangeEvent(BaseModel):
    """
    A single row-level change to the bookmarks table.

    INSERT and UPDATE events carry the full row in `new`; DELETE events carry only the
    id of the removed row in `old`. Events are always scoped to the owning user so the
    feed can route them without looking at the row itself.
    """

    event_type: ChangeEventType
    table: Literal["bookmarks"] = "bookmarks"
    user_id: UUID
    new: BookmarkResponse | None = None
    old: DeletedRecord | None = None
    commit_timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
