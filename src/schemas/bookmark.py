"""Pydantic schemas for bookmark endpoints."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, HttpUrl, field_validator

from core.config import get_settings


def validate_title(title: str) -> str:
    """
    Trim and validate a bookmark title.

    Raises:
        ValueError: If the title is blank or exceeds the maximum length.
    """
    settings = get_settings()
    trimmed = title.strip()
    if not trimmed:
        raise ValueError("Title cannot be empty")
    if len(trimmed) > settings.max_title_length:
        raise ValueError(
            f"Title exceeds maximum length of {settings.max_title_length:,} characters "
            f"(got {len(trimmed):,} characters).",
        )
    return trimmed


def validate_url_length(url: HttpUrl) -> HttpUrl:
    """Validate that the URL doesn't exceed maximum length."""
    settings = get_settings()
    if len(str(url)) > settings.max_url_length:
        raise ValueError(
            f"URL exceeds maximum length of {settings.max_url_length:,} characters.",
        )
    return url


class BookmarkCreate(BaseModel):
    """Schema for creating a new bookmark."""

    # HttpUrl normalizes root domains with trailing slash (example.com -> example.com/)
    # but preserves paths as-is (example.com/page stays example.com/page)
    title: str
    url: HttpUrl

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        """Trim and validate title."""
        return validate_title(v)

    @field_validator("url")
    @classmethod
    def check_url_length(cls, v: HttpUrl) -> HttpUrl:
        """Validate URL length."""
        return validate_url_length(v)


class BookmarkUpdate(BaseModel):
    """Schema for updating an existing bookmark. Omitted fields are left unchanged."""

    title: str | None = None
    url: HttpUrl | None = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str | None) -> str | None:
        """Trim and validate title if provided."""
        if v is None:
            return None
        return validate_title(v)

    @field_validator("url")
    @classmethod
    def check_url_length(cls, v: HttpUrl | None) -> HttpUrl | None:
        """Validate URL length if provided."""
        if v is None:
            return None
        return validate_url_length(v)


class BookmarkResponse(BaseModel):
    """Schema for bookmark responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    title: str
    url: str
    created_at: datetime
    updated_at: datetime
