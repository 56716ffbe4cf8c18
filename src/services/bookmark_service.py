"""Service layer for bookmark CRUD operations."""
import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.bookmark import Bookmark
from schemas.bookmark import BookmarkCreate, BookmarkResponse, BookmarkUpdate
from schemas.change_event import ChangeEvent, DeletedRecord
from services.change_feed import record_change

logger = logging.getLogger(__name__)


async def create_bookmark(
    db: AsyncSession,
    user_id: UUID,
    data: BookmarkCreate,
) -> Bookmark:
    """
    Create a new bookmark for a user and queue an INSERT change event.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    bookmark = Bookmark(
        user_id=user_id,
        title=data.title,
        url=str(data.url),
    )
    db.add(bookmark)
    await db.flush()
    await db.refresh(bookmark)

    record_change(
        db,
        ChangeEvent(
            event_type="INSERT",
            user_id=user_id,
            new=BookmarkResponse.model_validate(bookmark),
        ),
    )
    logger.info("bookmark_created", extra={"bookmark_id": str(bookmark.id)})
    return bookmark


async def get_bookmark(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
) -> Bookmark | None:
    """Get a bookmark by ID, scoped to user. Returns None if not found or wrong user."""
    result = await db.execute(
        select(Bookmark).where(
            Bookmark.id == bookmark_id,
            Bookmark.user_id == user_id,
        ),
    )
    return result.scalar_one_or_none()


async def get_bookmarks(
    db: AsyncSession,
    user_id: UUID,
) -> list[Bookmark]:
    """
    Get all bookmarks for a user, newest first.

    Ties on created_at are broken by id; ids are UUIDv7 and therefore time-ordered.
    """
    result = await db.execute(
        select(Bookmark)
        .where(Bookmark.user_id == user_id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc()),
    )
    return list(result.scalars().all())


async def update_bookmark(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
    data: BookmarkUpdate,
) -> Bookmark | None:
    """
    Update a bookmark and queue an UPDATE change event. Returns None if not found.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return None

    update_data = data.model_dump(exclude_unset=True, exclude_none=True)
    if "url" in update_data:
        update_data["url"] = str(update_data["url"])
    if not update_data:
        return bookmark

    for field, value in update_data.items():
        setattr(bookmark, field, value)

    await db.flush()
    await db.refresh(bookmark)

    record_change(
        db,
        ChangeEvent(
            event_type="UPDATE",
            user_id=user_id,
            new=BookmarkResponse.model_validate(bookmark),
        ),
    )
    return bookmark


async def delete_bookmark(
    db: AsyncSession,
    user_id: UUID,
    bookmark_id: UUID,
) -> bool:
    """
    Delete a bookmark and queue a DELETE change event. Returns False if not found.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    bookmark = await get_bookmark(db, user_id, bookmark_id)
    if bookmark is None:
        return False

    await db.delete(bookmark)
    await db.flush()

    record_change(
        db,
        ChangeEvent(
            event_type="DELETE",
            user_id=user_id,
            old=DeletedRecord(id=bookmark_id),
        ),
    )
    logger.info("bookmark_deleted", extra={"bookmark_id": str(bookmark_id)})
    return True
