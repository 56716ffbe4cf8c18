"""Bookmark CRUD endpoints and the live change feed."""
import asyncio
import logging
from contextlib import suppress
from uuid import UUID

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_async_session, get_current_user, get_settings
from core.auth import authenticate_token
from core.config import Settings
from models.user import User
from schemas.bookmark import BookmarkCreate, BookmarkResponse, BookmarkUpdate
from services import bookmark_service
from services.change_feed import ChangeSubscription, get_change_feed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])


@router.post("/", response_model=BookmarkResponse, status_code=201)
async def create_bookmark(
    data: BookmarkCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Create a new bookmark."""
    bookmark = await bookmark_service.create_bookmark(db, current_user.id, data)
    return BookmarkResponse.model_validate(bookmark)


@router.get("/", response_model=list[BookmarkResponse])
async def list_bookmarks(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> list[BookmarkResponse]:
    """List all bookmarks for the current user, newest first."""
    bookmarks = await bookmark_service.get_bookmarks(db, current_user.id)
    return [BookmarkResponse.model_validate(b) for b in bookmarks]


@router.websocket("/changes")
async def bookmark_changes(
    websocket: WebSocket,
    access_token: str | None = Query(default=None),
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Stream row-level changes to the current user's bookmarks.

    Browsers cannot set headers on WebSocket requests, so the token travels in the
    `access_token` query parameter. Each text frame is one JSON-encoded change event.
    The socket is closed with 1008 on authentication failure and with 1013 if the
    client falls too far behind, after which it should reconnect and reload.
    """
    feed = get_change_feed()
    if feed is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Change feed unavailable")
        return

    try:
        user = await authenticate_token(db, access_token, settings)
    except HTTPException as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(e.detail))
        return
    # Release the pooled connection; the socket may stay open for hours
    await db.commit()

    await websocket.accept()
    logger.info("change_feed_connected", extra={"user_id": str(user.id)})

    async with feed.subscribe(user.id) as subscription:
        sender = asyncio.create_task(_forward_events(websocket, subscription))
        receiver = asyncio.create_task(_wait_for_disconnect(websocket))
        done, pending = await asyncio.wait(
            {sender, receiver}, return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
            with suppress(asyncio.CancelledError, WebSocketDisconnect):
                await task

    if sender in done and receiver not in done:
        error = sender.exception()
        if error is not None and not isinstance(error, WebSocketDisconnect):
            logger.warning("change_feed_send_failed", extra={"error": str(error)})
        code = (
            status.WS_1013_TRY_AGAIN_LATER
            if subscription.overflowed
            else status.WS_1001_GOING_AWAY
        )
        with suppress(RuntimeError, WebSocketDisconnect):
            await websocket.close(code=code)

    logger.info("change_feed_disconnected", extra={"user_id": str(user.id)})


async def _forward_events(websocket: WebSocket, subscription: ChangeSubscription) -> None:
    async for event in subscription:
        await websocket.send_text(event.model_dump_json())


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Clients never send anything meaningful; reading is only how a disconnect is noticed
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.get("/{bookmark_id}", response_model=BookmarkResponse)
async def get_bookmark(
    bookmark_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Get a single bookmark by ID."""
    bookmark = await bookmark_service.get_bookmark(db, current_user.id, bookmark_id)
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)


@router.patch("/{bookmark_id}", response_model=BookmarkResponse)
async def update_bookmark(
    bookmark_id: UUID,
    data: BookmarkUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> BookmarkResponse:
    """Update a bookmark's title and/or url."""
    bookmark = await bookmark_service.update_bookmark(
        db, current_user.id, bookmark_id, data,
    )
    if bookmark is None:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    return BookmarkResponse.model_validate(bookmark)


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> None:
    """Delete a bookmark."""
    deleted = await bookmark_service.delete_bookmark(db, current_user.id, bookmark_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Bookmark not found")
