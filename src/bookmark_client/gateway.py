"""User-initiated writes: create, delete, and logout."""
import logging
from dataclasses import dataclass

from bookmark_client.api_client import BookmarksApi
from bookmark_client.exceptions import MutationError, SessionError
from bookmark_client.models import Bookmark
from bookmark_client.session import AuthClient
from bookmark_client.store import BookmarkListStore

logger = logging.getLogger(__name__)


@dataclass
class BookmarkForm:
    """Input fields of the add-bookmark form."""

    title: str = ""
    url: str = ""

    def clear(self) -> None:
        """Reset both fields."""
        self.title = ""
        self.url = ""


class MutationGateway:
    """
    Sends writes to the API and reflects confirmed writes in the store.

    Writes are applied locally only after the server confirms them. The same change
    later arrives again through the change feed; the store's id-keyed merge absorbs
    the echo, so the order in which the two arrive does not matter.
    """

    def __init__(
        self,
        api: BookmarksApi,
        store: BookmarkListStore,
        auth: AuthClient,
        form: BookmarkForm | None = None,
    ) -> None:
        self._api = api
        self._store = store
        self._auth = auth
        self.form = form if form is not None else BookmarkForm()

    async def create(self, title: str, url: str, user_id: str) -> Bookmark | None:
        """
        Create a bookmark owned by `user_id`.

        Blank titles or urls are rejected locally without sending a request. On success
        the form is cleared and the new record is inserted into the store right away,
        unless the server attributed it to a different user than expected.

        Returns:
            The created record, or None if nothing was created.
        """
        title = title.strip()
        url = url.strip()
        if not title or not url:
            logger.info("Not creating bookmark: title and url are required")
            return None

        try:
            record = await self._api.create_bookmark(title, url)
        except (MutationError, SessionError) as e:
            logger.warning("Bookmark create failed: %s", e)
            return None

        self.form.clear()
        if record.user_id != user_id:
            logger.warning(
                "Created bookmark %s belongs to user %s, expected %s",
                record.id, record.user_id, user_id,
            )
            return record
        self._store.apply_insert(record)
        return record

    async def submit_form(self, user_id: str) -> Bookmark | None:
        """Create a bookmark from the current form fields."""
        return await self.create(self.form.title, self.form.url, user_id)

    async def delete(self, bookmark_id: str) -> bool:
        """
        Delete a bookmark and remove it from the store once the server confirms.

        A bookmark the server no longer has counts as deleted. On failure the store
        is left untouched.

        Returns:
            True if the bookmark is gone.
        """
        try:
            await self._api.delete_bookmark(bookmark_id)
        except (MutationError, SessionError) as e:
            logger.warning("Bookmark delete failed: %s", e)
            return False
        self._store.apply_delete(bookmark_id)
        return True

    async def logout(self) -> None:
        """Terminate the session and empty the store."""
        self._auth.sign_out()
        self._store.clear()
