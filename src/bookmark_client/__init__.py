"""Client for the Bookmarks API that keeps a live, in-memory list of the user's bookmarks."""
from bookmark_client.app import BookmarkApp, View
from bookmark_client.config import ClientSettings, get_client_settings
from bookmark_client.gateway import BookmarkForm, MutationGateway
from bookmark_client.models import Bookmark, ChangeEvent, Session
from bookmark_client.session import AuthClient, SessionGuard, SessionState, SessionStore
from bookmark_client.store import BookmarkListStore
from bookmark_client.subscriber import ChangeStreamSubscriber, SubscriberState

__all__ = [
    "AuthClient",
    "Bookmark",
    "BookmarkApp",
    "BookmarkForm",
    "BookmarkListStore",
    "ChangeEvent",
    "ChangeStreamSubscriber",
    "ClientSettings",
    "MutationGateway",
    "Session",
    "SessionGuard",
    "SessionState",
    "SessionStore",
    "SubscriberState",
    "View",
    "get_client_settings",
]
