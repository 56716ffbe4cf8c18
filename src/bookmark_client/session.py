"""Session handling: token storage, the provider login URL, and the session guard."""
import json
import logging
import os
from enum import StrEnum
from pathlib import Path
from urllib.parse import parse_qs, urlencode, urlsplit

from bookmark_client.api_client import BookmarksApi
from bookmark_client.config import ClientSettings
from bookmark_client.exceptions import BookmarkClientError, SessionError
from bookmark_client.models import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Persists the access token between runs.

    A token supplied through the environment takes precedence over the file and is
    never written to disk.
    """

    def __init__(self, path: Path, env_token: str | None = None) -> None:
        self.path = path
        self._env_token = env_token

    def load_token(self) -> str | None:
        """Return the stored access token, or None if there is none."""
        if self._env_token:
            return self._env_token
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Could not read session file %s: %s", self.path, e)
            return None
        token = data.get("access_token") if isinstance(data, dict) else None
        return token or None

    def save_token(self, token: str) -> None:
        """Write the access token to the session file (owner-readable only)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"access_token": token}), encoding="utf-8")
        os.chmod(self.path, 0o600)

    def clear(self) -> None:
        """Forget the stored token, including one taken from the environment."""
        self._env_token = None
        self.path.unlink(missing_ok=True)


class AuthClient:
    """Sign-in and sign-out against the identity provider (Auth0)."""

    def __init__(self, settings: ClientSettings, store: SessionStore) -> None:
        self._settings = settings
        self._store = store

    def get_access_token(self) -> str | None:
        """Current access token, if signed in."""
        return self._store.load_token()

    def sign_in_url(self, state: str | None = None) -> str:
        """
        Build the provider's authorization URL ("continue with provider").

        After the user signs in, the provider redirects back to the configured
        redirect URL with the access token in the URL fragment.
        """
        params = {
            "response_type": "token",
            "client_id": self._settings.auth0_client_id,
            "redirect_uri": self._settings.auth_redirect_url,
            "scope": "openid profile email",
        }
        if self._settings.auth0_audience:
            params["audience"] = self._settings.auth0_audience
        if state:
            params["state"] = state
        return f"{self._settings.auth0_authorize_url}?{urlencode(params)}"

    def complete_sign_in(self, callback_url: str) -> str:
        """
        Extract the access token from the provider's redirect and store it.

        Raises:
            SessionError: If the redirect carries an error or no token.
        """
        parts = urlsplit(callback_url)
        params = parse_qs(parts.fragment) or parse_qs(parts.query)
        if "error" in params:
            description = params.get("error_description", params["error"])[0]
            raise SessionError(f"Sign-in failed: {description}")
        tokens = params.get("access_token")
        if not tokens or not tokens[0]:
            raise SessionError("Sign-in redirect did not contain an access token")
        self._store.save_token(tokens[0])
        logger.info("signed_in")
        return tokens[0]

    def sign_out(self) -> None:
        """End the session by forgetting the access token."""
        self._store.clear()
        logger.info("signed_out")


class SessionState(StrEnum):
    """Where the session guard stands."""

    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class SessionGuard:
    """
    Establishes who the user is before anything else runs.

    `initialize` checks for a session once, without retries; any failure counts as
    "no session" and leaves the guard UNAUTHENTICATED so the caller shows the login view.
    """

    def __init__(self, api: BookmarksApi) -> None:
        self._api = api
        self.state = SessionState.PENDING
        self.session: Session | None = None

    @property
    def user_id(self) -> str | None:
        """Authenticated user's id, if any."""
        return self.session.user_id if self.session is not None else None

    async def initialize(self) -> Session | None:
        """Check the current session and record the outcome."""
        try:
            session = await self._api.get_me()
        except BookmarkClientError as e:
            logger.info("No active session: %s", e)
            self.reset()
            return None
        self.session = session
        self.state = SessionState.AUTHENTICATED
        return session

    def require_session(self) -> Session:
        """
        Return the current session.

        Raises:
            SessionError: If the guard has no authenticated session.
        """
        if self.session is None:
            raise SessionError("Not signed in")
        return self.session

    def reset(self) -> None:
        """Drop the session (after sign-out or a failed check)."""
        self.session = None
        self.state = SessionState.UNAUTHENTICATED
