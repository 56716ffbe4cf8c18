"""Client configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_REDIRECT_URL = "http://localhost:3000"


class ClientSettings(BaseSettings):
    """Client settings loaded from BOOKMARKS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BOOKMARKS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_url: str = "http://localhost:8000"

    # Auth0 application used for the "continue with provider" login
    auth0_domain: str = ""
    auth0_client_id: str = ""
    auth0_audience: str = ""
    auth_redirect_url: str = DEFAULT_REDIRECT_URL

    # A token from the environment takes precedence over the saved session file
    access_token: str | None = None
    session_file: Path = Path.home() / ".config" / "bookmarks" / "session.json"

    # Timeouts and reconnect backoff, in seconds
    request_timeout: float = 30.0
    subscribe_timeout: float = 10.0
    reconnect_initial_delay: float = 1.0
    reconnect_max_delay: float = 30.0

    @field_validator("auth_redirect_url", mode="before")
    @classmethod
    def default_redirect_url(cls, v: str | None) -> str:
        """Fall back to the local address when the redirect URL is unset or blank."""
        if v is None or not str(v).strip():
            return DEFAULT_REDIRECT_URL
        return str(v).strip()

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the API base URL so paths can be appended."""
        return v.rstrip("/")

    @property
    def changes_url(self) -> str:
        """WebSocket URL of the bookmark change feed."""
        parts = urlsplit(self.api_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        path = parts.path.rstrip("/") + "/bookmarks/changes"
        return urlunsplit((scheme, parts.netloc, path, "", ""))

    @property
    def auth0_authorize_url(self) -> str:
        """Get the Auth0 authorization endpoint."""
        return f"https://{self.auth0_domain}/authorize"


@lru_cache
def get_client_settings() -> ClientSettings:
    """Get cached client settings instance."""
    return ClientSettings()
