"""GitLab token authentication.

Renders the auth header for a personal/project/group access token or an OAuth token.
The token value must never be exposed.
"""

from __future__ import annotations

from .config import AppConfig
from .errors import SafeError


class GitLabTokenAuth:
    """Holds the configured token and renders request auth headers."""

    def __init__(self, *, token: str, scheme: str = "private-token") -> None:
        """Create an auth helper for a single token."""
        if not token:
            raise SafeError(code="Config", message="GitLab access token is empty")
        if scheme not in ("private-token", "bearer"):
            raise SafeError(code="Config", message="Unsupported GitLab auth scheme")
        self._token = token
        self._scheme = scheme

    @classmethod
    def from_config(cls, config: AppConfig) -> GitLabTokenAuth:
        """Build the auth helper from host configuration."""
        return cls(token=config.token, scheme=config.auth_scheme)

    @property
    def scheme(self) -> str:
        """Return the configured scheme name."""
        return self._scheme

    async def get_auth_headers(self) -> dict[str, str]:
        """Return the headers that authenticate a GitLab API request."""
        if self._scheme == "bearer":
            return {"Authorization": f"Bearer {self._token}"}
        return {"PRIVATE-TOKEN": self._token}

    def __repr__(self) -> str:
        return f"GitLabTokenAuth(scheme={self._scheme!r}, token=<redacted>)"
