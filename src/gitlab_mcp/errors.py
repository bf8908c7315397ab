"""Errors that are safe to show to agents, and the tool error envelope.

Messages and hints are stable strings; they never carry the access token or
request headers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# Codes that mean the call was refused before or instead of reaching GitLab.
DENIED_CODES: frozenset[str] = frozenset({"UserInput", "Forbidden", "Config"})

_STATUS_HINTS: dict[int, str] = {
    404: "The resource does not exist or is not visible to the configured token",
    409: "The resource already exists",
    422: "GitLab rejected the request parameters",
    429: "GitLab rate limit reached; retry later",
}


@dataclass(frozen=True, slots=True)
class SafeError(Exception):
    """Exception whose fields may be returned to the agent verbatim.

    Codes: ``UserInput``, ``Forbidden``, ``Config``, ``GitLab``, ``Network``, ``Internal``.
    """

    code: str
    message: str
    hint: str | None = None
    status_code: int | None = None

    @property
    def denied(self) -> bool:
        return self.code in DENIED_CODES

    def to_result(self) -> dict[str, Any]:
        """Render the ``{"ok": false, ...}`` envelope (without correlation id)."""
        out: dict[str, Any] = {"ok": False, "code": self.code, "message": self.message}
        if self.hint:
            out["hint"] = self.hint
        if self.status_code is not None:
            out["status_code"] = self.status_code
        return out


def gitlab_http_error(status_code: int, detail: str | None = None) -> SafeError:
    """Map a failed GitLab response to a SafeError.

    401/403 become ``Forbidden``; everything else is ``GitLab`` with GitLab's own
    error text as hint when it sent one.
    """
    if status_code in (401, 403):
        return SafeError(
            code="Forbidden",
            message="GitLab token is not authorized for this resource or operation",
            hint="The token may be expired, revoked, or missing the required scopes",
            status_code=status_code,
        )
    return SafeError(
        code="GitLab",
        message="GitLab request failed",
        hint=detail or _STATUS_HINTS.get(status_code),
        status_code=status_code,
    )


def internal_error(message: str = "Internal error") -> dict[str, Any]:
    """Envelope for unexpected failures."""
    return SafeError(code="Internal", message=message).to_result()
