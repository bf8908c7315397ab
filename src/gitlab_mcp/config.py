"""Host-supplied configuration.

Everything comes from environment variables set in the MCP client config; agents
cannot change it. The token lives only in ``AppConfig.token`` and is never
echoed in error messages.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .errors import SafeError
from .policy import project_key

DEFAULT_GITLAB_URL = "https://gitlab.com"
API_SUFFIX = "/api/v4"

AUTH_SCHEMES: frozenset[str] = frozenset({"private-token", "bearer"})
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True, slots=True)
class PolicyConfig:
    allowed_projects: frozenset[str]
    read_only: bool


@dataclass(frozen=True, slots=True)
class LimitsConfig:
    """Timeouts (seconds) and payload caps (bytes)."""

    total_timeout_s: float = 60.0
    connect_timeout_s: float = 5.0
    read_timeout_s: float = 30.0
    file_max_bytes: int = 512 * 1024
    attachment_max_bytes: int = 5 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class AppConfig:
    api_url: str
    token: str
    auth_scheme: str
    policy: PolicyConfig
    audit_log_path: Path | None
    audit_max_bytes: int
    audit_max_backups: int
    limits: LimitsConfig


def _env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip() or None


def _env_number(name: str, default: int | float, *, minimum: int = 1) -> int | float:
    """Read a numeric override, keeping the type of ``default``."""
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = type(default)(raw)
    except ValueError:
        raise SafeError(code="Config", message=f"{name} must be a number") from None
    if value < minimum:
        raise SafeError(code="Config", message=f"{name} must be at least {minimum}")
    return value


def _parse_allowed_projects(value: str | None) -> frozenset[str]:
    if not value:
        return frozenset()
    return frozenset(key for key in map(project_key, value.split(",")) if key)


def normalize_api_url(url: str | None) -> str:
    """Return the instance URL ending in exactly one ``/api/v4``.

    Raises:
        SafeError: If the URL is not http(s).
    """
    raw = (url or "").strip() or DEFAULT_GITLAB_URL
    if not raw.startswith(("https://", "http://")):
        raise SafeError(code="Config", message="GITLAB_API_URL must start with https:// or http://")

    base = raw.rstrip("/")
    return base if base.endswith(API_SUFFIX) else base + API_SUFFIX


def _load_limits() -> LimitsConfig:
    defaults = LimitsConfig()
    return LimitsConfig(
        total_timeout_s=float(_env_number("GITLAB_MCP_TIMEOUT_S", defaults.total_timeout_s)),
        connect_timeout_s=defaults.connect_timeout_s,
        read_timeout_s=defaults.read_timeout_s,
        file_max_bytes=int(_env_number("GITLAB_MCP_FILE_MAX_BYTES", defaults.file_max_bytes)),
        attachment_max_bytes=int(_env_number("GITLAB_MCP_ATTACHMENT_MAX_BYTES", defaults.attachment_max_bytes)),
    )


def _load_audit_path() -> Path | None:
    raw = _env("GITLAB_MCP_AUDIT_LOG_PATH")
    if raw is None:
        return None
    path = Path(raw)
    if not path.is_absolute():
        raise SafeError(code="Config", message="GITLAB_MCP_AUDIT_LOG_PATH must be an absolute path when set")
    return path


def load_config_from_env() -> AppConfig:
    """Build the validated configuration.

    Raises:
        SafeError: ``Config`` when a variable is missing or malformed.
    """
    token = _env("GITLAB_PERSONAL_ACCESS_TOKEN") or _env("GITLAB_TOKEN")
    if token is None:
        raise SafeError(code="Config", message="Missing required configuration (GITLAB_PERSONAL_ACCESS_TOKEN)")

    auth_scheme = (_env("GITLAB_AUTH_SCHEME") or "private-token").lower()
    if auth_scheme not in AUTH_SCHEMES:
        raise SafeError(code="Config", message="GITLAB_AUTH_SCHEME must be 'private-token' or 'bearer'")

    return AppConfig(
        api_url=normalize_api_url(_env("GITLAB_API_URL")),
        token=token,
        auth_scheme=auth_scheme,
        policy=PolicyConfig(
            allowed_projects=_parse_allowed_projects(_env("GITLAB_MCP_ALLOWED_PROJECTS")),
            read_only=(_env("GITLAB_READ_ONLY_MODE") or "").lower() in _TRUE_VALUES,
        ),
        audit_log_path=_load_audit_path(),
        audit_max_bytes=int(_env_number("GITLAB_MCP_AUDIT_MAX_BYTES", 5 * 1024 * 1024)),
        audit_max_backups=int(_env_number("GITLAB_MCP_AUDIT_MAX_BACKUPS", 2, minimum=0)),
        limits=_load_limits(),
    )
