"""Runtime initialization coverage for tools.

This covers `initialize_runtime_from_env()` caching and wiring without any network access.
"""

from __future__ import annotations

from pathlib import Path

import gitlab_mcp.tools as tools
import pytest
from gitlab_mcp.audit import AuditLogger
from gitlab_mcp.errors import SafeError
from gitlab_mcp.gitlab_client import GitLabClient
from gitlab_mcp.user_search import UserSearch


@pytest.fixture(autouse=True)
def _fresh_runtime(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tools, "_RUNTIME", None)
    for name in (
        "GITLAB_PERSONAL_ACCESS_TOKEN",
        "GITLAB_TOKEN",
        "GITLAB_API_URL",
        "GITLAB_AUTH_SCHEME",
        "GITLAB_READ_ONLY_MODE",
        "GITLAB_MCP_ALLOWED_PROJECTS",
        "GITLAB_MCP_AUDIT_LOG_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


def test_initialize_runtime_from_env_caches_runtime(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GITLAB_PERSONAL_ACCESS_TOKEN", "tok")
    monkeypatch.setenv("GITLAB_API_URL", "https://gitlab.example.com")
    monkeypatch.setenv("GITLAB_READ_ONLY_MODE", "true")
    monkeypatch.setenv("GITLAB_MCP_AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))

    r1 = tools.initialize_runtime_from_env()
    r2 = tools.initialize_runtime_from_env()

    assert r1 is r2
    assert r1.config.api_url == "https://gitlab.example.com/api/v4"
    assert r1.policy.read_only is True
    assert isinstance(r1.audit, AuditLogger)
    assert isinstance(r1.gitlab, GitLabClient)
    assert isinstance(r1.user_search, UserSearch)
    assert r1.gitlab.api_base_url == "https://gitlab.example.com/api/v4"


def test_initialize_runtime_from_env_fails_fast_without_token() -> None:
    with pytest.raises(SafeError) as exc:
        _ = tools.initialize_runtime_from_env()

    assert exc.value.code == "Config"
    assert tools._RUNTIME is None  # pylint: disable=protected-access


@pytest.mark.asyncio
async def test_runtime_auth_renders_configured_scheme(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITLAB_PERSONAL_ACCESS_TOKEN", "tok")
    monkeypatch.setenv("GITLAB_AUTH_SCHEME", "bearer")

    runtime = tools.initialize_runtime_from_env()

    assert await runtime.auth.get_auth_headers() == {"Authorization": "Bearer tok"}
