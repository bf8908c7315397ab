"""Smoke tests for the gitlab-mcp server surface."""

from __future__ import annotations

import json

import gitlab_mcp.tools as tools_module
import pytest
from gitlab_mcp.__main__ import main, parse_args
from gitlab_mcp.errors import SafeError
from gitlab_mcp.server import (CAPABILITIES_URI, STATUS_URI, list_resources,
                               list_tools, read_resource, self_test)


@pytest.mark.asyncio
async def test_server_lists_every_tool() -> None:
    tools = await list_tools()

    assert {t.name for t in tools} == set(tools_module.TOOL_METADATA)


@pytest.mark.asyncio
async def test_server_lists_resources_ok() -> None:
    resources = await list_resources()

    assert {str(r.uri).rstrip("/") for r in resources} == {STATUS_URI, CAPABILITIES_URI}


@pytest.mark.asyncio
async def test_tools_do_not_emit_secrets_in_metadata() -> None:
    tools = await list_tools()
    as_json = json.dumps([t.model_dump() for t in tools], sort_keys=True)

    # Basic guardrails for obvious token markers.
    assert "glpat-" not in as_json
    assert "Bearer " not in as_json


@pytest.mark.asyncio
async def test_capabilities_resource_lists_operations() -> None:
    payload = json.loads(await read_resource(CAPABILITIES_URI))

    assert "get_users" in payload["allow_listed_operations"]
    assert payload["write_operations"] == ["create_branch"]


@pytest.mark.asyncio
async def test_status_resource_when_unconfigured(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail() -> tools_module.Runtime:
        raise SafeError(code="Config", message="Missing required configuration (GITLAB_PERSONAL_ACCESS_TOKEN)")

    monkeypatch.setattr("gitlab_mcp.server.initialize_runtime_from_env", fail)

    payload = json.loads(await read_resource(STATUS_URI))

    assert payload["configured"] is False
    assert payload["tools_available"] == len(tools_module.TOOL_METADATA)
    assert payload["config_error"].startswith("Missing required configuration")


@pytest.mark.asyncio
async def test_status_resource_never_contains_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tools_module, "_RUNTIME", None)
    monkeypatch.setenv("GITLAB_PERSONAL_ACCESS_TOKEN", "glpat-statuscheck")
    monkeypatch.delenv("GITLAB_API_URL", raising=False)
    monkeypatch.delenv("GITLAB_AUTH_SCHEME", raising=False)
    monkeypatch.delenv("GITLAB_MCP_AUDIT_LOG_PATH", raising=False)

    text = await read_resource(STATUS_URI)

    assert "glpat-statuscheck" not in text
    assert json.loads(text)["configured"] is True


@pytest.mark.asyncio
async def test_unknown_resource() -> None:
    payload = json.loads(await read_resource("gitlab-mcp://nope"))

    assert payload["code"] == "NotFound"


def test_cli_parses_log_level() -> None:
    assert parse_args(["--log-level", "DEBUG"]).log_level == "DEBUG"
    assert parse_args([]).test is False


@pytest.mark.asyncio
async def test_resource_uri_with_trailing_slash_resolves() -> None:
    payload = json.loads(await read_resource(CAPABILITIES_URI + "/"))

    assert payload["server"] == "gitlab-mcp"


@pytest.mark.asyncio
async def test_self_test_runs_without_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail() -> tools_module.Runtime:
        raise SafeError(code="Config", message="Missing required configuration (GITLAB_PERSONAL_ACCESS_TOKEN)")

    monkeypatch.setattr("gitlab_mcp.server.initialize_runtime_from_env", fail)

    await self_test()


def test_cli_exits_with_config_error(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    def fail() -> tools_module.Runtime:
        raise SafeError(code="Config", message="Missing required configuration (GITLAB_PERSONAL_ACCESS_TOKEN)")

    monkeypatch.setattr("gitlab_mcp.server.initialize_runtime_from_env", fail)

    assert main([]) == 2
    assert "Configuration error: Missing required configuration" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_capabilities_resource_lists_search_strategies() -> None:
    payload = json.loads(await read_resource(CAPABILITIES_URI))

    assert payload["user_search"]["strategies"][0] == "exact-email"
    assert "transliterated-search" in payload["user_search"]["strategies"]
    assert payload["user_search"]["caches_results"] is False
