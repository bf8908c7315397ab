"""Policy engine tests."""

from __future__ import annotations

import pytest
from gitlab_mcp.policy import READ_OPERATIONS, WRITE_OPERATIONS, Policy, project_key


def test_unknown_operation_is_denied() -> None:
    decision = Policy(allowed_projects=frozenset(), read_only=False).check_operation_allowed("delete_project")

    assert decision.allowed is False
    assert decision.reason == "Operation is not allow-listed"


@pytest.mark.parametrize("operation", sorted(READ_OPERATIONS))
def test_read_operations_allowed_in_read_only_mode(operation: str) -> None:
    assert Policy(allowed_projects=frozenset(), read_only=True).check_operation_allowed(operation).allowed is True


@pytest.mark.parametrize("operation", sorted(WRITE_OPERATIONS))
def test_write_operations_denied_in_read_only_mode(operation: str) -> None:
    policy = Policy(allowed_projects=frozenset(), read_only=True)

    decision = policy.check_operation_allowed(operation)

    assert policy.read_only is True
    assert decision.allowed is False
    assert "read-only" in (decision.reason or "")


def test_write_operations_allowed_when_writable() -> None:
    assert Policy(allowed_projects=frozenset(), read_only=False).check_operation_allowed("create_branch").allowed is True


def test_empty_project_allowlist_allows_everything() -> None:
    policy = Policy(allowed_projects=frozenset(), read_only=False)

    assert policy.check_project_allowed("any/project").allowed is True
    assert policy.check_project_allowed("123").allowed is True


def test_project_allowlist_matches_paths_case_insensitively() -> None:
    policy = Policy(allowed_projects=frozenset({"Group/App", "42"}), read_only=False)

    assert policy.check_project_allowed("group/app").allowed is True
    assert policy.check_project_allowed("/GROUP/APP/").allowed is True
    assert policy.check_project_allowed("42").allowed is True

    denied = policy.check_project_allowed("group/other")
    assert denied.allowed is False
    assert denied.reason == "Project is not in allowlist"


def test_project_allowlist_accepts_url_encoded_paths() -> None:
    policy = Policy(allowed_projects=frozenset({"group/sub/app"}), read_only=False)

    assert policy.check_project_allowed("group%2Fsub%2Fapp").allowed is True
    assert policy.check_project_allowed("GROUP%2fSUB%2fAPP").allowed is True


def test_numeric_id_does_not_match_allow_listed_path() -> None:
    policy = Policy(allowed_projects=frozenset({"group/app"}), read_only=False)

    assert policy.check_project_allowed("42").allowed is False


@pytest.mark.parametrize(
    "raw,expected",
    [("42", "42"), (" Group/App ", "group/app"), ("/group/app/", "group/app"), ("group%2Fapp", "group/app")],
)
def test_project_key(raw: str, expected: str) -> None:
    assert project_key(raw) == expected
