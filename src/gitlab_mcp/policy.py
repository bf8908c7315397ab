"""Host policy: which tools may run and against which projects."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import unquote

READ_OPERATIONS: frozenset[str] = frozenset(
    {
        "browse_commits",
        "browse_events",
        "browse_namespaces",
        "browse_projects",
        "download_attachment",
        "get_file_contents",
        "get_repository_tree",
        "get_users",
        "list_project_members",
        "list_todos",
    }
)
WRITE_OPERATIONS: frozenset[str] = frozenset({"create_branch"})
ALLOW_LISTED_OPERATIONS: frozenset[str] = READ_OPERATIONS | WRITE_OPERATIONS


def project_key(project: str) -> str:
    """Comparable form of a project reference.

    ``42``, ``Group/App``, ``/group/app/`` and ``group%2Fapp`` (the URL-encoded
    path GitLab clients usually send) reduce to ``42`` and ``group/app``.
    """
    return unquote(project).strip().strip("/").lower()


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    allowed: bool
    reason: str | None = None


_ALLOW = PolicyDecision(True)


class Policy:
    """Evaluates host policy; never talks to GitLab.

    Numeric ids and paths are matched literally, so allow-listing ``group/app``
    does not allow the same project addressed by its numeric id.
    """

    def __init__(self, *, allowed_projects: frozenset[str], read_only: bool) -> None:
        self._allowed_projects = frozenset(project_key(p) for p in allowed_projects)
        self._read_only = read_only

    @property
    def read_only(self) -> bool:
        return self._read_only

    def check_operation_allowed(self, operation: str) -> PolicyDecision:
        if operation not in ALLOW_LISTED_OPERATIONS:
            return PolicyDecision(False, "Operation is not allow-listed")
        if operation in WRITE_OPERATIONS and self._read_only:
            return PolicyDecision(False, "Write operations are disabled in read-only mode")
        return _ALLOW

    def check_project_allowed(self, project_id: str) -> PolicyDecision:
        """An empty allowlist allows every project the token can reach."""
        if not self._allowed_projects or project_key(project_id) in self._allowed_projects:
            return _ALLOW
        return PolicyDecision(False, "Project is not in allowlist")
