"""GitLab tools exposed over MCP.

``TOOL_METADATA`` is the public contract: names, descriptions and input schemas.
``dispatch_tool`` is the only entry point; it screens arguments for credentials,
applies host policy, runs the implementation and writes one audit event. The
runtime (config, auth, HTTP client, user search) is built once from the
environment and cached.
"""

from __future__ import annotations

import base64
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .audit import NO_PROJECT, AuditEvent, AuditLogger, new_correlation_id
from .auth import GitLabTokenAuth
from .config import AppConfig, load_config_from_env
from .errors import SafeError, internal_error
from .gitlab_client import GitLabClient, RequestBudget, encode_path_segment, render_param
from .ids import clean_gids
from .policy import Policy
from .safety import enforce_max_bytes, validate_no_secrets
from .user_search import UserSearch, UserSearchFilters

logger = logging.getLogger(__name__)

_PAGINATION_PROPS: dict[str, Any] = {
    "per_page": {"type": "integer", "minimum": 1, "maximum": 100},
    "page": {"type": "integer", "minimum": 1},
}

_PROJECT_ID_PROP: dict[str, Any] = {"type": "string", "minLength": 1}

TOOL_METADATA: dict[str, dict[str, Any]] = {
    "get_users": {
        "description": (
            "Find GitLab users. A free-text 'search' auto-detects emails, usernames or names, "
            "transliterates non-Latin names and falls back through several lookups, returning "
            "the matches plus a trace of every lookup tried. Exact 'username'/'public_email' "
            "use a single lookup unless smart_search=true."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "username": {"type": "string", "minLength": 1},
                "public_email": {"type": "string", "minLength": 1},
                "search": {"type": "string"},
                "smart_search": {"type": "boolean"},
                "active": {"type": "boolean"},
                "blocked": {"type": "boolean"},
                "external": {"type": "boolean"},
                "humans": {"type": "boolean"},
                "exclude_active": {"type": "boolean"},
                "exclude_external": {"type": "boolean"},
                "exclude_humans": {"type": "boolean"},
                "exclude_internal": {"type": "boolean"},
                "without_project_bots": {"type": "boolean"},
                "created_after": {"type": "string", "minLength": 1},
                "created_before": {"type": "string", "minLength": 1},
                **_PAGINATION_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "browse_projects": {
        "description": (
            "Find or inspect projects. 'search' matches names across the instance (supports "
            "topic:<name> operators), 'list' browses accessible projects or a group's projects, "
            "'get' returns one project by id or full path."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["action"],
            "properties": {
                "action": {"type": "string", "enum": ["search", "list", "get"]},
                "q": {"type": "string"},
                "project_id": _PROJECT_ID_PROP,
                "group_id": {"type": "string", "minLength": 1},
                "include_subgroups": {"type": "boolean"},
                "visibility": {"type": "string", "enum": ["public", "internal", "private"]},
                "order_by": {"type": "string"},
                "sort": {"type": "string", "enum": ["asc", "desc"]},
                "owned": {"type": "boolean"},
                "membership": {"type": "boolean"},
                "starred": {"type": "boolean"},
                "archived": {"type": "boolean"},
                "simple": {"type": "boolean"},
                "with_programming_language": {"type": "string"},
                "statistics": {"type": "boolean"},
                **_PAGINATION_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "browse_namespaces": {
        "description": (
            "Explore groups and user namespaces. 'list' discovers namespaces, 'get' returns one, "
            "'verify' reports whether a namespace path exists."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["action"],
            "properties": {
                "action": {"type": "string", "enum": ["list", "get", "verify"]},
                "namespace_id": {"type": "string", "minLength": 1},
                "search": {"type": "string"},
                "owned_only": {"type": "boolean"},
                "top_level_only": {"type": "boolean"},
                "min_access_level": {"type": "integer", "minimum": 0},
                **_PAGINATION_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "browse_commits": {
        "description": (
            "Explore commit history. 'list' browses commits with ref/date/author/path filters, "
            "'get' returns one commit, 'diff' returns its changes."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["action", "project_id"],
            "properties": {
                "action": {"type": "string", "enum": ["list", "get", "diff"]},
                "project_id": _PROJECT_ID_PROP,
                "sha": {"type": "string", "minLength": 1},
                "ref_name": {"type": "string"},
                "since": {"type": "string"},
                "until": {"type": "string"},
                "path": {"type": "string"},
                "author": {"type": "string"},
                "all": {"type": "boolean"},
                "with_stats": {"type": "boolean"},
                "first_parent": {"type": "boolean"},
                "order": {"type": "string", "enum": ["default", "topo"]},
                "stats": {"type": "boolean"},
                "unidiff": {"type": "boolean"},
                **_PAGINATION_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "browse_events": {
        "description": (
            "Activity feed. 'user' lists the token owner's events across projects, 'project' lists "
            "a project's events. Filter by target type, action and date range."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["action"],
            "properties": {
                "action": {"type": "string", "enum": ["user", "project"]},
                "project_id": _PROJECT_ID_PROP,
                "target_type": {"type": "string"},
                "event_action": {"type": "string"},
                "before": {"type": "string"},
                "after": {"type": "string"},
                "sort": {"type": "string", "enum": ["asc", "desc"]},
                **_PAGINATION_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "list_project_members": {
        "description": (
            "List project members with access levels (10=Guest, 20=Reporter, 30=Developer, "
            "40=Maintainer, 50=Owner). include_inherited adds members from parent groups."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["project_id"],
            "properties": {
                "project_id": _PROJECT_ID_PROP,
                "query": {"type": "string"},
                "include_inherited": {"type": "boolean"},
                **_PAGINATION_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "get_repository_tree": {
        "description": "List files and folders of a repository path without reading content.",
        "inputSchema": {
            "type": "object",
            "required": ["project_id"],
            "properties": {
                "project_id": _PROJECT_ID_PROP,
                "path": {"type": "string"},
                "ref": {"type": "string"},
                "recursive": {"type": "boolean"},
                **_PAGINATION_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "get_file_contents": {
        "description": "Read a single text file at a given ref (size-limited).",
        "inputSchema": {
            "type": "object",
            "required": ["project_id", "file_path"],
            "properties": {
                "project_id": _PROJECT_ID_PROP,
                "file_path": {"type": "string", "minLength": 1},
                "ref": {"type": "string"},
            },
            "additionalProperties": False,
        },
    },
    "download_attachment": {
        "description": "Download an issue/merge request attachment as base64 (size-limited).",
        "inputSchema": {
            "type": "object",
            "required": ["project_id", "secret", "filename"],
            "properties": {
                "project_id": _PROJECT_ID_PROP,
                "secret": {"type": "string", "minLength": 1},
                "filename": {"type": "string", "minLength": 1},
            },
            "additionalProperties": False,
        },
    },
    "list_todos": {
        "description": "List the token owner's todos, filtered by state, action, target type or project.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": [
                        "assigned",
                        "mentioned",
                        "build_failed",
                        "marked",
                        "approval_required",
                        "unmergeable",
                        "directly_addressed",
                        "merge_train_removed",
                        "review_requested",
                    ],
                },
                "author_id": {"type": "integer", "minimum": 1},
                "project_id": _PROJECT_ID_PROP,
                "group_id": {"type": "string", "minLength": 1},
                "state": {"type": "string", "enum": ["pending", "done"]},
                "type": {"type": "string", "enum": ["Issue", "MergeRequest", "Commit", "Epic", "DesignManagement::Design"]},
                **_PAGINATION_PROPS,
            },
            "additionalProperties": False,
        },
    },
    "create_branch": {
        "description": "Create a branch from an existing branch, tag or commit SHA.",
        "inputSchema": {
            "type": "object",
            "required": ["project_id", "branch", "ref"],
            "properties": {
                "project_id": _PROJECT_ID_PROP,
                "branch": {"type": "string", "minLength": 1},
                "ref": {"type": "string", "minLength": 1},
            },
            "additionalProperties": False,
        },
    },
}


@dataclass(frozen=True, slots=True)
class Runtime:
    """Per-server runtime dependencies shared across tool calls."""

    config: AppConfig
    audit: AuditLogger
    policy: Policy
    auth: GitLabTokenAuth
    gitlab: GitLabClient
    user_search: UserSearch


_RUNTIME: Runtime | None = None


# JSON schema type -> (Python check, article + name used in messages)
_JSON_TYPES: dict[str, tuple[Callable[[Any], bool], str]] = {
    "string": (lambda v: isinstance(v, str), "a string"),
    "integer": (lambda v: isinstance(v, int) and not isinstance(v, bool), "an integer"),
    "boolean": (lambda v: isinstance(v, bool), "a boolean"),
    "array": (lambda v: isinstance(v, list), "an array"),
    "object": (lambda v: isinstance(v, dict), "an object"),
}


def _check_field(key: str, value: Any, spec: dict[str, Any]) -> None:
    expected = spec.get("type")
    if expected in _JSON_TYPES:
        is_valid, label = _JSON_TYPES[expected]
        if not is_valid(value):
            raise SafeError(code="UserInput", message=f"Field '{key}' must be {label}")

    enum = spec.get("enum")
    if isinstance(enum, list) and value not in enum:
        raise SafeError(code="UserInput", message=f"Field '{key}' must be one of: {', '.join(map(str, enum))}")

    min_len = spec.get("minLength")
    if isinstance(value, str) and isinstance(min_len, int) and len(value) < min_len:
        raise SafeError(code="UserInput", message=f"Field '{key}' must be at least {min_len} characters")

    if expected == "integer":
        if "minimum" in spec and value < spec["minimum"]:
            raise SafeError(code="UserInput", message=f"Field '{key}' must be >= {spec['minimum']}")
        if "maximum" in spec and value > spec["maximum"]:
            raise SafeError(code="UserInput", message=f"Field '{key}' must be <= {spec['maximum']}")


def validate_tool_arguments(tool_name: str, arguments: dict[str, Any]) -> None:
    """Check ``arguments`` against the tool's ``inputSchema``.

    Covers the subset of JSON Schema the tool metadata uses: ``required``,
    ``additionalProperties: false``, scalar/array/object ``type``, ``enum``,
    ``minLength`` and integer ``minimum``/``maximum``. Per-action requirements
    are checked by the tool implementations.
    """
    meta = TOOL_METADATA.get(tool_name)
    if meta is None:
        raise SafeError(code="UserInput", message="Unknown tool")
    schema = meta["inputSchema"]
    props: dict[str, Any] = schema.get("properties", {})

    missing = [k for k in schema.get("required", []) if k not in arguments]
    if missing:
        raise SafeError(code="UserInput", message=f"Missing required field: {missing[0]}")
    if schema.get("additionalProperties", True) is False and not arguments.keys() <= props.keys():
        raise SafeError(code="UserInput", message="Unexpected fields are not allowed")

    for key, value in arguments.items():
        if key in props:
            _check_field(key, value, props[key])


def build_runtime(config: AppConfig) -> Runtime:
    """Wire runtime dependencies from an explicit configuration."""
    audit = AuditLogger(
        sink_path=config.audit_log_path,
        max_bytes=config.audit_max_bytes,
        max_backups=config.audit_max_backups,
    )
    policy = Policy(
        allowed_projects=config.policy.allowed_projects,
        read_only=config.policy.read_only,
    )
    auth = GitLabTokenAuth.from_config(config)
    gitlab = GitLabClient(
        headers_provider=auth.get_auth_headers,
        limits=config.limits,
        api_base_url=config.api_url,
    )
    user_search = UserSearch(
        client=gitlab,
        budget=RequestBudget(total_timeout_s=config.limits.total_timeout_s),
    )
    return Runtime(config=config, audit=audit, policy=policy, auth=auth, gitlab=gitlab, user_search=user_search)


def initialize_runtime_from_env() -> Runtime:
    """Return the cached runtime, building it from the environment on first use.

    A configuration error is raised again on every call until the environment is fixed.
    """
    global _RUNTIME  # pylint: disable=global-statement
    if _RUNTIME is not None:
        return _RUNTIME

    _RUNTIME = build_runtime(load_config_from_env())
    return _RUNTIME


def _budget(runtime: Runtime) -> RequestBudget:
    return RequestBudget(total_timeout_s=runtime.config.limits.total_timeout_s)


def _require_str(arguments: dict[str, Any], key: str) -> str:
    v = arguments.get(key)
    if not isinstance(v, str) or not v:
        raise SafeError(code="UserInput", message=f"Field '{key}' is required")
    return v


def _require_for_action(arguments: dict[str, Any], key: str, action: str) -> str:
    v = arguments.get(key)
    if not isinstance(v, str) or not v:
        raise SafeError(code="UserInput", message=f"Field '{key}' is required for action '{action}'")
    return v


def _pick_params(arguments: dict[str, Any], keys: tuple[str, ...]) -> dict[str, str]:
    """Render the given argument keys as query parameters, skipping unset ones."""
    return {k: render_param(arguments[k]) for k in keys if arguments.get(k) is not None}


def _project_path(project_id: str) -> str:
    return f"/projects/{encode_path_segment(project_id)}"


async def _get_json(runtime: Runtime, path: str, params: dict[str, str] | None = None) -> object:
    return await runtime.gitlab.request_json(method="GET", path=path, params=params or None, budget=_budget(runtime))


def _expect_list(data: object, what: str) -> list[Any]:
    if not isinstance(data, list):
        raise SafeError(code="GitLab", message=f"Unexpected {what} response")
    return data


def _expect_dict(data: object, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise SafeError(code="GitLab", message=f"Unexpected {what} response")
    return data


_USER_QUERY_FIELDS = ("username", "public_email", "search")


async def _tool_get_users(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    username = arguments.get("username") or None
    public_email = arguments.get("public_email") or None
    # A blank search still selects smart mode; it resolves to an empty outcome.
    search = arguments.get("search")
    smart_search = arguments.get("smart_search")

    has_exact = username is not None or public_email is not None
    if smart_search is False:
        use_smart = False
    else:
        use_smart = smart_search is True or (search is not None and not has_exact)

    filters = UserSearchFilters.from_arguments(arguments)
    query = search if search is not None else (username or public_email)

    if use_smart and query is not None:
        outcome = await runtime.user_search.search(query, filters)
        return outcome.to_dict()

    params = _pick_params(arguments, _USER_QUERY_FIELDS)
    params.update(filters.to_params())
    data = await _get_json(runtime, "/users", params)
    return {"users": clean_gids(_expect_list(data, "users"))}


_TOPIC_RE = re.compile(r"topic:(\w+)")

_PROJECT_SEARCH_KEYS = (
    "with_programming_language",
    "visibility",
    "order_by",
    "sort",
    "archived",
    "simple",
    "per_page",
    "page",
)

_PROJECT_LIST_KEYS = (
    "visibility",
    "order_by",
    "sort",
    "owned",
    "membership",
    "starred",
    "archived",
    "simple",
    "with_programming_language",
    "per_page",
    "page",
)


def _search_params_from_q(q: str | None) -> dict[str, str]:
    """Split ``topic:<name>`` operators out of a free-text project query."""
    params: dict[str, str] = {}
    if not q:
        return params
    topics = _TOPIC_RE.findall(q)
    if topics:
        params["topic"] = ",".join(topics)
    terms = " ".join(_TOPIC_RE.sub("", q).split())
    if terms:
        params["search"] = terms
    return params


async def _tool_browse_projects(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    action = _require_str(arguments, "action")

    if action == "get":
        project_id = _require_for_action(arguments, "project_id", action)
        params = _pick_params(arguments, ("statistics",))
        data = await _get_json(runtime, _project_path(project_id), params)
        return {"project": clean_gids(_expect_dict(data, "project"))}

    if action == "search":
        params = _search_params_from_q(arguments.get("q"))
        params.update(_pick_params(arguments, _PROJECT_SEARCH_KEYS))
        data = await _get_json(runtime, "/projects", params)
        return {"projects": clean_gids(_expect_list(data, "projects"))}

    # list
    params = _pick_params(arguments, _PROJECT_LIST_KEYS)
    group_id = arguments.get("group_id")
    if group_id:
        params.update(_pick_params(arguments, ("include_subgroups",)))
        path = f"/groups/{encode_path_segment(group_id)}/projects"
    else:
        if not any(k in params for k in ("owned", "membership", "starred")):
            params["membership"] = "true"
        path = "/projects"
    data = await _get_json(runtime, path, params)
    return {"projects": clean_gids(_expect_list(data, "projects"))}


async def _tool_browse_namespaces(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    action = _require_str(arguments, "action")

    if action == "list":
        params = _pick_params(
            arguments,
            ("search", "owned_only", "top_level_only", "min_access_level", "per_page", "page"),
        )
        data = await _get_json(runtime, "/namespaces", params)
        return {"namespaces": clean_gids(_expect_list(data, "namespaces"))}

    namespace_id = _require_for_action(arguments, "namespace_id", action)
    path = f"/namespaces/{encode_path_segment(namespace_id)}"

    if action == "get":
        data = await _get_json(runtime, path)
        return {"namespace": clean_gids(_expect_dict(data, "namespace"))}

    # verify
    try:
        data = await _get_json(runtime, path)
    except SafeError as exc:
        if exc.status_code != 404:
            raise
        return {"verification": {"namespace": namespace_id, "exists": False, "data": None}}
    return {"verification": {"namespace": namespace_id, "exists": True, "data": clean_gids(data)}}


_COMMIT_LIST_KEYS = (
    "ref_name",
    "since",
    "until",
    "path",
    "author",
    "all",
    "with_stats",
    "first_parent",
    "order",
    "per_page",
    "page",
)


async def _tool_browse_commits(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    action = _require_str(arguments, "action")
    commits_path = f"{_project_path(_require_str(arguments, 'project_id'))}/repository/commits"

    if action == "list":
        data = await _get_json(runtime, commits_path, _pick_params(arguments, _COMMIT_LIST_KEYS))
        return {"commits": _expect_list(data, "commits")}

    sha = _require_for_action(arguments, "sha", action)
    commit_path = f"{commits_path}/{encode_path_segment(sha)}"

    if action == "get":
        data = await _get_json(runtime, commit_path, _pick_params(arguments, ("stats",)))
        return {"commit": _expect_dict(data, "commit")}

    # diff
    params = _pick_params(arguments, ("unidiff", "per_page", "page"))
    data = await _get_json(runtime, f"{commit_path}/diff", params)
    return {"diffs": _expect_list(data, "commit diff")}


async def _tool_browse_events(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    action = _require_str(arguments, "action")
    params = _pick_params(arguments, ("target_type", "before", "after", "sort", "per_page", "page"))
    event_action = arguments.get("event_action")
    if event_action:
        params["action"] = event_action

    if action == "project":
        project_id = _require_for_action(arguments, "project_id", action)
        path = f"{_project_path(project_id)}/events"
    else:
        path = "/events"

    data = await _get_json(runtime, path, params)
    return {"events": clean_gids(_expect_list(data, "events"))}


async def _tool_list_project_members(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    project_id = _require_str(arguments, "project_id")
    suffix = "/members/all" if arguments.get("include_inherited") else "/members"
    params = _pick_params(arguments, ("query", "per_page", "page"))
    data = await _get_json(runtime, f"{_project_path(project_id)}{suffix}", params)
    return {"members": clean_gids(_expect_list(data, "members"))}


async def _tool_get_repository_tree(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    project_id = _require_str(arguments, "project_id")
    params = _pick_params(arguments, ("path", "ref", "recursive", "per_page", "page"))
    data = await _get_json(runtime, f"{_project_path(project_id)}/repository/tree", params)

    entries: list[dict[str, Any]] = []
    for it in _expect_list(data, "repository tree"):
        if isinstance(it, dict):
            entries.append({k: it.get(k) for k in ("name", "path", "type", "mode", "id")})
    return {"tree": entries}


async def _tool_get_file_contents(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    project_id = _require_str(arguments, "project_id")
    file_path = _require_str(arguments, "file_path")
    ref = arguments.get("ref") or None

    content, content_type = await runtime.gitlab.request_bytes(
        path=f"{_project_path(project_id)}/repository/files/{encode_path_segment(file_path)}/raw",
        params={"ref": ref} if ref else None,
        budget=_budget(runtime),
    )
    enforce_max_bytes(data=content, max_bytes=runtime.config.limits.file_max_bytes, what="file")

    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise SafeError(code="UserInput", message="Binary file content is not supported") from exc

    return {
        "file": {
            "file_path": file_path,
            "ref": ref or "HEAD",
            "size": len(content),
            "content": text,
            "content_type": content_type or "text/plain",
        }
    }


async def _tool_download_attachment(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    project_id = _require_str(arguments, "project_id")
    secret = _require_str(arguments, "secret")
    filename = _require_str(arguments, "filename")

    content, content_type = await runtime.gitlab.request_bytes(
        path=f"{_project_path(project_id)}/uploads/{encode_path_segment(secret)}/{encode_path_segment(filename)}",
        budget=_budget(runtime),
    )
    enforce_max_bytes(data=content, max_bytes=runtime.config.limits.attachment_max_bytes, what="attachment")

    return {
        "attachment": {
            "filename": filename,
            "size": len(content),
            "content": base64.b64encode(content).decode("ascii"),
            "encoding": "base64",
            "content_type": content_type or "application/octet-stream",
        }
    }


async def _tool_list_todos(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    params = _pick_params(
        arguments,
        ("action", "author_id", "project_id", "group_id", "state", "type", "per_page", "page"),
    )
    data = await _get_json(runtime, "/todos", params)
    return {"todos": clean_gids(_expect_list(data, "todos"))}


async def _tool_create_branch(runtime: Runtime, arguments: dict[str, Any]) -> dict[str, Any]:
    project_id = _require_str(arguments, "project_id")
    branch = _require_str(arguments, "branch")
    ref = _require_str(arguments, "ref")

    data = await runtime.gitlab.request_json(
        method="POST",
        path=f"{_project_path(project_id)}/repository/branches",
        form_body={"branch": branch, "ref": ref},
        budget=_budget(runtime),
    )
    payload = _expect_dict(data, "branch")
    commit = payload.get("commit")
    sha = commit.get("id") if isinstance(commit, dict) else None
    if not isinstance(payload.get("name"), str) or not isinstance(sha, str):
        raise SafeError(code="GitLab", message="Unexpected branch response")

    return {"branch": {"name": payload["name"], "ref": ref, "sha": sha, "url": payload.get("web_url")}}


_TOOL_FUNCS: dict[str, Callable[[Runtime, dict[str, Any]], Awaitable[dict[str, Any]]]] = {
    "get_users": _tool_get_users,
    "browse_projects": _tool_browse_projects,
    "browse_namespaces": _tool_browse_namespaces,
    "browse_commits": _tool_browse_commits,
    "browse_events": _tool_browse_events,
    "list_project_members": _tool_list_project_members,
    "get_repository_tree": _tool_get_repository_tree,
    "get_file_contents": _tool_get_file_contents,
    "download_attachment": _tool_download_attachment,
    "list_todos": _tool_list_todos,
    "create_branch": _tool_create_branch,
}


def _target_project_from_args(arguments: dict[str, Any]) -> str:
    project_id = arguments.get("project_id")
    if isinstance(project_id, str) and project_id:
        return project_id
    return NO_PROJECT


def _gitlab_calls(result: dict[str, Any]) -> int | None:
    provenance = result.get("provenance")
    if isinstance(provenance, dict):
        return provenance.get("totalApiCalls")
    return None


def _check_call(runtime: Runtime, name: str, arguments: dict[str, Any], target_project: str) -> None:
    """Raise SafeError if the call must not reach GitLab."""
    validate_no_secrets(arguments)
    if name not in _TOOL_FUNCS:
        raise SafeError(
            code="UserInput",
            message=f"Unknown tool: {name}",
            hint=f"Available tools: {', '.join(sorted(_TOOL_FUNCS))}",
        )
    validate_tool_arguments(name, arguments)

    decision = runtime.policy.check_operation_allowed(name)
    if not decision.allowed:
        raise SafeError(code="Forbidden", message="Operation is not allowed", hint=decision.reason)

    if target_project != NO_PROJECT:
        decision = runtime.policy.check_project_allowed(target_project)
        if not decision.allowed:
            raise SafeError(code="Forbidden", message="Project is not allowed", hint=decision.reason)


async def dispatch_tool(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Run one tool call through the guardrails and return its envelope.

    Order: runtime, secret screening, tool lookup, schema, operation policy,
    project policy, implementation. Every path writes exactly one audit event
    and the envelope always carries ``correlation_id``.
    """
    correlation_id = new_correlation_id()
    target_project = _target_project_from_args(arguments)
    runtime: Runtime | None = None
    start = 0.0

    def audit(
        outcome: str,
        *,
        reason: str | None = None,
        status_code: int | None = None,
        gitlab_calls: int | None = None,
    ) -> None:
        event = AuditEvent(
            correlation_id=correlation_id,
            operation=name,
            outcome=outcome,
            target_project=target_project,
            reason=reason,
            duration_ms=runtime.audit.measure_duration_ms(start) if runtime is not None else None,
            status_code=status_code,
            gitlab_calls=gitlab_calls,
        )
        # Without a runtime (configuration failure) the event goes to stderr only.
        sink = runtime.audit if runtime is not None else AuditLogger(sink_path=None)
        sink.write_event(event)

    try:
        runtime = initialize_runtime_from_env()
        start = runtime.audit.measure_start()
        _check_call(runtime, name, arguments, target_project)
        result = await _TOOL_FUNCS[name](runtime, arguments)
    except SafeError as err:
        audit("denied" if err.denied else "failed", reason=err.message, status_code=err.status_code)
        return {**err.to_result(), "correlation_id": correlation_id}
    except Exception:  # pylint: disable=broad-exception-caught
        logger.exception("Tool %s failed unexpectedly", name)
        audit("failed", reason="Internal error")
        return {**internal_error(), "correlation_id": correlation_id}

    audit("succeeded", gitlab_calls=_gitlab_calls(result))
    return {"ok": True, "correlation_id": correlation_id, **result}
