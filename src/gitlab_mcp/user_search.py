"""Smart user search.

Resolves one free-form query to GitLab users by running an ordered cascade of
``GET /users`` lookups, most precise first, and stopping at the first lookup that
returns anything. Every attempted lookup is recorded as provenance.

Flow: classify -> (transliterate) -> plan -> execute (sequential) -> assemble.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any

from .gitlab_client import GitLabClient, RequestBudget, render_param
from .ids import clean_gids
from .user_query import ClassifiedPattern, QueryType, classify_query, transliteration_candidates

logger = logging.getLogger(__name__)

STRATEGY_EXACT_EMAIL = "exact-email"
STRATEGY_EXACT_HANDLE = "exact-handle"
STRATEGY_FUZZY = "fuzzy-search"
STRATEGY_TRANSLITERATED = "transliterated-search"
STRATEGY_BROADENED = "broadened-search"

# Defaults applied to every non-broadened phase, unless the caller already
# constrains the same dimension.
_SEARCH_DEFAULTS: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("active", "true", ("active", "exclude_active")),
    ("humans", "true", ("humans", "exclude_humans")),
)

UserFetcher = Callable[[Mapping[str, str]], Awaitable[list[dict[str, Any]]]]


@dataclass(frozen=True, slots=True)
class UserSearchFilters:
    """Caller constraints forwarded unchanged into every lookup."""

    active: bool | None = None
    blocked: bool | None = None
    external: bool | None = None
    humans: bool | None = None
    exclude_active: bool | None = None
    exclude_external: bool | None = None
    exclude_humans: bool | None = None
    exclude_internal: bool | None = None
    without_project_bots: bool | None = None
    created_after: str | None = None
    created_before: str | None = None
    per_page: int | None = None
    page: int | None = None

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any]) -> UserSearchFilters:
        """Pick the filter fields out of tool arguments; unknown keys are ignored."""
        return cls(**{name: arguments[name] for name in cls.field_names() if arguments.get(name) is not None})

    def to_params(self) -> dict[str, str]:
        """Render the set filters as query parameters."""
        params: dict[str, str] = {}
        for name in self.field_names():
            value = getattr(self, name)
            if value is not None:
                params[name] = render_param(value)
        return params


@dataclass(frozen=True, slots=True)
class PlannedPhase:
    """One fully specified remote lookup."""

    strategy_name: str
    remote_params: Mapping[str, str]


@dataclass(frozen=True, slots=True)
class ExecutedPhase:
    """A planned phase after it ran."""

    phase: PlannedPhase
    result_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategyName": self.phase.strategy_name,
            "resultCount": self.result_count,
            "remoteParams": dict(self.phase.remote_params),
        }


@dataclass(frozen=True, slots=True)
class SearchOutcome:
    """Final answer of one search invocation."""

    query: str
    pattern: ClassifiedPattern
    matches: list[dict[str, Any]]
    phases: tuple[ExecutedPhase, ...] = field(default=())

    @property
    def total_api_calls(self) -> int:
        # One remote request per executed phase.
        return len(self.phases)

    def to_dict(self) -> dict[str, Any]:
        return {
            "matches": self.matches,
            "provenance": {
                "query": self.query,
                "pattern": self.pattern.to_dict(),
                "phases": [p.to_dict() for p in self.phases],
                "totalApiCalls": self.total_api_calls,
            },
        }


def _default_params(passthrough: Mapping[str, str]) -> dict[str, str]:
    defaults: dict[str, str] = {}
    for key, value, dimension in _SEARCH_DEFAULTS:
        if not any(name in passthrough for name in dimension):
            defaults[key] = value
    return defaults


def plan_phases(
    pattern: ClassifiedPattern,
    filters: UserSearchFilters,
    candidates: list[str] | None = None,
) -> tuple[PlannedPhase, ...]:
    """Build the ordered lookup plan for a classified query.

    ``candidates`` are transliteration candidates (original first); only the
    ones after the original produce extra phases. Phases whose parameters
    repeat an earlier phase are skipped. A blank query plans nothing.
    """
    query = pattern.original_query
    if not query:
        return ()

    passthrough = filters.to_params()
    defaults = _default_params(passthrough)

    steps: list[tuple[str, str, str, bool]] = []
    if pattern.type is QueryType.EMAIL:
        steps.append((STRATEGY_EXACT_EMAIL, "public_email", query, True))
        steps.append((STRATEGY_FUZZY, "search", query, True))
    elif pattern.type is QueryType.HANDLE:
        steps.append((STRATEGY_EXACT_HANDLE, "username", query, True))
        steps.append((STRATEGY_FUZZY, "search", query, True))
    else:
        steps.append((STRATEGY_FUZZY, "search", query, True))

    if pattern.has_transliteration and pattern.type is not QueryType.EMAIL:
        for candidate in (candidates or [])[1:]:
            steps.append((STRATEGY_TRANSLITERATED, "search", candidate, True))

    steps.append((STRATEGY_BROADENED, "search", query, False))

    planned: list[PlannedPhase] = []
    seen: list[dict[str, str]] = []
    for strategy, term_key, term, with_defaults in steps:
        params = dict(defaults) if with_defaults else {}
        params.update(passthrough)
        params[term_key] = term
        if params in seen:
            continue
        seen.append(params)
        planned.append(PlannedPhase(strategy_name=strategy, remote_params=MappingProxyType(params)))
    return tuple(planned)


async def execute_phases(
    phases: tuple[PlannedPhase, ...],
    fetch_users: UserFetcher,
) -> tuple[list[dict[str, Any]], tuple[ExecutedPhase, ...]]:
    """Run phases in order, one at a time, stopping at the first non-empty result.

    Errors from ``fetch_users`` propagate unchanged and discard the partial trace.
    """
    executed: list[ExecutedPhase] = []
    for index, phase in enumerate(phases, start=1):
        users = await fetch_users(phase.remote_params)
        executed.append(ExecutedPhase(phase=phase, result_count=len(users)))
        logger.debug("User search phase %s/%s (%s): %s result(s)", index, len(phases), phase.strategy_name, len(users))
        if users:
            return users, tuple(executed)
    return [], tuple(executed)


def dedupe_by_id(users: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop repeated accounts, keeping the first occurrence of each id."""
    seen: set[str] = set()
    unique: list[dict[str, Any]] = []
    for user in users:
        user_id = user.get("id")
        if user_id is not None:
            key = str(user_id)
            if key in seen:
                continue
            seen.add(key)
        unique.append(user)
    return unique


def assemble_outcome(
    query: str,
    pattern: ClassifiedPattern,
    matches: list[dict[str, Any]],
    phases: tuple[ExecutedPhase, ...],
) -> SearchOutcome:
    """Package matches and provenance; ids are deduplicated and made bare."""
    cleaned = clean_gids(dedupe_by_id(matches))
    return SearchOutcome(query=query, pattern=pattern, matches=cleaned, phases=phases)


class UserSearch:
    """Smart user search bound to one GitLab client.

    Holds no per-search state; every :meth:`search` call is independent.
    """

    def __init__(self, *, client: GitLabClient, budget: RequestBudget) -> None:
        self._client = client
        self._budget = budget

    async def _fetch_users(self, params: Mapping[str, str]) -> list[dict[str, Any]]:
        data = await self._client.request_json(
            method="GET",
            path="/users",
            params=dict(params),
            budget=self._budget,
        )
        # A body that is not a list counts as "no users" for this phase.
        if not isinstance(data, list):
            return []
        return [u for u in data if isinstance(u, dict)]

    async def search(self, query: str, filters: UserSearchFilters | None = None) -> SearchOutcome:
        """Resolve ``query`` to users.

        Raises:
            SafeError: If any lookup fails; no partial result is returned.
        """
        filters = filters or UserSearchFilters()
        pattern = classify_query(query)

        candidates: list[str] | None = None
        if pattern.has_transliteration:
            candidates = transliteration_candidates(pattern.original_query)

        phases = plan_phases(pattern, filters, candidates)
        matches, executed = await execute_phases(phases, self._fetch_users)

        outcome = assemble_outcome(query, pattern, matches, executed)
        logger.info(
            "User search resolved %s match(es) as %s after %s call(s)",
            len(outcome.matches),
            pattern.type.value,
            outcome.total_api_calls,
        )
        return outcome
