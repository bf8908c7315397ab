"""Audit trail for tool calls.

Every tool call attempt produces exactly one JSON line, written to stderr and,
when ``GITLAB_MCP_AUDIT_LOG_PATH`` is set, appended to a size-capped file with
numbered backups (``audit.jsonl.1`` is the newest). Lines never contain the
access token.
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

OUTCOMES: frozenset[str] = frozenset({"succeeded", "denied", "failed"})
NO_PROJECT = "<none>"


def new_correlation_id() -> str:
    """Random 32-char hex id tying a tool result to its audit line."""
    return uuid.uuid4().hex


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """One tool call attempt.

    ``gitlab_calls`` is set for smart user searches (number of ``/users`` lookups);
    ``status_code`` is set when GitLab answered with an error status.
    """

    correlation_id: str
    operation: str
    outcome: str
    target_project: str = NO_PROJECT
    reason: str | None = None
    duration_ms: int | None = None
    status_code: int | None = None
    gitlab_calls: int | None = None
    timestamp: str = field(default_factory=_utc_timestamp)

    def __post_init__(self) -> None:
        if self.outcome not in OUTCOMES:
            raise ValueError(f"Unknown audit outcome: {self.outcome}")

    def to_json(self) -> str:
        # Unset optional fields are omitted rather than serialized as null.
        payload = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))


class _RotatingSink:
    """Append-only JSONL file capped at ``max_bytes`` with ``max_backups`` backups."""

    def __init__(self, path: Path, max_bytes: int, max_backups: int) -> None:
        self.path = path
        self.max_bytes = max_bytes
        self.backups = [path.with_name(f"{path.name}.{i}") for i in range(1, max_backups + 1)]

    def _rotate(self) -> None:
        if not self.backups:
            self.path.write_text("", encoding="utf-8")
            return
        self.backups[-1].unlink(missing_ok=True)
        for older, newer in zip(reversed(self.backups[:-1]), reversed(self.backups[1:])):
            if older.exists():
                older.replace(newer)
        self.path.replace(self.backups[0])

    def append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists() and self.path.stat().st_size >= self.max_bytes:
            self._rotate()
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")


class AuditLogger:
    """Writes audit lines to stderr and to the optional rotating file sink.

    A failing file sink is reported once through logging and never fails the
    tool call.
    """

    def __init__(
        self,
        *,
        sink_path: Path | None,
        max_bytes: int = 5 * 1024 * 1024,
        max_backups: int = 2,
    ) -> None:
        self._sink = _RotatingSink(sink_path, max_bytes, max_backups) if sink_path is not None else None
        self._sink_broken = False

    def write_event(self, event: AuditEvent) -> None:
        line = event.to_json()
        print(line, file=sys.stderr)
        if self._sink is None:
            return
        try:
            self._sink.append(line)
        except OSError as exc:
            if not self._sink_broken:
                self._sink_broken = True
                logger.warning("Audit file sink unavailable: %s", exc.strerror or type(exc).__name__)

    def measure_start(self) -> float:
        return time.monotonic()

    def measure_duration_ms(self, start: float) -> int:
        return int((time.monotonic() - start) * 1000)
