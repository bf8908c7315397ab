"""Conversion between bare ids and GitLab Global IDs (GIDs).

Agents get bare ids (``"123"``) instead of ``gid://gitlab/User/123`` to keep
payloads short.
"""

from __future__ import annotations

from typing import Any

GID_PREFIX = "gid://gitlab/"


def extract_simple_id(gid: Any) -> Any:
    """Return the trailing id of a GID; non-GID values are returned unchanged."""
    if not isinstance(gid, str) or not gid.startswith(GID_PREFIX):
        return gid
    return gid.rsplit("/", 1)[-1]


def clean_gids(obj: Any) -> Any:
    """Return a copy of a nested dict/list structure with every GID string made bare."""
    if isinstance(obj, dict):
        return {k: clean_gids(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [clean_gids(item) for item in obj]
    if isinstance(obj, str):
        return extract_simple_id(obj)
    return obj
