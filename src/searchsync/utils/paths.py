"""Helpers for dotted document paths."""

from __future__ import annotations

import re
from typing import Any, Iterator, List

MISSING: Any = object()

# "items.$.name", "items.$[].name" and "items.$[elem].name" all address "items.name"
_POSITIONAL_RE = re.compile(r"\.\$(\[[^\]]*\])?")


def split_path(path: str) -> List[str]:
    return path.split(".") if path else []


def join_path(*parts: str) -> str:
    return ".".join(part for part in parts if part)


def strip_positional(key: str) -> str:
    """Remove positional update markers from an update key."""
    return _POSITIONAL_RE.sub("", key)


def ancestor_paths(path: str) -> Iterator[str]:
    """Yield the strict ancestors of ``path``, nearest first."""
    parts = split_path(path)
    for end in range(len(parts) - 1, 0, -1):
        yield ".".join(parts[:end])


def deep_get(doc: Any, dotted_key: str, default: Any = MISSING) -> Any:
    """Follow ``dotted_key`` through nested mappings and list indexes."""
    cur = doc
    for part in split_path(dotted_key):
        if isinstance(cur, dict) and part in cur:
            cur = cur[part]
        elif isinstance(cur, list) and part.isdigit() and int(part) < len(cur):
            cur = cur[int(part)]
        else:
            return default
    return cur


def is_prefix_path(prefix: str, path: str) -> bool:
    """True when ``prefix`` names ``path`` itself or one of its ancestors."""
    return path == prefix or path.startswith(prefix + ".")
