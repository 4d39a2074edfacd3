"""Recompute search tokens on documents written by an aggregation ``$merge``."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

from searchsync.models import Catalog
from searchsync.update.rewriter import build_recompute_clause

LOGGER = logging.getLogger(__name__)


def merge_stage(pipeline: List[Any]) -> Dict[str, Any] | None:
    """Return the ``$merge`` specification ending ``pipeline``, if any."""
    if not pipeline:
        return None
    last = pipeline[-1]
    if not isinstance(last, dict):
        return None
    spec = last.get("$merge")
    return spec if isinstance(spec, dict) else None


def merge_target(pipeline: List[Any]) -> str | None:
    """Name of the collection the pipeline merges into."""
    spec = merge_stage(pipeline)
    if spec is None:
        return None
    into = spec.get("into")
    if isinstance(into, str):
        return into
    if isinstance(into, Mapping):
        return into.get("coll")
    return None


def patch_merge(pipeline: List[Any], catalog: Catalog) -> bool:
    """Make the trailing ``$merge`` stage recompute every tracked field.

    The pipeline is modified in place. Returns False when nothing was patched:
    no ``$merge`` stage, nothing tracked, or a ``whenMatched`` policy that
    never rewrites the target document.
    """
    spec = merge_stage(pipeline)
    if spec is None:
        return False
    clause = build_recompute_clause(catalog)
    if not clause:
        return False

    when_matched = spec.get("whenMatched")
    if when_matched == "merge":
        spec["whenMatched"] = [
            {"$replaceRoot": {"newRoot": {"$mergeObjects": ["$$ROOT", "$$new"]}}},
            {"$set": clause},
        ]
    elif when_matched == "replace":
        spec["whenMatched"] = [
            {"$replaceRoot": {"newRoot": "$$new"}},
            {"$set": clause},
        ]
    elif isinstance(when_matched, list):
        when_matched.append({"$set": clause})
    else:
        LOGGER.debug("Leaving $merge with whenMatched=%r untouched", when_matched)
        return False
    return True
