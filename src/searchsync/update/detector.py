"""Decide whether an update description touches a document field.

The detector never sees the document being updated, only the update, so it
errs on the side of reporting a change: a false positive costs one redundant
recomputation while a false negative leaves stale search tokens behind.
"""

from __future__ import annotations

import logging
from typing import Any

from searchsync.utils.paths import MISSING, ancestor_paths, deep_get, strip_positional

LOGGER = logging.getLogger(__name__)

# Operators whose argument maps field paths to new values or deltas.
ASSIGNING_OPERATORS = frozenset(
    {
        "$set",
        "$setOnInsert",
        "$addFields",
        "$inc",
        "$pull",
        "$push",
        "$unset",
        "$rename",
        "$mul",
        "$min",
        "$max",
        "$currentDate",
        "$addToSet",
        "$pop",
        "$pullAll",
        "$bit",
    }
)

# Stages that rebuild the whole document.
ROOT_REPLACING_OPERATORS = frozenset({"$replaceRoot", "$replaceWith", "$project"})

# Query-level flags that never name document fields.
NON_FIELD_OPERATORS = frozenset({"$comment", "$hint", "$isolated", "$let"})


def touches_field(update: Any, path: str) -> bool:
    """Return True when ``update`` may change the value stored at ``path``.

    ``update`` is a replacement document, an operator document, a pipeline or
    a list of operator documents. Lists are true as soon as one entry
    touches the path.
    """
    units = update if isinstance(update, list) else [update]
    return any(_unit_touches(unit, path) for unit in units)


def _unit_touches(unit: Any, path: str) -> bool:
    if unit is None:
        return False
    if not isinstance(unit, dict):
        LOGGER.debug("Unrecognized update unit %r, assuming %s is touched", unit, path)
        return True

    # Replacement documents name fields at the top level.
    if _has_update_value(unit, path):
        return True

    for key, value in unit.items():
        if not key.startswith("$"):
            continue
        if key in ASSIGNING_OPERATORS:
            if _has_update_value(_field_map(key, value), path):
                return True
        elif key in ROOT_REPLACING_OPERATORS:
            return True
        elif key in NON_FIELD_OPERATORS:
            continue
        else:
            LOGGER.debug("Unknown update operator %s, assuming %s is touched", key, path)
            return True
    return False


def _field_map(operator: str, value: Any) -> Any:
    # Pipeline $unset takes a field name or a list of them.
    if operator == "$unset" and isinstance(value, str):
        return {value: True}
    if operator == "$unset" and isinstance(value, list):
        return {name: True for name in value if isinstance(name, str)}
    # $rename changes both the old and the new location.
    if operator == "$rename" and isinstance(value, dict):
        renamed = dict(value)
        renamed.update({target: True for target in value.values() if isinstance(target, str)})
        return renamed
    return value


def _has_update_value(obj: Any, path: str) -> bool:
    if obj is None:
        return False
    if not isinstance(obj, dict):
        return True

    if path in obj:
        return True
    if deep_get(obj, path, MISSING) is not MISSING:
        return True

    for key in obj:
        stripped = strip_positional(key)
        if path.startswith(stripped):
            return True
        if stripped.startswith(f"{path}."):
            return True

    for subpath in ancestor_paths(path):
        if subpath in obj:
            return True
    return False
