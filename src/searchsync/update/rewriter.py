"""Append search-token recomputation to updates that touch tracked fields."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from searchsync.errors import CatalogError, InvalidUpdateError
from searchsync.models import Catalog, FieldDescriptor
from searchsync.update.detector import touches_field
from searchsync.update.expressions import search_text_expression, to_mongo
from searchsync.update.normalizer import PipelineNormalizer, UpdateNormalizer
from searchsync.utils.paths import split_path

LOGGER = logging.getLogger(__name__)

ELEMENT_VAR = "elemt"

BULK_UPDATE_KINDS = ("updateOne", "updateMany")


class _NoOp:
    """Returned when an update leaves every tracked field alone."""

    _instance: "_NoOp | None" = None

    def __new__(cls) -> "_NoOp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_OP"


NO_OP = _NoOp()


def touched_fields(catalog: Catalog, update: Any) -> List[FieldDescriptor]:
    return [descriptor for descriptor in catalog if touches_field(update, descriptor.path)]


def build_recompute_clause(descriptors: Iterable[FieldDescriptor]) -> Dict[str, Any]:
    """Build the ``$set`` document recomputing the given derived fields.

    Fields inside arrays of subdocuments are recomputed element by element,
    every other field with a plain assignment.
    """
    clause: Dict[str, Any] = {}
    for descriptor in descriptors:
        if not descriptor.track_changes:
            continue
        if descriptor.in_array:
            _deep_merge(clause, _array_field_clause(descriptor))
        else:
            clause[descriptor.derived_path] = to_mongo(search_text_expression(descriptor.path))
    return clause


def recompute_stage(descriptors: Iterable[FieldDescriptor]) -> Dict[str, Any] | None:
    clause = build_recompute_clause(descriptors)
    return {"$set": clause} if clause else None


def _array_field_clause(descriptor: FieldDescriptor) -> Dict[str, Any]:
    parts = split_path(descriptor.path)
    depths = _checked_depths(descriptor, parts)
    array_path = descriptor.array_paths[0]
    value = _map_elements("$" + array_path, parts, depths[0] + 1, depths[1:], descriptor, level=0)
    return {array_path: value}


def _map_elements(
    source: str,
    parts: List[str],
    start: int,
    depths: Sequence[int],
    descriptor: FieldDescriptor,
    level: int,
) -> Dict[str, Any]:
    var = ELEMENT_VAR if level == 0 else f"{ELEMENT_VAR}{level}"
    element = "$$" + var

    if depths:
        inner_path = parts[start : depths[0] + 1]
        inner = _map_elements(
            f"{element}.{'.'.join(inner_path)}",
            parts,
            depths[0] + 1,
            depths[1:],
            descriptor,
            level + 1,
        )
        patch = _nested_patch(element, inner_path, inner)
    else:
        rest = parts[start:]
        tokens = to_mongo(search_text_expression(f"{element}.{'.'.join(rest)}"))
        patch = _nested_patch(element, rest[:-1] + [descriptor.derived_name], tokens)

    return {
        "$cond": [
            {"$isArray": source},
            {"$map": {"input": source, "as": var, "in": {"$mergeObjects": [element, patch]}}},
            source,
        ]
    }


def _nested_patch(base: str, parts: List[str], value: Any) -> Dict[str, Any]:
    # $mergeObjects is shallow, so intermediate subdocuments are merged explicitly.
    if len(parts) == 1:
        return {parts[0]: value}
    head = f"{base}.{parts[0]}"
    return {parts[0]: {"$mergeObjects": [head, _nested_patch(head, parts[1:], value)]}}


def _checked_depths(descriptor: FieldDescriptor, parts: Sequence[str]) -> Tuple[int, ...]:
    depths = descriptor.array_depths
    valid = len(depths) == len(descriptor.array_segments) and all(
        0 <= depth < len(parts) - 1 and parts[depth] == name
        for depth, name in zip(depths, descriptor.array_segments)
    )
    if not valid or list(depths) != sorted(set(depths)):
        raise CatalogError(
            f"Array segments {descriptor.array_segments!r} do not lead to a field in {descriptor.path!r}"
        )
    return depths


def _deep_merge(target: Any, source: Any) -> Any:
    """Merge ``source`` into ``target``; lists merge position by position.

    Two fields of the same array therefore share one ``$map`` whose element
    patch carries both derived fields.
    """
    if isinstance(target, dict) and isinstance(source, dict):
        for key, value in source.items():
            target[key] = _deep_merge(target[key], value) if key in target else value
        return target
    if isinstance(target, list) and isinstance(source, list):
        merged = list(target)
        for index, value in enumerate(source):
            if index < len(merged):
                merged[index] = _deep_merge(merged[index], value)
            else:
                merged.append(value)
        return merged
    return source


def rewrite(
    catalog: Catalog,
    filter: Mapping[str, Any] | None,
    update: Any,
    array_filters: Sequence[Mapping[str, Any]] | None = None,
    *,
    normalizer: UpdateNormalizer | None = None,
) -> List[Dict[str, Any]] | _NoOp:
    """Return ``update`` as a pipeline ending with a token recomputation stage.

    ``NO_OP`` means no change-tracked field is touched and the caller should
    send ``update`` unchanged. The caller's update is never modified.
    """
    if not isinstance(update, (dict, list)):
        raise InvalidUpdateError(f"Unsupported update description: {type(update).__name__}")

    touched = touched_fields(catalog, update)
    stage = recompute_stage(touched)
    if stage is None:
        return NO_OP

    LOGGER.debug("Recomputing search tokens for %s", ", ".join(d.path for d in touched))
    if isinstance(update, list):
        return [*update, stage]

    normalizer = normalizer or PipelineNormalizer()
    pipeline = normalizer.to_pipeline(filter, update, array_filters=array_filters)
    return [*pipeline, stage]


def rewrite_bulk(
    catalog: Catalog,
    operations: Sequence[Mapping[str, Any]],
    *,
    normalizer: UpdateNormalizer | None = None,
) -> Tuple[List[Mapping[str, Any]], int]:
    """Rewrite the update blocks of a bulk write operation list.

    Returns the new operation list and how many operations were rewritten.
    """
    rewritten: List[Mapping[str, Any]] = []
    count = 0
    for operation in operations:
        kind = next((name for name in BULK_UPDATE_KINDS if name in operation), None)
        if kind is None:
            rewritten.append(operation)
            continue
        block = operation[kind]
        update = rewrite(
            catalog,
            block.get("filter"),
            block.get("update"),
            block.get("arrayFilters"),
            normalizer=normalizer,
        )
        if update is NO_OP:
            rewritten.append(operation)
            continue
        new_block = {**block, "update": update}
        # array filters are folded into the pipeline by the normalizer
        if isinstance(block.get("update"), dict):
            new_block.pop("arrayFilters", None)
        rewritten.append({kind: new_block})
        count += 1
    return rewritten, count
