"""Translate classic update documents into update pipelines.

Recomputing search tokens needs the post-update value of a field, which only
an update pipeline can read. Operator updates are therefore rewritten into an
equivalent pipeline before the recomputation stage is appended. Anything
that has no faithful pipeline form raises ``NormalizationError`` instead of
being approximated.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Protocol, Sequence, Tuple

from searchsync.errors import NormalizationError
from searchsync.utils.paths import is_prefix_path, split_path

LOGGER = logging.getLogger(__name__)

ValueBuilder = Callable[[str], Any]

ELEMENT_VAR = "elem"

_COMPARISONS = {"$eq", "$ne", "$gt", "$gte", "$lt", "$lte"}


class UpdateNormalizer(Protocol):
    """Anything able to turn an update description into a pipeline."""

    def to_pipeline(
        self,
        filter: Mapping[str, Any] | None,
        update: Any,
        *,
        array_filters: Sequence[Mapping[str, Any]] | None = None,
    ) -> List[Dict[str, Any]]:  # pragma: no cover - interface definition
        ...


def _literal(value: Any) -> Dict[str, Any]:
    return {"$literal": value}


def _array_or_empty(ref: str) -> Dict[str, Any]:
    return {"$ifNull": [ref, []]}


class PipelineNormalizer:
    """Default normalizer for the common update operators.

    ``plain_updates`` decides what top-level fields without an operator mean:
    ``"set"`` merges them into ``$set`` (the usual ODM convention for
    ``updateOne``), ``"replace"`` treats an operator-free document as a
    whole-document replacement.
    """

    def __init__(self, plain_updates: str = "set") -> None:
        if plain_updates not in ("set", "replace"):
            raise ValueError(f"Unknown plain update mode: {plain_updates!r}")
        self.plain_updates = plain_updates

    def to_pipeline(
        self,
        filter: Mapping[str, Any] | None,
        update: Any,
        *,
        array_filters: Sequence[Mapping[str, Any]] | None = None,
    ) -> List[Dict[str, Any]]:
        if isinstance(update, list):
            return list(update)
        if not isinstance(update, Mapping):
            raise NormalizationError(f"Unsupported update type: {type(update).__name__}")

        operators = {key: value for key, value in update.items() if key.startswith("$")}
        plain = {key: value for key, value in update.items() if not key.startswith("$")}
        if plain and self.plain_updates == "replace":
            if operators:
                raise NormalizationError("Update mixes operators and plain fields")
            return [self._replacement_stage(update)]
        if plain:
            assigned = operators.get("$set", {})
            if not isinstance(assigned, Mapping):
                raise NormalizationError("$set expects a document of fields")
            operators["$set"] = {**assigned, **plain}

        builder = _StageBuilder(array_filters or (), filter)
        for operator, spec in operators.items():
            if not isinstance(spec, Mapping):
                raise NormalizationError(f"{operator} expects a document of fields")
            handler = getattr(self, "_op_" + operator[1:], None)
            if handler is None:
                raise NormalizationError(f"Update operator {operator} has no pipeline equivalent")
            for path, value in spec.items():
                handler(builder, path, value)
        stages = builder.stages()
        LOGGER.debug("Normalized update for filter %s into %d stage(s)", filter, len(stages))
        return stages

    @staticmethod
    def _replacement_stage(document: Mapping[str, Any]) -> Dict[str, Any]:
        # replaceOne keeps the stored _id unless the replacement carries one
        return {"$replaceWith": {"$mergeObjects": [{"_id": "$_id"}, _literal(dict(document))]}}

    # -- operators ---------------------------------------------------------

    def _op_set(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        builder.assign(path, lambda ref: _literal(value))

    def _op_setOnInsert(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        raise NormalizationError("$setOnInsert cannot be expressed in an update pipeline")

    def _op_unset(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        builder.remove(path)

    def _op_inc(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        builder.assign(path, lambda ref: {"$add": [{"$ifNull": [ref, 0]}, value]})

    def _op_mul(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        builder.assign(path, lambda ref: {"$multiply": [{"$ifNull": [ref, 0]}, value]})

    def _op_min(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        builder.assign(path, lambda ref: {"$min": [ref, _literal(value)]})

    def _op_max(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        builder.assign(path, lambda ref: {"$max": [ref, _literal(value)]})

    def _op_currentDate(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        if isinstance(value, Mapping) and value.get("$type") == "timestamp":
            builder.assign(path, lambda ref: "$$CLUSTER_TIME")
        else:
            builder.assign(path, lambda ref: "$$NOW")

    def _op_rename(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        if not isinstance(value, str):
            raise NormalizationError(f"$rename target for {path} must be a string")
        builder.assign(value, lambda ref: builder.reference(path))
        builder.remove(path)

    def _op_push(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        items = self._each(path, value, "$push")
        builder.assign(path, lambda ref: {"$concatArrays": [_array_or_empty(ref), _literal(items)]})

    def _op_addToSet(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        items = self._each(path, value, "$addToSet")
        builder.assign(
            path,
            lambda ref: {
                "$reduce": {
                    "input": _literal(items),
                    "initialValue": _array_or_empty(ref),
                    "in": {
                        "$cond": [
                            {"$in": ["$$this", "$$value"]},
                            "$$value",
                            {"$concatArrays": ["$$value", ["$$this"]]},
                        ]
                    },
                }
            },
        )

    def _op_pop(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        if value not in (1, -1):
            raise NormalizationError(f"$pop for {path} expects 1 or -1")
        start = 0 if value == 1 else 1

        def pop(ref: str) -> Any:
            array = _array_or_empty(ref)
            size = {"$size": array}
            return {
                "$cond": [
                    {"$lte": [size, 1]},
                    [],
                    {"$slice": [array, start, {"$subtract": [size, 1]}]},
                ]
            }

        builder.assign(path, pop)

    def _op_pull(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        if isinstance(value, Mapping):
            raise NormalizationError(f"$pull conditions on {path} have no pipeline equivalent")
        builder.assign(
            path,
            lambda ref: {
                "$filter": {
                    "input": _array_or_empty(ref),
                    "as": "item",
                    "cond": {"$ne": ["$$item", _literal(value)]},
                }
            },
        )

    def _op_pullAll(self, builder: "_StageBuilder", path: str, value: Any) -> None:
        if not isinstance(value, list):
            raise NormalizationError(f"$pullAll for {path} expects a list")
        builder.assign(
            path,
            lambda ref: {
                "$filter": {
                    "input": _array_or_empty(ref),
                    "as": "item",
                    "cond": {"$not": [{"$in": ["$$item", _literal(value)]}]},
                }
            },
        )

    @staticmethod
    def _each(path: str, value: Any, operator: str) -> List[Any]:
        if isinstance(value, Mapping) and "$each" in value:
            modifiers = set(value) - {"$each"}
            if modifiers:
                raise NormalizationError(
                    f"{operator} modifiers {sorted(modifiers)} on {path} are not supported"
                )
            return list(value["$each"])
        return [value]


class _StageBuilder:
    """Collects field assignments and removals for one pipeline."""

    def __init__(
        self,
        array_filters: Sequence[Mapping[str, Any]],
        filter: Mapping[str, Any] | None = None,
    ) -> None:
        self.array_filters = array_filters
        self.filter = filter or {}
        self._assignments: Dict[str, Any] = {}
        self._array_assignments: Dict[str, Tuple[str, Dict[str, ValueBuilder]]] = {}
        self._removals: List[str] = []

    @staticmethod
    def reference(path: str) -> str:
        return "$" + path

    def assign(self, path: str, build: ValueBuilder) -> None:
        parts = split_path(path)
        self._check_segments(path, parts)
        positional = [index for index, part in enumerate(parts) if part.startswith("$")]
        if not positional:
            self._claim(path)
            self._assignments[path] = build(self.reference(path))
            return

        index = positional[0]
        marker = parts[index]
        if len(positional) > 1 or index != len(parts) - 2 or index == 0:
            raise NormalizationError(f"Nested positional update {path} is not supported")

        array_path = ".".join(parts[:index])
        leaf = parts[-1]
        if array_path in self._assignments:
            raise NormalizationError(f"Conflicting updates on {array_path}")
        current_marker, leaves = self._array_assignments.setdefault(array_path, (marker, {}))
        if current_marker != marker:
            raise NormalizationError(f"Conflicting positional updates on {array_path}")
        leaves[leaf] = build

    def remove(self, path: str) -> None:
        parts = split_path(path)
        self._check_segments(path, parts)
        if any(part.startswith("$") for part in parts):
            raise NormalizationError(f"Positional removal {path} is not supported")
        self._claim(path)
        self._removals.append(path)

    def stages(self) -> List[Dict[str, Any]]:
        fields = dict(self._assignments)
        for array_path, (marker, leaves) in self._array_assignments.items():
            fields[array_path] = self._map_elements(array_path, marker, leaves)

        stages: List[Dict[str, Any]] = []
        if fields:
            stages.append({"$set": fields})
        if self._removals:
            stages.append({"$unset": list(self._removals)})
        return stages

    def _claim(self, path: str) -> None:
        for existing in list(self._assignments) + self._removals + list(self._array_assignments):
            if is_prefix_path(path, existing) or is_prefix_path(existing, path):
                raise NormalizationError(f"Conflicting updates on {path} and {existing}")

    @staticmethod
    def _check_segments(path: str, parts: List[str]) -> None:
        if not parts or any(not part for part in parts):
            raise NormalizationError(f"Invalid update path {path!r}")
        if any(part.isdigit() for part in parts):
            raise NormalizationError(f"Array index in {path} is not supported")

    def _map_elements(self, array_path: str, marker: str, leaves: Dict[str, ValueBuilder]) -> Dict[str, Any]:
        element = "$$" + ELEMENT_VAR
        patch = {leaf: build(f"{element}.{leaf}") for leaf, build in leaves.items()}
        merged = {"$mergeObjects": [element, patch]}
        array = _array_or_empty("$" + array_path)
        if marker == "$":
            return self._patch_first_match(array, self._positional_condition(array_path), merged)

        condition = self._element_condition(marker)
        return {
            "$map": {
                "input": array,
                "as": ELEMENT_VAR,
                "in": merged if condition is None else {"$cond": [condition, merged, element]},
            }
        }

    @staticmethod
    def _patch_first_match(array: Any, condition: Any, merged: Any) -> Dict[str, Any]:
        # "$" is the first element matching the filter; -1 leaves the array as is.
        matched = {
            "$indexOfArray": [
                {"$map": {"input": array, "as": ELEMENT_VAR, "in": condition}},
                True,
            ]
        }
        return {
            "$let": {
                "vars": {"matched": matched},
                "in": {
                    "$map": {
                        "input": {"$range": [0, {"$size": array}]},
                        "as": "index",
                        "in": {
                            "$let": {
                                "vars": {ELEMENT_VAR: {"$arrayElemAt": [array, "$$index"]}},
                                "in": {
                                    "$cond": [
                                        {"$eq": ["$$index", "$$matched"]},
                                        merged,
                                        "$$" + ELEMENT_VAR,
                                    ]
                                },
                            }
                        },
                    }
                },
            }
        }

    def _positional_condition(self, array_path: str) -> Any:
        element = "$$" + ELEMENT_VAR
        clauses = []
        for key, condition in self.filter.items():
            if key == array_path and isinstance(condition, Mapping) and "$elemMatch" in condition:
                for field, match in condition["$elemMatch"].items():
                    if field.startswith("$"):
                        clauses.extend(self._comparisons(element, {field: match}))
                    else:
                        clauses.extend(self._comparisons(f"{element}.{field}", match))
            elif key == array_path:
                clauses.extend(self._comparisons(element, condition))
            elif key.startswith(array_path + "."):
                clauses.extend(self._comparisons(f"{element}.{key[len(array_path) + 1:]}", condition))
        if not clauses:
            raise NormalizationError(
                f"Positional update on {array_path} needs a filter condition on {array_path}"
            )
        return clauses[0] if len(clauses) == 1 else {"$and": clauses}

    def _element_condition(self, marker: str) -> Any:
        identifier = marker[2:-1]
        if not identifier:
            return None

        clauses = []
        for array_filter in self.array_filters:
            for key, condition in array_filter.items():
                name, _, rest = key.partition(".")
                if name != identifier:
                    continue
                ref = "$$" + ELEMENT_VAR + ("." + rest if rest else "")
                clauses.extend(self._comparisons(ref, condition))
        if not clauses:
            raise NormalizationError(f"No array filter found for identifier {identifier!r}")
        return clauses[0] if len(clauses) == 1 else {"$and": clauses}

    @staticmethod
    def _comparisons(ref: str, condition: Any) -> List[Dict[str, Any]]:
        if not isinstance(condition, Mapping) or not any(key.startswith("$") for key in condition):
            return [{"$eq": [ref, _literal(condition)]}]
        clauses = []
        for operator, operand in condition.items():
            if operator in _COMPARISONS:
                clauses.append({operator: [ref, _literal(operand)]})
            elif operator == "$in":
                clauses.append({"$in": [ref, _literal(list(operand))]})
            elif operator == "$nin":
                clauses.append({"$not": [{"$in": [ref, _literal(list(operand))]}]})
            else:
                raise NormalizationError(f"Condition operator {operator} is not supported")
        return clauses
