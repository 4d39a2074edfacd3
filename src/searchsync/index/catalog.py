"""Field catalog construction and index declaration helpers."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Sequence, Tuple, Union

from pydantic import ValidationError

from searchsync.errors import CatalogError
from searchsync.index.schema import SchemaDescription, SchemaField
from searchsync.models import Catalog, FieldDescriptor
from searchsync.utils.paths import join_path, split_path

LOGGER = logging.getLogger(__name__)

DEFAULT_PREFIX = "__"

SchemaInput = Union[SchemaDescription, Sequence[Union[SchemaField, Mapping[str, Any]]], Mapping[str, Any]]


def parse_schema(schema: SchemaInput) -> SchemaDescription:
    """Validate a schema description given as models or plain data."""
    if isinstance(schema, SchemaDescription):
        return schema
    try:
        if isinstance(schema, Mapping):
            return SchemaDescription.model_validate(schema)
        fields = [
            item if isinstance(item, SchemaField) else SchemaField.model_validate(item)
            for item in schema
        ]
    except ValidationError as exc:
        raise CatalogError(f"Invalid schema description: {exc}") from exc
    except RecursionError as exc:
        raise CatalogError("Cyclic schema description") from exc
    return SchemaDescription(fields=fields)


def build_catalog(schema: SchemaInput, *, prefix: str = DEFAULT_PREFIX) -> Catalog:
    """Flatten a schema description into its tracked field descriptors.

    An empty catalog means no field opted into search tracking.
    """
    if not prefix:
        raise CatalogError("Derived field prefix must not be empty")
    description = parse_schema(schema)
    descriptors: List[FieldDescriptor] = []
    _walk(description.fields, "", (), prefix, descriptors, set())
    _check_unique(descriptors)
    LOGGER.debug("Built catalog for schema %s with %d field(s)", description.name, len(descriptors))
    return tuple(descriptors)


def _walk(
    fields: Iterable[SchemaField],
    parent: str,
    arrays: Tuple[Tuple[str, int], ...],
    prefix: str,
    out: List[FieldDescriptor],
    active: set,
) -> None:
    for node in fields:
        if id(node) in active:
            raise CatalogError(f"Cyclic schema nesting at {join_path(parent, node.name)}")
        path = join_path(parent, node.name)

        if node.type == "scalar":
            if node.children:
                raise CatalogError(f"Scalar field {path} cannot have children")
            options = node.track_options
            if options is not None:
                out.append(_build_descriptor(path, node.name, arrays, prefix, options))
            continue

        if node.track_options is not None:
            raise CatalogError(f"Only scalar fields can be tracked, {path} is {node.type}")
        if not node.children:
            continue

        active.add(id(node))
        child_arrays = arrays
        if node.type == "array":
            child_arrays = arrays + ((node.name, len(split_path(path)) - 1),)
        _walk(node.children, path, child_arrays, prefix, out, active)
        active.discard(id(node))


def _build_descriptor(path, name, arrays, prefix, options) -> FieldDescriptor:
    parts = split_path(path)
    derived_path = join_path(*parts[:-1], f"{prefix}{parts[-1]}")
    return FieldDescriptor(
        path=path,
        derived_path=derived_path,
        name=name,
        array_segments=tuple(name for name, _ in arrays),
        array_depths=tuple(depth for _, depth in arrays),
        track_changes=not options.unchanged,
        weight=options.weight,
    )


def _check_unique(descriptors: Sequence[FieldDescriptor]) -> None:
    paths = set()
    for descriptor in descriptors:
        if descriptor.path in paths:
            raise CatalogError(f"Duplicate tracked field: {descriptor.path}")
        paths.add(descriptor.path)
    for descriptor in descriptors:
        if descriptor.derived_path in paths:
            raise CatalogError(
                f"Derived field {descriptor.derived_path} collides with a tracked field"
            )


class CatalogRegistry:
    """Process-wide cache of catalogs, one per schema name and version."""

    def __init__(self, *, prefix: str = DEFAULT_PREFIX) -> None:
        self.prefix = prefix
        self._catalogs: Dict[Hashable, Catalog] = {}
        self._lock = threading.Lock()

    def get_or_build(self, schema: SchemaInput, key: Hashable | None = None) -> Catalog:
        description = parse_schema(schema)
        key = key if key is not None else (description.name, description.version)
        catalog = self._catalogs.get(key)
        if catalog is not None:
            return catalog
        with self._lock:
            catalog = self._catalogs.get(key)
            if catalog is None:
                catalog = build_catalog(description, prefix=self.prefix)
                self._catalogs[key] = catalog
        return catalog

    def get(self, key: Hashable) -> Catalog | None:
        return self._catalogs.get(key)

    def clear(self) -> None:
        with self._lock:
            self._catalogs.clear()

    def __len__(self) -> int:
        return len(self._catalogs)


default_registry = CatalogRegistry()


def tracked_fields(catalog: Catalog) -> Catalog:
    """Descriptors whose derived field is maintained on update."""
    return tuple(descriptor for descriptor in catalog if descriptor.track_changes)


def index_weights(catalog: Catalog) -> Dict[str, float]:
    """Text index weights for every source and derived path."""
    weights: Dict[str, float] = {}
    for descriptor in tracked_fields(catalog):
        weights[descriptor.path] = descriptor.weight
        weights[descriptor.derived_path] = descriptor.weight
    return weights


def text_index_spec(catalog: Catalog, name: str = "TextIndex") -> Dict[str, Any] | None:
    """Keys and options of the weighted text index covering the catalog."""
    weights = index_weights(catalog)
    if not weights:
        return None
    return {
        "keys": {path: "text" for path in weights},
        "options": {"weights": weights, "name": name},
    }


def derived_fields(catalog: Catalog) -> List[str]:
    """Derived paths the host schema must declare as hidden string fields."""
    return [descriptor.derived_path for descriptor in tracked_fields(catalog)]


def hidden_projection(catalog: Catalog, projection: Mapping[str, Any] | None = None) -> Dict[str, Any]:
    """Exclude derived fields from a find projection unless explicitly selected.

    ``"+path"`` keys force a derived field into the result.
    """
    projection = dict(projection or {})
    selected = {key.lstrip("+") for key, value in projection.items() if value in (1, True)}
    inclusive = any(
        value in (1, True)
        for key, value in projection.items()
        if not key.startswith("+") and key != "_id"
    )
    result = {key: value for key, value in projection.items() if not key.startswith("+")}
    for key in projection:
        if key.startswith("+") and inclusive and projection[key] in (1, True):
            result[key[1:]] = 1
    if inclusive:
        return result
    for derived_path in derived_fields(catalog):
        if derived_path not in selected:
            result[derived_path] = 0
    return result
