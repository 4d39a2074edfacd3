"""Fill derived search fields on documents about to be inserted."""

from __future__ import annotations

from typing import Any, Iterable, List

from searchsync.index.catalog import tracked_fields
from searchsync.models import Catalog, FieldDescriptor
from searchsync.utils.paths import split_path
from searchsync.utils.text import search_text


def seed(document: Any, catalog: Catalog) -> Any:
    """Compute every change-tracked derived field of ``document`` in place."""
    for descriptor in tracked_fields(catalog):
        _seed_path(document, split_path(descriptor.path), descriptor)
    return document


def seed_many(documents: Iterable[Any], catalog: Catalog) -> List[Any]:
    return [seed(document, catalog) for document in documents]


def _seed_path(doc: Any, parts: List[str], descriptor: FieldDescriptor) -> None:
    if not isinstance(doc, dict):
        return
    head = parts[0]
    if len(parts) == 1:
        doc[descriptor.derived_name] = search_text(doc.get(head))
        return

    value = doc.get(head)
    if isinstance(value, list):
        for element in value:
            _seed_path(element, parts[1:], descriptor)
    elif isinstance(value, dict):
        _seed_path(value, parts[1:], descriptor)
