"""Hooks a persistence layer calls before writing or reading documents."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Sequence

from searchsync.config import AppConfig
from searchsync.index.catalog import hidden_projection, text_index_spec
from searchsync.index.seeder import seed, seed_many
from searchsync.models import Catalog
from searchsync.update.merge import merge_target, patch_merge
from searchsync.update.normalizer import UpdateNormalizer
from searchsync.update.rewriter import NO_OP, rewrite, rewrite_bulk

LOGGER = logging.getLogger(__name__)

CatalogResolver = Callable[[str], "Catalog | None"]


@dataclass(slots=True)
class UpdateRewrite:
    """Replacement update and the options to send it with."""

    update: List[Dict[str, Any]]
    options: Dict[str, Any] = field(default_factory=dict)


class SearchPlugin:
    """Keeps derived search fields of one collection in sync.

    Every hook honours the ``skip_search`` option (see ``AppConfig.skip_option``).
    """

    def __init__(
        self,
        catalog: Catalog,
        *,
        normalizer: UpdateNormalizer | None = None,
        config: AppConfig | None = None,
        catalog_resolver: CatalogResolver | None = None,
    ) -> None:
        self.catalog = catalog
        self.normalizer = normalizer
        self.config = config or AppConfig()
        self.catalog_resolver = catalog_resolver

    @property
    def enabled(self) -> bool:
        return bool(self.catalog)

    def _skipped(self, options: Mapping[str, Any] | None) -> bool:
        return not self.enabled or bool(options and options.get(self.config.skip_option))

    def before_save(self, document: Dict[str, Any], options: Mapping[str, Any] | None = None) -> Dict[str, Any]:
        if not self._skipped(options):
            seed(document, self.catalog)
        return document

    def before_insert_many(
        self, documents: List[Dict[str, Any]], options: Mapping[str, Any] | None = None
    ) -> List[Dict[str, Any]]:
        if self._skipped(options) or not documents:
            return documents
        return seed_many(documents, self.catalog)

    def before_replace(
        self, replacement: Dict[str, Any], options: Mapping[str, Any] | None = None
    ) -> Dict[str, Any]:
        """Return a seeded copy of a whole-document replacement."""
        if self._skipped(options):
            return replacement
        return seed(copy.deepcopy(replacement), self.catalog)

    def before_update(
        self,
        filter: Mapping[str, Any] | None,
        update: Any,
        options: Mapping[str, Any] | None = None,
    ) -> UpdateRewrite | None:
        """Rewrite an update so it recomputes the search fields it affects.

        ``None`` means the update can be sent as is. Array filters are folded
        into the rewritten pipeline and removed from the returned options.
        """
        if self._skipped(options) or not update:
            return None
        options = dict(options or {})
        array_filters = options.pop("array_filters", None)
        rewritten = rewrite(self.catalog, filter, update, array_filters, normalizer=self.normalizer)
        if rewritten is NO_OP:
            return None
        if isinstance(update, list) and array_filters is not None:
            options["array_filters"] = array_filters
        return UpdateRewrite(update=rewritten, options=options)

    def before_bulk_write(
        self, operations: Sequence[Mapping[str, Any]], options: Mapping[str, Any] | None = None
    ) -> List[Mapping[str, Any]]:
        if self._skipped(options):
            return list(operations)
        rewritten, count = rewrite_bulk(self.catalog, operations, normalizer=self.normalizer)
        result: List[Mapping[str, Any]] = []
        for operation in rewritten:
            if "insertOne" in operation:
                block = dict(operation["insertOne"])
                block["document"] = self.before_replace(block["document"])
                operation = {"insertOne": block}
            elif "replaceOne" in operation:
                block = dict(operation["replaceOne"])
                block["replacement"] = self.before_replace(block["replacement"])
                operation = {"replaceOne": block}
            result.append(operation)
        LOGGER.debug("Rewrote %d of %d bulk operation(s)", count, len(operations))
        return result

    def before_aggregate(
        self,
        pipeline: List[Any],
        target_catalog: Catalog | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> bool:
        """Patch a pipeline ending with ``$merge`` into a tracked collection."""
        if options and options.get(self.config.skip_option):
            return False
        if target_catalog is None:
            target = merge_target(pipeline)
            if target is None or self.catalog_resolver is None:
                return False
            target_catalog = self.catalog_resolver(target)
        if not target_catalog:
            return False
        return patch_merge(pipeline, target_catalog)

    def before_find(self, projection: Mapping[str, Any] | None = None) -> Dict[str, Any]:
        return hidden_projection(self.catalog, projection)

    def index_spec(self) -> Dict[str, Any] | None:
        return text_index_spec(self.catalog, self.config.index_name)
