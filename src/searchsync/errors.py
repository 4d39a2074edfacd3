"""Exceptions raised by searchsync."""

from __future__ import annotations


class SearchSyncError(Exception):
    """Base class for searchsync errors."""


class CatalogError(SearchSyncError):
    """Raised when a schema description cannot be turned into a field catalog."""


class NormalizationError(SearchSyncError):
    """Raised when an update cannot be expressed as an update pipeline."""


class InvalidUpdateError(SearchSyncError):
    """Raised when an update description is neither a document nor a list of stages."""
