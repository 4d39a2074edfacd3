"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_SCHEMA_FILE = "searchsync.schema.json"
SCHEMA_ENV_VAR = "SEARCHSYNC_SCHEMA"


def _get_default_schema_path() -> Path | None:
    """Find the schema description used when none is given explicitly."""
    from_env = os.environ.get(SCHEMA_ENV_VAR)
    if from_env:
        return Path(from_env)

    # Running from a project checkout
    local_schema = Path(DEFAULT_SCHEMA_FILE)
    if local_schema.exists():
        return local_schema

    return None


@dataclass(slots=True)
class AppConfig:
    schema_path: Path | None = None
    derived_prefix: str = "__"
    index_name: str = "TextIndex"
    skip_option: str = "skip_search"

    def __post_init__(self) -> None:
        if self.schema_path is None:
            self.schema_path = _get_default_schema_path()

    def resolve_schema_path(self, base_dir: Path | None = None) -> Path | None:
        if self.schema_path is None:
            self.schema_path = _get_default_schema_path()
        if self.schema_path is None:
            return None
        if Path(self.schema_path).is_absolute() or base_dir is None:
            return Path(self.schema_path)
        return base_dir / self.schema_path
