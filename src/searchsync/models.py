"""Core searchsync data models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """A tracked text field and the hidden field holding its search tokens.

    ``array_segments`` names the array-typed ancestors of ``path`` and
    ``array_depths`` gives their positions among the path segments. The
    catalog builder always fills both. Hand-built descriptors may omit the
    depths, which are then located left to right by name.
    """

    path: str
    derived_path: str
    name: str
    array_segments: Tuple[str, ...] = ()
    track_changes: bool = True
    weight: float = 1
    array_depths: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.array_segments and not self.array_depths:
            depths = _locate_segments(self.path.split("."), self.array_segments)
            object.__setattr__(self, "array_depths", depths)

    @property
    def in_array(self) -> bool:
        return bool(self.array_segments)

    @property
    def derived_name(self) -> str:
        return self.derived_path.rsplit(".", 1)[-1]

    @property
    def array_paths(self) -> Tuple[str, ...]:
        parts = self.path.split(".")
        return tuple(".".join(parts[: depth + 1]) for depth in self.array_depths)


def _locate_segments(parts: Sequence[str], names: Sequence[str]) -> Tuple[int, ...]:
    depths = []
    start = 0
    for name in names:
        try:
            index = parts.index(name, start)
        except ValueError:
            return ()
        depths.append(index)
        start = index + 1
    return tuple(depths)


Catalog = Tuple[FieldDescriptor, ...]
