"""Schema description accepted by the catalog builder."""

from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class TrackOptions(BaseModel):
    """Per-field search options."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    unchanged: bool = False
    weight: float = Field(default=1, gt=0)


class SchemaField(BaseModel):
    """One node of a document schema.

    ``object`` nodes hold nested fields, ``array`` nodes hold the fields of
    their subdocument elements and ``scalar`` nodes are leaves that can be
    opted into search tracking.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    type: Literal["scalar", "object", "array"] = "scalar"
    children: Optional[List["SchemaField"]] = None
    trackable: Union[bool, TrackOptions] = False

    @property
    def track_options(self) -> TrackOptions | None:
        if self.trackable is True:
            return TrackOptions()
        if isinstance(self.trackable, TrackOptions):
            return self.trackable
        return None


SchemaField.model_rebuild()


class SchemaDescription(BaseModel):
    """A named, versioned document schema."""

    model_config = ConfigDict(extra="forbid")

    name: str = "default"
    version: Union[int, str] = 1
    fields: List[SchemaField] = Field(default_factory=list)
