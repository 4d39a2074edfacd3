"""FastAPI application exposing searchsync to non-Python hosts."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from searchsync.errors import SearchSyncError
from searchsync.index.catalog import default_registry, text_index_spec
from searchsync.index.schema import SchemaDescription
from searchsync.index.seeder import seed_many
from searchsync.models import Catalog
from searchsync.update.merge import patch_merge
from searchsync.update.rewriter import NO_OP, rewrite, rewrite_bulk
from searchsync.utils.text import search_text

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="searchsync", version="0.1.0")


class TokenizePayload(BaseModel):
    text: Any = None


class SchemaPayload(BaseModel):
    schema_description: SchemaDescription


class RewritePayload(SchemaPayload):
    update: Any
    filter: Dict[str, Any] | None = None
    array_filters: List[Dict[str, Any]] | None = None


class BulkPayload(SchemaPayload):
    operations: List[Dict[str, Any]]


class MergePayload(SchemaPayload):
    pipeline: List[Dict[str, Any]]


class SeedPayload(SchemaPayload):
    documents: List[Dict[str, Any]] = Field(default_factory=list)


def _catalog(payload: SchemaPayload) -> Catalog:
    # Request schemas are anonymous, so the cache is keyed on their content
    description = payload.schema_description
    try:
        return default_registry.get_or_build(description, key=description.model_dump_json())
    except SearchSyncError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.post("/tokenize")
async def tokenize_text(payload: TokenizePayload) -> dict[str, str]:
    return {"tokens": search_text(payload.text)}


@app.post("/catalog")
async def describe_catalog(payload: SchemaPayload) -> dict[str, Any]:
    fields = _catalog(payload)
    return {
        "fields": [
            {
                "path": field.path,
                "derived_path": field.derived_path,
                "array_segments": list(field.array_segments),
                "array_paths": list(field.array_paths),
                "track_changes": field.track_changes,
                "weight": field.weight,
            }
            for field in fields
        ]
    }


@app.post("/index-spec")
async def index_spec(payload: SchemaPayload) -> dict[str, Any]:
    return {"index": text_index_spec(_catalog(payload))}


@app.post("/rewrite")
async def rewrite_update(payload: RewritePayload) -> dict[str, Any]:
    fields = _catalog(payload)
    try:
        result = rewrite(fields, payload.filter, payload.update, payload.array_filters)
    except SearchSyncError as exc:
        LOGGER.info("Rejected update: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if result is NO_OP:
        return {"changed": False, "update": payload.update}
    return {"changed": True, "update": result}


@app.post("/bulk")
async def rewrite_bulk_operations(payload: BulkPayload) -> dict[str, Any]:
    fields = _catalog(payload)
    try:
        operations, count = rewrite_bulk(fields, payload.operations)
    except SearchSyncError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"operations": operations, "rewritten": count}


@app.post("/merge")
async def patch_merge_stage(payload: MergePayload) -> dict[str, Any]:
    pipeline = list(payload.pipeline)
    patched = patch_merge(pipeline, _catalog(payload))
    return {"patched": patched, "pipeline": pipeline}


@app.post("/seed")
async def seed_documents(payload: SeedPayload) -> dict[str, Any]:
    return {"documents": seed_many(payload.documents, _catalog(payload))}
