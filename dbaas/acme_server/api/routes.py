"""
API routes for Acme Server.

Thin HTTP adapter over the storage core: every handler resolves the
AppContext from app state and calls one CRUD entry point or admin report.
No business logic lives here.

Endpoints:
    GET    /entities                      registered entity descriptors
    GET    /entities/{entity}             query (query-string filters)
    GET    /entities/{entity}/{key}       get one row
    POST   /entities/{entity}             create
    PATCH  /entities/{entity}/{key}       update
    DELETE /entities/{entity}/{key}       delete
    GET    /admin/events/recent           latest events
    GET    /admin/events/{entity}/{key}   history of one row
    GET    /admin/actors/{actor}/events   latest events of one actor
    GET    /admin/summary                 row and event counts
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from pydantic import BaseModel, Field

from ..context import AppContext
from ..schema.types import Record

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Entities"])
admin_router = APIRouter(prefix="/admin", tags=["Admin"])

# Query-string parameters that are not filters
RESERVED_PARAMS = {"limit", "offset", "order_by"}


# --- Response Models ---


class RecordResponse(BaseModel):
    """One entity row."""

    entity: str
    key: Any
    values: dict[str, Any]


class QueryResponse(BaseModel):
    """Page of entity rows."""

    items: list[RecordResponse]
    limit: int
    offset: int
    count: int = Field(..., description="Rows in this page")


class EventResponse(BaseModel):
    """One lifecycle event."""

    seq: int | None
    entity_type: str
    entity_key: str
    kind: str
    ts_ms: int
    actor: str | None = None
    data: dict[str, Any]


class EventListResponse(BaseModel):
    """List of lifecycle events."""

    events: list[EventResponse]


# --- Dependencies ---


def get_context(request: Request) -> AppContext:
    """Get the application context from app state."""
    return request.app.state.context


def _record_response(ctx: AppContext, record: Record) -> RecordResponse:
    descriptor = ctx.registry.require(record.entity)
    values = record.to_dict(descriptor)
    return RecordResponse(entity=record.entity, key=values[descriptor.primary_key.name], values=values)


def _events_response(events: list) -> EventListResponse:
    return EventListResponse(events=[EventResponse(**e.to_dict()) for e in events])


# --- Entity routes ---


@router.get("/entities")
async def list_entities(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    """List registered entity descriptors."""
    return {"fingerprint": ctx.fingerprint, **ctx.registry.to_dict()}


@router.get("/entities/{entity}", response_model=QueryResponse)
async def query_entity(
    entity: str,
    request: Request,
    limit: int | None = Query(None, description="Page size"),
    offset: int = Query(0, description="Rows to skip"),
    order_by: str | None = Query(None, description="Comma-separated fields, '-' for descending"),
    ctx: AppContext = Depends(get_context),
) -> QueryResponse:
    """Query rows; every other query-string parameter is a filter."""
    filters = {k: v for k, v in request.query_params.items() if k not in RESERVED_PARAMS}
    records = await ctx.engine.query(
        entity, filters, limit=limit, offset=offset, order_by=order_by
    )
    return QueryResponse(
        items=[_record_response(ctx, r) for r in records],
        limit=limit if limit is not None else ctx.engine.default_limit,
        offset=offset,
        count=len(records),
    )


@router.get("/entities/{entity}/{key}", response_model=RecordResponse)
async def get_entity(
    entity: str,
    key: str,
    ctx: AppContext = Depends(get_context),
) -> RecordResponse:
    """Get one row by primary key."""
    record = await ctx.engine.get(entity, key)
    return _record_response(ctx, record)


@router.post("/entities/{entity}", response_model=RecordResponse, status_code=201)
async def create_entity(
    entity: str,
    payload: dict[str, Any] = Body(...),
    x_actor: str | None = Header(None),
    ctx: AppContext = Depends(get_context),
) -> RecordResponse:
    """Create a row."""
    record = await ctx.engine.create(entity, payload, actor=x_actor)
    return _record_response(ctx, record)


@router.patch("/entities/{entity}/{key}", response_model=RecordResponse)
async def update_entity(
    entity: str,
    key: str,
    payload: dict[str, Any] = Body(...),
    x_actor: str | None = Header(None),
    ctx: AppContext = Depends(get_context),
) -> RecordResponse:
    """Update the supplied fields of a row."""
    record = await ctx.engine.update(entity, key, payload, actor=x_actor)
    return _record_response(ctx, record)


@router.delete("/entities/{entity}/{key}", response_model=RecordResponse)
async def delete_entity(
    entity: str,
    key: str,
    version: int | None = Query(None, description="Expected version (versioned entities)"),
    x_actor: str | None = Header(None),
    ctx: AppContext = Depends(get_context),
) -> RecordResponse:
    """Delete a row; returns its last state."""
    record = await ctx.engine.delete(entity, key, actor=x_actor, expected_version=version)
    return _record_response(ctx, record)


# --- Admin routes (read-only) ---


@admin_router.get("/events/recent", response_model=EventListResponse)
async def recent_events(
    limit: int = Query(50, description="Maximum events to return"),
    ctx: AppContext = Depends(get_context),
) -> EventListResponse:
    """Latest events across all entities, newest first."""
    return _events_response(await ctx.reports.recent_activity(limit))


@admin_router.get("/events/{entity}/{key}", response_model=EventListResponse)
async def entity_events(
    entity: str,
    key: str,
    ctx: AppContext = Depends(get_context),
) -> EventListResponse:
    """History of one row, oldest first."""
    return _events_response(await ctx.reports.entity_history(entity, key))


@admin_router.get("/actors/{actor}/events", response_model=EventListResponse)
async def actor_events(
    actor: str,
    limit: int = Query(50, description="Maximum events to return"),
    ctx: AppContext = Depends(get_context),
) -> EventListResponse:
    """Latest events performed by one actor."""
    return _events_response(await ctx.reports.actor_activity(actor, limit))


@admin_router.get("/summary")
async def summary(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    """Row and event counts per entity."""
    return await ctx.reports.summary()
