"""Record endpoints for the built-in business modules.

GET    /v1/modules/{module}/records          — list visible records
POST   /v1/modules/{module}/records          — create
GET    /v1/modules/{module}/records/{id}     — read one
PATCH  /v1/modules/{module}/records/{id}     — partial update
DELETE /v1/modules/{module}/records/{id}     — delete

Bodies are taken raw so the pipeline can report schema errors (400) and
edit-mask violations (403) in its own order.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Request

from src.api.dependencies import get_caller, get_pipeline
from src.models.access import Caller
from src.models.records import RecordPage
from src.pipeline.mutations import RecordMutationPipeline

router = APIRouter(prefix="/v1/modules", tags=["records"])

_RESERVED_QUERY = frozenset({"page", "limit", "search"})


@router.get("/{module}/records", response_model=RecordPage)
async def list_records(
    module: str,
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: str | None = Query(default=None, max_length=200),
    caller: Caller = Depends(get_caller),
    pipeline: RecordMutationPipeline = Depends(get_pipeline),
) -> RecordPage:
    # Remaining query params are equality filters on record data
    filters = {
        k: v for k, v in request.query_params.items() if k not in _RESERVED_QUERY
    }
    return await pipeline.list_records(
        caller, module, page=page, limit=limit, search=search, filters=filters or None,
    )


@router.post("/{module}/records", status_code=201)
async def create_record(
    module: str,
    body: Any = Body(default=None),
    caller: Caller = Depends(get_caller),
    pipeline: RecordMutationPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return await pipeline.create_record(caller, module, body)


@router.get("/{module}/records/{record_id}")
async def get_record(
    module: str,
    record_id: UUID,
    caller: Caller = Depends(get_caller),
    pipeline: RecordMutationPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return await pipeline.get_record(caller, module, record_id)


@router.patch("/{module}/records/{record_id}")
async def update_record(
    module: str,
    record_id: UUID,
    body: Any = Body(default=None),
    caller: Caller = Depends(get_caller),
    pipeline: RecordMutationPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return await pipeline.update_record(caller, module, record_id, body)


@router.delete("/{module}/records/{record_id}")
async def delete_record(
    module: str,
    record_id: UUID,
    caller: Caller = Depends(get_caller),
    pipeline: RecordMutationPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    return await pipeline.delete_record(caller, module, record_id)
