"""
Batch endpoints.

POST /batches/                  → Dispatch one tool over many input images
GET  /batches/                  → List this shop's batches
GET  /batches/{batch_id}        → Get a batch with its cached counters
POST /batches/{batch_id}/refresh → Recompute the counters from the jobs table

Counters are recomputed automatically whenever a member job changes
status; refresh exists for operators who want to force it.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_orchestrator, get_shop
from api.schemas.batch import (
    BatchDispatch,
    BatchDispatchResponse,
    BatchListResponse,
    BatchResponse,
    DispatchOutcomeResponse,
)
from api.schemas.job import JobResponse
from jobs.orchestrator import JobOrchestrator
from jobs.types import BatchItem
from models.enums import BatchStatus

router = APIRouter(prefix="/batches", tags=["batches"])


@router.post("/", response_model=BatchDispatchResponse, status_code=201)
async def dispatch_batch(
    batch_in: BatchDispatch,
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> BatchDispatchResponse:
    """
    Create a batch and dispatch every item into it.

    Items are validated and dispatched independently: a rejected image shows
    up as a failed entry in `results` and never aborts the rest.
    """
    batch, outcomes = await orchestrator.dispatch_batch(
        shop,
        batch_in.tool_id,
        [
            BatchItem(
                input_url=str(item.input_url),
                destination_id=item.destination_id,
                destination_title=item.destination_title,
                variant_id=item.variant_id,
                source_media_id=item.source_media_id,
            )
            for item in batch_in.items
        ],
        name=batch_in.name,
        tool_name=batch_in.tool_name,
        parameters=batch_in.parameters,
        metadata=batch_in.metadata,
        priority=batch_in.priority,
    )
    results = [
        DispatchOutcomeResponse(
            input_url=o.input_url,
            ok=o.ok,
            job=JobResponse.model_validate(o.job) if o.job is not None else None,
            error=o.error,
        )
        for o in outcomes
    ]
    dispatched = sum(1 for r in results if r.ok)
    return BatchDispatchResponse(
        batch=BatchResponse.model_validate(batch),
        results=results,
        dispatched=dispatched,
        rejected=len(results) - dispatched,
    )


@router.get("/", response_model=BatchListResponse)
async def list_batches(
    status: Optional[BatchStatus] = Query(None, description="Filter by batch status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> BatchListResponse:
    batches, total = await orchestrator.list_batches(
        shop, status=status, limit=page_size, offset=(page - 1) * page_size
    )
    return BatchListResponse(
        batches=[BatchResponse.model_validate(b) for b in batches],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{batch_id}", response_model=BatchResponse)
async def get_batch(
    batch_id: UUID,
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> BatchResponse:
    batch = await orchestrator.get_batch(batch_id, shop)
    return BatchResponse.model_validate(batch)


@router.post("/{batch_id}/refresh", response_model=BatchResponse)
async def refresh_batch(
    batch_id: UUID,
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> BatchResponse:
    batch = await orchestrator.refresh_batch(batch_id, shop)
    return BatchResponse.model_validate(batch)
