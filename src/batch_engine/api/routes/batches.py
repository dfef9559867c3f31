"""Batch generation endpoints."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...db.supabase import get_supabase_client
from ...errors import OrderFetchError
from ...schemas.batches import BatchOptimizationRequest, BatchOptimizationResponse
from ...services.batching import BatchOptimizationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/batches", tags=["batches"])


def get_batch_service(request: Request) -> BatchOptimizationService:
    """One service per app so the caches outlive individual runs."""
    service = getattr(request.app.state, "batch_service", None)
    if service is None:
        service = BatchOptimizationService(get_supabase_client(), caches=request.app.state.caches)
        request.app.state.batch_service = service
    return service


def _parse_delivery_date(value: str | None) -> date | None:
    if value is None or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid delivery_date '{value}', expected YYYY-MM-DD") from exc


@router.post("/optimize", response_model=BatchOptimizationResponse, status_code=status.HTTP_200_OK)
def optimize(
    payload: BatchOptimizationRequest | None = None,
    service: BatchOptimizationService = Depends(get_batch_service),
) -> BatchOptimizationResponse:
    try:
        delivery_date = _parse_delivery_date(payload.delivery_date if payload else None)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        result = service.optimize_batches(delivery_date)
    except OrderFetchError as exc:
        logger.error(f"Batch optimization aborted: {exc}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception(f"Error optimizing batches: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to optimize batches: {exc}",
        ) from exc
    return BatchOptimizationResponse.model_validate(result.to_dict())
