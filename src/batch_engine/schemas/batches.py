"""Batch optimization request/response schemas."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class BatchOptimizationRequest(BaseModel):
    delivery_date: Optional[str] = Field(
        default=None,
        description="Delivery date (YYYY-MM-DD). Defaults to tomorrow (UTC).",
    )


class BatchSummaryModel(BaseModel):
    batch_id: str
    batch_number: int
    collection_point_id: str
    zip_codes: List[str]
    order_count: int
    is_subsidized: bool
    total_distance_km: float
    estimated_duration_minutes: int
    clustering_method: str
    sequencing_method: str


class RunErrorModel(BaseModel):
    collection_point_id: Optional[str] = None
    message: str
    zip_codes: List[str] = Field(default_factory=list)
    stage: Optional[str] = None
    batch_id: Optional[str] = None


class ExcludedOrderModel(BaseModel):
    order_id: str
    reason: str


class BatchOptimizationResponse(BaseModel):
    success: bool
    delivery_date: str
    batches_created: int
    total_orders: int
    optimization_method: Literal["ai", "geographic_fallback", "mixed"]
    batches: List[BatchSummaryModel]
    errors: List[RunErrorModel]
    excluded_orders: List[ExcludedOrderModel] = Field(default_factory=list)
    notifications_sent: int = 0
