"""Batch clustering with an AI attempt and a deterministic fallback."""

from __future__ import annotations

import logging
from datetime import date
from typing import Sequence

from ...config import settings
from ...models.domain import CollectionPoint, Order
from .ai import AIClustering
from .base import BatchConstraints, ClusteringResult, ClusteringStrategy
from .gateway import ChatCompletionsGateway
from .geographic import GeographicClustering

logger = logging.getLogger(__name__)


class BatchClusteringOptimizer:
    """Partitions one collection point's orders into batch plans.

    AI unavailability never blocks batching: any failure of the primary
    strategy falls through to the geographic one.
    """

    def __init__(
        self,
        primary: ClusteringStrategy | None = None,
        fallback: ClusteringStrategy | None = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback or GeographicClustering()

    @classmethod
    def from_settings(cls) -> "BatchClusteringOptimizer":
        if not settings.ai_api_key:
            logger.info("No AI gateway key - batches will use geographic clustering")
            return cls()
        return cls(primary=AIClustering(ChatCompletionsGateway(settings.ai_api_key)))

    def optimize(
        self,
        orders: Sequence[Order],
        collection_point: CollectionPoint,
        delivery_date: date,
        constraints: BatchConstraints | None = None,
    ) -> ClusteringResult:
        constraints = constraints or BatchConstraints.from_settings()
        if not orders:
            return ClusteringResult(plans=[], method=self.fallback.method)

        kwargs = dict(
            orders=orders,
            collection_point=collection_point,
            delivery_date=delivery_date,
            constraints=constraints,
        )
        plans = None
        method = self.fallback.method
        if self.primary is not None:
            try:
                plans = self.primary.generate(**kwargs)
            except Exception:
                logger.exception(f"Primary clustering strategy '{self.primary.method}' raised; using fallback")
                plans = None
            if plans is not None:
                method = self.primary.method

        if plans is None:
            plans = self.fallback.generate(**kwargs)

        result = ClusteringResult(
            plans=plans,
            method=method,
            metadata={
                "target_batch_size": constraints.target,
                "min_batch_size": constraints.minimum,
                "max_batch_size": constraints.maximum,
            },
        )
        logger.info(
            f"Collection point {collection_point.collection_point_id}: {len(orders)} orders -> "
            f"{len(result.plans)} batches via {method} ({result.subsidized_count} subsidized)"
        )
        return result
