"""Deterministic ZIP-based batching."""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Sequence

from ...models.domain import CollectionPoint, Order
from .base import BatchConstraints, BatchPlan, ClusteringStrategy, group_by_zip, orders_center

logger = logging.getLogger(__name__)


class GeographicClustering(ClusteringStrategy):
    """One batch per ZIP; oversized ZIPs are cut into target-sized slices."""

    method = "geographic_fallback"

    def generate(
        self,
        *,
        orders: Sequence[Order],
        collection_point: CollectionPoint,
        delivery_date: date,
        constraints: BatchConstraints,
    ) -> list[BatchPlan]:
        logger.info(f"Using fallback geographic batching for {len(orders)} orders")
        plans: list[BatchPlan] = []

        for zip_code, zip_orders in group_by_zip(orders).items():
            if len(zip_orders) <= constraints.maximum:
                plans.append(
                    BatchPlan(
                        order_ids=[order.order_id for order in zip_orders],
                        zip_codes=[zip_code],
                        rationale=f"Single ZIP batch with {len(zip_orders)} orders",
                        is_subsidized=constraints.is_subsidized(len(zip_orders)),
                        estimated_center=orders_center(zip_orders),
                    )
                )
                continue

            slice_count = math.ceil(len(zip_orders) / constraints.target)
            for index in range(slice_count):
                chunk = zip_orders[index * constraints.target : (index + 1) * constraints.target]
                plans.append(
                    BatchPlan(
                        order_ids=[order.order_id for order in chunk],
                        zip_codes=[zip_code],
                        rationale=f"ZIP split batch {index + 1}/{slice_count}",
                        is_subsidized=constraints.is_subsidized(len(chunk)),
                        estimated_center=orders_center(chunk),
                    )
                )

        return plans
