"""Base classes for batch clustering strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import CollectionPoint, Coordinates, MarketConfig, Order
from ..geospatial import centroid


@dataclass(slots=True, frozen=True)
class BatchConstraints:
    target: int = 37
    minimum: int = 30
    maximum: int = 45
    max_route_hours: float = 7.5

    def __post_init__(self) -> None:
        if not (1 <= self.minimum <= self.target <= self.maximum):
            raise ValueError(
                f"Batch sizes must satisfy 1 <= min <= target <= max "
                f"(got min={self.minimum}, target={self.target}, max={self.maximum})"
            )

    @classmethod
    def from_settings(cls) -> "BatchConstraints":
        return cls(
            target=settings.target_batch_size,
            minimum=settings.min_batch_size,
            maximum=settings.max_batch_size,
            max_route_hours=settings.max_route_hours,
        )

    @classmethod
    def for_orders(cls, orders: Sequence[Order], market_configs: Sequence[MarketConfig]) -> "BatchConstraints":
        """First market config covering one of the orders' ZIPs, else defaults."""
        zips = {order.zip_code for order in orders}
        config = next((mc for mc in market_configs if mc.zip_code in zips), None)
        if config is None:
            return cls.from_settings()
        return cls(
            target=config.target_batch_size,
            minimum=config.min_batch_size,
            maximum=config.max_batch_size,
            max_route_hours=config.max_route_hours,
        )

    def is_subsidized(self, size: int) -> bool:
        return size < self.minimum


@dataclass(slots=True)
class BatchPlan:
    """One proposed batch before routing and persistence."""

    order_ids: list[str]
    zip_codes: list[str]
    rationale: str
    is_subsidized: bool
    estimated_center: Optional[Coordinates] = None

    def __len__(self) -> int:
        return len(self.order_ids)


@dataclass(slots=True)
class ClusteringResult:
    plans: list[BatchPlan]
    method: str
    metadata: dict = field(default_factory=dict)

    @property
    def subsidized_count(self) -> int:
        return sum(1 for plan in self.plans if plan.is_subsidized)

    def order_ids(self) -> list[str]:
        return [order_id for plan in self.plans for order_id in plan.order_ids]


def group_by_zip(orders: Sequence[Order]) -> dict[str, list[Order]]:
    """ZIP -> orders, in first-seen order."""
    grouped: dict[str, list[Order]] = {}
    for order in orders:
        grouped.setdefault(order.zip_code, []).append(order)
    return grouped


def orders_center(orders: Sequence[Order]) -> Optional[Coordinates]:
    return centroid([order.coordinates for order in orders if order.coordinates is not None])


class ClusteringStrategy(ABC):
    """Contract for batch clustering implementations."""

    method: str

    @abstractmethod
    def generate(
        self,
        *,
        orders: Sequence[Order],
        collection_point: CollectionPoint,
        delivery_date: date,
        constraints: BatchConstraints,
    ) -> Optional[list[BatchPlan]]:
        """Return batch plans, or None when this strategy cannot decide."""
        raise NotImplementedError
