"""Domain models for orders, collection points, batches and stops."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

ZIP_PATTERN = re.compile(r"\b(\d{5})\b")


def extract_zip(address: str | None) -> str:
    """Return the first 5-digit group in an address, or an empty string."""

    if not address:
        return ""
    match = ZIP_PATTERN.search(address)
    return match.group(1) if match else ""


@dataclass(slots=True, frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(slots=True)
class OrderLine:
    """One order item reduced to what commission accounting needs."""

    farmer_id: Optional[str]
    subtotal: float


@dataclass(slots=True)
class Order:
    """A pending order flattened at the ingestion boundary."""

    order_id: str
    consumer_id: str
    total_amount: float
    delivery_date: date
    street_address: str
    city: str
    state: str
    zip_code: str
    collection_point_id: Optional[str]
    items: List[OrderLine] = field(default_factory=list)
    coordinates: Optional[Coordinates] = None

    @property
    def full_address(self) -> str:
        return f"{self.street_address}, {self.city}, {self.state} {self.zip_code}".strip()


@dataclass(slots=True)
class CollectionPoint:
    """A lead farmer's consolidation location."""

    collection_point_id: str
    address: str
    name: Optional[str] = None
    commission_rate: float = 5.0


@dataclass(slots=True)
class MarketConfig:
    zip_code: str
    target_batch_size: int
    min_batch_size: int
    max_batch_size: int
    max_route_hours: float


@dataclass(slots=True)
class Stop:
    order_id: str
    address: str
    coordinates: Optional[Coordinates] = None
    batch_id: Optional[str] = None
    status: str = "pending"
    sequence_number: Optional[int] = None
    estimated_arrival: Optional[datetime] = None
    address_visible_at: Optional[datetime] = None

    @property
    def zip_code(self) -> str:
        return extract_zip(self.address)


@dataclass(slots=True)
class Batch:
    batch_id: str
    batch_number: int
    delivery_date: date
    collection_point_id: Optional[str]
    zip_codes: List[str]
    status: str = "pending"
    estimated_duration_minutes: Optional[int] = None
    is_subsidized: bool = False
    stops: List[Stop] = field(default_factory=list)
