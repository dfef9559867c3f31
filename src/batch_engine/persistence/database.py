"""Database persistence for delivery batches, stops and their side effects."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Sequence

from ..config import settings
from ..errors import BatchPersistenceError
from ..models.domain import Batch, CollectionPoint, Order, Stop
from ..services.clustering.base import BatchPlan
from ..services.routing.models import DetailedRoute

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PostCommitEvent:
    """A side effect to run after a batch is committed."""

    event_type: str
    recipient_id: str
    payload: dict


@dataclass(slots=True)
class BatchWriteRequest:
    plan: BatchPlan
    orders: list[Order]
    stops: list[Stop]
    collection_point: CollectionPoint
    delivery_date: date
    clustering_method: str
    sequencing_method: str
    total_distance_km: float
    estimated_duration_minutes: int
    route: Optional[DetailedRoute] = None


@dataclass(slots=True)
class WriteOutcome:
    batch: Batch
    events: list[PostCommitEvent] = field(default_factory=list)
    commission_amount: float = 0.0


def box_code(batch_number: int, sequence_number: int) -> str:
    return f"B{batch_number}-{sequence_number}"


def commission_amount(orders: Sequence[Order], lead_farmer_id: str | None, rate_percent: float) -> float:
    """Commission on order lines not produced by the lead farmer's own farm."""
    if not lead_farmer_id:
        return 0.0
    commissionable = sum(
        line.subtotal
        for order in orders
        for line in order.items
        if line.farmer_id and line.farmer_id != lead_farmer_id
    )
    return commissionable * (rate_percent / 100.0)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class BatchNumberAllocator:
    """Hands out batch numbers for one delivery date, continuing after the stored maximum."""

    def __init__(self, client, delivery_date: date) -> None:
        self._lock = threading.Lock()
        self._next = self._load_next(client, delivery_date)

    @staticmethod
    def _load_next(client, delivery_date: date) -> int:
        response = (
            client.table("delivery_batches")
            .select("batch_number")
            .eq("delivery_date", delivery_date.isoformat())
            .order("batch_number", desc=True)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        return int(rows[0]["batch_number"]) + 1 if rows else 1

    def allocate(self) -> int:
        with self._lock:
            number = self._next
            self._next += 1
            return number


class BatchWriter:
    """Materializes one batch plan: batch, metadata, stops, orders, route, payout."""

    def __init__(
        self,
        client,
        allocator: BatchNumberAllocator,
        *,
        visible_stop_count: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.allocator = allocator
        self.visible_stop_count = settings.visible_stop_count if visible_stop_count is None else visible_stop_count
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _insert_batch(self, request: BatchWriteRequest, batch_number: int) -> dict:
        try:
            response = (
                self.client.table("delivery_batches")
                .insert(
                    {
                        "lead_farmer_id": request.collection_point.collection_point_id,
                        "delivery_date": request.delivery_date.isoformat(),
                        "batch_number": batch_number,
                        "status": "pending",
                        "zip_codes": request.plan.zip_codes,
                        "estimated_duration_minutes": request.estimated_duration_minutes,
                    }
                )
                .execute()
            )
        except Exception as exc:
            raise BatchPersistenceError(f"Failed to create batch: {exc}", stage="batch") from exc
        rows = response.data or []
        if not rows:
            raise BatchPersistenceError("Batch insert returned no row", stage="batch")
        return rows[0]

    def _insert_metadata(self, request: BatchWriteRequest, batch_id: str) -> None:
        plan = request.plan
        center = plan.estimated_center
        try:
            self.client.table("batch_metadata").insert(
                {
                    "delivery_batch_id": batch_id,
                    "collection_point_id": request.collection_point.collection_point_id,
                    "collection_point_address": request.collection_point.address,
                    "original_zip_codes": plan.zip_codes,
                    "merged_zips": plan.zip_codes if len(plan.zip_codes) > 1 else None,
                    "order_count": len(plan.order_ids),
                    "is_subsidized": plan.is_subsidized,
                    "ai_optimization_data": {
                        "rationale": plan.rationale,
                        "estimated_center": {"lat": center.latitude, "lng": center.longitude} if center else None,
                        "clustering_method": request.clustering_method,
                        "sequencing_method": request.sequencing_method,
                    },
                }
            ).execute()
        except Exception as exc:
            raise BatchPersistenceError(f"Failed to write batch metadata: {exc}", stage="metadata", batch_id=batch_id) from exc

    def _stamp_stops(self, stops: Sequence[Stop], batch_id: str) -> list[Stop]:
        """Attach the batch id and reveal only the first few addresses."""
        now = self._clock()
        return [
            replace(
                stop,
                batch_id=batch_id,
                status="pending",
                address_visible_at=now if index < self.visible_stop_count else None,
            )
            for index, stop in enumerate(stops)
        ]

    def _insert_stops(self, stops: Sequence[Stop], batch_id: str) -> None:
        rows = [
            {
                "delivery_batch_id": batch_id,
                "order_id": stop.order_id,
                "address": stop.address,
                "latitude": stop.coordinates.latitude if stop.coordinates else None,
                "longitude": stop.coordinates.longitude if stop.coordinates else None,
                "status": stop.status,
                "sequence_number": stop.sequence_number,
                "estimated_arrival": _iso(stop.estimated_arrival),
                "address_visible_at": _iso(stop.address_visible_at),
            }
            for stop in stops
        ]
        try:
            self.client.table("batch_stops").insert(rows).execute()
        except Exception as exc:
            raise BatchPersistenceError(f"Failed to create batch stops: {exc}", stage="stops", batch_id=batch_id) from exc

    def _confirm_orders(
        self, stops: Sequence[Stop], batch_id: str, batch_number: int, confirmed: list[str]
    ) -> dict[str, str]:
        codes: dict[str, str] = {}
        for stop in stops:
            code = box_code(batch_number, stop.sequence_number)
            try:
                (
                    self.client.table("orders")
                    .update({"delivery_batch_id": batch_id, "box_code": code, "status": "confirmed"})
                    .eq("id", stop.order_id)
                    .execute()
                )
            except Exception as exc:
                raise BatchPersistenceError(
                    f"Failed to confirm order {stop.order_id}: {exc}", stage="orders", batch_id=batch_id
                ) from exc
            confirmed.append(stop.order_id)
            codes[stop.order_id] = code
        return codes

    def _rollback(self, batch_id: str, confirmed_order_ids: Sequence[str]) -> None:
        """Undo a partially written batch so its orders are picked up by the next run."""
        for order_id in confirmed_order_ids:
            try:
                (
                    self.client.table("orders")
                    .update({"delivery_batch_id": None, "box_code": None, "status": "pending"})
                    .eq("id", order_id)
                    .execute()
                )
            except Exception as exc:
                logger.error(f"Rollback of batch {batch_id} could not reset order {order_id}: {exc}")
        # Children first; the batch row goes last.
        for table, column in (
            ("batch_stops", "delivery_batch_id"),
            ("batch_metadata", "delivery_batch_id"),
            ("delivery_batches", "id"),
        ):
            try:
                self.client.table(table).delete().eq(column, batch_id).execute()
            except Exception as exc:
                logger.error(f"Rollback of batch {batch_id} could not clear {table}: {exc}")
        logger.warning(f"Rolled back batch {batch_id} ({len(confirmed_order_ids)} orders reset)")

    def _route_data(self, request: BatchWriteRequest, stops: Sequence[Stop]) -> dict[str, Any]:
        route_data: dict[str, Any] = {
            "total_distance_km": round(request.total_distance_km, 2),
            "total_duration_minutes": request.estimated_duration_minutes,
            "stops": [
                {
                    "sequence": stop.sequence_number,
                    "address": stop.address,
                    "latitude": stop.coordinates.latitude if stop.coordinates else None,
                    "longitude": stop.coordinates.longitude if stop.coordinates else None,
                    "estimated_arrival": _iso(stop.estimated_arrival),
                }
                for stop in stops
            ],
            "optimization_method": request.sequencing_method,
            "generated_at": self._clock().isoformat(),
        }
        if request.route is not None:
            route_data["route_geometry"] = request.route.geometry
            route_data["legs"] = [
                {
                    "from_stop": index + 1,
                    "to_stop": index + 2,
                    "distance_km": round(leg.distance_km, 2),
                    "duration_minutes": round(leg.duration_min, 1),
                    "instructions": [
                        {
                            "maneuver": step.maneuver,
                            "instruction": step.instruction,
                            "distance_km": round(step.distance_km, 2),
                            "duration_minutes": round(step.duration_min, 1),
                        }
                        for step in leg.steps
                    ],
                }
                for index, leg in enumerate(request.route.legs)
            ]
        return route_data

    def _insert_route(self, request: BatchWriteRequest, stops: Sequence[Stop], batch_id: str) -> None:
        try:
            self.client.table("routes").insert(
                {
                    "delivery_batch_id": batch_id,
                    "driver_id": None,
                    "route_data": self._route_data(request, stops),
                    "status": "assigned",
                }
            ).execute()
        except Exception as exc:
            logger.error(f"Failed to store route for batch {batch_id}: {exc}")

    def _record_commission(self, request: BatchWriteRequest, batch_number: int) -> float:
        collection_point = request.collection_point
        amount = commission_amount(request.orders, collection_point.collection_point_id, collection_point.commission_rate)
        if amount <= 0:
            return 0.0
        try:
            self.client.table("payouts").insert(
                {
                    "recipient_id": collection_point.collection_point_id,
                    "recipient_type": "lead_farmer_commission",
                    "amount": round(amount, 2),
                    "status": "pending",
                    "description": (
                        f"Lead farmer commission ({collection_point.commission_rate}%) for batch {batch_number}"
                    ),
                    "order_id": request.orders[0].order_id if request.orders else None,
                }
            ).execute()
        except Exception as exc:
            logger.error(f"Failed to record commission for batch {batch_number}: {exc}")
            return 0.0
        logger.info(f"Created lead farmer commission: ${amount:.2f}")
        return amount

    def write(self, request: BatchWriteRequest) -> WriteOutcome:
        """Write one batch.

        Raises ``BatchPersistenceError`` when the batch, its metadata, stops or
        order updates cannot be written; anything already written for the batch
        is rolled back first. Route and payout rows are best effort.
        """
        batch_number = self.allocator.allocate()
        row = self._insert_batch(request, batch_number)
        batch_id = str(row["id"])

        confirmed: list[str] = []
        try:
            self._insert_metadata(request, batch_id)
            stops = self._stamp_stops(request.stops, batch_id)
            self._insert_stops(stops, batch_id)
            codes = self._confirm_orders(stops, batch_id, batch_number, confirmed)
        except BatchPersistenceError:
            self._rollback(batch_id, confirmed)
            raise
        self._insert_route(request, stops, batch_id)
        commission = self._record_commission(request, batch_number)

        events = [
            PostCommitEvent(
                event_type="order_locked",
                recipient_id=order.consumer_id,
                payload={
                    "order_id": order.order_id,
                    "batch_id": batch_id,
                    "box_code": codes.get(order.order_id),
                    "delivery_date": request.delivery_date.isoformat(),
                },
            )
            for order in request.orders
        ]

        batch = Batch(
            batch_id=batch_id,
            batch_number=batch_number,
            delivery_date=request.delivery_date,
            collection_point_id=request.collection_point.collection_point_id,
            zip_codes=list(request.plan.zip_codes),
            status="pending",
            estimated_duration_minutes=request.estimated_duration_minutes,
            is_subsidized=request.plan.is_subsidized,
            stops=stops,
        )
        logger.info(f"Created batch {batch_number} with {len(stops)} stops")
        return WriteOutcome(batch=batch, events=events, commission_amount=commission)
