"""Batch generation orchestration.

One run covers one delivery date: fetch pending orders, geocode them, then
for each collection point cluster the orders into batches, sequence and time
each batch, and persist it. Collection points run concurrently; failures are
contained to the batch (or collection point) they happen in.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from ...config import settings
from ...data.orders_repository import OrderRepository
from ...data.reference_repository import ReferenceRepository
from ...errors import BatchEngineError, BatchPersistenceError
from ...models.domain import MarketConfig, Order, Stop
from ...persistence.database import BatchNumberAllocator, BatchWriter, BatchWriteRequest, PostCommitEvent
from ..cache import CacheRegistry
from ..clustering import BatchClusteringOptimizer, BatchConstraints, BatchPlan
from ..geocoding import GeocodingResolver
from ..notifications import NotificationDispatcher
from ..routing import ArrivalEstimator, DistanceProvider, RouteSequencer, route_start_time

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchSummary:
    batch_id: str
    batch_number: int
    collection_point_id: str
    zip_codes: list[str]
    order_count: int
    is_subsidized: bool
    total_distance_km: float
    estimated_duration_minutes: int
    clustering_method: str
    sequencing_method: str


@dataclass(slots=True)
class RunError:
    collection_point_id: Optional[str]
    message: str
    zip_codes: list[str] = field(default_factory=list)
    stage: Optional[str] = None
    batch_id: Optional[str] = None


@dataclass(slots=True)
class ExcludedOrder:
    order_id: str
    reason: str


@dataclass(slots=True)
class OptimizationRunResult:
    success: bool
    delivery_date: date
    batches_created: int
    total_orders: int
    optimization_method: str
    batches: list[BatchSummary] = field(default_factory=list)
    errors: list[RunError] = field(default_factory=list)
    excluded_orders: list[ExcludedOrder] = field(default_factory=list)
    notifications_sent: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["delivery_date"] = self.delivery_date.isoformat()
        return data


@dataclass(slots=True)
class _CollectionPointOutcome:
    method: Optional[str] = None
    batches: list[BatchSummary] = field(default_factory=list)
    errors: list[RunError] = field(default_factory=list)
    events: list[PostCommitEvent] = field(default_factory=list)


def default_delivery_date(now: datetime | None = None) -> date:
    """Tomorrow, in UTC."""
    current = now or datetime.now(timezone.utc)
    return (current + timedelta(days=1)).date()


def summarize_methods(methods: Sequence[str]) -> str:
    distinct = set(methods)
    if not distinct:
        return "geographic_fallback"
    if len(distinct) == 1:
        return distinct.pop()
    return "mixed"


def split_eligible(orders: Sequence[Order]) -> tuple[list[Order], list[ExcludedOrder]]:
    """Drop orders that cannot be batched (no address, no collection point)."""
    eligible: list[Order] = []
    excluded: list[ExcludedOrder] = []
    for order in orders:
        if not order.street_address:
            excluded.append(ExcludedOrder(order.order_id, "missing delivery address"))
        elif not order.collection_point_id:
            excluded.append(ExcludedOrder(order.order_id, "unknown collection point"))
        else:
            eligible.append(order)
    if excluded:
        logger.warning(f"Skipping {len(excluded)} orders that cannot be batched")
    return eligible, excluded


def group_by_collection_point(orders: Sequence[Order]) -> dict[str, list[Order]]:
    grouped: dict[str, list[Order]] = defaultdict(list)
    for order in orders:
        grouped[order.collection_point_id].append(order)
    return dict(grouped)


class BatchOptimizationService:
    def __init__(
        self,
        client,
        *,
        caches: CacheRegistry | None = None,
        resolver: GeocodingResolver | None = None,
        distance_provider: DistanceProvider | None = None,
        optimizer: BatchClusteringOptimizer | None = None,
        estimator: ArrivalEstimator | None = None,
        dispatcher: NotificationDispatcher | None = None,
        max_parallel_runs: int | None = None,
        deadline_seconds: float | None = None,
    ) -> None:
        self.client = client
        self.caches = caches or CacheRegistry.create(
            geocode_ttl_seconds=settings.geocode_cache_ttl_seconds,
            matrix_ttl_seconds=settings.matrix_cache_ttl_seconds,
        )
        self.orders = OrderRepository(client)
        self.reference = ReferenceRepository(client)
        self.resolver = resolver or GeocodingResolver.from_settings(self.caches.geocode)
        self.distance_provider = distance_provider or DistanceProvider.from_settings(self.caches.matrix)
        self.sequencer = RouteSequencer(self.distance_provider)
        self.optimizer = optimizer or BatchClusteringOptimizer.from_settings()
        self.estimator = estimator or ArrivalEstimator()
        self.dispatcher = dispatcher
        if self.dispatcher is None and settings.notifications_enabled:
            self.dispatcher = NotificationDispatcher(client)
        self.max_parallel_runs = max_parallel_runs or settings.max_parallel_runs
        self.deadline_seconds = deadline_seconds or settings.run_deadline_seconds

    def _geocode(self, orders: Sequence[Order]) -> None:
        coordinates = self.resolver.resolve_many([(order.full_address, order.zip_code) for order in orders])
        for order, coords in zip(orders, coordinates):
            order.coordinates = coords

    def _build_batch(
        self,
        plan: BatchPlan,
        orders_by_id: dict[str, Order],
        collection_point,
        delivery_date: date,
        clustering_method: str,
        writer: BatchWriter,
    ) -> tuple[BatchSummary, list[PostCommitEvent]]:
        plan_orders = [orders_by_id[order_id] for order_id in plan.order_ids]
        stops = [
            Stop(order_id=order.order_id, address=order.full_address, coordinates=order.coordinates)
            for order in plan_orders
        ]

        sequenced = self.sequencer.sequence(stops)
        logger.info(f"Route optimization method: {sequenced.method}")

        route = None
        if len(sequenced.stops) >= 2 and all(stop.coordinates is not None for stop in sequenced.stops):
            route = self.distance_provider.route([stop.coordinates for stop in sequenced.stops])

        timed = self.estimator.estimate(
            sequenced.stops,
            route_start_time(delivery_date),
            route.legs if route is not None else None,
        )
        distance_km = self.estimator.route_distance_km(timed, route)
        duration_minutes = self.estimator.estimate_total_minutes(timed, route)

        outcome = writer.write(
            BatchWriteRequest(
                plan=plan,
                orders=plan_orders,
                stops=timed,
                collection_point=collection_point,
                delivery_date=delivery_date,
                clustering_method=clustering_method,
                sequencing_method=sequenced.method,
                total_distance_km=distance_km,
                estimated_duration_minutes=duration_minutes,
                route=route,
            )
        )
        summary = BatchSummary(
            batch_id=outcome.batch.batch_id,
            batch_number=outcome.batch.batch_number,
            collection_point_id=collection_point.collection_point_id,
            zip_codes=list(plan.zip_codes),
            order_count=len(plan.order_ids),
            is_subsidized=plan.is_subsidized,
            total_distance_km=round(distance_km, 2),
            estimated_duration_minutes=duration_minutes,
            clustering_method=clustering_method,
            sequencing_method=sequenced.method,
        )
        return summary, outcome.events

    def _process_collection_point(
        self,
        collection_point_id: str,
        orders: list[Order],
        delivery_date: date,
        market_configs: Sequence[MarketConfig],
        writer: BatchWriter,
        deadline_reached: threading.Event,
    ) -> _CollectionPointOutcome:
        outcome = _CollectionPointOutcome()
        if deadline_reached.is_set():
            outcome.errors.append(RunError(collection_point_id, "run deadline exceeded", stage="deadline"))
            return outcome
        try:
            collection_point = self.reference.get_collection_point(collection_point_id)
        except Exception as exc:
            logger.error(f"Failed to load collection point {collection_point_id}: {exc}")
            outcome.errors.append(RunError(collection_point_id, f"collection point lookup failed: {exc}"))
            return outcome
        if collection_point is None:
            logger.warning(f"Skipping {len(orders)} orders with unresolvable collection point {collection_point_id}")
            outcome.errors.append(RunError(collection_point_id, "collection point not found"))
            return outcome

        try:
            constraints = BatchConstraints.for_orders(orders, market_configs)
        except ValueError as exc:
            logger.warning(f"Invalid market config for {collection_point_id}, using defaults: {exc}")
            constraints = BatchConstraints.from_settings()

        clustering = self.optimizer.optimize(orders, collection_point, delivery_date, constraints)
        outcome.method = clustering.method
        orders_by_id = {order.order_id: order for order in orders}

        for plan in clustering.plans:
            # Batches already committed stand; nothing new starts after the deadline.
            if deadline_reached.is_set():
                logger.warning(f"Run deadline reached; batch for ZIPs {plan.zip_codes} left for next run")
                outcome.errors.append(
                    RunError(collection_point_id, "run deadline exceeded", list(plan.zip_codes), "deadline")
                )
                continue
            try:
                summary, events = self._build_batch(
                    plan, orders_by_id, collection_point, delivery_date, clustering.method, writer
                )
            except BatchPersistenceError as exc:
                logger.error(f"Batch for ZIPs {plan.zip_codes} failed at {exc.stage}: {exc}")
                outcome.errors.append(
                    RunError(collection_point_id, str(exc), list(plan.zip_codes), exc.stage, exc.batch_id)
                )
                continue
            except Exception as exc:
                logger.exception(f"Error processing batch for ZIPs {plan.zip_codes}")
                outcome.errors.append(RunError(collection_point_id, str(exc), list(plan.zip_codes)))
                continue
            outcome.batches.append(summary)
            outcome.events.extend(events)
        return outcome

    def optimize_batches(self, delivery_date: date | None = None) -> OptimizationRunResult:
        """Generate batches for every unbatched pending order on ``delivery_date``.

        Raises ``OrderFetchError`` when pending orders cannot be read and
        ``BatchEngineError`` when batch numbering cannot be initialised; all
        other failures are reported in the result's ``errors``.

        At the run deadline no new batch is started. A batch already being
        written is finished and reported, and its events are dispatched.
        """
        target_date = delivery_date or default_delivery_date()
        started = time.monotonic()
        logger.info(f"Starting batch optimization for {target_date}")
        self.caches.cleanup()

        orders = self.orders.fetch_pending_orders(target_date)
        if not orders:
            logger.info("No pending orders found")
            return OptimizationRunResult(
                success=True,
                delivery_date=target_date,
                batches_created=0,
                total_orders=0,
                optimization_method=summarize_methods([]),
            )

        eligible, excluded = split_eligible(orders)
        self._geocode(eligible)
        by_collection_point = group_by_collection_point(eligible)
        logger.info(f"Found {len(by_collection_point)} collection points")

        try:
            allocator = BatchNumberAllocator(self.client, target_date)
        except Exception as exc:
            raise BatchEngineError(f"Cannot determine next batch number for {target_date}: {exc}") from exc
        writer = BatchWriter(self.client, allocator)
        market_configs = self.reference.get_market_configs()

        deadline_reached = threading.Event()
        executor = ThreadPoolExecutor(max_workers=self.max_parallel_runs)
        futures: dict[Future, str] = {
            executor.submit(
                self._process_collection_point,
                cp_id,
                cp_orders,
                target_date,
                market_configs,
                writer,
                deadline_reached,
            ): cp_id
            for cp_id, cp_orders in by_collection_point.items()
        }
        remaining = max(0.0, self.deadline_seconds - (time.monotonic() - started))
        _, not_done = wait(futures, timeout=remaining)
        if not_done:
            logger.warning(f"Run deadline reached with {len(not_done)} collection points unfinished")
            deadline_reached.set()
        # Running workers stop at their next batch boundary; queued ones are cancelled.
        executor.shutdown(wait=True, cancel_futures=True)

        methods: list[str] = []
        batches: list[BatchSummary] = []
        errors: list[RunError] = []
        events: list[PostCommitEvent] = []
        for future, cp_id in futures.items():
            if future.cancelled():
                logger.warning(f"Run deadline reached before collection point {cp_id} started; left for next run")
                errors.append(RunError(cp_id, "run deadline exceeded", stage="deadline"))
                continue
            try:
                outcome = future.result()
            except Exception as exc:
                logger.exception(f"Collection point {cp_id} failed")
                errors.append(RunError(cp_id, str(exc)))
                continue
            if outcome.method:
                methods.append(outcome.method)
            batches.extend(outcome.batches)
            errors.extend(outcome.errors)
            events.extend(outcome.events)

        batches.sort(key=lambda summary: summary.batch_number)
        sent = self.dispatcher.dispatch(events) if self.dispatcher is not None else 0

        result = OptimizationRunResult(
            success=True,
            delivery_date=target_date,
            batches_created=len(batches),
            total_orders=len(orders),
            optimization_method=summarize_methods(methods),
            batches=batches,
            errors=errors,
            excluded_orders=excluded,
            notifications_sent=sent,
        )
        logger.info(
            f"Batch generation complete: {result.batches_created} batches, {result.total_orders} orders, "
            f"{len(errors)} errors in {time.monotonic() - started:.1f}s"
        )
        return result
