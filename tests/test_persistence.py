from datetime import date, datetime, timezone

import pytest

from batch_engine.errors import BatchPersistenceError
from batch_engine.models.domain import CollectionPoint, Coordinates, OrderLine, Stop
from batch_engine.persistence.database import (
    BatchNumberAllocator,
    BatchWriter,
    BatchWriteRequest,
    box_code,
    commission_amount,
)
from batch_engine.services.clustering.base import BatchPlan
from batch_engine.services.routing.models import DetailedRoute, RouteLeg, RouteStep

from conftest import FakeSupabase, make_order

DELIVERY = date(2025, 1, 15)
NOW = datetime(2025, 1, 14, 22, 0, tzinfo=timezone.utc)
LEAD = CollectionPoint(collection_point_id="lead-1", address="1 Farm Rd", commission_rate=5.0)


def _request(count: int, route: DetailedRoute | None = None) -> BatchWriteRequest:
    orders = [
        make_order(
            f"O{i}",
            items=[OrderLine(farmer_id="lead-1", subtotal=10.0), OrderLine(farmer_id="farmer-2", subtotal=20.0)],
        )
        for i in range(count)
    ]
    stops = [
        Stop(
            order_id=order.order_id,
            address=order.full_address,
            coordinates=Coordinates(40.70 + i / 100, -74.0),
            sequence_number=i + 1,
            estimated_arrival=NOW,
        )
        for i, order in enumerate(orders)
    ]
    plan = BatchPlan(
        order_ids=[order.order_id for order in orders],
        zip_codes=["10001"],
        rationale="Single ZIP batch",
        is_subsidized=count < 30,
    )
    return BatchWriteRequest(
        plan=plan,
        orders=orders,
        stops=stops,
        collection_point=LEAD,
        delivery_date=DELIVERY,
        clustering_method="geographic_fallback",
        sequencing_method="osrm_with_2opt",
        total_distance_km=4.2,
        estimated_duration_minutes=75,
        route=route,
    )


def _writer(client: FakeSupabase) -> BatchWriter:
    return BatchWriter(client, BatchNumberAllocator(client, DELIVERY), visible_stop_count=3, clock=lambda: NOW)


def test_box_code_format():
    assert box_code(12, 3) == "B12-3"


def test_commission_excludes_lead_farmers_own_lines():
    orders = [
        make_order("a", items=[OrderLine("lead-1", 40.0), OrderLine("farmer-2", 60.0)]),
        make_order("b", items=[OrderLine("farmer-3", 40.0), OrderLine(None, 99.0)]),
    ]

    assert commission_amount(orders, "lead-1", 5.0) == pytest.approx(5.0)
    assert commission_amount(orders, None, 5.0) == 0.0


def test_allocator_continues_after_stored_maximum():
    client = FakeSupabase(
        {
            "delivery_batches": [
                {"id": "x", "delivery_date": "2025-01-15", "batch_number": 4},
                {"id": "y", "delivery_date": "2025-01-15", "batch_number": 7},
                {"id": "z", "delivery_date": "2025-01-16", "batch_number": 40},
            ]
        }
    )
    allocator = BatchNumberAllocator(client, DELIVERY)

    assert [allocator.allocate(), allocator.allocate()] == [8, 9]
    assert BatchNumberAllocator(FakeSupabase(), DELIVERY).allocate() == 1


@pytest.mark.parametrize("count, visible", [(1, 1), (2, 2), (3, 3), (5, 3)])
def test_only_first_three_addresses_are_visible(count, visible):
    client = FakeSupabase()

    outcome = _writer(client).write(_request(count))

    stored = client.tables["batch_stops"]
    assert sum(1 for row in stored if row["address_visible_at"] is not None) == visible
    assert [row["address_visible_at"] is not None for row in stored] == [i < 3 for i in range(count)]
    assert sum(1 for stop in outcome.batch.stops if stop.address_visible_at is not None) == visible


def test_write_confirms_orders_with_box_codes():
    client = FakeSupabase({"orders": [{"id": f"O{i}", "status": "pending"} for i in range(3)]})

    outcome = _writer(client).write(_request(3))

    batch_row = client.tables["delivery_batches"][0]
    assert batch_row["batch_number"] == 1
    assert batch_row["status"] == "pending"
    assert batch_row["estimated_duration_minutes"] == 75
    assert batch_row["lead_farmer_id"] == "lead-1"
    assert [row["box_code"] for row in client.tables["orders"]] == ["B1-1", "B1-2", "B1-3"]
    assert all(row["status"] == "confirmed" for row in client.tables["orders"])
    assert all(row["delivery_batch_id"] == outcome.batch.batch_id for row in client.tables["orders"])
    assert [stop.batch_id for stop in outcome.batch.stops] == [outcome.batch.batch_id] * 3


def test_write_emits_one_order_locked_event_per_order():
    client = FakeSupabase()

    outcome = _writer(client).write(_request(2))

    assert [event.event_type for event in outcome.events] == ["order_locked", "order_locked"]
    assert [event.recipient_id for event in outcome.events] == ["consumer-O0", "consumer-O1"]
    assert outcome.events[1].payload["box_code"] == "B1-2"


def test_write_records_commission_payout():
    client = FakeSupabase()

    outcome = _writer(client).write(_request(2))

    assert outcome.commission_amount == pytest.approx(2.0)
    payout = client.tables["payouts"][0]
    assert payout["recipient_id"] == "lead-1"
    assert payout["amount"] == pytest.approx(2.0)
    assert payout["status"] == "pending"


def test_route_row_includes_legs_when_detailed_route_available():
    route = DetailedRoute(
        distance_km=4.2,
        duration_min=20.0,
        geometry="encoded",
        legs=[RouteLeg(4.2, 20.0, [RouteStep("depart", "depart Broadway", 4.2, 20.0)])],
    )
    client = FakeSupabase()

    _writer(client).write(_request(2, route))

    route_data = client.tables["routes"][0]["route_data"]
    assert route_data["route_geometry"] == "encoded"
    assert route_data["legs"][0]["instructions"][0]["instruction"] == "depart Broadway"
    assert route_data["optimization_method"] == "osrm_with_2opt"


def test_stop_insert_failure_raises_scoped_error():
    client = FakeSupabase()
    client.fail("batch_stops", "insert")

    with pytest.raises(BatchPersistenceError) as excinfo:
        _writer(client).write(_request(2))

    assert excinfo.value.stage == "stops"
    assert excinfo.value.batch_id == "delivery_batches-1"
    assert client.calls_for("orders", "update") == []
    assert client.tables["delivery_batches"] == []
    assert client.tables["batch_metadata"] == []


def test_batch_insert_failure_raises_before_other_writes():
    client = FakeSupabase()
    client.fail("delivery_batches", "insert")

    with pytest.raises(BatchPersistenceError) as excinfo:
        _writer(client).write(_request(2))

    assert excinfo.value.stage == "batch"
    assert client.calls_for("batch_metadata") == []


def test_route_and_payout_failures_do_not_abort_batch():
    client = FakeSupabase()
    client.fail("routes", "insert")
    client.fail("payouts", "insert")

    outcome = _writer(client).write(_request(2))

    assert outcome.commission_amount == 0.0
    assert len(client.tables["batch_stops"]) == 2


def test_order_confirmation_failure_rolls_back_the_batch():
    client = FakeSupabase({"orders": [{"id": f"O{i}", "status": "pending", "delivery_batch_id": None} for i in range(3)]})
    client.fail("orders", "update", after=1)

    with pytest.raises(BatchPersistenceError) as excinfo:
        _writer(client).write(_request(3))

    assert excinfo.value.stage == "orders"
    assert client.tables["delivery_batches"] == []
    assert client.tables["batch_metadata"] == []
    assert client.tables["batch_stops"] == []
    assert all(row["status"] == "pending" for row in client.tables["orders"])
    assert all(row["delivery_batch_id"] is None for row in client.tables["orders"])
    assert all(row.get("box_code") is None for row in client.tables["orders"])
    assert client.calls_for("routes") == []
    assert client.calls_for("payouts") == []


def test_rollback_failures_are_logged_and_original_error_raised(caplog):
    client = FakeSupabase()
    client.fail("batch_metadata", "insert")
    client.fail("delivery_batches", "delete")

    with caplog.at_level("ERROR"), pytest.raises(BatchPersistenceError) as excinfo:
        _writer(client).write(_request(2))

    assert excinfo.value.stage == "metadata"
    assert "could not clear delivery_batches" in caplog.text
    assert len(client.tables["delivery_batches"]) == 1
