from __future__ import annotations

from datetime import date
from typing import Any

import pytest

from batch_engine.data.reference_repository import load_zip_centroids
from batch_engine.models.domain import Coordinates, Order, OrderLine


class FakeResponse:
    def __init__(self, data: list[dict]) -> None:
        self.data = data


class FakeQuery:
    """Just enough of the PostgREST builder for the repositories under test."""

    def __init__(self, client: "FakeSupabase", table: str) -> None:
        self.client = client
        self.table_name = table
        self.operation = "select"
        self.payload: Any = None
        self.filters: list[tuple[str, Any]] = []
        self.order_by: tuple[str, bool] | None = None
        self.row_limit: int | None = None

    def select(self, _columns: str, **_kwargs) -> "FakeQuery":
        self.operation = "select"
        return self

    def insert(self, payload) -> "FakeQuery":
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, payload: dict) -> "FakeQuery":
        self.operation = "update"
        self.payload = payload
        return self

    def delete(self) -> "FakeQuery":
        self.operation = "delete"
        return self

    def eq(self, column: str, value) -> "FakeQuery":
        self.filters.append((column, value))
        return self

    def is_(self, column: str, value) -> "FakeQuery":
        self.filters.append((column, None if value == "null" else value))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.order_by = (column, desc)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.row_limit = count
        return self

    def _matches(self, row: dict) -> bool:
        return all(row.get(column) == value for column, value in self.filters)

    def execute(self) -> FakeResponse:
        self.client.calls.append((self.table_name, self.operation, self.payload))
        self.client.maybe_fail(self.table_name, self.operation)
        rows = self.client.tables.setdefault(self.table_name, [])

        if self.operation == "insert":
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = []
            for row in new_rows:
                stored = dict(row)
                stored.setdefault("id", self.client.next_id(self.table_name))
                rows.append(stored)
                inserted.append(stored)
            return FakeResponse(inserted)

        matched = [row for row in rows if self._matches(row)]
        if self.operation == "delete":
            self.client.tables[self.table_name] = [row for row in rows if not self._matches(row)]
            return FakeResponse(matched)
        if self.operation == "update":
            for row in matched:
                row.update(self.payload)
            return FakeResponse(matched)

        if self.order_by is not None:
            column, desc = self.order_by
            matched = sorted(matched, key=lambda row: row.get(column), reverse=desc)
        if self.row_limit is not None:
            matched = matched[: self.row_limit]
        return FakeResponse(matched)


class FakeFunctions:
    def __init__(self) -> None:
        self.invocations: list[tuple[str, dict]] = []
        self.fail_for: set[str] = set()

    def invoke(self, function_name: str, invoke_options: dict) -> dict:
        body = invoke_options["body"]
        if body["recipient_id"] in self.fail_for:
            raise RuntimeError("edge function unavailable")
        self.invocations.append((function_name, body))
        return {"ok": True}


class FakeSupabase:
    def __init__(self, tables: dict[str, list[dict]] | None = None) -> None:
        self.tables: dict[str, list[dict]] = {name: list(rows) for name, rows in (tables or {}).items()}
        self.calls: list[tuple[str, str, Any]] = []
        self.functions = FakeFunctions()
        self._failures: dict[tuple[str, str], list[Exception | None]] = {}
        self._ids: dict[str, int] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def next_id(self, table: str) -> str:
        self._ids[table] = self._ids.get(table, 0) + 1
        return f"{table}-{self._ids[table]}"

    def fail(
        self, table: str, operation: str, times: int = 1, exc: Exception | None = None, *, after: int = 0
    ) -> None:
        """Let ``after`` executions of (table, operation) succeed, then make the next ``times`` raise."""
        error = exc or RuntimeError(f"{table} {operation} failed")
        self._failures.setdefault((table, operation), []).extend([None] * after + [error] * times)

    def maybe_fail(self, table: str, operation: str) -> None:
        pending = self._failures.get((table, operation))
        if pending:
            error = pending.pop(0)
            if error is not None:
                raise error

    def calls_for(self, table: str, operation: str | None = None) -> list[Any]:
        return [payload for name, op, payload in self.calls if name == table and (operation is None or op == operation)]


def make_order(
    order_id: str,
    zip_code: str = "10001",
    *,
    street: str | None = None,
    collection_point_id: str | None = "lead-1",
    coordinates: Coordinates | None = None,
    items: list[OrderLine] | None = None,
    delivery_date: date = date(2025, 1, 15),
) -> Order:
    return Order(
        order_id=order_id,
        consumer_id=f"consumer-{order_id}",
        total_amount=25.0,
        delivery_date=delivery_date,
        street_address=f"{order_id} Main St" if street is None else street,
        city="New York",
        state="NY",
        zip_code=zip_code,
        collection_point_id=collection_point_id,
        items=items or [],
        coordinates=coordinates,
    )


def order_row(
    order_id: str,
    zip_code: str = "10001",
    *,
    lead_farmer_id: str | None = "lead-1",
    farmer_id: str = "farmer-2",
    street: str | None = None,
    subtotal: float = 20.0,
    delivery_date: str = "2025-01-15",
) -> dict:
    """A pending order row shaped like the nested PostgREST select."""
    return {
        "id": order_id,
        "consumer_id": f"consumer-{order_id}",
        "total_amount": "25.00",
        "delivery_date": delivery_date,
        "status": "pending",
        "delivery_batch_id": None,
        "profiles": {
            "street_address": f"{order_id} Main St" if street is None else street,
            "city": "New York",
            "state": "NY",
            "zip_code": zip_code,
        },
        "order_items": [
            {
                "product_id": f"product-{order_id}",
                "subtotal": subtotal,
                "products": {
                    "farm_profile_id": "farm-1",
                    "farm_profiles": {
                        "farmer_id": farmer_id,
                        "profiles": {"collection_point_lead_farmer_id": lead_farmer_id},
                    },
                },
            }
        ],
    }


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture(autouse=True)
def clear_zip_centroid_cache():
    load_zip_centroids.cache_clear()
    yield
    load_zip_centroids.cache_clear()
