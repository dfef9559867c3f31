"""Pending-order ingestion.

Rows arrive from PostgREST with nested, optionally-array relations
(order items -> products -> farm profiles -> farmer profiles). They are
flattened here into ``Order`` records so nothing downstream sees the raw shape.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from ..errors import OrderFetchError
from ..models.domain import Order, OrderLine

logger = logging.getLogger(__name__)

PENDING_ORDERS_SELECT = """
    id,
    consumer_id,
    total_amount,
    delivery_date,
    profiles!orders_consumer_id_fkey(
        street_address,
        city,
        state,
        zip_code
    ),
    order_items(
        product_id,
        subtotal,
        products(
            farm_profile_id,
            farm_profiles(
                farmer_id,
                profiles!farm_profiles_farmer_id_fkey(
                    collection_point_lead_farmer_id
                )
            )
        )
    )
"""


def _first(value: Any) -> Optional[dict]:
    """Collapse a relation that may be a list, a single object, or null."""
    if isinstance(value, list):
        return value[0] if value else None
    if isinstance(value, dict):
        return value
    return None


def _coerce_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Unable to parse amount '{value}', treating as 0")
        return 0.0


def _coerce_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _farm_profile(item: dict) -> Optional[dict]:
    product = _first(item.get("products"))
    if not product:
        return None
    return _first(product.get("farm_profiles"))


def _resolve_collection_point(items: list[dict]) -> Optional[str]:
    """The first item's lead farmer decides the order's collection point."""
    if not items:
        return None
    farm_profile = _farm_profile(items[0])
    if not farm_profile:
        return None
    farmer_profile = _first(farm_profile.get("profiles"))
    if not farmer_profile:
        return None
    return farmer_profile.get("collection_point_lead_farmer_id") or farm_profile.get("farmer_id")


def normalize_order(row: dict) -> Order:
    """Flatten one nested order row."""

    profile = _first(row.get("profiles")) or {}
    raw_items = row.get("order_items")
    items = raw_items if isinstance(raw_items, list) else []

    lines = []
    for item in items:
        farm_profile = _farm_profile(item) or {}
        lines.append(OrderLine(farmer_id=farm_profile.get("farmer_id"), subtotal=_coerce_float(item.get("subtotal"))))

    return Order(
        order_id=str(row["id"]),
        consumer_id=str(row.get("consumer_id") or ""),
        total_amount=_coerce_float(row.get("total_amount")),
        delivery_date=_coerce_date(row["delivery_date"]),
        street_address=(profile.get("street_address") or "").strip(),
        city=(profile.get("city") or "").strip(),
        state=(profile.get("state") or "").strip(),
        zip_code=(profile.get("zip_code") or "").strip(),
        collection_point_id=_resolve_collection_point(items),
        items=lines,
    )


class OrderRepository:
    """Reads unbatched pending orders from the order store."""

    def __init__(self, client) -> None:
        self.client = client

    def fetch_pending_orders(self, delivery_date: date) -> list[Order]:
        if self.client is None:
            raise OrderFetchError("Order store is not configured (Supabase credentials missing).")
        try:
            response = (
                self.client.table("orders")
                .select(PENDING_ORDERS_SELECT)
                .eq("status", "pending")
                .eq("delivery_date", delivery_date.isoformat())
                .is_("delivery_batch_id", "null")
                .execute()
            )
        except Exception as exc:
            raise OrderFetchError(f"Failed to read pending orders for {delivery_date}: {exc}") from exc

        orders: list[Order] = []
        for row in response.data or []:
            try:
                orders.append(normalize_order(row))
            except (KeyError, ValueError) as exc:
                logger.warning(f"Skipping malformed order row {row.get('id')}: {exc}")
        logger.info(f"Fetched {len(orders)} pending orders for {delivery_date}")
        return orders
