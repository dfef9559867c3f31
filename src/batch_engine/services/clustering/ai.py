"""AI-assisted batch clustering.

The gateway's reply is untrusted text. It is parsed into ``ParsedBatches``
only when it is valid JSON matching the batch schema and partitions the
input orders exactly; anything else is a ``ParseFailure``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence, Union

import httpx
from pydantic import BaseModel, Field, ValidationError

from ...config import settings
from ...models.domain import CollectionPoint, Order
from .base import BatchConstraints, BatchPlan, ClusteringStrategy, group_by_zip, orders_center
from .gateway import AIGatewayError, ChatCompletionsGateway

logger = logging.getLogger(__name__)

FENCED_BLOCK = re.compile(r"```(?:json)?\s*\n(.*?)\n?```", re.DOTALL)


class CenterModel(BaseModel):
    lat: float
    lng: float


class AIBatchModel(BaseModel):
    batch_id: Optional[int] = None
    order_ids: List[str] = Field(min_length=1)
    zip_codes: List[str] = Field(default_factory=list)
    estimated_center: Optional[CenterModel] = None
    rationale: str = ""
    is_subsidized: bool = False


class AIOptimizationModel(BaseModel):
    batches: List[AIBatchModel] = Field(min_length=1)
    total_orders: Optional[int] = None
    total_batches: Optional[int] = None
    subsidized_count: Optional[int] = None


@dataclass(slots=True)
class ParsedBatches:
    plans: list[BatchPlan]


@dataclass(slots=True)
class ParseFailure:
    reason: str


ParseResult = Union[ParsedBatches, ParseFailure]


def extract_json_text(content: str) -> str:
    match = FENCED_BLOCK.search(content)
    return (match.group(1) if match else content).strip()


def parse_ai_response(content: str, orders: Sequence[Order], constraints: BatchConstraints) -> ParseResult:
    """Validate a completion against the schema and the input order set."""

    try:
        payload = json.loads(extract_json_text(content))
    except json.JSONDecodeError as exc:
        return ParseFailure(f"invalid JSON: {exc}")

    try:
        model = AIOptimizationModel.model_validate(payload)
    except ValidationError as exc:
        return ParseFailure(f"schema mismatch: {exc.error_count()} errors")

    by_id = {order.order_id: order for order in orders}
    seen: set[str] = set()
    plans: list[BatchPlan] = []
    for batch in model.batches:
        unknown = [order_id for order_id in batch.order_ids if order_id not in by_id]
        if unknown:
            return ParseFailure(f"unknown order ids: {unknown[:5]}")
        duplicates = seen.intersection(batch.order_ids) or (
            {oid for oid in batch.order_ids if batch.order_ids.count(oid) > 1}
        )
        if duplicates:
            return ParseFailure(f"order ids assigned more than once: {sorted(duplicates)[:5]}")
        if len(batch.order_ids) > constraints.maximum:
            return ParseFailure(f"batch of {len(batch.order_ids)} exceeds maximum {constraints.maximum}")
        seen.update(batch.order_ids)

        batch_orders = [by_id[order_id] for order_id in batch.order_ids]
        plans.append(
            BatchPlan(
                order_ids=list(batch.order_ids),
                zip_codes=list(group_by_zip(batch_orders)),
                rationale=batch.rationale,
                is_subsidized=constraints.is_subsidized(len(batch.order_ids)),
                estimated_center=orders_center(batch_orders),
            )
        )

    missing = set(by_id) - seen
    if missing:
        return ParseFailure(f"{len(missing)} orders not assigned to any batch")
    return ParsedBatches(plans=plans)


def build_prompt(
    orders: Sequence[Order],
    collection_point: CollectionPoint,
    delivery_date: date,
    constraints: BatchConstraints,
    sample_size: int | None = None,
) -> str:
    sample = orders[: sample_size or settings.ai_order_sample_size]
    zip_lines = "\n".join(
        f"- ZIP {zip_code}: {len(zip_orders)} orders" for zip_code, zip_orders in group_by_zip(orders).items()
    )
    order_lines = "\n".join(
        f"Order {order.order_id}: {order.street_address}, {order.city} {order.zip_code}" for order in sample
    )
    schema = {
        "batches": [
            {
                "batch_id": 1,
                "order_ids": ["order-uuid-1", "order-uuid-2"],
                "zip_codes": ["10001"],
                "estimated_center": {"lat": 40.75, "lng": -73.99},
                "rationale": "Single ZIP with optimal size",
                "is_subsidized": False,
            }
        ],
        "total_orders": len(orders),
        "total_batches": 1,
        "subsidized_count": 0,
    }
    return f"""You are a logistics optimization AI. Given the following delivery data:

COLLECTION POINT: {collection_point.address}
DELIVERY DATE: {delivery_date.isoformat()}

ZIP CODE DATA:
{zip_lines}

ORDER LOCATIONS:
{order_lines}

CONSTRAINTS:
1. Target batch size: {constraints.target} orders (can range {constraints.minimum}-{constraints.maximum})
2. Max round trip time from collection point: {constraints.max_route_hours} hours
3. Prioritize geographic proximity over strict ZIP boundaries
4. Minimize number of batches
5. Flag batches <{constraints.minimum} orders as "subsidized"
6. Every order id must appear in exactly one batch

OUTPUT FORMAT (JSON):
{json.dumps(schema, indent=2)}

Optimize the batching strategy and return ONLY valid JSON."""


class AIClustering(ClusteringStrategy):
    method = "ai"

    def __init__(self, gateway: ChatCompletionsGateway, *, sample_size: int | None = None) -> None:
        self.gateway = gateway
        self.sample_size = sample_size

    def generate(
        self,
        *,
        orders: Sequence[Order],
        collection_point: CollectionPoint,
        delivery_date: date,
        constraints: BatchConstraints,
    ) -> Optional[list[BatchPlan]]:
        prompt = build_prompt(orders, collection_point, delivery_date, constraints, self.sample_size)
        try:
            content = self.gateway.complete(prompt)
        except httpx.HTTPStatusError as exc:
            logger.error(f"AI optimization failed with status {exc.response.status_code}")
            return None
        except (httpx.HTTPError, AIGatewayError, ValueError) as exc:
            logger.warning(f"AI optimization failed: {exc}")
            return None

        result = parse_ai_response(content, orders, constraints)
        if isinstance(result, ParseFailure):
            logger.warning(f"AI response rejected: {result.reason}")
            return None
        logger.info(f"AI optimization successful: {len(result.plans)} batches")
        return result.plans
