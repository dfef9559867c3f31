"""Read-only reference data: collection points, market configs, ZIP centroids."""

from __future__ import annotations

import csv
import functools
import logging
from pathlib import Path
from typing import Optional

from ..config import settings
from ..models.domain import CollectionPoint, Coordinates, MarketConfig

logger = logging.getLogger(__name__)

# Demo-market ZIP centroids (Manhattan). Extend with settings.zip_centroids_file.
ZIP_CENTROIDS: dict[str, tuple[float, float]] = {
    "10001": (40.7506, -73.9971),
    "10002": (40.7157, -73.9860),
    "10003": (40.7320, -73.9875),
    "10004": (40.6990, -74.0177),
    "10005": (40.7056, -74.0087),
    "10006": (40.7093, -74.0120),
    "10007": (40.7135, -74.0078),
    "10009": (40.7264, -73.9779),
    "10010": (40.7392, -73.9817),
    "10011": (40.7406, -74.0008),
}
DEFAULT_REGION_CENTER = (40.7580, -73.9855)


def _coerce_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value.replace(",", ""))
    except ValueError as exc:
        raise ValueError(f"Unable to parse float from value '{value}'") from exc


@functools.lru_cache(maxsize=1)
def load_zip_centroids(source: Optional[Path] = None) -> dict[str, Coordinates]:
    """Built-in centroids merged with the optional CSV file."""

    table = {zip_code: Coordinates(lat, lon) for zip_code, (lat, lon) in ZIP_CENTROIDS.items()}
    csv_path = source or settings.zip_centroids_file
    if csv_path is None:
        return table
    if not csv_path.exists():
        logger.warning(f"ZIP centroid file not found: {csv_path}; using built-in table only")
        return table

    with csv_path.open(mode="r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            raise ValueError(f"ZIP centroid file '{csv_path}' is missing a header row.")
        for row in reader:
            zip_code = (row.get("zip_code") or row.get("zip") or "").strip()
            lat = _coerce_float(row.get("latitude") or row.get("lat"))
            lon = _coerce_float(row.get("longitude") or row.get("lng") or row.get("lon"))
            if not zip_code or lat is None or lon is None:
                continue
            table[zip_code.zfill(5)] = Coordinates(lat, lon)
    logger.info(f"Loaded {len(table)} ZIP centroids")
    return table


def zip_centroid(zip_code: str) -> Coordinates:
    """Centroid for a ZIP, or the default regional center when unknown."""

    return load_zip_centroids().get(zip_code) or Coordinates(*DEFAULT_REGION_CENTER)


class ReferenceRepository:
    """Collection-point and market-config lookups against Supabase."""

    def __init__(self, client) -> None:
        self.client = client

    def get_collection_point(self, collection_point_id: str) -> CollectionPoint | None:
        if self.client is None:
            return None
        response = (
            self.client.table("profiles")
            .select("id, collection_point_address, full_name, commission_rate")
            .eq("id", collection_point_id)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows:
            return None
        row = rows[0]
        rate = row.get("commission_rate")
        return CollectionPoint(
            collection_point_id=collection_point_id,
            address=row.get("collection_point_address") or "Unknown",
            name=row.get("full_name"),
            commission_rate=float(rate) if rate is not None else settings.default_commission_rate,
        )

    def get_market_configs(self) -> list[MarketConfig]:
        if self.client is None:
            return []
        try:
            response = (
                self.client.table("market_configs")
                .select("zip_code, target_batch_size, min_batch_size, max_batch_size, max_route_hours")
                .eq("active", True)
                .execute()
            )
        except Exception as exc:
            logger.warning(f"Failed to load market configs, using defaults: {exc}")
            return []

        configs = []
        for row in response.data or []:
            try:
                config = MarketConfig(
                    zip_code=str(row.get("zip_code") or ""),
                    target_batch_size=int(row.get("target_batch_size") or settings.target_batch_size),
                    min_batch_size=int(row.get("min_batch_size") or settings.min_batch_size),
                    max_batch_size=int(row.get("max_batch_size") or settings.max_batch_size),
                    max_route_hours=float(row.get("max_route_hours") or settings.max_route_hours),
                )
            except (TypeError, ValueError) as exc:
                logger.warning(f"Skipping malformed market config for ZIP {row.get('zip_code')}: {exc}")
                continue
            configs.append(config)
        return configs
