"""Distance/duration acquisition with caching and an analytic fallback."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx

from ...config import settings
from ...models.domain import Coordinates
from ..cache import TTLCache
from ..geospatial import haversine_matrix_km
from .models import DetailedRoute, DistanceMatrix, RouteLeg, RouteStep
from .osrm_client import OSRMClient, OSRMError

logger = logging.getLogger(__name__)

# 4 decimals is ~11 m; near-identical batches share one cache entry.
CACHE_KEY_PRECISION = 4

PROVIDER_ERRORS = (httpx.HTTPError, OSRMError, ValueError, KeyError, TypeError, IndexError)


def matrix_cache_key(coordinates: Sequence[Coordinates]) -> str:
    joined = "|".join(
        f"{round(c.latitude, CACHE_KEY_PRECISION):.{CACHE_KEY_PRECISION}f},"
        f"{round(c.longitude, CACHE_KEY_PRECISION):.{CACHE_KEY_PRECISION}f}"
        for c in coordinates
    )
    return f"osrm:matrix:{joined}"


def _convert_table(data: dict) -> DistanceMatrix:
    """Seconds -> minutes, meters -> km. Unreachable pairs become infinite."""

    def convert(rows: list, divisor: float) -> list[list[float]]:
        return [[(value / divisor) if value is not None else float("inf") for value in row] for row in rows]

    return DistanceMatrix(
        durations=convert(data["durations"], 60.0),
        distances=convert(data["distances"], 1000.0),
    )


def _convert_route(data: dict) -> DetailedRoute:
    route = data["routes"][0]
    legs = []
    for leg in route.get("legs", []):
        steps = []
        for step in leg.get("steps", []):
            maneuver = step.get("maneuver", {})
            maneuver_type = maneuver.get("type", "")
            steps.append(
                RouteStep(
                    maneuver=maneuver_type,
                    instruction=maneuver.get("instruction") or f"{maneuver_type} {step.get('name') or ''}".strip(),
                    distance_km=step.get("distance", 0.0) / 1000.0,
                    duration_min=step.get("duration", 0.0) / 60.0,
                )
            )
        legs.append(
            RouteLeg(
                distance_km=leg.get("distance", 0.0) / 1000.0,
                duration_min=leg.get("duration", 0.0) / 60.0,
                steps=steps,
            )
        )
    return DetailedRoute(
        distance_km=route["distance"] / 1000.0,
        duration_min=route["duration"] / 60.0,
        geometry=route.get("geometry"),
        legs=legs,
    )


def haversine_matrix(coordinates: Sequence[Coordinates], average_speed_kmh: float | None = None) -> DistanceMatrix:
    """Analytic matrix: great-circle km and minutes at an assumed speed."""

    speed = average_speed_kmh or settings.average_speed_kmh
    distances = haversine_matrix_km(coordinates)
    durations = distances / speed * 60.0
    return DistanceMatrix(durations=durations.tolist(), distances=distances.tolist())


class DistanceProvider:
    """Pairwise travel matrix and detailed routes from OSRM.

    Every public call returns None on failure; callers own the fallback.
    """

    def __init__(
        self,
        cache: TTLCache,
        client: OSRMClient | None = None,
        *,
        cache_ttl_seconds: float | None = None,
    ) -> None:
        self.cache = cache
        self.client = client
        self.cache_ttl_seconds = cache_ttl_seconds or settings.matrix_cache_ttl_seconds

    @classmethod
    def from_settings(cls, cache: TTLCache) -> "DistanceProvider":
        try:
            client = OSRMClient()
        except ValueError as exc:
            logger.warning(f"OSRM client unavailable: {exc}")
            client = None
        return cls(cache, client)

    def matrix(self, coordinates: Sequence[Coordinates]) -> Optional[DistanceMatrix]:
        if len(coordinates) < 2:
            logger.warning("Need at least 2 coordinates for distance matrix")
            return None

        key = matrix_cache_key(coordinates)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Matrix cache hit for {len(coordinates)} stops")
            return cached

        if self.client is None:
            return None

        try:
            logger.info(f"Fetching OSRM distance matrix for {len(coordinates)} stops...")
            matrix = _convert_table(self.client.table(coordinates))
        except PROVIDER_ERRORS as exc:
            logger.warning(f"OSRM distance matrix unavailable: {exc}")
            return None

        if len(matrix) != len(coordinates):
            logger.warning(f"OSRM matrix size {len(matrix)} does not match {len(coordinates)} coordinates")
            return None

        self.cache.set(key, matrix, self.cache_ttl_seconds)
        return matrix

    def route(self, coordinates: Sequence[Coordinates]) -> Optional[DetailedRoute]:
        if len(coordinates) < 2 or self.client is None:
            return None
        try:
            return _convert_route(self.client.route(coordinates))
        except PROVIDER_ERRORS as exc:
            logger.warning(f"OSRM route unavailable: {exc}")
            return None
