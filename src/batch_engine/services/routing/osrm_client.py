"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import logging
import time
from typing import Sequence

import httpx

from ...config import settings
from ...models.domain import Coordinates

logger = logging.getLogger(__name__)


class OSRMError(Exception):
    """OSRM answered, but not with a usable result."""


def _coordinate_string(coordinates: Sequence[Coordinates]) -> str:
    # OSRM expects "lon,lat;lon,lat;..."
    return ";".join(f"{c.longitude:.6f},{c.latitude:.6f}" for c in coordinates)


class OSRMClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.osrm_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self.transport = transport

    def _get_client(self) -> httpx.Client:
        # Each call gets its own client; batches are routed from worker threads.
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=5.0),
            transport=self.transport,
        )

    def _get_json(self, url: str, params: dict) -> dict:
        """GET with retry on transport errors and 5xx; 4xx and bad codes fail fast."""
        attempt = 0
        with self._get_client() as client:
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code") != "Ok":
                        raise OSRMError(f"OSRM returned code {data.get('code')}: {data.get('message', 'no message')}")
                    return data
                except httpx.HTTPStatusError as e:
                    if e.response.status_code < 500:
                        raise
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    time.sleep(self.backoff_seconds * attempt)
                except (httpx.TimeoutException, httpx.NetworkError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"OSRM request failed after {attempt} attempts: {e}")
                        raise
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)

    def table(self, coordinates: Sequence[Coordinates]) -> dict:
        """Raw duration (s) / distance (m) table for all coordinate pairs."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM table.")

        url = f"{self.base_url}/table/v1/{self.profile}/{_coordinate_string(coordinates)}"
        data = self._get_json(url, {"annotations": "duration,distance"})
        if "durations" not in data or "distances" not in data:
            raise OSRMError("OSRM response missing durations/distances.")
        return data

    def route(self, coordinates: Sequence[Coordinates]) -> dict:
        """Route through the coordinates in order, with polyline geometry and steps."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM route.")

        url = f"{self.base_url}/route/v1/{self.profile}/{_coordinate_string(coordinates)}"
        params = {
            "overview": "full",
            "geometries": "polyline",
            "steps": "true",
        }
        data = self._get_json(url, params)
        if not data.get("routes"):
            raise OSRMError("OSRM route response contained no routes.")
        return data


def check_health(base_url: str | None = None, transport: httpx.BaseTransport | None = None) -> bool:
    """Check OSRM service health by making a minimal table request.

    Public OSRM endpoints do not expose /health, so connectivity is tested
    with two coordinates in the demo market.
    """
    try:
        client = OSRMClient(base_url=base_url, max_retries=0, timeout=5.0, transport=transport)
        client.table([Coordinates(40.7506, -73.9971), Coordinates(40.7157, -73.9860)])
        return True
    except (httpx.HTTPError, OSRMError, ValueError):
        return False
