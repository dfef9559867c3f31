"""Address geocoding with caching and ZIP-centroid fallback."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence
from urllib.parse import quote

import httpx

from ..config import settings
from ..data.reference_repository import zip_centroid
from ..models.domain import Coordinates, extract_zip
from .cache import TTLCache

logger = logging.getLogger(__name__)


class MapboxGeocoder:
    """Forward geocoding against the Mapbox places endpoint."""

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("Mapbox token is not configured.")
        self.token = token
        self.base_url = (base_url or settings.mapbox_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.geocode_timeout_seconds
        self.transport = transport

    def _get_client(self) -> httpx.Client:
        # One client per call; lookups run on worker threads.
        return httpx.Client(timeout=httpx.Timeout(self.timeout, connect=5.0), transport=self.transport)

    def geocode(self, address: str) -> Optional[Coordinates]:
        """Return the best match, None when the provider found nothing.

        Raises ``httpx.HTTPError`` on transport failures and non-2xx responses.
        """
        url = f"{self.base_url}/geocoding/v5/mapbox.places/{quote(address, safe='')}.json"
        with self._get_client() as client:
            response = client.get(url, params={"access_token": self.token, "limit": 1})
            response.raise_for_status()
            data = response.json()

        features = data.get("features") or []
        if not features:
            return None
        longitude, latitude = features[0]["center"]
        return Coordinates(latitude=float(latitude), longitude=float(longitude))


class GeocodingResolver:
    """Resolve addresses to coordinates.

    Real provider results are cached; ZIP-centroid fallbacks are not, so a
    provider that recovers is picked up on the next lookup.
    """

    def __init__(
        self,
        cache: TTLCache,
        geocoder: MapboxGeocoder | None = None,
        *,
        cache_ttl_seconds: float | None = None,
        concurrency: int | None = None,
    ) -> None:
        self.cache = cache
        self.geocoder = geocoder
        self.cache_ttl_seconds = cache_ttl_seconds or settings.geocode_cache_ttl_seconds
        self.concurrency = concurrency or settings.geocode_concurrency
        if geocoder is None:
            logger.warning("Geocoding provider not configured - using ZIP-centroid fallback (accuracy: ~1km)")

    @classmethod
    def from_settings(cls, cache: TTLCache) -> "GeocodingResolver":
        geocoder = MapboxGeocoder(settings.mapbox_token) if settings.mapbox_token else None
        return cls(cache, geocoder)

    @staticmethod
    def cache_key(address: str, zip_code: str | None) -> str:
        return f"geocode:{address}:{zip_code or 'none'}"

    def _fallback(self, zip_code: str | None) -> Optional[Coordinates]:
        if not zip_code:
            return None
        return zip_centroid(zip_code)

    def resolve(self, address: str, zip_code: str | None = None) -> Optional[Coordinates]:
        zip_code = (zip_code or extract_zip(address)).strip() or None
        key = self.cache_key(address, zip_code)

        cached = self.cache.get(key)
        if cached is not None:
            return cached

        if self.geocoder is None:
            return self._fallback(zip_code)

        try:
            coordinates = self.geocoder.geocode(address)
        except httpx.HTTPStatusError as exc:
            logger.warning(f"Geocoding failed with status {exc.response.status_code} - using ZIP fallback")
            return self._fallback(zip_code)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning(f"Error geocoding address: {exc} - using ZIP fallback")
            return self._fallback(zip_code)

        if coordinates is None:
            logger.warning("No geocoding results - using ZIP fallback")
            return self._fallback(zip_code)

        self.cache.set(key, coordinates, self.cache_ttl_seconds)
        return coordinates

    def resolve_many(self, requests: Sequence[tuple[str, str | None]]) -> list[Optional[Coordinates]]:
        """Resolve (address, zip) pairs with bounded fan-out, preserving order."""
        if not requests:
            return []
        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            results = list(executor.map(lambda request: self.resolve(*request), requests))
        resolved = sum(1 for result in results if result is not None)
        logger.info(f"Geocoded {resolved}/{len(requests)} addresses (concurrency {self.concurrency})")
        return results
