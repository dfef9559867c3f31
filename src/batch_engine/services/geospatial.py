"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from shapely.geometry import MultiPoint

from ..models.domain import Coordinates

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_between(a: Coordinates, b: Coordinates) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def haversine_matrix_km(coordinates: Sequence[Coordinates]) -> np.ndarray:
    """Pairwise great-circle distances (km) as a square array."""

    if not coordinates:
        return np.zeros((0, 0))
    lat = np.radians([c.latitude for c in coordinates])
    lon = np.radians([c.longitude for c in coordinates])
    d_phi = lat[:, None] - lat[None, :]
    d_lambda = lon[:, None] - lon[None, :]
    a = np.sin(d_phi / 2) ** 2 + np.cos(lat[:, None]) * np.cos(lat[None, :]) * np.sin(d_lambda / 2) ** 2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(np.clip(1 - a, 0.0, None)))
    return EARTH_RADIUS_KM * c


def centroid(coordinates: Sequence[Coordinates]) -> Coordinates | None:
    """Planar centroid of a point set, good enough for a batch label."""

    if not coordinates:
        return None
    center = MultiPoint([(c.longitude, c.latitude) for c in coordinates]).centroid
    return Coordinates(latitude=center.y, longitude=center.x)
