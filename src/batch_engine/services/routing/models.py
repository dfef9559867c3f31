"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ...models.domain import Stop


@dataclass(slots=True)
class DistanceMatrix:
    """Square travel matrices; durations in minutes, distances in km."""

    durations: List[List[float]]
    distances: List[List[float]]

    def __len__(self) -> int:
        return len(self.distances)


@dataclass(slots=True)
class RouteStep:
    maneuver: str
    instruction: str
    distance_km: float
    duration_min: float


@dataclass(slots=True)
class RouteLeg:
    distance_km: float
    duration_min: float
    steps: List[RouteStep] = field(default_factory=list)


@dataclass(slots=True)
class DetailedRoute:
    distance_km: float
    duration_min: float
    geometry: Optional[str]
    legs: List[RouteLeg]


@dataclass(slots=True)
class SequencedRoute:
    stops: List[Stop]
    method: str
    matrix: Optional[DistanceMatrix] = None
