"""Per-stop arrival estimates for a sequenced route."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import Stop
from ..geospatial import distance_between
from .models import DetailedRoute, RouteLeg

logger = logging.getLogger(__name__)


def route_start_time(delivery_date: date, hour: int | None = None) -> datetime:
    """Batch departure on the delivery date (UTC)."""
    start_hour = settings.route_start_hour if hour is None else hour
    return datetime.combine(delivery_date, time(hour=start_hour), tzinfo=timezone.utc)


class ArrivalEstimator:
    def __init__(self, *, dwell_minutes: float | None = None, average_speed_kmh: float | None = None) -> None:
        self.dwell_minutes = settings.dwell_minutes if dwell_minutes is None else dwell_minutes
        self.average_speed_kmh = average_speed_kmh or settings.average_speed_kmh

    def _haversine_leg_minutes(self, previous: Stop, current: Stop) -> float:
        if previous.coordinates is None or current.coordinates is None:
            return 0.0
        return distance_between(previous.coordinates, current.coordinates) / self.average_speed_kmh * 60.0

    def estimate(
        self,
        stops: Sequence[Stop],
        start_time: datetime,
        legs: Optional[Sequence[RouteLeg]] = None,
    ) -> list[Stop]:
        """Annotate stops with ETAs; the first stop arrives at ``start_time``.

        Legs must line up with consecutive stops; otherwise the Haversine
        estimate at the average speed is used for the whole route.
        """
        use_legs = legs is not None and len(legs) >= len(stops) - 1
        if not use_legs:
            logger.debug("Using fallback time calculation with Haversine")

        current_time = start_time
        annotated: list[Stop] = []
        for index, stop in enumerate(stops):
            if index > 0:
                if use_legs:
                    travel_minutes = legs[index - 1].duration_min
                else:
                    travel_minutes = self._haversine_leg_minutes(stops[index - 1], stop)
                current_time = current_time + timedelta(minutes=travel_minutes + self.dwell_minutes)
            annotated.append(replace(stop, estimated_arrival=current_time))
        return annotated

    def route_distance_km(self, stops: Sequence[Stop], route: Optional[DetailedRoute] = None) -> float:
        if route is not None:
            return route.distance_km
        return sum(
            distance_between(previous.coordinates, current.coordinates)
            for previous, current in zip(stops, stops[1:])
            if previous.coordinates is not None and current.coordinates is not None
        )

    def estimate_total_minutes(self, stops: Sequence[Stop], route: Optional[DetailedRoute] = None) -> int:
        """Travel plus dwell at every stop, rounded up to whole minutes."""
        if route is not None:
            travel = route.duration_min
        else:
            travel = self.route_distance_km(stops) / self.average_speed_kmh * 60.0
        return math.ceil(travel + len(stops) * self.dwell_minutes)
