"""Stop sequencing: nearest-neighbor construction plus 2-opt improvement.

Tours are open paths that start at the first stop. Reversal gains are
computed exactly (boundary edges plus the reversed segment), so asymmetric
road matrices still see a strictly decreasing tour length.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Sequence

from ...config import settings
from ...models.domain import Stop
from .matrix import DistanceProvider, haversine_matrix
from .models import SequencedRoute

logger = logging.getLogger(__name__)

IMPROVEMENT_EPSILON = 1e-9


def tour_length(order: Sequence[int], distances: Sequence[Sequence[float]]) -> float:
    return sum(distances[a][b] for a, b in zip(order, order[1:]))


def nearest_neighbor(distances: Sequence[Sequence[float]], start: int = 0) -> list[int]:
    """Greedy tour from ``start``; ties go to the lowest index."""

    remaining = [index for index in range(len(distances)) if index != start]
    tour = [start]
    current = start
    while remaining:
        nearest_position = 0
        nearest_distance = math.inf
        for position, candidate in enumerate(remaining):
            distance = distances[current][candidate]
            if distance < nearest_distance:
                nearest_distance = distance
                nearest_position = position
        current = remaining.pop(nearest_position)
        tour.append(current)
    return tour


def _reversal_delta(tour: list[int], i: int, j: int, distances: Sequence[Sequence[float]]) -> float:
    """Change in open-path length from reversing ``tour[i..j]``."""

    before = tour[i - 1]
    after = tour[j + 1] if j + 1 < len(tour) else None

    old = distances[before][tour[i]]
    new = distances[before][tour[j]]
    if after is not None:
        old += distances[tour[j]][after]
        new += distances[tour[i]][after]
    for k in range(i, j):
        old += distances[tour[k]][tour[k + 1]]
        new += distances[tour[k + 1]][tour[k]]
    return new - old


def two_opt(
    tour: Sequence[int],
    distances: Sequence[Sequence[float]],
    max_passes: int | None = None,
) -> tuple[list[int], int]:
    """First-improvement 2-opt; returns the improved tour and passes used.

    The first stop stays fixed. A pass applies every improving reversal it
    meets in index order; passes repeat until one makes no move.
    """
    best = list(tour)
    n = len(best)
    if n < 3:
        return best, 0

    limit = max_passes or settings.two_opt_max_passes
    passes = 0
    improved = True
    while improved and passes < limit:
        improved = False
        passes += 1
        for i in range(1, n - 1):
            for j in range(i + 1, n):
                delta = _reversal_delta(best, i, j, distances)
                if delta < -IMPROVEMENT_EPSILON:
                    best[i : j + 1] = best[i : j + 1][::-1]
                    improved = True

    if improved:
        logger.warning(f"2-opt stopped at the {limit}-pass cap before converging")
    return best, passes


def _with_sequence_numbers(stops: Sequence[Stop]) -> list[Stop]:
    return [replace(stop, sequence_number=position) for position, stop in enumerate(stops, start=1)]


def fallback_order(stops: Sequence[Stop]) -> list[Stop]:
    """ZIP-contiguous ordering refined by Haversine nearest-neighbor.

    Stops without coordinates are taken as soon as the scan reaches them.
    """
    ordered = sorted(stops, key=lambda stop: (stop.zip_code, stop.address or ""))
    if len(ordered) <= 1:
        return ordered

    located = [index for index, stop in enumerate(ordered) if stop.coordinates is not None]
    row_of = {index: row for row, index in enumerate(located)}
    distances = haversine_matrix([ordered[index].coordinates for index in located]).distances

    remaining = list(range(1, len(ordered)))
    current = 0
    result = [ordered[0]]
    while remaining:
        nearest_position = 0
        nearest_distance = math.inf
        for position, candidate in enumerate(remaining):
            if current in row_of and candidate in row_of:
                distance = distances[row_of[current]][row_of[candidate]]
                if distance < nearest_distance:
                    nearest_distance = distance
                    nearest_position = position
            else:
                nearest_position = position
                break
        current = remaining.pop(nearest_position)
        result.append(ordered[current])
    return result


class RouteSequencer:
    """Orders a batch's stops to approximate minimum travel."""

    def __init__(self, provider: DistanceProvider, *, max_passes: int | None = None) -> None:
        self.provider = provider
        self.max_passes = max_passes

    def sequence(self, stops: Sequence[Stop]) -> SequencedRoute:
        if len(stops) <= 1:
            return SequencedRoute(stops=_with_sequence_numbers(stops), method="single_stop")

        missing = sum(1 for stop in stops if stop.coordinates is None)
        if missing == len(stops):
            logger.warning("No stops have coordinates; using lexical ZIP/address order")
            return SequencedRoute(stops=_with_sequence_numbers(fallback_order(stops)), method="no_coordinates")
        if missing:
            logger.warning(f"{missing} stops missing coordinates, using fallback")
            return SequencedRoute(stops=_with_sequence_numbers(fallback_order(stops)), method="haversine_fallback")

        matrix = self.provider.matrix([stop.coordinates for stop in stops])
        if matrix is None:
            logger.warning("OSRM unavailable, falling back to Haversine")
            return SequencedRoute(stops=_with_sequence_numbers(fallback_order(stops)), method="haversine_fallback")

        initial = nearest_neighbor(matrix.distances)
        improved, passes = two_opt(initial, matrix.distances, self.max_passes)
        logger.info(
            f"2-opt: {tour_length(initial, matrix.distances):.2f} km -> "
            f"{tour_length(improved, matrix.distances):.2f} km in {passes} passes"
        )
        ordered = [stops[index] for index in improved]
        return SequencedRoute(stops=_with_sequence_numbers(ordered), method="osrm_with_2opt", matrix=matrix)
