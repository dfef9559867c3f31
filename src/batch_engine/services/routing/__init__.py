"""Geocoded-stop routing: matrices, sequencing and arrival estimates."""

from .eta import ArrivalEstimator, route_start_time
from .matrix import DistanceProvider
from .models import DetailedRoute, DistanceMatrix, SequencedRoute
from .sequencer import RouteSequencer

__all__ = [
    "ArrivalEstimator",
    "DetailedRoute",
    "DistanceMatrix",
    "DistanceProvider",
    "RouteSequencer",
    "SequencedRoute",
    "route_start_time",
]
