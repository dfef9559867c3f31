"""Batch clustering strategies."""

from .ai import AIClustering, ParsedBatches, ParseFailure, parse_ai_response
from .base import BatchConstraints, BatchPlan, ClusteringResult, ClusteringStrategy
from .geographic import GeographicClustering
from .service import BatchClusteringOptimizer

__all__ = [
    "AIClustering",
    "BatchClusteringOptimizer",
    "BatchConstraints",
    "BatchPlan",
    "ClusteringResult",
    "ClusteringStrategy",
    "GeographicClustering",
    "ParseFailure",
    "ParsedBatches",
    "parse_ai_response",
]
