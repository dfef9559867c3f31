"""Batch generation runs."""

from .service import BatchOptimizationService, OptimizationRunResult

__all__ = ["BatchOptimizationService", "OptimizationRunResult"]
