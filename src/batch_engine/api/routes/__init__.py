"""Route group exports."""

from . import batches, health

__all__ = ["batches", "health"]
