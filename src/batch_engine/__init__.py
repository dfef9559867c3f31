"""Delivery batch generation and route optimization engine."""

__version__ = "0.1.0"
