"""Metrics collection module."""
from .collector import MetricsCollector

__all__ = ["MetricsCollector"]
