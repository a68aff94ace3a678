"""Monitoring module for logging and metrics."""

from .logger import Logger
from .metrics import MetricsCollector, RunStatistics

__all__ = ["Logger", "MetricsCollector", "RunStatistics"]
