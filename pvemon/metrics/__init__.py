"""
Metrics module initialization.
"""

from .collector import (
    METRIC_NAMES,
    RETENTION_DAYS,
    MetricPoint,
    MetricStorage,
    CollectionResult,
    MetricCollector
)

__all__ = [
    'METRIC_NAMES',
    'RETENTION_DAYS',
    'MetricPoint',
    'MetricStorage',
    'CollectionResult',
    'MetricCollector'
]
