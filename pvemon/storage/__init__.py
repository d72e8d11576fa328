"""
Storage module initialization.
"""

from .json_storage import (
    DEFAULT_THRESHOLDS,
    ALERT_HISTORY_LIMIT,
    AlertThreshold,
    AlertHistoryEntry,
    ThresholdStore,
    AlertLog,
    ConfigStore,
    atomic_write_json,
    read_json
)

__all__ = [
    'DEFAULT_THRESHOLDS',
    'ALERT_HISTORY_LIMIT',
    'AlertThreshold',
    'AlertHistoryEntry',
    'ThresholdStore',
    'AlertLog',
    'ConfigStore',
    'atomic_write_json',
    'read_json'
]
