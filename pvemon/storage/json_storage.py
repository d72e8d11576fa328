"""
JSON Storage Module

This module provides the small persistent stores used by the alert engine:
alert thresholds, the alert log and a generic key/value config store. Each
store keeps its data in a single JSON file that is rewritten atomically.
"""

import os
import json
import logging
import tempfile
import threading
from dataclasses import dataclass, asdict
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = {
    'cpu': 80.0,
    'memory': 85.0,
    'disk': 90.0,
}

ALERT_HISTORY_LIMIT = 1000


def atomic_write_json(file_path: str, data: Any) -> None:
    """Write JSON to a temp file in the target directory, then replace the target."""
    directory = os.path.dirname(file_path) or '.'
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.tmp-', suffix='.json')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, file_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def read_json(file_path: str, default: Any) -> Any:
    """Read a JSON file, returning the default if it is missing or corrupt."""
    if not os.path.exists(file_path):
        return default
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (IOError, json.JSONDecodeError) as e:
        logger.error(f"Error reading {file_path}: {e}")
        return default


@dataclass
class AlertThreshold:
    """Threshold for one metric. A metric name is unique."""
    metric: str
    threshold: float
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlertThreshold':
        return cls(
            metric=data['metric'],
            threshold=float(data['threshold']),
            enabled=bool(data.get('enabled', True))
        )


@dataclass
class AlertHistoryEntry:
    """A fired alert, as written to the alert log."""
    metric: str
    value: float
    threshold: float
    message: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlertHistoryEntry':
        return cls(
            metric=data['metric'],
            value=float(data['value']),
            threshold=float(data['threshold']),
            message=data.get('message', ''),
            timestamp=data['timestamp']
        )


class ThresholdStore:
    """Persistent mapping of metric name to threshold settings."""

    def __init__(self, file_path: str, defaults: Optional[Dict[str, float]] = None):
        self.file_path = file_path
        self.defaults = dict(DEFAULT_THRESHOLDS if defaults is None else defaults)
        self._lock = threading.Lock()
        self._seed()

    def _seed(self) -> None:
        """Insert default thresholds for metrics that have no row yet."""
        with self._lock:
            data = read_json(self.file_path, {})
            changed = False
            for metric, value in self.defaults.items():
                if metric not in data:
                    data[metric] = AlertThreshold(metric, value, True).to_dict()
                    changed = True
            if changed or not os.path.exists(self.file_path):
                atomic_write_json(self.file_path, data)

    def _load(self) -> Dict[str, AlertThreshold]:
        data = read_json(self.file_path, {})
        return {metric: AlertThreshold.from_dict(row) for metric, row in data.items()}

    def list(self) -> List[AlertThreshold]:
        with self._lock:
            return list(self._load().values())

    def get(self, metric: str) -> Optional[AlertThreshold]:
        with self._lock:
            return self._load().get(metric)

    def update(self, metric: str, threshold: float, enabled: bool) -> AlertThreshold:
        """Update an existing threshold. Unknown metrics and out-of-range values raise ValueError."""
        threshold = float(threshold)
        if not 0 <= threshold <= 100:
            raise ValueError(f"Threshold must be between 0 and 100, got {threshold}")

        with self._lock:
            rows = self._load()
            if metric not in rows:
                raise ValueError(f"Unknown metric: {metric}")
            rows[metric] = AlertThreshold(metric, threshold, bool(enabled))
            atomic_write_json(self.file_path, {m: r.to_dict() for m, r in rows.items()})

        logger.info(f"Threshold updated: {metric} = {threshold}% (enabled: {bool(enabled)})")
        return rows[metric]


class AlertLog:
    """Append-only log of fired alerts, bounded to the most recent entries."""

    def __init__(self, file_path: str, max_entries: int = ALERT_HISTORY_LIMIT):
        self.file_path = file_path
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def _load(self) -> List[Dict[str, Any]]:
        return read_json(self.file_path, [])

    def append(self, entry: AlertHistoryEntry) -> None:
        with self._lock:
            entries = self._load()
            entries.append(entry.to_dict())
            atomic_write_json(self.file_path, entries)

    def list(self, limit: int = 10) -> List[AlertHistoryEntry]:
        """Most recent entries first."""
        limit = max(0, min(limit, self.max_entries))
        with self._lock:
            entries = self._load()
        ordered = sorted(entries, key=lambda e: e['timestamp'], reverse=True)
        return [AlertHistoryEntry.from_dict(e) for e in ordered[:limit]]

    def get_last(self, metric: str) -> Optional[AlertHistoryEntry]:
        with self._lock:
            entries = [e for e in self._load() if e['metric'] == metric]
        if not entries:
            return None
        return AlertHistoryEntry.from_dict(max(entries, key=lambda e: e['timestamp']))

    def trim(self, keep: Optional[int] = None) -> int:
        """Drop all but the newest entries. Returns the number removed."""
        keep = self.max_entries if keep is None else keep
        with self._lock:
            entries = self._load()
            if len(entries) <= keep:
                return 0
            entries.sort(key=lambda e: e['timestamp'])
            removed = len(entries) - keep
            atomic_write_json(self.file_path, entries[removed:])
        return removed


class ConfigStore:
    """Generic string key/value store."""

    def __init__(self, file_path: str):
        self.file_path = file_path
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return read_json(self.file_path, {}).get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = read_json(self.file_path, {})
            data[key] = value
            atomic_write_json(self.file_path, data)

