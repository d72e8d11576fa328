"""
Metrics Collection Module

This module collects CPU, memory and disk utilization from every configured
node and stores them as a time series in JSON files organized by node and hour.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Callable
import glob
import logging
import os
import threading

from pvemon.cluster import NodeStatus, NodeStatusSource
from pvemon.storage import atomic_write_json, read_json

logger = logging.getLogger(__name__)

METRIC_NAMES = ('cpu', 'memory', 'disk')
RETENTION_DAYS = 7


@dataclass
class MetricPoint:
    """A single stored metric measurement."""
    node: str
    metric: str
    value: float
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetricPoint':
        return cls(
            node=data['node'],
            metric=data['metric'],
            value=float(data['value']),
            timestamp=data['timestamp']
        )


class MetricStorage:
    """Handles storage of metric points to JSON files organized by hour."""

    def __init__(self, base_dir: str = "data/metrics",
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.base_dir = base_dir
        self.clock = clock
        self._lock = threading.Lock()
        os.makedirs(base_dir, exist_ok=True)

    def _get_file_path(self, node: str, timestamp: datetime) -> str:
        """Generate file path based on node and hour."""
        date_dir = timestamp.strftime("%Y/%m/%d")
        hour_file = timestamp.strftime("%H") + ".json"
        return os.path.join(self.base_dir, node, date_dir, hour_file)

    def _hour_of_file(self, file_path: str) -> Optional[datetime]:
        """Recover the hour a file covers from its <Y>/<m>/<d>/<H>.json path."""
        parts = os.path.normpath(file_path).split(os.sep)
        try:
            year, month, day = parts[-4], parts[-3], parts[-2]
            hour = os.path.splitext(parts[-1])[0]
            return datetime(int(year), int(month), int(day), int(hour))
        except (IndexError, ValueError):
            return None

    def append(self, node: str, metric: str, value: float,
               timestamp: Optional[datetime] = None) -> MetricPoint:
        """Append one metric point."""
        timestamp = timestamp or self.clock()
        point = MetricPoint(node=node, metric=metric, value=float(value),
                            timestamp=timestamp.isoformat())
        file_path = self._get_file_path(node, timestamp)

        with self._lock:
            points = read_json(file_path, [])
            points.append(point.to_dict())
            atomic_write_json(file_path, points)

        return point

    def query(self, node: str, metric: str, since: datetime,
              until: Optional[datetime] = None) -> List[MetricPoint]:
        """Points for (node, metric) with since < timestamp <= until, oldest first."""
        until = until or self.clock()
        results = []
        current = since.replace(minute=0, second=0, microsecond=0)

        with self._lock:
            while current <= until:
                file_path = self._get_file_path(node, current)
                for p in read_json(file_path, []):
                    if p['metric'] != metric:
                        continue
                    p_time = datetime.fromisoformat(p['timestamp'])
                    if since < p_time <= until:
                        results.append(MetricPoint.from_dict(p))
                current += timedelta(hours=1)

        return sorted(results, key=lambda p: p.timestamp)

    def get_history(self, node: str, metric: str, hours: int = 24) -> List[MetricPoint]:
        """Points of the last N hours."""
        now = self.clock()
        return self.query(node, metric, now - timedelta(hours=hours), now)

    def get_latest(self, node: str) -> Dict[str, float]:
        """Latest value of each metric for a node."""
        pattern = os.path.join(self.base_dir, node, "*", "*", "*", "*.json")
        latest: Dict[str, MetricPoint] = {}

        with self._lock:
            for file_path in sorted(glob.glob(pattern), reverse=True):
                for p in read_json(file_path, []):
                    point = MetricPoint.from_dict(p)
                    current = latest.get(point.metric)
                    if current is None or point.timestamp > current.timestamp:
                        latest[point.metric] = point
                if all(m in latest for m in METRIC_NAMES):
                    break

        return {metric: point.value for metric, point in latest.items()}

    def list_nodes(self) -> List[str]:
        nodes = []
        if os.path.exists(self.base_dir):
            for name in os.listdir(self.base_dir):
                if os.path.isdir(os.path.join(self.base_dir, name)):
                    nodes.append(name)
        return sorted(nodes)

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete points with timestamp < cutoff. Returns the number removed."""
        removed = 0
        pattern = os.path.join(self.base_dir, "*", "*", "*", "*", "*.json")

        with self._lock:
            for file_path in glob.glob(pattern):
                hour = self._hour_of_file(file_path)
                if hour is None or hour > cutoff:
                    continue

                points = read_json(file_path, [])
                kept = [p for p in points if datetime.fromisoformat(p['timestamp']) >= cutoff]
                removed += len(points) - len(kept)

                if not kept:
                    os.remove(file_path)
                elif len(kept) != len(points):
                    atomic_write_json(file_path, kept)

            self._remove_empty_dirs()

        return removed

    def _remove_empty_dirs(self) -> None:
        for dir_path, _, _ in os.walk(self.base_dir, topdown=False):
            if dir_path != self.base_dir and not os.listdir(dir_path):
                os.rmdir(dir_path)


@dataclass
class CollectionResult:
    """Outcome of one collection pass."""
    statuses: List[NodeStatus] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    points_written: int = 0


class MetricCollector:
    """Fetches status of all nodes and records cpu/memory/disk percentages."""

    def __init__(self, source: NodeStatusSource, storage: MetricStorage):
        self.source = source
        self.storage = storage

    def collect(self) -> CollectionResult:
        statuses, errors = self.source.get_all_nodes_status()
        result = CollectionResult(statuses=statuses, errors=dict(errors))

        for status in statuses:
            timestamp = self.storage.clock()
            for metric in METRIC_NAMES:
                value = status.metric_value(metric)
                try:
                    self.storage.append(status.node, metric, value, timestamp)
                    result.points_written += 1
                except (OSError, TypeError, ValueError):
                    logger.exception(f"Failed to store {metric} metric for {status.node}")

        if errors:
            logger.warning(f"Metric collection failed for {len(errors)} node(s): {', '.join(sorted(errors))}")
        logger.info(f"Collected metrics from {len(statuses)} node(s), {result.points_written} points written")
        return result

    def cleanup(self, retention_days: int = RETENTION_DAYS) -> int:
        cutoff = self.storage.clock() - timedelta(days=retention_days)
        removed = self.storage.delete_older_than(cutoff)
        if removed:
            logger.info(f"Removed {removed} metric points older than {retention_days} days")
        return removed
