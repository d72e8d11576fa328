"""
Source package initialization.
"""

from .cluster import (
    NodeConfig,
    NodeStatus,
    Workload,
    NodeStatusSource,
    ProxmoxClient,
    ProxmoxAPIError
)

from .storage import (
    AlertThreshold,
    AlertHistoryEntry,
    ThresholdStore,
    AlertLog,
    ConfigStore
)

from .metrics import (
    MetricPoint,
    MetricStorage,
    MetricCollector
)

from .alerts import (
    Notification,
    AlertEvent,
    Notifier,
    CooldownTracker,
    ThresholdEvaluator,
    WorkloadTransitionDetector
)

from .scheduler import CollectionScheduler, start_alert_system

__all__ = [
    'NodeConfig',
    'NodeStatus',
    'Workload',
    'NodeStatusSource',
    'ProxmoxClient',
    'ProxmoxAPIError',
    'AlertThreshold',
    'AlertHistoryEntry',
    'ThresholdStore',
    'AlertLog',
    'ConfigStore',
    'MetricPoint',
    'MetricStorage',
    'MetricCollector',
    'Notification',
    'AlertEvent',
    'Notifier',
    'CooldownTracker',
    'ThresholdEvaluator',
    'WorkloadTransitionDetector',
    'CollectionScheduler',
    'start_alert_system'
]
