"""
Alerts module initialization.
"""

from .manager import (
    COOLDOWN_MINUTES,
    METRIC_LABELS,
    Notification,
    AlertEvent,
    AlertAction,
    LogAlertAction,
    DiscordWebhookAction,
    CustomAlertAction,
    AlertActionFactory,
    Notifier,
    CooldownTracker,
    ThresholdEvaluator
)

from .workloads import (
    SNAPSHOT_KEY,
    TransitionEvent,
    detect_transitions,
    WorkloadTransitionDetector
)

__all__ = [
    'COOLDOWN_MINUTES',
    'METRIC_LABELS',
    'Notification',
    'AlertEvent',
    'AlertAction',
    'LogAlertAction',
    'DiscordWebhookAction',
    'CustomAlertAction',
    'AlertActionFactory',
    'Notifier',
    'CooldownTracker',
    'ThresholdEvaluator',
    'SNAPSHOT_KEY',
    'TransitionEvent',
    'detect_transitions',
    'WorkloadTransitionDetector'
]
