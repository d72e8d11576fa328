"""
Alert System Module

This module evaluates node metrics against the operator-configured thresholds
and delivers notifications through pluggable actions. Repeat alerts for the
same node and metric are suppressed by a cooldown window.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Callable, Tuple
import logging

import requests

from pvemon.cluster import NodeStatus
from pvemon.storage import AlertHistoryEntry, AlertLog, ThresholdStore

logger = logging.getLogger(__name__)

COOLDOWN_MINUTES = 15

COLOR_WARNING = 0xffaa00
COLOR_STOPPED = 0xff0000
COLOR_STARTED = 0x00ff00

METRIC_LABELS = {
    'cpu': 'CPU',
    'memory': 'RAM',
    'disk': 'Disk',
}


@dataclass
class Notification:
    """A message to deliver: title, body and an embed color."""
    title: str
    body: str
    color: int = COLOR_STOPPED


@dataclass
class AlertEvent:
    """Represents a fired threshold alert."""
    node: str
    metric: str
    value: float
    threshold: float
    message: str
    timestamp: str
    delivered: bool = False


class AlertAction(ABC):
    """Abstract base class for notification delivery actions."""

    @abstractmethod
    def execute(self, notification: Notification) -> bool:
        """Deliver the notification. Returns True if successful."""
        pass


class LogAlertAction(AlertAction):
    """Action that writes notifications to the application log."""

    def __init__(self, level: str = "warning"):
        self.level = level.lower()

    def execute(self, notification: Notification) -> bool:
        log_func = getattr(logger, self.level, logger.warning)
        log_func(f"ALERT {notification.title}: {notification.body}")
        return True


class DiscordWebhookAction(AlertAction):
    """Action that posts notifications as an embed to a Discord webhook."""

    def __init__(self, url: str, timeout: int = 10,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.url = url
        self.timeout = timeout
        self.clock = clock

    def execute(self, notification: Notification) -> bool:
        payload = {
            "embeds": [{
                "title": notification.title,
                "description": notification.body,
                "color": notification.color,
                "timestamp": self.clock().isoformat() + "Z",
            }]
        }
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Failed to send alert: {e}")
            return False

        if response.status_code >= 400:
            logger.error(f"Failed to send alert: webhook returned {response.status_code}")
            return False

        logger.info(f"Alert: {notification.title}")
        return True


class CustomAlertAction(AlertAction):
    """Action that executes a custom callback function."""

    def __init__(self, callback: Callable[[Notification], bool]):
        self.callback = callback

    def execute(self, notification: Notification) -> bool:
        return bool(self.callback(notification))


class AlertActionFactory:
    """Factory for creating alert actions."""

    @staticmethod
    def create(action_type: str, params: Dict[str, Any]) -> AlertAction:
        """Create an alert action based on type and parameters."""
        if action_type == "log":
            return LogAlertAction(level=params.get("level", "warning"))
        elif action_type == "discord":
            return DiscordWebhookAction(
                url=params.get("url", ""),
                timeout=params.get("timeout", 10)
            )
        else:
            raise ValueError(f"Unknown action type: {action_type}")


class Notifier:
    """
    Delivers notifications through every configured action.

    Delivery is best-effort: an action that raises or reports failure is
    logged and never propagates to the caller.
    """

    def __init__(self, actions: Optional[List[AlertAction]] = None):
        self.actions = list(actions or [])

    @classmethod
    def from_webhook_url(cls, webhook_url: Optional[str]) -> 'Notifier':
        """Log action always; Discord action only when a webhook URL is set."""
        actions: List[AlertAction] = [LogAlertAction()]
        if webhook_url:
            actions.append(AlertActionFactory.create("discord", {"url": webhook_url}))
        return cls(actions)

    def add_action(self, action: AlertAction) -> None:
        self.actions.append(action)

    def notify(self, notification: Notification) -> bool:
        """Returns True if at least one action delivered the notification."""
        delivered = False
        for action in self.actions:
            try:
                if action.execute(notification):
                    delivered = True
            except Exception as e:
                logger.error(f"Failed to execute alert action {type(action).__name__}: {e}")
        return delivered


class CooldownTracker:
    """Last-fired time per (node, metric). Lives only as long as the process."""

    def __init__(self, window: timedelta = timedelta(minutes=COOLDOWN_MINUTES),
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.window = window
        self.clock = clock
        self._last_fired: Dict[Tuple[str, str], datetime] = {}

    def is_on_cooldown(self, node: str, metric: str) -> bool:
        last = self._last_fired.get((node, metric))
        if last is None:
            return False
        return self.clock() - last < self.window

    def mark(self, node: str, metric: str, when: Optional[datetime] = None) -> datetime:
        when = when or self.clock()
        self._last_fired[(node, metric)] = when
        return when

    def last_fired(self, node: str, metric: str) -> Optional[datetime]:
        return self._last_fired.get((node, metric))

    def reset(self) -> None:
        self._last_fired.clear()


def render_alert_message(label: str, node: str, value: float, threshold: float) -> str:
    return f"{label} on {node}: {value:.1f}% (threshold: {threshold:g}%)"


def render_alert_notification(label: str, node: str, value: float, threshold: float) -> Notification:
    return Notification(
        title=f"⚠️ {label} Alert",
        body=f"**{node}** exceeded threshold\n{label}: **{value:.1f}%** / {threshold:g}%",
        color=COLOR_WARNING
    )


class ThresholdEvaluator:
    """Compares the latest node metrics with the enabled thresholds."""

    def __init__(self, thresholds: ThresholdStore, alert_log: AlertLog,
                 notifier: Notifier, cooldowns: Optional[CooldownTracker] = None):
        self.thresholds = thresholds
        self.alert_log = alert_log
        self.notifier = notifier
        self.cooldowns = cooldowns or CooldownTracker()

    def evaluate(self, statuses: List[NodeStatus]) -> List[AlertEvent]:
        """Evaluate one tick's batch of node statuses. Returns the alerts that fired."""
        fired = []
        thresholds = [t for t in self.thresholds.list() if t.enabled]

        for status in statuses:
            for threshold in thresholds:
                value = status.metric_value(threshold.metric)
                if value is None:
                    continue
                if value < threshold.threshold:
                    continue
                if self.cooldowns.is_on_cooldown(status.node, threshold.metric):
                    logger.debug(f"Alert for {status.node}/{threshold.metric} suppressed by cooldown")
                    continue

                fired.append(self._fire(status.node, threshold.metric, value, threshold.threshold))

        return fired

    def _fire(self, node: str, metric: str, value: float, threshold: float) -> AlertEvent:
        label = METRIC_LABELS.get(metric, metric.upper())
        now = self.cooldowns.clock()
        alert = AlertEvent(
            node=node,
            metric=metric,
            value=value,
            threshold=threshold,
            message=render_alert_message(label, node, value, threshold),
            timestamp=now.isoformat()
        )

        try:
            self.alert_log.append(AlertHistoryEntry(
                metric=metric,
                value=value,
                threshold=threshold,
                message=alert.message,
                timestamp=alert.timestamp
            ))
        except (OSError, TypeError, ValueError):
            logger.exception(f"Failed to write alert history for {node}/{metric}")

        alert.delivered = self.notifier.notify(render_alert_notification(label, node, value, threshold))
        self.cooldowns.mark(node, metric, now)
        return alert
