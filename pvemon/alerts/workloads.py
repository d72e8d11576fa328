"""
Workload Transition Detection

Compares the run state of every VM/container with the snapshot persisted on
the previous tick and notifies when a workload starts or stops.
"""

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from pvemon.cluster import NodeStatusSource, Workload
from pvemon.storage import ConfigStore
from .manager import Notification, Notifier, COLOR_STARTED, COLOR_STOPPED

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = 'vm_states'


@dataclass
class TransitionEvent:
    workload: Workload
    previous: str
    current: str

    @property
    def is_start(self) -> bool:
        return self.previous == 'stopped' and self.current == 'running'

    def to_notification(self) -> Notification:
        body = f"**{self.workload.display_name}** on {self.workload.node}"
        if self.is_start:
            return Notification(title="🟢 VM Started", body=body, color=COLOR_STARTED)
        return Notification(title="🔴 VM Stopped", body=body, color=COLOR_STOPPED)


def detect_transitions(previous: Dict[str, str], workloads: List[Workload]) -> List[TransitionEvent]:
    """Running<->stopped changes of workloads present in both observations."""
    events = []
    for workload in workloads:
        before = previous.get(workload.state_key)
        if before == 'running' and workload.status == 'stopped':
            events.append(TransitionEvent(workload, before, workload.status))
        elif before == 'stopped' and workload.status == 'running':
            events.append(TransitionEvent(workload, before, workload.status))
    return events


class WorkloadTransitionDetector:
    """Detects workload start/stop between consecutive ticks."""

    def __init__(self, source: NodeStatusSource, config_store: ConfigStore,
                 notifier: Notifier, snapshot_key: str = SNAPSHOT_KEY):
        self.source = source
        self.config_store = config_store
        self.notifier = notifier
        self.snapshot_key = snapshot_key

    def load_snapshot(self) -> Dict[str, str]:
        raw = self.config_store.get(self.snapshot_key)
        if not raw:
            return {}
        try:
            snapshot = json.loads(raw)
        except ValueError as e:
            logger.error(f"Discarding unreadable workload snapshot: {e}")
            return {}
        if not isinstance(snapshot, dict):
            logger.error("Discarding workload snapshot that is not a mapping")
            return {}
        return snapshot

    def save_snapshot(self, snapshot: Dict[str, str]) -> None:
        self.config_store.set(self.snapshot_key, json.dumps(snapshot, sort_keys=True))

    def check(self, workloads: Optional[List[Workload]] = None,
              errors: Optional[Dict[str, str]] = None) -> List[TransitionEvent]:
        """
        Run one detection pass.

        Without arguments the current inventory is fetched from the source.
        Entries of nodes listed in ``errors`` are carried over from the
        previous snapshot since those nodes were not observed this tick.
        """
        if workloads is None:
            workloads, errors = self.source.list_workloads()
        errors = errors or {}

        previous = self.load_snapshot()
        current = {w.state_key: w.status for w in workloads}

        for key, state in previous.items():
            node = key.rsplit(':', 1)[0]
            if node in errors and key not in current:
                current[key] = state

        events = detect_transitions(previous, workloads)
        for event in events:
            logger.info(f"Workload {event.workload.state_key} changed: {event.previous} -> {event.current}")
            self.notifier.notify(event.to_notification())

        try:
            self.save_snapshot(current)
        except (OSError, TypeError, ValueError):
            logger.exception("Failed to persist workload snapshot")

        return events
