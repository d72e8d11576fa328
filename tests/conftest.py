import os
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Union

import pytest

from pvemon.cluster.provider import (
    NodeStatus,
    NodeStatusSource,
    ProxmoxAPIError,
    ResourceUsage,
    Workload
)
from pvemon.alerts.manager import AlertAction, Notification, Notifier
from pvemon.storage.json_storage import AlertLog, ConfigStore, ThresholdStore


class FakeClock:
    """Controllable replacement for datetime.utcnow."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeNodeSource(NodeStatusSource):
    """In-memory node source. A status entry may be an exception to raise."""

    def __init__(self, statuses: Optional[Dict[str, Union[NodeStatus, Exception]]] = None,
                 workloads: Optional[List[Workload]] = None,
                 workload_errors: Optional[Dict[str, str]] = None):
        self.statuses = statuses or {}
        self.workloads = workloads or []
        self.workload_errors = workload_errors or {}
        self.workload_calls = 0

    def get_node_names(self):
        return list(self.statuses)

    def get_node_status(self, node_name=None):
        status = self.statuses[node_name]
        if isinstance(status, Exception):
            raise status
        return status

    def list_workloads(self):
        self.workload_calls += 1
        return list(self.workloads), dict(self.workload_errors)


class RecordingAction(AlertAction):
    """Collects delivered notifications; can be told to fail."""

    def __init__(self, succeed: bool = True, raise_error: bool = False):
        self.succeed = succeed
        self.raise_error = raise_error
        self.sent: List[Notification] = []

    def execute(self, notification: Notification) -> bool:
        self.sent.append(notification)
        if self.raise_error:
            raise RuntimeError("webhook unreachable")
        return self.succeed


def make_status(node: str, cpu: float = 10.0,
                mem_used: float = 2.0, mem_total: float = 10.0,
                disk_used: float = 3.0, disk_total: float = 10.0) -> NodeStatus:
    return NodeStatus(
        node=node,
        cpu=cpu,
        memory=ResourceUsage(mem_used, mem_total, mem_total - mem_used),
        disk=ResourceUsage(disk_used, disk_total, disk_total - disk_used),
        uptime=3600,
        loadavg=[0.1, 0.2, 0.3]
    )


def make_workload(vmid: int, status: str, node: str = "n1", name: str = "") -> Workload:
    return Workload(vmid=vmid, name=name, status=status, type="qemu", node=node)


def timeout_error(node: str) -> ProxmoxAPIError:
    return ProxmoxAPIError(node, f"Timeout connecting to {node} (15s)")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return RecordingAction()


@pytest.fixture
def notifier(recorder):
    return Notifier([recorder])


@pytest.fixture
def threshold_store(tmp_path):
    return ThresholdStore(os.path.join(tmp_path, "thresholds.json"))


@pytest.fixture
def alert_log(tmp_path):
    return AlertLog(os.path.join(tmp_path, "alert_history.json"))


@pytest.fixture
def config_store(tmp_path):
    return ConfigStore(os.path.join(tmp_path, "config.json"))
