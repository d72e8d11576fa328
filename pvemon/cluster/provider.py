"""
Proxmox Node Provider Module

This module provides the data sources consumed by the alert engine: node
status and workload (VM/LXC) inventory, fetched from the Proxmox VE HTTP API
of every configured node.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any, Tuple, Mapping
import json
import logging
import os

import requests
import urllib3

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_SECONDS = 15


class ProxmoxAPIError(Exception):
    """Raised when a single node request fails (timeout, HTTP error, unreachable)."""

    def __init__(self, node_name: str, message: str):
        super().__init__(message)
        self.node_name = node_name


@dataclass
class NodeConfig:
    """Connection settings for one Proxmox node."""
    name: str
    url: str
    token_id: str
    token_secret: str
    cf_access_enabled: bool = False
    cf_access_client_id: Optional[str] = None
    cf_access_client_secret: Optional[str] = None
    verify_ssl: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NodeConfig':
        """Build a node config from either snake_case or camelCase keys."""
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        return cls(
            name=pick('name', default='pve'),
            url=str(pick('url', default='')).rstrip('/'),
            token_id=pick('token_id', 'tokenId', default=''),
            token_secret=pick('token_secret', 'tokenSecret', default=''),
            cf_access_enabled=bool(pick('cf_access_enabled', 'cfAccessEnabled', default=False)),
            cf_access_client_id=pick('cf_access_client_id', 'cfAccessClientId'),
            cf_access_client_secret=pick('cf_access_client_secret', 'cfAccessClientSecret'),
            verify_ssl=bool(pick('verify_ssl', 'verifySsl', default=False)),
        )


@dataclass
class ResourceUsage:
    used: float
    total: float
    free: float

    @property
    def percent(self) -> float:
        if not self.total:
            return 0.0
        return self.used * 100 / self.total


@dataclass
class NodeStatus:
    """Point-in-time resource usage of a node. CPU is already a percentage."""
    node: str
    cpu: float
    memory: ResourceUsage
    disk: ResourceUsage
    uptime: int = 0
    loadavg: List[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])

    @property
    def memory_percent(self) -> float:
        return self.memory.percent

    @property
    def disk_percent(self) -> float:
        return self.disk.percent

    def metric_value(self, metric: str) -> Optional[float]:
        """Return the percentage for a metric name, or None if unknown."""
        if metric == 'cpu':
            return self.cpu
        if metric == 'memory':
            return self.memory_percent
        if metric == 'disk':
            return self.disk_percent
        return None


@dataclass
class Workload:
    """A QEMU virtual machine or LXC container as reported by a node."""
    vmid: int
    name: str
    status: str
    type: str
    node: str
    cpu: float = 0.0
    maxcpu: int = 0
    mem: int = 0
    maxmem: int = 0
    disk: int = 0
    maxdisk: int = 0
    uptime: int = 0
    netin: int = 0
    netout: int = 0

    @property
    def state_key(self) -> str:
        return f"{self.node}:{self.vmid}"

    @property
    def display_name(self) -> str:
        return self.name or f"VM {self.vmid}"

    @classmethod
    def from_api(cls, data: Dict[str, Any], workload_type: str, node_name: str) -> 'Workload':
        return cls(
            vmid=int(data.get('vmid', 0)),
            name=data.get('name') or '',
            status=data.get('status', 'unknown'),
            type=workload_type,
            node=node_name,
            cpu=float(data.get('cpu', 0) or 0),
            maxcpu=int(data.get('maxcpu', data.get('cpus', 0)) or 0),
            mem=int(data.get('mem', 0) or 0),
            maxmem=int(data.get('maxmem', 0) or 0),
            disk=int(data.get('disk', 0) or 0),
            maxdisk=int(data.get('maxdisk', 0) or 0),
            uptime=int(data.get('uptime', 0) or 0),
            netin=int(data.get('netin', 0) or 0),
            netout=int(data.get('netout', 0) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NodeStatusSource(ABC):
    """Abstract source of node status and workload inventory."""

    @abstractmethod
    def get_node_names(self) -> List[str]:
        """Names of all configured nodes."""
        pass

    @abstractmethod
    def get_node_status(self, node_name: Optional[str] = None) -> NodeStatus:
        """Fetch the status of one node. Raises ProxmoxAPIError on failure."""
        pass

    @abstractmethod
    def list_workloads(self) -> Tuple[List[Workload], Dict[str, str]]:
        """Fetch workloads of all nodes. Returns (workloads, errors by node name)."""
        pass

    def get_all_nodes_status(self) -> Tuple[List[NodeStatus], Dict[str, str]]:
        """
        Fetch the status of every node concurrently.

        Waits for every request to settle before returning. A failing node is
        logged and reported in the error map; it never blocks the others.
        """
        names = self.get_node_names()
        if not names:
            return [], {}

        statuses: List[NodeStatus] = []
        errors: Dict[str, str] = {}

        with ThreadPoolExecutor(max_workers=len(names)) as executor:
            futures = {name: executor.submit(self.get_node_status, name) for name in names}
            for name, future in futures.items():
                try:
                    statuses.append(future.result())
                except Exception as e:
                    logger.error(f"Failed to get status from \"{name}\": {e}")
                    errors[name] = str(e)

        return statuses, errors


class ProxmoxClient(NodeStatusSource):
    """Node source backed by the Proxmox VE REST API (API token auth)."""

    def __init__(self, nodes: List[NodeConfig],
                 timeout: int = FETCH_TIMEOUT_SECONDS,
                 session: Optional[requests.Session] = None):
        self.nodes = nodes
        self.timeout = timeout
        self._session = session or requests.Session()
        self._last_node_errors: Dict[str, str] = {}

        if any(not n.verify_ssl for n in nodes):
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def get_node_names(self) -> List[str]:
        return [n.name for n in self.nodes]

    def get_node(self, name: Optional[str] = None) -> Optional[NodeConfig]:
        """Find a node by name (case-insensitive). No name means the first node."""
        if not name:
            return self.nodes[0] if self.nodes else None
        for node in self.nodes:
            if node.name.lower() == name.lower():
                return node
        return None

    def get_last_node_errors(self) -> Dict[str, str]:
        """Per-node errors from the most recent workload listing."""
        return dict(self._last_node_errors)

    def _headers(self, node: NodeConfig) -> Dict[str, str]:
        headers = {'Authorization': f"PVEAPIToken={node.token_id}={node.token_secret}"}
        if node.cf_access_enabled and node.cf_access_client_id and node.cf_access_client_secret:
            headers['CF-Access-Client-Id'] = node.cf_access_client_id
            headers['CF-Access-Client-Secret'] = node.cf_access_client_secret
        return headers

    def _fetch(self, node: NodeConfig, endpoint: str, method: str = 'GET') -> Any:
        url = f"{node.url}/api2/json{endpoint}"
        try:
            response = self._session.request(
                method,
                url,
                headers=self._headers(node),
                timeout=self.timeout,
                verify=node.verify_ssl
            )
        except requests.Timeout:
            raise ProxmoxAPIError(node.name, f"Timeout connecting to {node.name} ({self.timeout}s)")
        except requests.RequestException as e:
            raise ProxmoxAPIError(node.name, f"Failed to connect to {node.name}: {e}")

        if not response.ok:
            raise ProxmoxAPIError(
                node.name,
                f"Proxmox API error ({node.name}): {response.status_code} {response.reason}"
            )

        try:
            return response.json()['data']
        except (ValueError, KeyError, TypeError) as e:
            raise ProxmoxAPIError(node.name, f"Invalid response from {node.name}: {e}")

    def _require_node(self, node_name: Optional[str]) -> NodeConfig:
        node = self.get_node(node_name)
        if node is None:
            raise ProxmoxAPIError(node_name or '', f"Node \"{node_name}\" not found")
        return node

    def get_node_status(self, node_name: Optional[str] = None) -> NodeStatus:
        node = self._require_node(node_name)
        status = self._fetch(node, f"/nodes/{node.name}/status")

        try:
            memory = status['memory']
            rootfs = status['rootfs']
            return NodeStatus(
                node=node.name,
                cpu=float(status['cpu']) * 100,
                memory=ResourceUsage(memory['used'], memory['total'], memory['free']),
                disk=ResourceUsage(rootfs['used'], rootfs['total'], rootfs['free']),
                uptime=int(status.get('uptime', 0)),
                loadavg=[float(v) for v in (status.get('loadavg') or [0, 0, 0])]
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProxmoxAPIError(node.name, f"Unexpected status payload from {node.name}: {e}")

    def list_workloads(self, node_name: Optional[str] = None) -> Tuple[List[Workload], Dict[str, str]]:
        if node_name:
            target = self.get_node(node_name)
            targets = [target] if target else []
        else:
            targets = self.nodes

        workloads: List[Workload] = []
        errors: Dict[str, str] = {}

        for node in targets:
            try:
                logger.debug(f"Fetching workloads from node \"{node.name}\"")
                qemu = self._fetch(node, f"/nodes/{node.name}/qemu") or []
                lxc = self._fetch(node, f"/nodes/{node.name}/lxc") or []
                logger.debug(f"Node \"{node.name}\": {len(qemu)} QEMU VMs, {len(lxc)} LXC containers")

                workloads.extend(Workload.from_api(vm, 'qemu', node.name) for vm in qemu)
                workloads.extend(Workload.from_api(ct, 'lxc', node.name) for ct in lxc)
            except ProxmoxAPIError as e:
                logger.error(f"Failed to get workloads from \"{node.name}\": {e}")
                errors[node.name] = str(e)

        if not workloads and errors:
            logger.warning(f"No workloads found and {len(errors)} node(s) had errors")

        self._last_node_errors = errors
        workloads.sort(key=lambda w: w.vmid)
        return workloads, errors


def parse_nodes_from_env(environ: Optional[Mapping[str, str]] = None) -> List[NodeConfig]:
    """
    Read node definitions from the environment.

    PROXMOX_NODES holds a JSON list of nodes. Without it (or when it is not
    valid JSON) a single node is built from PROXMOX_URL, PROXMOX_TOKEN_ID,
    PROXMOX_TOKEN_SECRET and PROXMOX_NODE.
    """
    env = os.environ if environ is None else environ

    nodes_json = env.get('PROXMOX_NODES')
    if nodes_json:
        try:
            return [NodeConfig.from_dict(item) for item in json.loads(nodes_json)]
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Failed to parse PROXMOX_NODES JSON: {e}")

    url = env.get('PROXMOX_URL')
    token_id = env.get('PROXMOX_TOKEN_ID')
    token_secret = env.get('PROXMOX_TOKEN_SECRET')
    if url and token_id and token_secret:
        return [NodeConfig(
            name=env.get('PROXMOX_NODE') or 'pve',
            url=url.rstrip('/'),
            token_id=token_id,
            token_secret=token_secret,
            cf_access_enabled=env.get('CF_ACCESS_ENABLED') == 'true',
            cf_access_client_id=env.get('CF_ACCESS_CLIENT_ID'),
            cf_access_client_secret=env.get('CF_ACCESS_CLIENT_SECRET'),
        )]

    return []


def load_node_configs(settings_nodes: Optional[List[Dict[str, Any]]] = None,
                      environ: Optional[Mapping[str, str]] = None) -> List[NodeConfig]:
    """Nodes from the environment take precedence over the settings file."""
    nodes = parse_nodes_from_env(environ)
    if nodes:
        return nodes
    return [NodeConfig.from_dict(item) for item in (settings_nodes or [])]
