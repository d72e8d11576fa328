"""
Cluster module initialization.
"""

from .provider import (
    NodeConfig,
    ResourceUsage,
    NodeStatus,
    Workload,
    NodeStatusSource,
    ProxmoxClient,
    ProxmoxAPIError,
    parse_nodes_from_env,
    load_node_configs
)

__all__ = [
    'NodeConfig',
    'ResourceUsage',
    'NodeStatus',
    'Workload',
    'NodeStatusSource',
    'ProxmoxClient',
    'ProxmoxAPIError',
    'parse_nodes_from_env',
    'load_node_configs'
]
