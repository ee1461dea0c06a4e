# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import logging
from typing import Any
from typing import Mapping
from typing import NamedTuple
from typing import Optional
from typing import Sequence
from typing import Tuple

from network_profiles._profiles import ConfigurationError
from network_profiles._profiles import DhcpProfile
from network_profiles._profiles import NetworkProfile
from network_profiles._profiles import parse_profile
from network_profiles._tables import profile_tables
from vm.node import NodeRole

DHCP_SERVER_NODE = 'dhcp-server'


class NodeSpec(NamedTuple):
    name: str
    role: NodeRole


class TopologyVariant(NamedTuple):
    name: str
    nodes: Tuple[NodeSpec, ...]

    def bootstrap(self) -> NodeSpec:
        [bootstrap] = [n for n in self.nodes if n.role is NodeRole.BOOTSTRAP]
        return bootstrap

    def cluster_nodes(self) -> Sequence[NodeSpec]:
        return [n for n in self.nodes if n.role.is_cluster_member()]


_variants = {
    '2-servers': (
        NodeSpec('server-1', NodeRole.BOOTSTRAP),
        NodeSpec('server-2', NodeRole.JOINER_SERVER),
        ),
    '2-servers-1-agent': (
        NodeSpec('server-1', NodeRole.BOOTSTRAP),
        NodeSpec('server-2', NodeRole.JOINER_SERVER),
        NodeSpec('agent-1', NodeRole.AGENT),
        ),
    '1-server-2-agents': (
        NodeSpec('server-1', NodeRole.BOOTSTRAP),
        NodeSpec('agent-1', NodeRole.AGENT),
        NodeSpec('agent-2', NodeRole.AGENT),
        ),
    '2-servers-2-agents': (
        NodeSpec('server-1', NodeRole.BOOTSTRAP),
        NodeSpec('server-2', NodeRole.JOINER_SERVER),
        NodeSpec('agent-1', NodeRole.AGENT),
        NodeSpec('agent-2', NodeRole.AGENT),
        ),
    }


def list_variants() -> Sequence[str]:
    return list(_variants)


def list_profiles() -> Sequence[str]:
    return list(profile_tables)


def load_profile(name: str, tables: Optional[Mapping[str, Mapping[str, Any]]] = None) -> NetworkProfile:
    if tables is None:
        tables = profile_tables
    try:
        table = tables[name]
    except KeyError:
        raise ConfigurationError(f"Unknown profile {name!r}, choose from {sorted(tables)}")
    return parse_profile(name, table)


def load_variant(name: str, profile: NetworkProfile) -> TopologyVariant:
    """Node set of the variant, checked against the profile address table."""
    try:
        nodes = _variants[name]
    except KeyError:
        raise ConfigurationError(f"Unknown variant {name!r}, choose from {sorted(_variants)}")
    for node in nodes:
        if node.name not in profile.addresses:
            raise ConfigurationError(
                f"Profile {profile.name!r} has no addresses for {node.name} of variant {name!r}")
    if isinstance(profile, DhcpProfile):
        nodes = (*nodes, NodeSpec(DHCP_SERVER_NODE, NodeRole.AUXILIARY_DHCP))
    variant = TopologyVariant(name, nodes)
    _logger.debug("Variant %s with profile %s: %s", name, profile.name, [n.name for n in nodes])
    return variant


_logger = logging.getLogger(__name__)
