# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import hashlib
from ipaddress import IPv4Interface
from typing import Iterable
from typing import NamedTuple
from typing import Sequence

from network_profiles import ConfigurationError
from network_profiles import NetworkProfile

# Locally administered range used by QEMU for guest NICs.
_QEMU_OUI = '52:54:00'


def vm_name(node: str) -> str:
    """Name the VM is known by to the image pipeline: server-1 -> server_1."""
    return node.replace('-', '_')


def mac_for(node: str, segment: int) -> str:
    """MAC of the node NIC attached to the given network segment.

    Images self-assign MACs with exactly this formula: the first two bytes
    of the MD5 of the VM name, then the segment number. The segment is the
    1-based number of the data-plane NIC (eth1 is 1, eth2 is 2).

    >>> mac_for('server-1', 1)
    '52:54:00:a9:d3:01'
    """
    if not 0 <= segment <= 0xff:
        raise ValueError(f"Segment {segment} does not fit into one MAC byte")
    digest = hashlib.md5(vm_name(node).encode('ascii')).hexdigest()
    return f'{_QEMU_OUI}:{digest[0:2]}:{digest[2:4]}:{segment:02x}'


def ip_for(profile: NetworkProfile, node: str, network: str = 'cluster') -> IPv4Interface:
    try:
        per_network = profile.addresses[node]
    except KeyError:
        raise ConfigurationError(f"Profile {profile.name!r} has no addresses for {node}")
    try:
        return per_network[network]
    except KeyError:
        raise ConfigurationError(
            f"Profile {profile.name!r} has no {network} network address for {node}")


class DhcpReservation(NamedTuple):
    mac: str
    name: str
    ip: IPv4Interface


def dhcp_reservations(profile: NetworkProfile, nodes: Iterable[str]) -> Sequence[DhcpReservation]:
    """Static leases the DHCP server hands out on the cluster segment."""
    [segment] = profile.segments().values()
    return [
        DhcpReservation(mac_for(node, segment), node, ip_for(profile, node))
        for node in nodes
        ]


def assert_no_collisions(profile: NetworkProfile, nodes: Sequence[str]):
    """Every node gets distinct MACs and addresses on a shared segment.

    Nothing at runtime arbitrates between the nodes on a segment, so
    the plan is rejected up front if two nodes would clash.
    """
    owners = {}
    for node in nodes:
        for segment in profile.segments().values():
            _claim(owners, mac_for(node, segment), node)
        for network, address in profile.addresses.get(node, {}).items():
            _claim(owners, (network, address.ip), node)


def _claim(owners, key, node):
    owner = owners.setdefault(key, node)
    if owner != node:
        raise ConfigurationError(f"{owner} and {node} share {key}")
