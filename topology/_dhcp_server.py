# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import time
from typing import Optional
from typing import Sequence

from convergence import CancellationToken
from convergence import Probe
from convergence import poll
from convergence import seconds_left
from identity import dhcp_reservations
from network_profiles import DhcpProfile
from topology._addresses import ensure_address
from vm.fleet import Fleet
from vm.node import Node

DNSMASQ_CONFIG_PATH = '/etc/dnsmasq.d/cluster.conf'
DNSMASQ_SERVICE = 'dnsmasq.service'
DNSMASQ_LEASES_PATH = '/var/lib/misc/dnsmasq.leases'


def render_dnsmasq_config(profile: DhcpProfile, cluster_nodes: Sequence[str]) -> str:
    """Reservations pin every cluster node to its address from the profile.

    >>> from network_profiles import load_profile
    >>> print(render_dnsmasq_config(load_profile('dhcp'), ['server-1']), end='')
    interface=eth1
    bind-interfaces
    dhcp-range=192.168.1.100,192.168.1.200,255.255.255.0,12h
    dhcp-host=52:54:00:a9:d3:01,server-1,192.168.1.1
    address=/server-1.local/192.168.1.1
    """
    server = profile.server
    lines = [
        f'interface={profile.interface}',
        'bind-interfaces',
        f'dhcp-range={server.range_start},{server.range_end},{profile.subnet.netmask},{server.lease_time}',
        ]
    for reservation in dhcp_reservations(profile, cluster_nodes):
        lines.append(f'dhcp-host={reservation.mac},{reservation.name},{reservation.ip.ip}')
        lines.append(f'address=/{reservation.name}.local/{reservation.ip.ip}')
    return ''.join(line + '\n' for line in lines)


class DhcpServerConfigurator:
    """Turn the auxiliary node into the DHCP server of the cluster segment."""

    def __init__(
            self,
            fleet: Fleet,
            profile: DhcpProfile,
            cluster_nodes: Sequence[str],
            *,
            timeout_sec: float = 60,
            poll_interval_sec: float = 1,
            cancellation: Optional[CancellationToken] = None,
            ):
        self._fleet = fleet
        self._profile = profile
        self._cluster_nodes = cluster_nodes
        self._timeout_sec = timeout_sec
        self._poll_interval_sec = poll_interval_sec
        self._cancellation = cancellation

    def configure(self, node: Node, deadline: Optional[float] = None):
        if deadline is None:
            deadline = time.monotonic() + self._timeout_sec
        networking = self._fleet.networking(node)
        interface = self._profile.interface
        networking.set_link(interface, up=True)
        ensure_address(networking, interface, self._profile.server.address)
        config = render_dnsmasq_config(self._profile, self._cluster_nodes)
        self._fleet.write_file(node, DNSMASQ_CONFIG_PATH, config)
        self._fleet.service(node, DNSMASQ_SERVICE).restart()
        self._wait(deadline, Probe(
            f"{DNSMASQ_SERVICE} is active on {node.name}",
            lambda: self._fleet.is_service_active(node, DNSMASQ_SERVICE),
            ))
        self._wait(deadline, Probe(
            f"{DNSMASQ_SERVICE} listens on UDP port 67 on {node.name}",
            lambda: self._fleet.run(node, ['ss', '-ulnp'])[1],
            lambda output: ':67 ' in output,
            ))
        _logger.info(
            "%s: DHCP server at %s serves %s",
            node.name, self._profile.server.address, ', '.join(self._cluster_nodes))

    def _wait(self, deadline: float, probe: Probe):
        poll(
            probe,
            interval_sec=self._poll_interval_sec,
            timeout_sec=seconds_left(deadline),
            cancellation=self._cancellation,
            )


_logger = logging.getLogger(__name__)
