# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import time
from ipaddress import IPv4Interface
from typing import List
from typing import Mapping
from typing import Optional
from typing import Sequence

from convergence import CancellationToken
from convergence import Probe
from convergence import seconds_left
from identity import ip_for
from identity import mac_for
from network_profiles import BondingVlansProfile
from network_profiles import DhcpProfile
from network_profiles import InterfaceKind
from network_profiles import NetworkProfile
from network_profiles import SimpleProfile
from network_profiles import VlansProfile
from os_access import Networking
from topology._addresses import check_addresses
from topology._addresses import ensure_address
from topology._addresses import ensure_route
from topology._addresses import ensure_vlan
from topology._addresses import wait_for_address
from topology._bond import exercise_bond_failover
from topology._bond import reconcile_bond
from topology._bond import wait_for_bond
from topology._exceptions import AddressMismatch
from topology._exceptions import CapabilityMissing
from vm.fleet import Fleet
from vm.node import Node


class TopologyConfigurator:
    """Bring a node's interfaces to the layout and addresses of the profile.

    Configuring twice is harmless: what is already in place is kept.
    Every address is checked against the identity registry; a different
    address is an error, not something to wait out.
    """

    def __init__(
            self,
            fleet: Fleet,
            profile: NetworkProfile,
            *,
            timeout_sec: float = 60,
            poll_interval_sec: float = 1,
            bond_detection_sec: float = 10,
            cancellation: Optional[CancellationToken] = None,
            ):
        self._fleet = fleet
        self._profile = profile
        self._timeout_sec = timeout_sec
        self._poll_interval_sec = poll_interval_sec
        self._bond_detection_sec = bond_detection_sec
        self._cancellation = cancellation

    def __repr__(self):
        return f'<TopologyConfigurator {self._profile.name}>'

    def configure(self, node: Node, deadline: Optional[float] = None) -> Mapping[str, IPv4Interface]:
        """Configure and return the verified address of every addressed interface.

        All waits share the monotonic deadline; without one, they share the
        configured timeout counted from now.
        """
        if deadline is None:
            deadline = time.monotonic() + self._timeout_sec
        networking = self._fleet.networking(node)
        profile = self._profile
        if isinstance(profile, SimpleProfile):
            networking.set_link(profile.interface, up=True)
            ensure_address(networking, profile.interface, ip_for(profile, node.name))
        elif isinstance(profile, VlansProfile):
            self._require_module(node, networking, '8021q')
            networking.set_link(profile.trunk, up=True)
            self._configure_vlans(node, networking)
        elif isinstance(profile, BondingVlansProfile):
            self._require_module(node, networking, 'bonding')
            self._require_module(node, networking, '8021q')
            reconcile_bond(networking, profile.bond)
            wait_for_bond(
                networking, profile.bond, seconds_left(deadline), self._poll_interval_sec, self._cancellation)
            self._configure_vlans(node, networking)
        elif isinstance(profile, DhcpProfile):
            networking.set_link(profile.interface, up=True)
        else:
            raise TypeError(f"Unsupported profile {profile!r}")
        result = self._verify_addresses(node, networking, deadline)
        if isinstance(profile, DhcpProfile):
            ensure_route(networking, profile.subnet, profile.interface)
        _logger.info("%s: network configured: %s", node.name, {i: str(a) for i, a in result.items()})
        return result

    def exercise_failover(self, node: Node, deadline: Optional[float] = None):
        if not isinstance(self._profile, BondingVlansProfile):
            raise TypeError(f"Profile {self._profile.name} has no bond")
        exercise_bond_failover(
            self._fleet.networking(node),
            self._profile.bond,
            self._bond_detection_sec,
            min(self._poll_interval_sec, 0.5),
            self._cancellation,
            deadline,
            )

    def verify_macs(self, node: Node):
        """The NIC MACs of a booted node must be those the registry computes."""
        networking = self._fleet.networking(node)
        for nic, segment in self._profile.segments().items():
            expected = mac_for(node.name, segment)
            actual = networking.mac_address(nic)
            if actual != expected:
                raise AddressMismatch(
                    f"{node.name}: {nic} has MAC {actual}, identity registry computes {expected}")
        _logger.debug("%s: MACs match the identity registry", node.name)

    def _require_module(self, node: Node, networking: Networking, module: str):
        if not networking.load_module(module):
            raise CapabilityMissing(node.name, module)

    def _configure_vlans(self, node: Node, networking: Networking):
        for spec in self._profile.interfaces():
            if spec.kind is not InterfaceKind.VLAN:
                continue
            ensure_vlan(networking, spec.parent, spec.name, spec.vlan_id)
            ensure_address(networking, spec.name, ip_for(self._profile, node.name, spec.network))

    def _verify_addresses(self, node: Node, networking: Networking, deadline: float) -> Mapping[str, IPv4Interface]:
        networks = self._profile.networks()
        result = {}
        for spec in self._profile.interfaces():
            if spec.network is None:
                continue
            expected = ip_for(self._profile, node.name, spec.network)
            reported = wait_for_address(
                networking, spec.name, seconds_left(deadline), self._poll_interval_sec, self._cancellation)
            foreign = [subnet for network, subnet in networks.items() if network != spec.network]
            check_addresses(networking, spec.name, reported, expected, foreign)
            if isinstance(self._profile, DhcpProfile):
                [info] = [info for info in reported if info.address == expected]
                if not info.dynamic:
                    _logger.warning("%s: %s is not marked as a DHCP lease", node.name, expected)
            result[spec.name] = expected
        return result

    def problems(self, node: Node, peers: Sequence[str]) -> List[str]:
        """Deviations from a working network; empty when everything holds.

        Addresses and routes of the node itself, VLAN tags, and reachability
        of every peer on every network both have an address on.
        """
        networking = self._fleet.networking(node)
        networks = self._profile.networks()
        result = []
        for spec in self._profile.interfaces():
            if spec.kind is InterfaceKind.VLAN and networking.vlan_id(spec.name) != spec.vlan_id:
                result.append(f"{spec.name} is not tagged with VLAN {spec.vlan_id}")
            if spec.network is None:
                continue
            expected = ip_for(self._profile, node.name, spec.network)
            if expected not in [info.address for info in networking.get_addresses(spec.name)]:
                result.append(f"{spec.name} has no {expected}")
            if not networking.has_route(networks[spec.network], spec.name):
                result.append(f"no route to {networks[spec.network]} via {spec.name}")
        own = self._profile.addresses[node.name]
        for peer in peers:
            for network, address in self._profile.addresses[peer].items():
                if network in own and not networking.ping(address.ip):
                    result.append(f"{peer} is unreachable at {address.ip}")
        return result

    def postcondition(self, node: Node, peers: Sequence[str]) -> Probe:
        return Probe(
            f"{node.name} has the {self._profile.name} network and reaches {', '.join(peers) or 'no peers'}",
            lambda: self.problems(node, peers),
            lambda problems: not problems,
            )


_logger = logging.getLogger(__name__)
