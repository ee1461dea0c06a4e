# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from ipaddress import IPv4Interface
from ipaddress import IPv4Network
from typing import Collection
from typing import Optional
from typing import Sequence

from convergence import CancellationToken
from convergence import Probe
from convergence import poll
from os_access import AddressInfo
from os_access import Networking
from topology._exceptions import AddressMismatch


def ensure_address(networking: Networking, interface: str, address: IPv4Interface):
    present = [info.address for info in networking.get_addresses(interface)]
    if address in present:
        _logger.debug("%r: %s already has %s", networking, interface, address)
        return
    networking.add_address(interface, address)


def ensure_vlan(networking: Networking, parent: str, interface: str, vlan_id: int):
    if networking.interface_exists(interface):
        actual = networking.vlan_id(interface)
        if actual != vlan_id:
            raise AddressMismatch(
                f"{networking!r}: {interface} exists with VLAN id {actual}, expected {vlan_id}")
    else:
        networking.add_vlan(parent, interface, vlan_id)
    networking.set_link(interface, up=True)


def wait_for_address(
        networking: Networking,
        interface: str,
        timeout_sec: float,
        poll_interval_sec: float = 1,
        cancellation: Optional[CancellationToken] = None,
        ) -> Sequence[AddressInfo]:
    """Wait until the interface reports any IPv4 address."""
    return poll(
        Probe(
            f"{interface} at {networking!r} reports an IPv4 address",
            lambda: networking.get_addresses(interface),
            ),
        interval_sec=poll_interval_sec,
        timeout_sec=timeout_sec,
        cancellation=cancellation,
        )


def check_addresses(
        networking: Networking,
        interface: str,
        reported: Sequence[AddressInfo],
        expected: IPv4Interface,
        foreign_networks: Collection[IPv4Network],
        ):
    """Raise if the expected address is absent or another network leaked in."""
    addresses = [info.address for info in reported]
    if expected not in addresses:
        raise AddressMismatch(
            f"{networking!r}: {interface} reports {[str(a) for a in addresses]}, expected {expected}")
    for address in addresses:
        if address == expected:
            continue
        if address.network in foreign_networks:
            raise AddressMismatch(
                f"{networking!r}: {interface} has {address} of network {address.network}, "
                f"which belongs to another interface")
        _logger.warning("%r: %s has unexpected extra address %s", networking, interface, address)


def ensure_route(networking: Networking, subnet: IPv4Network, interface: str):
    if not networking.has_route(subnet, interface):
        networking.add_route(subnet, interface)
        _logger.info("%r: on-link route %s dev %s added", networking, subnet, interface)


_logger = logging.getLogger(__name__)
