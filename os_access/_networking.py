# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

from abc import ABCMeta
from abc import abstractmethod
from ipaddress import IPv4Address
from ipaddress import IPv4Interface
from ipaddress import IPv4Network
from typing import Mapping
from typing import NamedTuple
from typing import Optional
from typing import Sequence


class AddressInfo(NamedTuple):
    address: IPv4Interface
    dynamic: bool = False


class BondStatus(NamedTuple):
    mode: str
    mii_status: str
    active_slave: Optional[str]
    slaves: Mapping[str, str]

    def is_ready(self) -> bool:
        return self.mii_status == 'up' and bool(self.active_slave)


def parse_bond_status(text: str) -> BondStatus:
    """Parse /proc/net/bonding/<bond>.

    The header describes the bond itself; each "Slave Interface" block
    describes one member and repeats the "MII Status" key.
    """
    bond = {}
    slaves = {}
    current_slave = None
    for line in text.splitlines():
        key, sep, value = line.partition(':')
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key == 'Slave Interface':
            current_slave = value
            slaves[current_slave] = 'unknown'
        elif current_slave is None:
            bond[key] = value
        elif key == 'MII Status':
            slaves[current_slave] = value
    active_slave = bond.get('Currently Active Slave')
    if active_slave in (None, '', 'None'):
        active_slave = None
    return BondStatus(
        mode=bond.get('Bonding Mode', 'unknown'),
        mii_status=bond.get('MII Status', 'unknown'),
        active_slave=active_slave,
        slaves=slaves,
        )


class Networking(metaclass=ABCMeta):
    """Interface and address management of one node."""

    @abstractmethod
    def load_module(self, module: str) -> bool:
        """Load kernel module; False if it's neither loadable nor loaded."""
        pass

    @abstractmethod
    def interface_exists(self, interface: str) -> bool:
        pass

    @abstractmethod
    def mac_address(self, interface: str) -> str:
        pass

    @abstractmethod
    def set_link(self, interface: str, up: bool):
        pass

    @abstractmethod
    def get_addresses(self, interface: str) -> Sequence[AddressInfo]:
        pass

    @abstractmethod
    def add_address(self, interface: str, address: IPv4Interface):
        pass

    @abstractmethod
    def add_vlan(self, parent: str, interface: str, vlan_id: int):
        pass

    @abstractmethod
    def vlan_id(self, interface: str) -> Optional[int]:
        pass

    @abstractmethod
    def create_bond(self, bond: str, mode: str, miimon_ms: int, primary_reselect: str):
        pass

    @abstractmethod
    def set_bond_primary(self, bond: str, primary: str):
        pass

    @abstractmethod
    def set_master(self, interface: str, master: Optional[str]):
        pass

    @abstractmethod
    def delete_link(self, interface: str):
        pass

    @abstractmethod
    def bond_mode(self, bond: str) -> Optional[str]:
        """Mode of an existing bond, None if there is no such bond."""
        pass

    @abstractmethod
    def bond_status(self, bond: str) -> BondStatus:
        pass

    @abstractmethod
    def has_route(self, destination: IPv4Network, interface: str) -> bool:
        pass

    @abstractmethod
    def has_default_route(self) -> bool:
        pass

    @abstractmethod
    def add_route(self, destination: Optional[IPv4Network], interface: str, via: Optional[IPv4Address] = None):
        """Add route; default route if destination is None."""
        pass

    @abstractmethod
    def ping(self, address: IPv4Address) -> bool:
        """Single attempt; retries are the caller's business."""
        pass
