# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import logging
from enum import Enum
from ipaddress import IPv4Address
from ipaddress import IPv4Interface
from ipaddress import IPv4Network
from typing import Any
from typing import Mapping
from typing import NamedTuple
from typing import Optional
from typing import Sequence
from typing import Tuple
from typing import Union


class ConfigurationError(Exception):
    pass


class InterfaceKind(Enum):
    PHYSICAL = 'physical'
    VLAN = 'vlan'
    BOND = 'bond'


class InterfaceSpec(NamedTuple):
    name: str
    kind: InterfaceKind
    parent: Optional[str] = None
    vlan_id: Optional[int] = None
    bond_mode: Optional[str] = None
    # Logical network whose address is assigned to the interface.
    network: Optional[str] = None


class VlanSpec(NamedTuple):
    network: str
    vlan_id: int
    subnet: IPv4Network


class BondSpec(NamedTuple):
    name: str
    members: Tuple[str, ...]
    mode: str
    primary: str
    miimon_ms: int
    primary_reselect: str

    def backup(self) -> str:
        [backup, *_] = [m for m in self.members if m != self.primary]
        return backup


class DhcpServerSpec(NamedTuple):
    address: IPv4Interface
    range_start: IPv4Address
    range_end: IPv4Address
    lease_time: str


_Addresses = Mapping[str, Mapping[str, IPv4Interface]]


class SimpleProfile(NamedTuple):
    name: str
    interface: str
    subnet: IPv4Network
    addresses: _Addresses

    def interfaces(self) -> Sequence[InterfaceSpec]:
        return [InterfaceSpec(self.interface, InterfaceKind.PHYSICAL, network='cluster')]

    def cluster_interface(self) -> str:
        return self.interface

    def networks(self) -> Mapping[str, IPv4Network]:
        return {'cluster': self.subnet}

    def segments(self) -> Mapping[str, int]:
        return {self.interface: 1}


class VlansProfile(NamedTuple):
    name: str
    trunk: str
    vlans: Tuple[VlanSpec, ...]
    addresses: _Addresses

    def interfaces(self) -> Sequence[InterfaceSpec]:
        return [
            InterfaceSpec(self.trunk, InterfaceKind.PHYSICAL),
            *_vlan_interfaces(self.trunk, self.vlans),
            ]

    def cluster_interface(self) -> str:
        return _vlan_interface_name(self.trunk, _vlan_of(self.vlans, 'cluster'))

    def networks(self) -> Mapping[str, IPv4Network]:
        return {vlan.network: vlan.subnet for vlan in self.vlans}

    def segments(self) -> Mapping[str, int]:
        return {self.trunk: 1}


class BondingVlansProfile(NamedTuple):
    name: str
    bond: BondSpec
    vlans: Tuple[VlanSpec, ...]
    addresses: _Addresses
    verify_failover: bool = False

    def interfaces(self) -> Sequence[InterfaceSpec]:
        members = [
            InterfaceSpec(member, InterfaceKind.PHYSICAL, parent=self.bond.name)
            for member in self.bond.members
            ]
        bond = InterfaceSpec(self.bond.name, InterfaceKind.BOND, bond_mode=self.bond.mode)
        return [*members, bond, *_vlan_interfaces(self.bond.name, self.vlans)]

    def cluster_interface(self) -> str:
        return _vlan_interface_name(self.bond.name, _vlan_of(self.vlans, 'cluster'))

    def networks(self) -> Mapping[str, IPv4Network]:
        return {vlan.network: vlan.subnet for vlan in self.vlans}

    def segments(self) -> Mapping[str, int]:
        return {member: index for index, member in enumerate(self.bond.members, 1)}


class DhcpProfile(NamedTuple):
    name: str
    interface: str
    subnet: IPv4Network
    server: DhcpServerSpec
    # Reserved addresses; the nodes obtain them from the DHCP server.
    addresses: _Addresses

    def interfaces(self) -> Sequence[InterfaceSpec]:
        return [InterfaceSpec(self.interface, InterfaceKind.PHYSICAL, network='cluster')]

    def cluster_interface(self) -> str:
        return self.interface

    def networks(self) -> Mapping[str, IPv4Network]:
        return {'cluster': self.subnet}

    def segments(self) -> Mapping[str, int]:
        return {self.interface: 1}


NetworkProfile = Union[SimpleProfile, VlansProfile, BondingVlansProfile, DhcpProfile]


def _vlan_interface_name(parent: str, vlan: VlanSpec) -> str:
    return f'{parent}.{vlan.vlan_id}'


def _vlan_interfaces(parent: str, vlans: Sequence[VlanSpec]) -> Sequence[InterfaceSpec]:
    return [
        InterfaceSpec(
            _vlan_interface_name(parent, vlan),
            InterfaceKind.VLAN,
            parent=parent,
            vlan_id=vlan.vlan_id,
            network=vlan.network,
            )
        for vlan in vlans
        ]


def _vlan_of(vlans: Sequence[VlanSpec], network: str) -> VlanSpec:
    for vlan in vlans:
        if vlan.network == network:
            return vlan
    raise ConfigurationError(f"No VLAN carries network {network!r}")


def parse_profile(name: str, table: Mapping[str, Any]) -> NetworkProfile:
    """Validate a raw profile table and build the profile of its type.

    >>> profile = parse_profile('tiny', {
    ...     'type': 'simple',
    ...     'interface': 'eth1',
    ...     'subnet': '10.0.0.0/24',
    ...     'addresses': {'server-1': {'cluster': '10.0.0.1/24'}},
    ...     })
    >>> profile.cluster_interface()
    'eth1'
    """
    try:
        profile_type = table['type']
    except KeyError:
        raise ConfigurationError(f"Profile {name!r}: 'type' is missing")
    try:
        parse = _parsers[profile_type]
    except KeyError:
        raise ConfigurationError(
            f"Profile {name!r}: unknown type {profile_type!r}, "
            f"choose from {sorted(_parsers)}")
    try:
        profile = parse(name, table)
    except KeyError as e:
        raise ConfigurationError(f"Profile {name!r}: key {e} is missing")
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Profile {name!r}: {e}")
    _validate_addresses(profile)
    _logger.debug("Parsed profile %s: %r", name, profile)
    return profile


def _parse_simple(name, table) -> SimpleProfile:
    return SimpleProfile(
        name=name,
        interface=table['interface'],
        subnet=IPv4Network(table['subnet']),
        addresses=_parse_addresses(table['addresses']),
        )


def _parse_vlans(name, table) -> VlansProfile:
    return VlansProfile(
        name=name,
        trunk=table['trunk'],
        vlans=_parse_vlan_table(table['vlans']),
        addresses=_parse_addresses(table['addresses']),
        )


def _parse_bonding_vlans(name, table) -> BondingVlansProfile:
    raw_bond = table['bond']
    members = tuple(raw_bond['members'])
    if len(members) < 2:
        raise ValueError(f"bond needs at least two members, got {members}")
    primary = raw_bond.get('primary', members[0])
    if primary not in members:
        raise ValueError(f"bond primary {primary!r} is not one of {members}")
    bond = BondSpec(
        name=raw_bond['name'],
        members=members,
        mode=raw_bond['mode'],
        primary=primary,
        miimon_ms=int(raw_bond.get('miimon', 100)),
        primary_reselect=raw_bond.get('primary_reselect', 'always'),
        )
    return BondingVlansProfile(
        name=name,
        bond=bond,
        vlans=_parse_vlan_table(table['vlans']),
        addresses=_parse_addresses(table['addresses']),
        verify_failover=bool(table.get('verify_failover', False)),
        )


def _parse_dhcp(name, table) -> DhcpProfile:
    subnet = IPv4Network(table['subnet'])
    raw_server = table['server']
    [range_start, range_end] = raw_server['range']
    server = DhcpServerSpec(
        address=IPv4Interface(raw_server['address']),
        range_start=IPv4Address(range_start),
        range_end=IPv4Address(range_end),
        lease_time=raw_server.get('lease', '12h'),
        )
    for address in server.address.ip, server.range_start, server.range_end:
        if address not in subnet:
            raise ValueError(f"DHCP server address {address} is outside {subnet}")
    if server.range_start > server.range_end:
        raise ValueError(f"DHCP range {server.range_start}-{server.range_end} is empty")
    return DhcpProfile(
        name=name,
        interface=table['interface'],
        subnet=subnet,
        server=server,
        addresses=_parse_addresses(table['addresses']),
        )


def _parse_vlan_table(raw: Mapping[str, Mapping[str, Any]]) -> Tuple[VlanSpec, ...]:
    vlans = []
    for network, raw_vlan in raw.items():
        vlan_id = int(raw_vlan['id'])
        if not 1 <= vlan_id <= 4094:
            raise ValueError(f"VLAN id {vlan_id} of network {network!r} is outside 1..4094")
        vlans.append(VlanSpec(network, vlan_id, IPv4Network(raw_vlan['subnet'])))
    ids = [vlan.vlan_id for vlan in vlans]
    if len(set(ids)) != len(ids):
        raise ValueError(f"VLAN ids are not unique: {ids}")
    if 'cluster' not in raw:
        raise ValueError("no VLAN carries the 'cluster' network")
    return tuple(vlans)


def _parse_addresses(raw: Mapping[str, Mapping[str, str]]) -> _Addresses:
    return {
        node: {network: IPv4Interface(address) for network, address in per_network.items()}
        for node, per_network in raw.items()
        }


def _validate_addresses(profile: NetworkProfile):
    networks = profile.networks()
    seen = {}
    for node, per_network in profile.addresses.items():
        if 'cluster' not in per_network:
            raise ConfigurationError(f"Profile {profile.name!r}: {node} has no cluster address")
        for network, address in per_network.items():
            try:
                subnet = networks[network]
            except KeyError:
                raise ConfigurationError(
                    f"Profile {profile.name!r}: {node} has an address on "
                    f"unknown network {network!r}")
            if address.network != subnet:
                raise ConfigurationError(
                    f"Profile {profile.name!r}: {node} address {address} "
                    f"does not belong to {network} network {subnet}")
            if address.ip in seen:
                raise ConfigurationError(
                    f"Profile {profile.name!r}: {address.ip} is assigned "
                    f"to both {seen[address.ip]} and {node}")
            seen[address.ip] = node
    if isinstance(profile, DhcpProfile):
        if profile.server.address.ip in seen:
            raise ConfigurationError(
                f"Profile {profile.name!r}: DHCP server address "
                f"{profile.server.address.ip} is reserved for {seen[profile.server.address.ip]}")


_parsers = {
    'simple': _parse_simple,
    'vlans': _parse_vlans,
    'bonding-vlans': _parse_bonding_vlans,
    'dhcp': _parse_dhcp,
    }

_logger = logging.getLogger(__name__)
