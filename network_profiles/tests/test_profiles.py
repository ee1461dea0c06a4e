# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest
from ipaddress import IPv4Network

from network_profiles import BondingVlansProfile
from network_profiles import ConfigurationError
from network_profiles import DhcpProfile
from network_profiles import InterfaceKind
from network_profiles import SimpleProfile
from network_profiles import VlansProfile
from network_profiles import list_profiles
from network_profiles import list_variants
from network_profiles import load_profile
from network_profiles import load_variant
from network_profiles import parse_profile
from vm.node import NodeRole


def _simple_table(**overrides):
    table = {
        'type': 'simple',
        'interface': 'eth1',
        'subnet': '10.1.0.0/24',
        'addresses': {'server-1': {'cluster': '10.1.0.1/24'}},
        }
    table.update(overrides)
    return table


class TestDefaultProfiles(unittest.TestCase):

    def test_all_parse(self):
        self.assertEqual(list_profiles(), ['simple', 'vlans', 'bonding-vlans', 'dhcp'])
        self.assertIsInstance(load_profile('simple'), SimpleProfile)
        self.assertIsInstance(load_profile('vlans'), VlansProfile)
        self.assertIsInstance(load_profile('bonding-vlans'), BondingVlansProfile)
        self.assertIsInstance(load_profile('dhcp'), DhcpProfile)

    def test_vlans_interfaces(self):
        profile = load_profile('vlans')
        names = [(i.name, i.kind, i.parent, i.vlan_id) for i in profile.interfaces()]
        self.assertEqual(names, [
            ('eth1', InterfaceKind.PHYSICAL, None, None),
            ('eth1.200', InterfaceKind.VLAN, 'eth1', 200),
            ('eth1.100', InterfaceKind.VLAN, 'eth1', 100),
            ])
        self.assertEqual(profile.cluster_interface(), 'eth1.200')
        self.assertEqual(profile.networks()['storage'], IPv4Network('192.168.100.0/24'))

    def test_bond_interfaces_ordered(self):
        profile = load_profile('bonding-vlans')
        kinds = [(i.name, i.kind) for i in profile.interfaces()]
        self.assertEqual(kinds, [
            ('eth1', InterfaceKind.PHYSICAL),
            ('eth2', InterfaceKind.PHYSICAL),
            ('bond0', InterfaceKind.BOND),
            ('bond0.200', InterfaceKind.VLAN),
            ('bond0.100', InterfaceKind.VLAN),
            ])
        self.assertEqual(profile.bond.mode, 'active-backup')
        self.assertEqual(profile.bond.backup(), 'eth2')
        self.assertEqual(profile.segments(), {'eth1': 1, 'eth2': 2})
        self.assertTrue(profile.verify_failover)
        self.assertEqual(profile.cluster_interface(), 'bond0.200')

    def test_dhcp_server(self):
        profile = load_profile('dhcp')
        self.assertEqual(str(profile.server.address), '192.168.1.254/24')
        self.assertEqual(profile.server.lease_time, '12h')


class TestMalformedTables(unittest.TestCase):

    def test_unknown_profile(self):
        with self.assertRaises(ConfigurationError):
            load_profile('mesh')

    def test_unknown_type(self):
        with self.assertRaises(ConfigurationError):
            parse_profile('x', _simple_table(type='ring'))

    def test_missing_key(self):
        table = _simple_table()
        del table['interface']
        with self.assertRaisesRegex(ConfigurationError, 'interface'):
            parse_profile('x', table)

    def test_bad_address(self):
        with self.assertRaises(ConfigurationError):
            parse_profile('x', _simple_table(addresses={'server-1': {'cluster': '10.1.0.300/24'}}))

    def test_address_outside_subnet(self):
        with self.assertRaises(ConfigurationError):
            parse_profile('x', _simple_table(addresses={'server-1': {'cluster': '10.2.0.1/24'}}))

    def test_duplicate_address(self):
        addresses = {
            'server-1': {'cluster': '10.1.0.1/24'},
            'server-2': {'cluster': '10.1.0.1/24'},
            }
        with self.assertRaises(ConfigurationError):
            parse_profile('x', _simple_table(addresses=addresses))

    def test_bond_primary_not_member(self):
        table = {
            'type': 'bonding-vlans',
            'bond': {'name': 'bond0', 'members': ['eth1', 'eth2'], 'mode': 'active-backup', 'primary': 'eth3'},
            'vlans': {'cluster': {'id': 10, 'subnet': '10.10.0.0/24'}},
            'addresses': {'server-1': {'cluster': '10.10.0.1/24'}},
            }
        with self.assertRaises(ConfigurationError):
            parse_profile('x', table)

    def test_vlan_id_range(self):
        table = {
            'type': 'vlans',
            'trunk': 'eth1',
            'vlans': {'cluster': {'id': 4095, 'subnet': '10.10.0.0/24'}},
            'addresses': {'server-1': {'cluster': '10.10.0.1/24'}},
            }
        with self.assertRaises(ConfigurationError):
            parse_profile('x', table)


class TestVariants(unittest.TestCase):

    def test_list(self):
        self.assertIn('2-servers', list_variants())
        self.assertIn('2-servers-2-agents', list_variants())

    def test_roles(self):
        variant = load_variant('2-servers-1-agent', load_profile('simple'))
        roles = {node.name: node.role for node in variant.nodes}
        self.assertEqual(roles, {
            'server-1': NodeRole.BOOTSTRAP,
            'server-2': NodeRole.JOINER_SERVER,
            'agent-1': NodeRole.AGENT,
            })
        self.assertEqual(variant.bootstrap().name, 'server-1')

    def test_dhcp_adds_server_node(self):
        variant = load_variant('2-servers', load_profile('dhcp'))
        self.assertEqual([n.name for n in variant.nodes], ['server-1', 'server-2', 'dhcp-server'])
        self.assertEqual([n.name for n in variant.cluster_nodes()], ['server-1', 'server-2'])

    def test_unknown_variant(self):
        with self.assertRaises(ConfigurationError):
            load_variant('3-servers', load_profile('simple'))

    def test_variant_node_missing_in_profile(self):
        profile = parse_profile('x', _simple_table())
        with self.assertRaises(ConfigurationError):
            load_variant('2-servers', profile)


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
