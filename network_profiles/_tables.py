# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/

_host_numbers = {
    'server-1': 1,
    'server-2': 2,
    'agent-1': 3,
    'agent-2': 4,
    }


def _addresses(**subnet_prefixes):
    return {
        node: {
            network: f'{prefix}.{number}/24'
            for network, prefix in subnet_prefixes.items()
            }
        for node, number in _host_numbers.items()
        }


_vlans = {
    'cluster': {'id': 200, 'subnet': '192.168.200.0/24'},
    'storage': {'id': 100, 'subnet': '192.168.100.0/24'},
    }

profile_tables = {
    'simple': {
        'type': 'simple',
        'interface': 'eth1',
        'subnet': '192.168.1.0/24',
        'addresses': _addresses(cluster='192.168.1'),
        },
    'vlans': {
        'type': 'vlans',
        'trunk': 'eth1',
        'vlans': _vlans,
        'addresses': _addresses(cluster='192.168.200', storage='192.168.100'),
        },
    'bonding-vlans': {
        'type': 'bonding-vlans',
        'bond': {
            'name': 'bond0',
            'members': ['eth1', 'eth2'],
            'mode': 'active-backup',
            'primary': 'eth1',
            'miimon': 100,
            'primary_reselect': 'always',
            },
        'vlans': _vlans,
        'addresses': _addresses(cluster='192.168.200', storage='192.168.100'),
        'verify_failover': True,
        },
    'dhcp': {
        'type': 'dhcp',
        'interface': 'eth1',
        'subnet': '192.168.1.0/24',
        'server': {
            'address': '192.168.1.254/24',
            'range': ['192.168.1.100', '192.168.1.200'],
            'lease': '12h',
            },
        'addresses': _addresses(cluster='192.168.1'),
        },
    }
