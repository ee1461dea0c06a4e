# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from topology._bond import exercise_bond_failover
from topology._bond import reconcile_bond
from topology._bond import wait_for_bond
from topology._configurator import TopologyConfigurator
from topology._dhcp_server import DNSMASQ_CONFIG_PATH
from topology._dhcp_server import DNSMASQ_LEASES_PATH
from topology._dhcp_server import DNSMASQ_SERVICE
from topology._dhcp_server import DhcpServerConfigurator
from topology._dhcp_server import render_dnsmasq_config
from topology._exceptions import AddressMismatch
from topology._exceptions import BondNotReady
from topology._exceptions import CapabilityMissing

__all__ = [
    'AddressMismatch',
    'BondNotReady',
    'CapabilityMissing',
    'DNSMASQ_CONFIG_PATH',
    'DNSMASQ_LEASES_PATH',
    'DNSMASQ_SERVICE',
    'DhcpServerConfigurator',
    'TopologyConfigurator',
    'exercise_bond_failover',
    'reconcile_bond',
    'render_dnsmasq_config',
    'wait_for_bond',
    ]
