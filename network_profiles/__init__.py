# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from network_profiles._profiles import BondSpec
from network_profiles._profiles import BondingVlansProfile
from network_profiles._profiles import ConfigurationError
from network_profiles._profiles import DhcpProfile
from network_profiles._profiles import DhcpServerSpec
from network_profiles._profiles import InterfaceKind
from network_profiles._profiles import InterfaceSpec
from network_profiles._profiles import NetworkProfile
from network_profiles._profiles import SimpleProfile
from network_profiles._profiles import VlanSpec
from network_profiles._profiles import VlansProfile
from network_profiles._profiles import parse_profile
from network_profiles._variants import DHCP_SERVER_NODE
from network_profiles._variants import NodeSpec
from network_profiles._variants import TopologyVariant
from network_profiles._variants import list_profiles
from network_profiles._variants import list_variants
from network_profiles._variants import load_profile
from network_profiles._variants import load_variant

__all__ = [
    'BondSpec',
    'BondingVlansProfile',
    'ConfigurationError',
    'DHCP_SERVER_NODE',
    'DhcpProfile',
    'DhcpServerSpec',
    'InterfaceKind',
    'InterfaceSpec',
    'NetworkProfile',
    'NodeSpec',
    'SimpleProfile',
    'TopologyVariant',
    'VlanSpec',
    'VlansProfile',
    'list_profiles',
    'list_variants',
    'load_profile',
    'load_variant',
    'parse_profile',
    ]
