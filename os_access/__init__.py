# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from os_access._command import ProcessError
from os_access._command import ProcessTimeout
from os_access._command import Run
from os_access._command import Shell
from os_access._exceptions import NodeUnreachable
from os_access._exceptions import ServiceNotFoundError
from os_access._exceptions import ServiceStartError
from os_access._linux_networking import LinuxNetworking
from os_access._networking import AddressInfo
from os_access._networking import BondStatus
from os_access._networking import Networking
from os_access._networking import parse_bond_status
from os_access._node_access import NodeAccess
from os_access._node_access import PosixNodeAccess
from os_access._service_interface import Service
from os_access._service_interface import ServiceStatus
from os_access._ssh_shell import Ssh
from os_access._ssh_shell import SshNotConnected
from os_access._systemd_service import SystemdService

__all__ = [
    'AddressInfo',
    'BondStatus',
    'LinuxNetworking',
    'Networking',
    'NodeAccess',
    'NodeUnreachable',
    'PosixNodeAccess',
    'ProcessError',
    'ProcessTimeout',
    'Run',
    'Service',
    'ServiceNotFoundError',
    'ServiceStartError',
    'ServiceStatus',
    'Shell',
    'Ssh',
    'SshNotConnected',
    'SystemdService',
    'parse_bond_status',
    ]
