# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from identity._registry import DhcpReservation
from identity._registry import assert_no_collisions
from identity._registry import dhcp_reservations
from identity._registry import ip_for
from identity._registry import mac_for
from identity._registry import vm_name

__all__ = [
    'DhcpReservation',
    'assert_no_collisions',
    'dhcp_reservations',
    'ip_for',
    'mac_for',
    'vm_name',
    ]
