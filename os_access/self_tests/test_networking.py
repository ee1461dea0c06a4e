# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest
from ipaddress import IPv4Address
from ipaddress import IPv4Interface
from ipaddress import IPv4Network
from subprocess import CompletedProcess

from os_access import LinuxNetworking
from os_access import ProcessError
from os_access import ServiceNotFoundError
from os_access import ServiceStartError
from os_access import Shell
from os_access import SystemdService
from os_access import parse_bond_status

_bond_text = """\
Ethernet Channel Bonding Driver: v5.15.0-91-generic

Bonding Mode: fault-tolerance (active-backup)
Primary Slave: eth1 (primary_reselect always)
Currently Active Slave: eth2
MII Status: up
MII Polling Interval (ms): 100
Up Delay (ms): 0
Down Delay (ms): 0
Peer Notification Delay (ms): 0

Slave Interface: eth1
MII Status: down
Speed: Unknown
Duplex: Unknown
Link Failure Count: 1
Permanent HW addr: 52:54:00:a9:d3:01
Slave queue ID: 0

Slave Interface: eth2
MII Status: up
Speed: 1000 Mbps
Duplex: full
Link Failure Count: 0
Permanent HW addr: 52:54:00:a9:d3:02
Slave queue ID: 0
"""


class _ScriptedShell(Shell):
    """Answer commands by their leading words; remember everything run."""

    def __init__(self, responses=()):
        self.commands = []
        self._responses = list(responses)

    def __repr__(self):
        return '<ScriptedShell>'

    def Popen(self, args, **kwargs):
        raise NotImplementedError()

    def is_working(self):
        return True

    def close(self):
        pass

    def run(self, args, input=None, timeout_sec=60, check=True, **kwargs):
        command = [str(arg) for arg in args]
        self.commands.append(command)
        for prefix, returncode, stdout in self._responses:
            if command[:len(prefix)] == prefix:
                break
        else:
            returncode, stdout = 0, ''
        if check and returncode != 0:
            raise ProcessError(returncode, command, stdout.encode(), b'error')
        return CompletedProcess(command, returncode, stdout.encode(), b'error')


class TestBondStatus(unittest.TestCase):

    def test_parse(self):
        status = parse_bond_status(_bond_text)
        self.assertEqual(status.mode, 'fault-tolerance (active-backup)')
        self.assertEqual(status.mii_status, 'up')
        self.assertEqual(status.active_slave, 'eth2')
        self.assertEqual(status.slaves, {'eth1': 'down', 'eth2': 'up'})
        self.assertTrue(status.is_ready())

    def test_no_active_slave(self):
        text = _bond_text.replace('Currently Active Slave: eth2', 'Currently Active Slave: None')
        status = parse_bond_status(text)
        self.assertIsNone(status.active_slave)
        self.assertFalse(status.is_ready())


class TestLinuxNetworking(unittest.TestCase):

    def test_addresses(self):
        output = (
            "3: eth1    inet 192.168.1.1/24 brd 192.168.1.255 scope global dynamic eth1\\"
            "       valid_lft 43190sec preferred_lft 43190sec\n"
            "3: eth1    inet 10.0.0.5/8 scope global eth1\\       valid_lft forever\n"
            )
        networking = LinuxNetworking(_ScriptedShell([(['ip', '-4', '-o', 'address'], 0, output)]))
        [first, second] = networking.get_addresses('eth1')
        self.assertEqual(first.address, IPv4Interface('192.168.1.1/24'))
        self.assertTrue(first.dynamic)
        self.assertEqual(second.address, IPv4Interface('10.0.0.5/8'))
        self.assertFalse(second.dynamic)

    def test_vlan_id(self):
        output = (
            "5: eth1.200@eth1: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500\n"
            "    link/ether 52:54:00:a9:d3:01 brd ff:ff:ff:ff:ff:ff promiscuity 0\n"
            "    vlan protocol 802.1Q id 200 <REORDER_HDR> addrgenmode eui64\n"
            )
        networking = LinuxNetworking(_ScriptedShell([(['ip', '-d', 'link'], 0, output)]))
        self.assertEqual(networking.vlan_id('eth1.200'), 200)

    def test_module_built_in(self):
        lsmod = "Module                  Size  Used by\nbonding               200704  0\n"
        shell = _ScriptedShell([(['modprobe'], 1, ''), (['lsmod'], 0, lsmod)])
        self.assertTrue(LinuxNetworking(shell).load_module('bonding'))
        self.assertFalse(LinuxNetworking(shell).load_module('8021q'))

    def test_bond_mode_absent(self):
        shell = _ScriptedShell([(['cat', '/sys/class/net/bond0/bonding/mode'], 1, '')])
        self.assertIsNone(LinuxNetworking(shell).bond_mode('bond0'))

    def test_bond_mode(self):
        shell = _ScriptedShell([(['cat', '/sys/class/net/bond0/bonding/mode'], 0, '802.3ad 4\n')])
        self.assertEqual(LinuxNetworking(shell).bond_mode('bond0'), '802.3ad')

    def test_enslave_brings_member_down_first(self):
        shell = _ScriptedShell()
        LinuxNetworking(shell).set_master('eth1', 'bond0')
        self.assertEqual(shell.commands, [
            ['ip', 'link', 'set', 'dev', 'eth1', 'down'],
            ['ip', 'link', 'set', 'dev', 'eth1', 'master', 'bond0'],
            ])

    def test_route_lookup(self):
        routes = (
            "default via 10.0.2.2 dev eth0 proto dhcp\n"
            "192.168.200.0/24 dev eth1.200 proto kernel scope link src 192.168.200.1\n"
            "192.168.100.0/24 dev eth1.100 proto kernel scope link src 192.168.100.1\n"
            )
        networking = LinuxNetworking(_ScriptedShell([(['ip', '-4', 'route', 'show'], 0, routes)]))
        self.assertTrue(networking.has_route(IPv4Network('192.168.200.0/24'), 'eth1.200'))
        self.assertFalse(networking.has_route(IPv4Network('192.168.200.0/24'), 'eth1.100'))
        self.assertFalse(networking.has_route(IPv4Network('192.168.200.0/24'), 'eth1.20'))

    def test_default_route_via_gateway(self):
        shell = _ScriptedShell()
        LinuxNetworking(shell).add_route(None, 'eth1', via=IPv4Address('192.168.1.254'))
        self.assertEqual(shell.commands, [
            ['ip', 'route', 'replace', 'default', 'via', '192.168.1.254', 'dev', 'eth1'],
            ])

    def test_ping_once(self):
        shell = _ScriptedShell([(['ping'], 1, '1 packets transmitted, 0 received')])
        self.assertFalse(LinuxNetworking(shell).ping(IPv4Address('192.168.1.2')))
        self.assertEqual(len(shell.commands), 1)


class TestSystemdService(unittest.TestCase):

    def test_status(self):
        output = "ActiveState=active\nSubState=running\nMainPID=812\nLoadState=loaded\n"
        shell = _ScriptedShell([(['systemctl', 'show'], 0, output)])
        status = SystemdService(shell, 'k3s-server.service').status()
        self.assertTrue(status.is_active)
        self.assertEqual(status.pid, 812)

    def test_not_found(self):
        output = "ActiveState=inactive\nSubState=dead\nMainPID=0\nLoadState=not-found\n"
        shell = _ScriptedShell([(['systemctl', 'show'], 0, output)])
        with self.assertRaises(ServiceNotFoundError):
            SystemdService(shell, 'k3s-agent.service').status()

    def test_start_failure(self):
        shell = _ScriptedShell([(['systemctl', 'start'], 1, '')])
        with self.assertRaises(ServiceStartError):
            SystemdService(shell, 'dnsmasq.service').start()

    def test_status_text_of_failed_unit(self):
        shell = _ScriptedShell([(['systemctl', 'status'], 3, '* k3s-server.service - failed')])
        text = SystemdService(shell, 'k3s-server.service').status_text()
        self.assertIn('failed', text)


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
