# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import re
from ipaddress import IPv4Address
from ipaddress import IPv4Interface
from ipaddress import IPv4Network
from typing import Optional

from os_access._command import Shell
from os_access._networking import AddressInfo
from os_access._networking import BondStatus
from os_access._networking import Networking
from os_access._networking import parse_bond_status

_logger = logging.getLogger(__name__)


class LinuxNetworking(Networking):

    def __init__(self, shell: Shell):
        self._shell = shell

    def __repr__(self):
        return '<LinuxNetworking on {!r}>'.format(self._shell)

    def load_module(self, module):
        outcome = self._shell.run(['modprobe', module], check=False)
        if outcome.returncode == 0:
            return True
        # Built into the kernel or loaded from the image: modprobe may still fail.
        loaded = self._shell.run(['lsmod']).stdout.decode()
        is_loaded = any(line.split()[0] == module for line in loaded.splitlines()[1:] if line.strip())
        if not is_loaded:
            _logger.warning(
                "%r: module %s is not loadable: %s",
                self._shell, module, outcome.stderr.decode(errors='backslashreplace').strip())
        return is_loaded

    def interface_exists(self, interface):
        outcome = self._shell.run(['ip', 'link', 'show', 'dev', interface], check=False)
        return outcome.returncode == 0

    def mac_address(self, interface):
        output = self._shell.run(['cat', f'/sys/class/net/{interface}/address']).stdout
        return output.decode('ascii').strip().lower()

    def set_link(self, interface, up):
        self._shell.run(['ip', 'link', 'set', 'dev', interface, 'up' if up else 'down'])

    def get_addresses(self, interface):
        output = self._shell.run(['ip', '-4', '-o', 'address', 'show', 'dev', interface]).stdout
        result = []
        for line in output.decode().splitlines():
            match = re.search(r'inet (\S+)', line)
            if match is None:
                continue
            result.append(AddressInfo(IPv4Interface(match.group(1)), ' dynamic ' in f'{line} '))
        return result

    def add_address(self, interface, address):
        self._shell.run(['ip', 'address', 'add', str(address), 'dev', interface])
        _logger.info("%r: %s added to %s", self._shell, address, interface)

    def add_vlan(self, parent, interface, vlan_id):
        self._shell.run([
            'ip', 'link', 'add',
            'link', parent,
            'name', interface,
            'type', 'vlan', 'id', vlan_id,
            ])

    def vlan_id(self, interface):
        output = self._shell.run(['ip', '-d', 'link', 'show', 'dev', interface]).stdout
        match = re.search(r'vlan protocol 802\.1Q id (\d+)', output.decode())
        if match is None:
            return None
        return int(match.group(1))

    def create_bond(self, bond, mode, miimon_ms, primary_reselect):
        self._shell.run([
            'ip', 'link', 'add', bond,
            'type', 'bond',
            'mode', mode,
            'miimon', miimon_ms,
            'primary_reselect', primary_reselect,
            ])

    def set_bond_primary(self, bond, primary):
        self._shell.run(['ip', 'link', 'set', 'dev', bond, 'type', 'bond', 'primary', primary])

    def set_master(self, interface, master):
        if master is None:
            self._shell.run(['ip', 'link', 'set', 'dev', interface, 'nomaster'])
        else:
            # The kernel refuses to enslave an interface which is up.
            self.set_link(interface, up=False)
            self._shell.run(['ip', 'link', 'set', 'dev', interface, 'master', master])

    def delete_link(self, interface):
        self._shell.run(['ip', 'link', 'delete', 'dev', interface])

    def bond_mode(self, bond) -> Optional[str]:
        outcome = self._shell.run(['cat', f'/sys/class/net/{bond}/bonding/mode'], check=False)
        if outcome.returncode != 0:
            return None
        # Looks like "active-backup 1".
        [mode, *_] = outcome.stdout.decode().split()
        return mode

    def bond_status(self, bond) -> BondStatus:
        output = self._shell.run(['cat', f'/proc/net/bonding/{bond}']).stdout
        return parse_bond_status(output.decode())

    def has_route(self, destination: IPv4Network, interface):
        output = self._shell.run(['ip', '-4', 'route', 'show']).stdout.decode()
        return re.search(
            rf'^{re.escape(str(destination))} dev {re.escape(interface)}\b',
            output,
            re.MULTILINE,
            ) is not None

    def has_default_route(self):
        output = self._shell.run(['ip', '-4', 'route', 'show', 'default']).stdout
        return bool(output.strip())

    def add_route(self, destination, interface, via: Optional[IPv4Address] = None):
        command = ['ip', 'route', 'replace', 'default' if destination is None else str(destination)]
        if via is not None:
            command += ['via', str(via)]
        command += ['dev', interface]
        self._shell.run(command)

    def ping(self, address):
        outcome = self._shell.run(['ping', '-c', 1, '-W', 2, str(address)], check=False)
        if outcome.returncode not in (0, 1):
            _logger.warning(
                "%r: ping %s exited with %d: %s",
                self._shell, address, outcome.returncode, outcome.stderr.decode().strip())
        return outcome.returncode == 0
