# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import logging
import shlex
from ipaddress import IPv4Address
from ipaddress import IPv4Interface
from ipaddress import IPv4Network
from subprocess import CompletedProcess
from typing import TYPE_CHECKING
from typing import Dict
from typing import List
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Tuple

from identity import mac_for
from os_access import AddressInfo
from os_access import BondStatus
from os_access import Networking
from os_access import ProcessError
from os_access import Service
from os_access import ServiceNotFoundError
from os_access import ServiceStartError
from os_access import ServiceStatus

if TYPE_CHECKING:
    from doubles.cluster_node._fake_cluster import FakeCluster

_MANAGEMENT_MAC = '52:54:00:12:34:56'
_MANAGEMENT_ADDRESS = IPv4Interface('10.0.2.15/24')
_MANAGEMENT_GATEWAY = IPv4Address('10.0.2.2')
K3S_TOKEN_PATH = '/var/lib/rancher/k3s/server/token'
_K3S_UNITS = {
    'k3s-server.service': '/etc/default/k3s-server',
    'k3s-agent.service': '/etc/default/k3s-agent',
    }


class _Link:

    def __init__(self, name: str, kind: str, mac: Optional[str] = None):
        self.name = name
        self.kind = kind
        self.mac = mac
        self.up = kind == 'physical'
        self.carrier = True
        self.addresses: List[IPv4Interface] = []
        self.parent: Optional[str] = None
        self.vlan_id: Optional[int] = None
        self.master: Optional[str] = None
        self.mode: Optional[str] = None
        self.miimon_ms = 0
        self.primary: Optional[str] = None
        self.primary_reselect = 'always'
        self.current_slave: Optional[str] = None


def _error(command, message, returncode=1):
    return ProcessError(returncode, command, b'', message.encode())


class FakeMachine:
    """Guest OS of one fake node: links, routes, files, services, k3s."""

    def __init__(self, cluster: FakeCluster, name: str, data_nics: Mapping[str, int]):
        self.cluster = cluster
        self.name = name
        self.running = False
        self.released = False
        self.boot_delay_polls = 0
        self.never_boots = False
        self.fail_power_on = False
        self.ignores_acpi = False
        self.hostname = 'localhost'
        self.kmsg_is_null = False
        self.daemon_reloads = 0
        self.dhcp_client_interface: Optional[str] = None
        self.leases: Dict[str, IPv4Interface] = {}
        self.files: Dict[str, str] = {}
        self.journal: Dict[str, List[str]] = {}
        self.links: Dict[str, _Link] = {'eth0': _Link('eth0', 'physical', _MANAGEMENT_MAC)}
        self.links['eth0'].addresses.append(_MANAGEMENT_ADDRESS)
        for nic, segment in data_nics.items():
            self.links[nic] = _Link(nic, 'physical', mac_for(name, segment))
        self.routes: List[Tuple[Optional[IPv4Network], str, Optional[IPv4Address]]] = [
            (_MANAGEMENT_ADDRESS.network, 'eth0', None),
            ]
        if cluster.default_route:
            self.routes.append((None, 'eth0', _MANAGEMENT_GATEWAY))
        self.modules_available = {'bonding', '8021q'} - set(cluster.missing_modules)
        self.modules_loaded = set()
        self.services: Dict[str, _ServiceState] = {
            unit: _ServiceState() for unit in ('k3s-server.service', 'k3s-agent.service', 'dnsmasq.service')
            }
        self.networking = FakeNetworking(self)

    def __repr__(self):
        return f'<FakeMachine {self.name}>'

    def record(self, action: str):
        self.cluster.record(self.name, action)

    def log(self, unit: str, message: str):
        self.journal.setdefault(unit, []).append(message)

    def boot(self):
        self.running = True
        if self.cluster.k3s_running_at_boot:
            self.services['k3s-server.service'].active_state = 'active'
            self.log('k3s-server.service', "Started at boot without configuration")
        if self.cluster.preexisting_bond_mode is not None:
            self._make_preexisting_bond(self.cluster.preexisting_bond_mode)

    def _make_preexisting_bond(self, mode):
        members = [nic for nic in self.links if nic != 'eth0']
        if len(members) < 2:
            return
        bond = _Link('bond0', 'bond', self.links[members[0]].mac)
        bond.mode = mode
        bond.up = True
        self.links['bond0'] = bond
        for member in members:
            self.links[member].master = 'bond0'

    def set_mac(self, nic: str, mac: str):
        """Pretend the image assigned its own MAC."""
        self.links[nic].mac = mac

    def unplug(self, nic: str):
        self.links[nic].carrier = False

    def addresses(self) -> Sequence[Tuple[str, IPv4Interface]]:
        result = []
        for link in self.links.values():
            for address in link.addresses:
                result.append((link.name, address))
            lease = self._lease(link)
            if lease is not None:
                result.append((link.name, lease))
        return result

    def _lease(self, link: _Link) -> Optional[IPv4Interface]:
        if link.name != self.dhcp_client_interface or not self.carries_traffic(link):
            return None
        offer = self.cluster.dhcp_offer(link.mac)
        # A lease outlives the server which gave it.
        if offer is not None:
            self.leases[link.name] = offer
        return self.leases.get(link.name)

    def carries_traffic(self, link: _Link) -> bool:
        if not self.running or not link.up:
            return False
        if link.kind == 'vlan':
            return self.carries_traffic(self.links[link.parent])
        if link.kind == 'bond':
            return self.active_slave(link) is not None
        if link.master is not None:
            return False
        return link.carrier

    def segment_of(self, link: _Link) -> Tuple[Optional[int], ...]:
        """VLAN tags on the way from the link to the wire."""
        tags = []
        while link.kind == 'vlan':
            tags.append(link.vlan_id)
            link = self.links[link.parent]
        return tuple(tags)

    def active_slave(self, bond: _Link) -> Optional[str]:
        if not bond.up:
            return None
        members = [
            link.name for link in self.links.values()
            if link.master == bond.name and link.up and link.carrier]
        if not members:
            bond.current_slave = None
            return None
        if bond.mode != 'active-backup':
            return members[0]
        if bond.primary in members:
            if bond.primary_reselect == 'always' or bond.current_slave not in members:
                bond.current_slave = bond.primary
        elif bond.current_slave not in members:
            bond.current_slave = members[0]
        return bond.current_slave

    def has_address(self, ip: IPv4Address) -> bool:
        return any(address.ip == ip for _, address in self.addresses())

    def run(self, command, input=None) -> CompletedProcess:
        if isinstance(command, str):
            args = shlex.split(command)
        else:
            args = [str(arg) for arg in command]
        self.record('run ' + ' '.join(args))
        for prefix in self.cluster.broken_commands.get(self.name, ()):
            if args[:len(prefix)] == list(prefix):
                return CompletedProcess(args, 1, b'', b'simulated failure')
        handler = _handlers.get(args[0])
        if handler is None:
            return CompletedProcess(args, 127, b'', f"{args[0]}: command not found".encode())
        returncode, stdout = handler(self, args)
        if returncode == 0:
            return CompletedProcess(args, 0, stdout.encode(), b'')
        return CompletedProcess(args, returncode, b'', stdout.encode())

    def _run_systemctl(self, args):
        if args[1:] == ['daemon-reload']:
            self.daemon_reloads += 1
            return 0, ''
        return 1, f"Unknown operation {args[1:]}"

    def _run_hostname(self, args):
        if len(args) == 1:
            return 0, self.hostname + '\n'
        self.hostname = args[1]
        return 0, ''

    def _run_ln(self, args):
        if args[1:] == ['-sf', '/dev/null', '/dev/kmsg']:
            self.kmsg_is_null = True
            return 0, ''
        return 1, f"ln: unsupported {args[1:]}"

    def _run_ss(self, args):
        lines = ['State  Recv-Q Send-Q Local Address:Port Peer Address:Port']
        if args[1:] == ['-tln'] and self.cluster.api_listening(self):
            lines.append('LISTEN 0      4096   *:6443             *:*')
        if args[1:] == ['-ulnp'] and self.services['dnsmasq.service'].is_active():
            lines.append('UNCONN 0      0      0.0.0.0:67         0.0.0.0:* users:(("dnsmasq",pid=612,fd=4))')
        return 0, '\n'.join(lines) + '\n'

    def _run_k3s(self, args):
        if args[1:] == ['kubectl', 'get', '--raw', '/readyz']:
            if self.cluster.api_ready(self):
                return 0, 'ok'
            return 1, 'The connection to the server 127.0.0.1:6443 was refused'
        if args[1:] == ['kubectl', 'get', 'nodes', '--no-headers']:
            if not self.cluster.api_listening(self):
                return 1, 'The connection to the server 127.0.0.1:6443 was refused'
            return 0, ''.join(
                f'{name}   Ready   {roles}   5m   v1.29.4+k3s1\n'
                for name, roles in self.cluster.ready_members())
        return 1, f"k3s: unsupported {args[1:]}"

    def _run_ip(self, args):
        if args[1:3] == ['addr', 'show']:
            return 0, self._dump_addresses()
        if args[1:3] == ['route', 'show']:
            return 0, self._dump_routes()
        if args[1:4] == ['-d', 'link', 'show']:
            return 0, self._dump_links()
        return 1, f"ip: unsupported {args[1:]}"

    def _run_cat(self, args):
        path = args[1]
        try:
            return 0, self.files[path]
        except KeyError:
            return 1, f"cat: {path}: No such file or directory"

    def _run_journalctl(self, args):
        unit = args[args.index('-u') + 1]
        lines = int(args[args.index('-n') + 1])
        return 0, ''.join(line + '\n' for line in self.journal.get(unit, [])[-lines:])

    def _dump_addresses(self):
        result = []
        for index, link in enumerate(self.links.values(), 2):
            state = 'UP' if self.carries_traffic(link) else 'DOWN'
            result.append(f'{index}: {link.name}: <BROADCAST,MULTICAST> state {state}')
            result.append(f'    link/ether {link.mac}')
            for address in link.addresses:
                result.append(f'    inet {address} scope global {link.name}')
            lease = self._lease(link)
            if lease is not None:
                result.append(f'    inet {lease} scope global dynamic {link.name}')
        return '\n'.join(result) + '\n'

    def _dump_routes(self):
        result = []
        for destination, interface, via in self.routes:
            line = 'default' if destination is None else str(destination)
            if via is not None:
                line += f' via {via}'
            result.append(f'{line} dev {interface}')
        return '\n'.join(result) + '\n'

    def _dump_links(self):
        result = []
        for link in self.links.values():
            result.append(f'{link.name}: <BROADCAST,MULTICAST> mtu 1500')
            if link.kind == 'vlan':
                result.append(f'    vlan protocol 802.1Q id {link.vlan_id}')
            if link.kind == 'bond':
                result.append(f'    bond mode {link.mode} miimon {link.miimon_ms}')
        return '\n'.join(result) + '\n'


_handlers = {
    'systemctl': FakeMachine._run_systemctl,
    'hostname': FakeMachine._run_hostname,
    'ln': FakeMachine._run_ln,
    'ss': FakeMachine._run_ss,
    'k3s': FakeMachine._run_k3s,
    'ip': FakeMachine._run_ip,
    'cat': FakeMachine._run_cat,
    'journalctl': FakeMachine._run_journalctl,
    }


class FakeNetworking(Networking):

    def __init__(self, machine: FakeMachine):
        self._machine = machine

    def __repr__(self):
        return f'<FakeNetworking {self._machine.name}>'

    def _link(self, interface, command) -> _Link:
        try:
            return self._machine.links[interface]
        except KeyError:
            raise _error(command, f'Device "{interface}" does not exist.')

    def load_module(self, module):
        with self._machine.cluster.lock:
            if module in self._machine.modules_available:
                self._machine.modules_loaded.add(module)
                self._machine.record(f'modprobe {module}')
                return True
            return False

    def interface_exists(self, interface):
        with self._machine.cluster.lock:
            return interface in self._machine.links

    def mac_address(self, interface):
        with self._machine.cluster.lock:
            return self._link(interface, ['cat', f'/sys/class/net/{interface}/address']).mac

    def set_link(self, interface, up):
        with self._machine.cluster.lock:
            self._link(interface, ['ip', 'link', 'set', interface]).up = up
            self._machine.record(f'link {interface} {"up" if up else "down"}')

    def get_addresses(self, interface):
        with self._machine.cluster.lock:
            link = self._link(interface, ['ip', 'address', 'show', interface])
            result = [AddressInfo(address) for address in link.addresses]
            lease = self._machine._lease(link)
            if lease is not None:
                result.append(AddressInfo(lease, self._machine.cluster.leases_marked_dynamic))
            return result

    def add_address(self, interface, address):
        command = ['ip', 'address', 'add', str(address), 'dev', interface]
        with self._machine.cluster.lock:
            link = self._link(interface, command)
            if address in link.addresses:
                raise _error(command, 'RTNETLINK answers: File exists', returncode=2)
            link.addresses.append(address)
            self._machine.routes.append((address.network, interface, None))
            self._machine.record(f'address {interface} {address}')

    def add_vlan(self, parent, interface, vlan_id):
        command = ['ip', 'link', 'add', 'link', parent, 'name', interface, 'type', 'vlan', 'id', vlan_id]
        with self._machine.cluster.lock:
            self._link(parent, command)
            if '8021q' not in self._machine.modules_available:
                raise _error(command, 'Error: Unknown device type.', returncode=2)
            if interface in self._machine.links:
                raise _error(command, 'RTNETLINK answers: File exists', returncode=2)
            link = _Link(interface, 'vlan', self._machine.links[parent].mac)
            link.up = False
            link.parent = parent
            link.vlan_id = vlan_id
            self._machine.links[interface] = link
            self._machine.record(f'vlan {interface} on {parent} id {vlan_id}')

    def vlan_id(self, interface):
        with self._machine.cluster.lock:
            return self._link(interface, ['ip', '-d', 'link', 'show', interface]).vlan_id

    def create_bond(self, bond, mode, miimon_ms, primary_reselect):
        command = ['ip', 'link', 'add', bond, 'type', 'bond', 'mode', mode]
        with self._machine.cluster.lock:
            if 'bonding' not in self._machine.modules_available:
                raise _error(command, 'Error: Unknown device type.', returncode=2)
            if bond in self._machine.links:
                raise _error(command, 'RTNETLINK answers: File exists', returncode=2)
            link = _Link(bond, 'bond', '52:54:00:00:00:b0')
            link.up = False
            link.mode = mode
            link.miimon_ms = miimon_ms
            link.primary_reselect = primary_reselect
            self._machine.links[bond] = link
            self._machine.record(f'bond {bond} {mode}')

    def set_bond_primary(self, bond, primary):
        with self._machine.cluster.lock:
            self._link(bond, ['ip', 'link', 'set', bond, 'type', 'bond', 'primary', primary]).primary = primary

    def set_master(self, interface, master):
        command = ['ip', 'link', 'set', 'dev', interface, 'master', str(master)]
        with self._machine.cluster.lock:
            link = self._link(interface, command)
            if master is not None:
                self._link(master, command)
                link.up = False
            link.master = master
            self._machine.record(f'master {interface} {master}')

    def delete_link(self, interface):
        with self._machine.cluster.lock:
            self._link(interface, ['ip', 'link', 'delete', interface])
            del self._machine.links[interface]
            self._machine.routes = [r for r in self._machine.routes if r[1] != interface]
            self._machine.record(f'delete {interface}')

    def bond_mode(self, bond):
        with self._machine.cluster.lock:
            link = self._machine.links.get(bond)
            if link is None or link.kind != 'bond':
                return None
            return link.mode

    def bond_status(self, bond):
        with self._machine.cluster.lock:
            link = self._link(bond, ['cat', f'/proc/net/bonding/{bond}'])
            active = self._machine.active_slave(link)
            slaves = {
                member.name: 'up' if member.up and member.carrier else 'down'
                for member in self._machine.links.values()
                if member.master == bond
                }
            mode = f'fault-tolerance ({link.mode})' if link.mode == 'active-backup' else link.mode
            return BondStatus(mode, 'up' if active else 'down', active, slaves)

    def has_route(self, destination, interface):
        with self._machine.cluster.lock:
            return any(d == destination and i == interface for d, i, _ in self._machine.routes)

    def has_default_route(self):
        with self._machine.cluster.lock:
            return any(d is None for d, _, _ in self._machine.routes)

    def add_route(self, destination, interface, via=None):
        with self._machine.cluster.lock:
            self._link(interface, ['ip', 'route', 'replace', str(destination), 'dev', interface])
            self._machine.routes = [r for r in self._machine.routes if r[0] != destination]
            self._machine.routes.append((destination, interface, via))
            self._machine.record(f'route {destination or "default"} dev {interface}')

    def ping(self, address):
        with self._machine.cluster.lock:
            return self._machine.cluster.reachable(self._machine, address)


class _ServiceState:

    def __init__(self):
        self.active_state = 'inactive'

    def is_active(self):
        return self.active_state == 'active'


class FakeService(Service):
    """Systemd unit of a fake machine; k3s units act on the fake cluster."""

    def __init__(self, machine: FakeMachine, name: str):
        self._machine = machine
        self._name = name

    def __repr__(self):
        return f'<FakeService {self._name} at {self._machine.name}>'

    def _state(self) -> _ServiceState:
        try:
            return self._machine.services[self._name]
        except KeyError:
            raise ServiceNotFoundError(f"Service {self._name!r} not found")

    def start(self, timeout_sec=None):
        with self._machine.cluster.lock:
            state = self._state()
            self._machine.record(f'start {self._name}')
            if state.is_active():
                return
            self._launch(state)

    def restart(self, timeout_sec=None):
        with self._machine.cluster.lock:
            state = self._state()
            self._machine.record(f'restart {self._name}')
            self._machine.cluster.leave(self._machine, self._name)
            self._launch(state)

    def _launch(self, state: _ServiceState):
        if self._name in _K3S_UNITS:
            env = parse_env_file(self._machine.files.get(_K3S_UNITS[self._name], ''))
            problem = self._machine.cluster.join(self._machine, self._name, env)
        elif self._name == 'dnsmasq.service':
            problem = self._machine.cluster.serve_dhcp(self._machine)
        else:
            problem = None
        if problem is not None:
            state.active_state = 'failed'
            _logger.debug("%s: %s failed: %s", self._machine.name, self._name, problem)
            self._machine.log(self._name, problem)
            raise ServiceStartError(f"Service {self._name} failed to start: {problem}")
        state.active_state = 'active'
        self._machine.log(self._name, f"Started {self._name}")

    def stop(self, timeout_sec=None):
        with self._machine.cluster.lock:
            state = self._state()
            self._machine.record(f'stop {self._name}')
            self._machine.cluster.leave(self._machine, self._name)
            state.active_state = 'inactive'
            self._machine.log(self._name, f"Stopped {self._name}")

    def status(self):
        with self._machine.cluster.lock:
            state = self._state()
            sub_state = 'running' if state.is_active() else 'dead'
            return ServiceStatus(state.active_state, sub_state, 100 if state.is_active() else 0)

    def status_text(self):
        status = self.status()
        return (
            f"● {self._name}\n"
            f"     Active: {status.active_state} ({status.sub_state})\n")

    def log_tail(self, lines):
        with self._machine.cluster.lock:
            return ''.join(line + '\n' for line in self._machine.journal.get(self._name, [])[-lines:])


def parse_env_file(text: str) -> Mapping[str, str]:
    result = {}
    for line in text.splitlines():
        key, sep, value = line.partition('=')
        if sep and not key.startswith('#'):
            result[key.strip()] = value.strip().strip('"')
    return result


def parse_k3s_options(text: str) -> Mapping[str, str]:
    """Command-line options to a mapping: --a=1 --b 2 --c -> a, b, c."""
    result = {}
    args = shlex.split(text)
    while args:
        arg = args.pop(0)
        key, sep, value = arg[2:].partition('=')
        if not sep and args and not args[0].startswith('--'):
            value = args.pop(0)
        result[key] = value
    return result


_logger = logging.getLogger(__name__)
