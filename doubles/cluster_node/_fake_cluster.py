# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import logging
import math
import shlex
import threading
import time
from ipaddress import IPv4Address
from ipaddress import IPv4Interface
from typing import Collection
from typing import Dict
from typing import List
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Tuple
from urllib.parse import urlparse

from convergence import CancellationToken
from doubles.cluster_node._fake_machine import FakeMachine
from doubles.cluster_node._fake_machine import FakeService
from doubles.cluster_node._fake_machine import K3S_TOKEN_PATH
from doubles.cluster_node._fake_machine import parse_k3s_options
from identity import vm_name
from network_profiles import DhcpProfile
from network_profiles import NetworkProfile
from network_profiles import TopologyVariant
from os_access import NodeAccess
from os_access import NodeUnreachable
from os_access import ProcessError
from os_access import ProcessTimeout
from vm.fleet import Fleet
from vm.fleet import FleetMember
from vm.fleet import plan_nodes
from vm.hypervisor import HypervisorError
from vm.hypervisor import VmControl

_DNSMASQ_DIR = '/etc/dnsmasq.d/'


class FakeCluster:
    """In-memory nodes on shared segments, with a k3s-like membership.

    Every action the orchestrator takes is recorded in order, per node,
    in `events`. Knobs break the cluster the way real nodes break.
    """

    def __init__(
            self,
            profile: NetworkProfile,
            variant: TopologyVariant,
            *,
            missing_modules: Collection[str] = (),
            preexisting_bond_mode: Optional[str] = None,
            k3s_running_at_boot: bool = False,
            default_route: bool = True,
            leases_marked_dynamic: bool = True,
            api_never_ready: bool = False,
            withhold_leases: bool = False,
            ):
        self.lock = threading.RLock()
        self.profile = profile
        self.variant = variant
        self.missing_modules = missing_modules
        self.preexisting_bond_mode = preexisting_bond_mode
        self.k3s_running_at_boot = k3s_running_at_boot
        self.default_route = default_route
        self.leases_marked_dynamic = leases_marked_dynamic
        self.api_never_ready = api_never_ready
        self.withhold_leases = withhold_leases
        self.token = 'K10c0ffee0c0ffee0c0ffee::server:fake-secret'
        self.events: List[Tuple[str, str]] = []
        self.broken_commands: Dict[str, List[Sequence[str]]] = {}
        self.slow_commands: Dict[str, List[Tuple[Sequence[str], float]]] = {}
        self._api_machine: Optional[FakeMachine] = None
        self._members: Dict[str, Tuple[FakeMachine, str]] = {}
        self.machines = {
            spec.name: FakeMachine(self, spec.name, profile.segments())
            for spec in variant.nodes
            }
        if isinstance(profile, DhcpProfile):
            for spec in variant.cluster_nodes():
                self.machines[spec.name].dhcp_client_interface = profile.interface

    def __repr__(self):
        return f'<FakeCluster {self.profile.name} {self.variant.name}>'

    def machine(self, name: str) -> FakeMachine:
        return self.machines[name]

    def fleet(self, cancellation: Optional[CancellationToken] = None, poll_interval_sec: float = 0.01) -> Fleet:
        members = [
            FleetMember(node, FakeVmControl(self.machines[node.name]), FakeNodeAccess(self.machines[node.name]))
            for node in plan_nodes(self.variant, self.profile)
            ]
        return Fleet(members, cancellation, poll_interval_sec=poll_interval_sec)

    def break_command(self, node: str, *prefix: str):
        """Make commands starting with the prefix exit with status 1."""
        self.broken_commands.setdefault(node, []).append(prefix)

    def delay_command(self, node: str, delay_sec: float, *prefix: str):
        """Make commands starting with the prefix take that long to exit.

        A command slower than its timeout is stopped the moment it is run.
        """
        self.slow_commands.setdefault(node, []).append((prefix, delay_sec))

    def hang_command(self, node: str, *prefix: str):
        self.delay_command(node, math.inf, *prefix)

    def command_delay(self, node: str, command) -> float:
        args = shlex.split(command) if isinstance(command, str) else [str(arg) for arg in command]
        with self.lock:
            return max(
                (delay for prefix, delay in self.slow_commands.get(node, ()) if args[:len(prefix)] == list(prefix)),
                default=0.)

    def record(self, node: str, action: str):
        with self.lock:
            self.events.append((node, action))
        _logger.debug("%s: %s", node, action)

    def actions(self, node: str) -> Sequence[str]:
        with self.lock:
            return [action for name, action in self.events if name == node]

    def first_event(self, node: str, action: str) -> int:
        """Position of the action in the whole log; -1 if it never happened."""
        with self.lock:
            for index, event in enumerate(self.events):
                if event == (node, action):
                    return index
            return -1

    def ready_members(self) -> Sequence[Tuple[str, str]]:
        with self.lock:
            return [(machine.hostname, roles) for machine, roles in self._members.values()]

    def api_listening(self, machine: FakeMachine) -> bool:
        with self.lock:
            member = self._members.get(machine.name)
            if member is None or member[1] == '<none>':
                return False
            return machine.services['k3s-server.service'].is_active()

    def api_ready(self, machine: FakeMachine) -> bool:
        return self.api_listening(machine) and not self.api_never_ready

    def join(self, machine: FakeMachine, unit: str, env: Mapping[str, str]) -> Optional[str]:
        """Make the machine a member; the reason if k3s would refuse."""
        is_server = unit == 'k3s-server.service'
        if is_server:
            options = parse_k3s_options(env.get('K3S_SERVER_OPTS', ''))
            url = options.get('server')
        else:
            options = parse_k3s_options(env.get('K3S_AGENT_OPTS', ''))
            url = env.get('K3S_URL')
        node_ip = options.get('node-ip')
        if node_ip is None or not machine.has_address(IPv4Address(node_ip)):
            return f"node IP {node_ip} is not assigned to any interface"
        if 'cluster-init' in options:
            if self._api_machine is not None:
                return f"cluster is already initialized by {self._api_machine.name}"
            self._api_machine = machine
            machine.files[K3S_TOKEN_PATH] = self.token + '\n'
        else:
            if not url:
                return "neither --cluster-init nor server URL given"
            host = IPv4Address(urlparse(url).hostname)
            api = self._api_machine
            if api is None or not api.has_address(host) or not self.api_listening(api):
                return f"cannot reach {url}"
            if not self.reachable(machine, host):
                return f"no route to {host}"
            if env.get('K3S_TOKEN') != self.token:
                return "token is rejected by the server"
        roles = 'control-plane,etcd,master' if is_server else '<none>'
        self._members[machine.name] = machine, roles
        machine.log(unit, f"Node {machine.hostname} joined")
        return None

    def leave(self, machine: FakeMachine, unit: str):
        member = self._members.get(machine.name)
        if member is None:
            return
        if (member[1] != '<none>') != (unit == 'k3s-server.service'):
            return
        del self._members[machine.name]
        if machine is self._api_machine:
            self._api_machine = None

    def serve_dhcp(self, machine: FakeMachine) -> Optional[str]:
        if not any('dhcp-range=' in text for text in self._dnsmasq_configs(machine)):
            return "no dhcp-range configured"
        return None

    def dhcp_offer(self, mac: str) -> Optional[IPv4Interface]:
        """Address reserved for the MAC by a running DHCP server on the segment."""
        with self.lock:
            if self.withhold_leases:
                return None
            for machine in self.machines.values():
                if not machine.running or not machine.services['dnsmasq.service'].is_active():
                    continue
                for text in self._dnsmasq_configs(machine):
                    offer = _reserved_address(text, mac)
                    if offer is not None and _serves(machine, offer):
                        return offer
            return None

    @staticmethod
    def _dnsmasq_configs(machine: FakeMachine) -> Sequence[str]:
        return [text for path, text in machine.files.items() if path.startswith(_DNSMASQ_DIR)]

    def reachable(self, source: FakeMachine, ip: IPv4Address) -> bool:
        with self.lock:
            for target in self.machines.values():
                for target_link, target_address in _live_addresses(target):
                    if target_address.ip != ip:
                        continue
                    for source_link, source_address in _live_addresses(source):
                        if ip not in source_address.network:
                            continue
                        if source.segment_of(source_link) == target.segment_of(target_link):
                            return True
            return False


def _live_addresses(machine: FakeMachine):
    for name, address in machine.addresses():
        link = machine.links[name]
        if name != 'eth0' and machine.carries_traffic(link):
            yield link, address


def _reserved_address(config: str, mac: str) -> Optional[IPv4Interface]:
    netmask = None
    reserved = None
    for line in config.splitlines():
        key, _, value = line.partition('=')
        fields = value.split(',')
        if key == 'dhcp-range':
            netmask = fields[2]
        elif key == 'dhcp-host' and fields[0].lower() == mac.lower():
            reserved = fields[-1]
    if netmask is None or reserved is None:
        return None
    return IPv4Interface(f'{reserved}/{netmask}')


def _serves(machine: FakeMachine, offer: IPv4Interface) -> bool:
    return any(
        machine.carries_traffic(link) and address.network == offer.network
        for link in machine.links.values()
        for address in link.addresses)


class FakeVmControl(VmControl):

    def __init__(self, machine: FakeMachine):
        super().__init__(vm_name(machine.name))
        self._machine = machine

    def power_on(self):
        with self._machine.cluster.lock:
            if self._machine.fail_power_on:
                raise HypervisorError(f"{self}: cannot launch")
            if self._machine.running:
                raise HypervisorError(f"{self} is already running")
            self._machine.record('power on')
            self._machine.boot()

    def request_shutdown(self):
        with self._machine.cluster.lock:
            self._machine.record('shutdown requested')
            if not self._machine.ignores_acpi:
                self._machine.running = False

    def kill(self):
        with self._machine.cluster.lock:
            self._machine.record('killed')
            self._machine.running = False

    def is_running(self):
        with self._machine.cluster.lock:
            return self._machine.running

    def release(self):
        with self._machine.cluster.lock:
            if self._machine.running:
                raise HypervisorError(f"{self} is still running")
            self._machine.record('released')
            self._machine.released = True


class FakeNodeAccess(NodeAccess):

    def __init__(self, machine: FakeMachine):
        self._machine = machine
        self.closed = False

    def __repr__(self):
        return f'<FakeNodeAccess {self._machine.name}>'

    def _check_running(self):
        if not self._machine.running:
            raise NodeUnreachable(f"{self._machine.name} is powered off")

    def is_ready(self):
        with self._machine.cluster.lock:
            self._check_running()
            if self._machine.never_boots:
                return False
            if self._machine.boot_delay_polls > 0:
                self._machine.boot_delay_polls -= 1
                return False
            return True

    def run(self, command, timeout_sec=60, input=None):
        delay_sec = self._machine.cluster.command_delay(self._machine.name, command)
        if delay_sec >= timeout_sec:
            self._machine.record(f"timed out after {timeout_sec:g} sec")
            raise ProcessTimeout(command, timeout_sec, b'', b'')
        if delay_sec:
            time.sleep(delay_sec)
        with self._machine.cluster.lock:
            self._check_running()
            return self._machine.run(command, input)

    @property
    def networking(self):
        return self._machine.networking

    def service(self, name):
        return FakeService(self._machine, name)

    def write_file(self, path, text):
        with self._machine.cluster.lock:
            self._check_running()
            self._machine.files[path] = text
            self._machine.record(f'write {path}')

    def read_file(self, path):
        with self._machine.cluster.lock:
            self._check_running()
            self._machine.record(f'read {path}')
            try:
                return self._machine.files[path]
            except KeyError:
                raise ProcessError(1, ['cat', path], b'', f"cat: {path}: No such file or directory".encode())

    def close(self):
        self.closed = True


_logger = logging.getLogger(__name__)
