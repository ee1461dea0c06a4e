# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import logging
from typing import NamedTuple
from typing import Optional
from typing import Sequence
from typing import Tuple

from convergence import CancellationToken
from convergence import PollTimeout
from convergence import Probe
from convergence import poll
from network_profiles import NetworkProfile
from network_profiles import TopologyVariant
from os_access import Networking
from os_access import NodeAccess
from os_access import NodeUnreachable
from os_access import ProcessError
from os_access import Service
from os_access import ServiceNotFoundError
from vm.hypervisor import HypervisorError
from vm.hypervisor import VmControl
from vm.node import Node
from vm.node import NodeState


class NodeNotRunning(Exception):
    pass


class FleetMember(NamedTuple):
    node: Node
    vm: VmControl
    access: NodeAccess


def plan_nodes(variant: TopologyVariant, profile: NetworkProfile) -> Sequence[Node]:
    return [Node(spec.name, spec.role, profile.interfaces()) for spec in variant.nodes]


class Fleet:
    """The only way to act on nodes: power, commands, services, state.

    Commands are accepted from the moment the node is Ready until it is
    shut down; a Failed node still answers so diagnostics can be read.
    """

    def __init__(
            self,
            members: Sequence[FleetMember],
            cancellation: Optional[CancellationToken] = None,
            poll_interval_sec: float = 1,
            ):
        self._members = {member.node.name: member for member in members}
        self._cancellation = cancellation
        self._poll_interval_sec = poll_interval_sec

    def __repr__(self):
        return f'<Fleet {list(self._members)}>'

    def nodes(self) -> Sequence[Node]:
        return [member.node for member in self._members.values()]

    def node(self, name: str) -> Node:
        return self._members[name].node

    def start(self, node: Node, timeout_sec: float):
        member = self._members[node.name]
        node.move_to(NodeState.BOOTING)
        member.vm.power_on()

        def accepts_commands():
            if not member.vm.is_running():
                raise HypervisorError(f"{member.vm} exited while booting")
            return member.access.is_ready()

        poll(
            Probe(f"{node.name} accepts commands", accepts_commands, transient=(NodeUnreachable,)),
            interval_sec=self._poll_interval_sec,
            timeout_sec=timeout_sec,
            cancellation=self._cancellation,
            )
        node.move_to(NodeState.READY)

    def shutdown(self, node: Node, graceful: bool, grace_sec: float = 30):
        member = self._members[node.name]
        if node.state is NodeState.SHUT_DOWN:
            return
        if graceful and member.vm.is_running():
            _logger.info("%s: request graceful shutdown", node.name)
            member.vm.request_shutdown()
            self._wait_powered_off([member], grace_sec)
        if member.vm.is_running():
            _logger.warning("%s: still running, kill", node.name)
            member.vm.kill()
        member.access.close()
        member.vm.release()
        node.move_to(NodeState.SHUT_DOWN)

    def shutdown_all(self, grace_sec: float):
        """Power off every node: ACPI first, kill after the grace window."""
        members = [m for m in self._members.values() if m.node.state is not NodeState.SHUT_DOWN]
        running = []
        for member in members:
            try:
                if member.vm.is_running():
                    member.vm.request_shutdown()
                    running.append(member)
            except Exception:
                _logger.exception("%s: cannot request shutdown", member.node.name)
        self._wait_powered_off(running, grace_sec)
        for member in members:
            try:
                if member.vm.is_running():
                    _logger.warning("%s: still running after %g sec, kill", member.node.name, grace_sec)
                    member.vm.kill()
                member.access.close()
                member.vm.release()
            except Exception:
                _logger.exception("%s: teardown failed, continue with other nodes", member.node.name)
            member.node.move_to(NodeState.SHUT_DOWN)

    def _wait_powered_off(self, members: Sequence[FleetMember], grace_sec: float):
        if not members:
            return
        names = [m.node.name for m in members]
        # Teardown must not observe the cancellation which caused it.
        try:
            poll(
                Probe(
                    f"{', '.join(names)} powered off",
                    lambda: [m.node.name for m in members if m.vm.is_running()],
                    lambda still_running: not still_running,
                    ),
                interval_sec=min(self._poll_interval_sec, 1),
                timeout_sec=grace_sec,
                )
        except PollTimeout as e:
            _logger.warning("Graceful shutdown incomplete: %s", e)

    def _running_member(self, node: Node) -> FleetMember:
        if node.state in (NodeState.DEFINED, NodeState.BOOTING, NodeState.SHUT_DOWN):
            raise NodeNotRunning(f"{node.name} is {node.state.value}, commands are not accepted")
        return self._members[node.name]

    def run(self, node: Node, command, timeout_sec: float = 60, check=False) -> Tuple[int, str]:
        """Exit status and stdout of a command; raise on non-zero status if checked."""
        member = self._running_member(node)
        result = member.access.run(command, timeout_sec=timeout_sec)
        if check and result.returncode != 0:
            raise ProcessError(result.returncode, command, result.stdout, result.stderr)
        return result.returncode, result.stdout.decode(errors='backslashreplace')

    def is_service_active(self, node: Node, service_name: str) -> bool:
        try:
            return self.service(node, service_name).is_active()
        except ServiceNotFoundError:
            return False

    def service(self, node: Node, service_name: str) -> Service:
        return self._running_member(node).access.service(service_name)

    def networking(self, node: Node) -> Networking:
        return self._running_member(node).access.networking

    def write_file(self, node: Node, path: str, text: str):
        self._running_member(node).access.write_file(path, text)

    def read_file(self, node: Node, path: str) -> str:
        return self._running_member(node).access.read_file(path)

    def wait_for_condition(
            self,
            node: Node,
            command,
            timeout_sec: float,
            description: Optional[str] = None,
            ):
        """Wait until the command exits with zero status."""
        if description is None:
            description = f"{command!r} succeeds on {node.name}"
        poll(
            Probe(description, lambda: self.run(node, command)[0] == 0),
            interval_sec=self._poll_interval_sec,
            timeout_sec=timeout_sec,
            cancellation=self._cancellation,
            )

    def advance(self, node: Node, state: NodeState):
        node.move_to(state)

    def fail(self, node: Node):
        if node.state not in (NodeState.FAILED, NodeState.SHUT_DOWN):
            node.move_to(NodeState.FAILED)


_logger = logging.getLogger(__name__)
