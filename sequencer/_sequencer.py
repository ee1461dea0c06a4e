# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Tuple

from cluster_roles import PreconditionViolation
from cluster_roles import RoleConfigurator
from convergence import CancellationToken
from convergence import Cancelled
from convergence import PollTimeout
from convergence import Probe
from convergence import ProbeError
from convergence import poll
from convergence import seconds_left
from diagnostics import DiagnosticsCollector
from identity import assert_no_collisions
from network_profiles import BondingVlansProfile
from network_profiles import ConfigurationError
from network_profiles import DhcpProfile
from network_profiles import NetworkProfile
from network_profiles import TopologyVariant
from os_access import NodeUnreachable
from os_access import ProcessError
from os_access import ServiceStartError
from sequencer._phases import ExitCode
from sequencer._phases import Phase
from sequencer._phases import PhaseFailed
from sequencer._phases import PhaseName
from sequencer._phases import RunResult
from topology import AddressMismatch
from topology import BondNotReady
from topology import CapabilityMissing
from topology import DhcpServerConfigurator
from topology import TopologyConfigurator
from vm.fleet import Fleet
from vm.fleet import NodeNotRunning
from vm.hypervisor import HypervisorError
from vm.node import IllegalTransition
from vm.node import Node
from vm.node import NodeRole
from vm.node import NodeState

# Failures a phase expects. Anything else fails the phase as well, but is
# logged with its traceback.
_phase_errors = (
    AddressMismatch,
    BondNotReady,
    Cancelled,
    CapabilityMissing,
    ConfigurationError,
    HypervisorError,
    IllegalTransition,
    NodeNotRunning,
    NodeUnreachable,
    PollTimeout,
    PreconditionViolation,
    ProbeError,
    ProcessError,
    ServiceStartError,
    )


def exit_code_for(error: Exception) -> ExitCode:
    if isinstance(error, (PollTimeout, Cancelled)):
        return ExitCode.TIMEOUT
    if isinstance(error, ConfigurationError):
        return ExitCode.CONFIGURATION_ERROR
    return ExitCode.PHASE_FAILED


class PhaseSequencer:
    """Boot, network, then k3s: bootstrap first, joiners after, all healthy.

    Phases never overlap. Within a phase the nodes are handled
    concurrently, one thread per node, and the phase ends when every node
    passed or one of them failed. A failed phase ends the run: diagnostics
    are collected from its nodes and all VMs are shut down.
    """

    def __init__(
            self,
            fleet: Fleet,
            profile: NetworkProfile,
            variant: TopologyVariant,
            *,
            timeouts: Mapping[PhaseName, float],
            poll_interval_sec: float = 1,
            shutdown_grace_sec: float = 30,
            log_tail_lines: int = 100,
            release_dhcp_server: bool = False,
            cancellation: Optional[CancellationToken] = None,
            ):
        self._fleet = fleet
        self._profile = profile
        self._variant = variant
        self._timeouts = timeouts
        self._poll_interval_sec = poll_interval_sec
        self._shutdown_grace_sec = shutdown_grace_sec
        self._release_dhcp_server = release_dhcp_server
        self._cancellation = cancellation
        self._deadline: Optional[float] = None
        self._topology = TopologyConfigurator(
            fleet, profile,
            timeout_sec=timeouts[PhaseName.NETWORK],
            poll_interval_sec=poll_interval_sec,
            cancellation=cancellation,
            )
        self._roles = RoleConfigurator(fleet, profile, variant)
        self._diagnostics = DiagnosticsCollector(fleet, log_tail_lines)

    @classmethod
    def from_config(
            cls,
            fleet: Fleet,
            profile: NetworkProfile,
            variant: TopologyVariant,
            config: Mapping[str, str],
            cancellation: Optional[CancellationToken] = None,
            ) -> PhaseSequencer:
        return cls(
            fleet, profile, variant,
            timeouts={phase: float(config[phase.config_key()]) for phase in PhaseName},
            poll_interval_sec=float(config['poll_interval_sec']),
            shutdown_grace_sec=float(config['shutdown_grace_sec']),
            log_tail_lines=int(config['log_tail_lines']),
            release_dhcp_server=config['release_dhcp_server'].lower() in ('1', 'true', 'yes', 'on'),
            cancellation=cancellation,
            )

    def __repr__(self):
        return f'<PhaseSequencer {self._profile.name} {self._variant.name}>'

    @property
    def roles(self) -> RoleConfigurator:
        return self._roles

    def _cluster_nodes(self) -> Sequence[Node]:
        return [n for n in self._fleet.nodes() if n.role.is_cluster_member()]

    def _joiners(self) -> Sequence[Node]:
        return [n for n in self._cluster_nodes() if n is not self._roles.bootstrap]

    def _dhcp_server(self) -> Node:
        [node] = [n for n in self._fleet.nodes() if n.role is NodeRole.AUXILIARY_DHCP]
        return node

    def phases(self) -> Sequence[Phase]:
        cluster = self._cluster_nodes()
        bootstrap = self._roles.bootstrap
        network_prelude = None
        network_prelude_nodes = []
        network_afterwards = None
        if isinstance(self._profile, DhcpProfile):
            network_prelude = self._serve_dhcp
            network_prelude_nodes = [self._dhcp_server()]
            if self._release_dhcp_server:
                network_afterwards = self._release_dhcp
        return [
            Phase(
                PhaseName.BOOT, None, self._fleet.nodes(), NodeState.DEFINED,
                self._timeouts[PhaseName.BOOT],
                action=self._boot,
                ),
            Phase(
                PhaseName.NETWORK, PhaseName.BOOT, cluster, NodeState.READY,
                self._timeouts[PhaseName.NETWORK],
                action=self._configure_network,
                postcondition=lambda node: self._topology.postcondition(
                    node, [peer.name for peer in cluster if peer is not node]),
                reached=NodeState.NETWORK_CONFIGURED,
                prelude=network_prelude,
                afterwards=network_afterwards,
                prelude_nodes=network_prelude_nodes,
                ),
            Phase(
                PhaseName.ROLE_WORKAROUNDS, PhaseName.NETWORK, cluster, NodeState.NETWORK_CONFIGURED,
                self._timeouts[PhaseName.ROLE_WORKAROUNDS],
                action=self._roles.apply_workarounds,
                postcondition=self._hostname_probe,
                ),
            Phase(
                PhaseName.BOOTSTRAP_HEALTHY, PhaseName.ROLE_WORKAROUNDS, [bootstrap],
                NodeState.NETWORK_CONFIGURED,
                self._timeouts[PhaseName.BOOTSTRAP_HEALTHY],
                action=self._roles.configure_bootstrap,
                postcondition=lambda node: self._roles.bootstrap_probe(),
                starting=NodeState.SERVICE_STARTING,
                reached=NodeState.SERVICE_HEALTHY,
                afterwards=self._roles.read_token,
                ),
            Phase(
                PhaseName.JOINERS_HEALTHY, PhaseName.BOOTSTRAP_HEALTHY, self._joiners(),
                NodeState.NETWORK_CONFIGURED,
                self._timeouts[PhaseName.JOINERS_HEALTHY],
                action=self._join,
                postcondition=self._roles.joiner_probe,
                starting=NodeState.SERVICE_STARTING,
                reached=NodeState.SERVICE_HEALTHY,
                ),
            Phase(
                PhaseName.ALL_HEALTHY, PhaseName.JOINERS_HEALTHY, cluster, NodeState.SERVICE_HEALTHY,
                self._timeouts[PhaseName.ALL_HEALTHY],
                postcondition=lambda node: self._roles.all_healthy_probe(node, len(cluster)),
                ),
            ]

    def _boot(self, node: Node):
        self._fleet.start(node, seconds_left(self._deadline))
        self._topology.verify_macs(node)

    def _serve_dhcp(self):
        node = self._dhcp_server()
        server = DhcpServerConfigurator(
            self._fleet, self._profile, [n.name for n in self._cluster_nodes()],
            timeout_sec=self._timeouts[PhaseName.NETWORK],
            poll_interval_sec=self._poll_interval_sec,
            cancellation=self._cancellation,
            )
        server.configure(node, self._deadline)
        self._fleet.advance(node, NodeState.NETWORK_CONFIGURED)

    def _release_dhcp(self):
        node = self._dhcp_server()
        _logger.info("%s: leases are handed out, release the DHCP server", node.name)
        self._fleet.shutdown(node, graceful=True, grace_sec=self._shutdown_grace_sec)

    def _configure_network(self, node: Node):
        self._topology.configure(node, self._deadline)
        if isinstance(self._profile, BondingVlansProfile) and self._profile.verify_failover:
            self._topology.exercise_failover(node, self._deadline)

    def _hostname_probe(self, node: Node) -> Probe:
        return Probe(
            f"hostname of {node.name} is {node.name}",
            lambda: self._fleet.run(node, ['hostname'])[1].strip(),
            lambda hostname: hostname == node.name,
            )

    def _join(self, node: Node):
        token = self._roles.vault.issue(node.name)
        self._roles.configure_joiner(node, self._roles.bootstrap_endpoint(), token)

    def run(self) -> RunResult:
        """Run all phases and shut the VMs down; never leave them running."""
        try:
            assert_no_collisions(self._profile, [n.name for n in self._fleet.nodes()])
        except ConfigurationError as e:
            _logger.error("Plan rejected: %s", e)
            return RunResult(False, ExitCode.CONFIGURATION_ERROR, None, str(e), None)
        passed = []
        try:
            for phase in self.phases():
                self._run_phase(phase)
                passed.append(phase.name)
        except PhaseFailed as e:
            _logger.error("%s", e)
            bundle = self._diagnostics.collect(e.phase.value, e.probe_description, e.nodes)
            return RunResult(False, exit_code_for(e.error), e.phase, str(e.error), bundle, passed)
        finally:
            self._fleet.shutdown_all(self._shutdown_grace_sec)
        _logger.info("All phases passed: %s", ', '.join(p.value for p in passed))
        return RunResult(True, ExitCode.PASSED, None, "All phases passed", None, passed)

    def _run_phase(self, phase: Phase):
        started_at = time.monotonic()
        self._deadline = started_at + phase.timeout_sec
        _logger.info("Phase %s: start on %s", phase.name.value, ', '.join(n.name for n in phase.governed()))
        try:
            if self._cancellation is not None:
                self._cancellation.raise_if_cancelled()
            self._check_required_state(phase)
        except Exception as e:
            raise self._failed(phase, e) from e
        if phase.prelude is not None:
            try:
                phase.prelude()
            except Exception as e:
                for node in phase.prelude_nodes:
                    self._fleet.fail(node)
                raise self._failed(phase, e) from e
        failures = self._for_each_node(phase, lambda node: self._dispatch(phase, node))
        if not failures:
            failures = self._for_each_node(phase, lambda node: self._await(phase, node))
        if failures:
            for node, _ in failures:
                self._fleet.fail(node)
            [(node, error), *_] = failures
            raise self._failed(phase, error) from error
        try:
            if phase.reached is not None:
                for node in phase.nodes:
                    self._fleet.advance(node, phase.reached)
            if phase.afterwards is not None:
                phase.afterwards()
        except Exception as e:
            raise self._failed(phase, e) from e
        _logger.info("Phase %s: passed in %.1f sec", phase.name.value, time.monotonic() - started_at)

    def _failed(self, phase: Phase, error: Exception) -> PhaseFailed:
        if not isinstance(error, _phase_errors):
            _logger.error("Phase %s: unexpected error", phase.name.value, exc_info=error)
        return PhaseFailed(phase.name, _describe(error), phase.governed(), error)

    def _check_required_state(self, phase: Phase):
        for node in phase.nodes:
            if not node.state.reached(phase.requires):
                raise PreconditionViolation(
                    f"Phase {phase.name.value}: {node.name} is {node.state.value}, "
                    f"{phase.requires.value} is required")

    def _for_each_node(self, phase: Phase, func) -> List[Tuple[Node, Exception]]:
        if not phase.nodes:
            return []
        failures = []
        with ThreadPoolExecutor(max_workers=len(phase.nodes), thread_name_prefix=phase.name.value) as executor:
            futures = [(node, executor.submit(func, node)) for node in phase.nodes]
            for node, future in futures:
                try:
                    future.result()
                except Exception as e:
                    _logger.error("Phase %s: %s failed: %s", phase.name.value, node.name, e)
                    failures.append((node, e))
        return failures

    def _dispatch(self, phase: Phase, node: Node):
        if phase.starting is not None:
            self._fleet.advance(node, phase.starting)
        if phase.action is not None:
            phase.action(node)

    def _await(self, phase: Phase, node: Node):
        if phase.postcondition is None:
            return
        poll(
            phase.postcondition(node),
            interval_sec=self._poll_interval_sec,
            timeout_sec=seconds_left(self._deadline),
            cancellation=self._cancellation,
            )


def _describe(error: Exception) -> str:
    if isinstance(error, (PollTimeout, ProbeError)):
        return error.description
    return str(error)


_logger = logging.getLogger(__name__)
