# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

from enum import Enum
from enum import IntEnum
from typing import Any
from typing import Callable
from typing import Dict
from typing import NamedTuple
from typing import Optional
from typing import Sequence

from convergence import Probe
from diagnostics import DiagnosticBundle
from vm.node import Node
from vm.node import NodeState


class PhaseName(Enum):
    BOOT = 'Boot'
    NETWORK = 'Network'
    ROLE_WORKAROUNDS = 'RoleWorkarounds'
    BOOTSTRAP_HEALTHY = 'BootstrapHealthy'
    JOINERS_HEALTHY = 'JoinersHealthy'
    ALL_HEALTHY = 'AllHealthy'

    def config_key(self) -> str:
        """Key of the phase timeout: BootstrapHealthy -> timeout.bootstrap_healthy."""
        words = []
        for char in self.value:
            if char.isupper() and words:
                words.append('_')
            words.append(char.lower())
        return 'timeout.' + ''.join(words)


class ExitCode(IntEnum):
    PASSED = 0
    PHASE_FAILED = 1
    CONFIGURATION_ERROR = 2
    TIMEOUT = 3


class Phase(NamedTuple):
    """Step applied to a set of nodes; a barrier for all of them.

    The governed nodes must have reached the required state. Each of them
    is moved to the starting state (if any), gets the action, then its
    postcondition is polled. When all postconditions hold, the nodes move
    to the reached state (if any) and the afterwards hook runs once.

    The prelude runs once before any node is touched. The nodes it
    configures are governed by the phase too: they fail with it and are
    in its diagnostics.
    """

    name: PhaseName
    predecessor: Optional[PhaseName]
    nodes: Sequence[Node]
    requires: NodeState
    timeout_sec: float
    action: Optional[Callable[[Node], Any]] = None
    postcondition: Optional[Callable[[Node], Probe]] = None
    starting: Optional[NodeState] = None
    reached: Optional[NodeState] = None
    prelude: Optional[Callable[[], Any]] = None
    afterwards: Optional[Callable[[], Any]] = None
    prelude_nodes: Sequence[Node] = ()

    def governed(self) -> Sequence[Node]:
        return [*self.prelude_nodes, *self.nodes]


class PhaseFailed(Exception):

    def __init__(self, phase: PhaseName, probe_description: str, nodes: Sequence[Node], error: Exception):
        super().__init__(f"Phase {phase.value} failed: {error}")
        self.phase = phase
        self.probe_description = probe_description
        self.nodes = nodes
        self.error = error


class RunResult(NamedTuple):
    passed: bool
    exit_code: ExitCode
    failed_phase: Optional[PhaseName]
    message: str
    bundle: Optional[DiagnosticBundle]
    phases_passed: Sequence[PhaseName] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'passed': self.passed,
            'exit_code': int(self.exit_code),
            'failed_phase': self.failed_phase.value if self.failed_phase is not None else None,
            'message': self.message,
            'phases_passed': [phase.value for phase in self.phases_passed],
            'diagnostics': self.bundle.to_dict() if self.bundle is not None else None,
            }
