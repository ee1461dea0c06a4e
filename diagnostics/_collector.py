# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Callable
from typing import Dict
from typing import Mapping
from typing import NamedTuple
from typing import Sequence
from typing import Tuple

from cluster_roles import service_name
from topology import DNSMASQ_LEASES_PATH
from topology import DNSMASQ_SERVICE
from vm.fleet import Fleet
from vm.node import Node
from vm.node import NodeRole


class NodeDiagnostics(NamedTuple):
    node: str
    state: str
    service: str
    service_status: str
    log_tail: str
    interfaces: str
    routes: str
    extras: Mapping[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {**self._asdict(), 'extras': dict(self.extras)}


class DiagnosticBundle(NamedTuple):
    phase: str
    timestamp: datetime
    failing_probe: str
    nodes: Tuple[NodeDiagnostics, ...]

    def node(self, name: str) -> NodeDiagnostics:
        [result] = [n for n in self.nodes if n.node == name]
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            'phase': self.phase,
            'timestamp': self.timestamp.isoformat(timespec='seconds'),
            'failing_probe': self.failing_probe,
            'nodes': [n.to_dict() for n in self.nodes],
            }


class DiagnosticsCollector:
    """Read back what went wrong from the nodes of a failed phase.

    Collection never raises: a piece that can't be read is replaced by
    a placeholder naming the error, so the failure being diagnosed is
    the one reported.
    """

    def __init__(self, fleet: Fleet, log_tail_lines: int = 100):
        self._fleet = fleet
        self._log_tail_lines = log_tail_lines

    def collect(self, phase: str, failing_probe: str, nodes: Sequence[Node]) -> DiagnosticBundle:
        _logger.info("Collect diagnostics of %s for %s", phase, ', '.join(n.name for n in nodes))
        bundle = DiagnosticBundle(
            phase=phase,
            timestamp=datetime.now(timezone.utc),
            failing_probe=failing_probe,
            nodes=tuple(self._collect_node(node) for node in nodes),
            )
        return bundle

    def _collect_node(self, node: Node) -> NodeDiagnostics:
        if node.role is NodeRole.AUXILIARY_DHCP:
            unit = DNSMASQ_SERVICE
        else:
            unit = service_name(node.role)
        extras = {}
        if node.role is NodeRole.AUXILIARY_DHCP:
            extras['leases'] = _read(node, 'DHCP leases', lambda: self._fleet.read_file(node, DNSMASQ_LEASES_PATH))
        return NodeDiagnostics(
            node=node.name,
            state=node.state.value,
            service=unit,
            service_status=_read(node, 'service status', lambda: self._fleet.service(node, unit).status_text()),
            log_tail=_read(
                node, 'log tail', lambda: self._fleet.service(node, unit).log_tail(self._log_tail_lines)),
            interfaces=_read(node, 'interfaces', lambda: self._command_output(node, ['ip', 'addr', 'show'])),
            routes=_read(node, 'routes', lambda: self._command_output(node, ['ip', 'route', 'show'])),
            extras=extras,
            )

    def _command_output(self, node, command):
        _, output = self._fleet.run(node, command, timeout_sec=30, check=True)
        return output


def _read(node: Node, what: str, get: Callable[[], str]) -> str:
    try:
        return get()
    except Exception as e:
        _logger.error("%s: cannot collect %s: %r", node.name, what, e)
        return f'<unavailable: {e!r}>'


_logger = logging.getLogger(__name__)
