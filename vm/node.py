# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Sequence


class NodeRole(Enum):
    BOOTSTRAP = 'bootstrap'
    JOINER_SERVER = 'joiner-server'
    AGENT = 'agent'
    AUXILIARY_DHCP = 'auxiliary-dhcp'

    def is_server(self) -> bool:
        return self in (NodeRole.BOOTSTRAP, NodeRole.JOINER_SERVER)

    def is_cluster_member(self) -> bool:
        return self is not NodeRole.AUXILIARY_DHCP


class NodeState(Enum):
    DEFINED = 'Defined'
    BOOTING = 'Booting'
    READY = 'Ready'
    NETWORK_CONFIGURED = 'NetworkConfigured'
    SERVICE_STARTING = 'ServiceStarting'
    SERVICE_HEALTHY = 'ServiceHealthy'
    FAILED = 'Failed'
    SHUT_DOWN = 'ShutDown'

    def reached(self, other: NodeState) -> bool:
        """Whether a node in this state has already passed through the other one."""
        if self in _terminal or other in _terminal:
            return self is other
        return _forward_order.index(self) >= _forward_order.index(other)


_forward_order = [
    NodeState.DEFINED,
    NodeState.BOOTING,
    NodeState.READY,
    NodeState.NETWORK_CONFIGURED,
    NodeState.SERVICE_STARTING,
    NodeState.SERVICE_HEALTHY,
    ]
_terminal = (NodeState.FAILED, NodeState.SHUT_DOWN)


class IllegalTransition(Exception):

    def __init__(self, node_name: str, current: NodeState, requested: NodeState):
        super().__init__(f"{node_name}: {current.value} -> {requested.value} is not allowed")
        self.node_name = node_name
        self.current = current
        self.requested = requested


class Node:
    """Logical cluster member; the state only moves forward.

    Failed may follow any non-terminal state. ShutDown may follow any state
    and is final.
    """

    def __init__(self, name: str, role: NodeRole, interfaces: Sequence = ()):
        self.name = name
        self.role = role
        self.interfaces = tuple(interfaces)
        self._state = NodeState.DEFINED
        self._lock = threading.Lock()

    def __repr__(self):
        return f'<Node {self.name} {self.role.value} {self._state.value}>'

    @property
    def state(self) -> NodeState:
        return self._state

    def move_to(self, new_state: NodeState):
        with self._lock:
            current = self._state
            if not _is_allowed(current, new_state):
                raise IllegalTransition(self.name, current, new_state)
            self._state = new_state
        _logger.info("%s: %s -> %s", self.name, current.value, new_state.value)


def _is_allowed(current: NodeState, new: NodeState) -> bool:
    if current is NodeState.SHUT_DOWN:
        return False
    if new is NodeState.SHUT_DOWN:
        return True
    if current is NodeState.FAILED:
        return False
    if new is NodeState.FAILED:
        return True
    return _forward_order.index(new) == _forward_order.index(current) + 1


_logger = logging.getLogger(__name__)
