# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import threading
from typing import Optional
from typing import Sequence

from vm.node import Node
from vm.node import NodeState


class PreconditionViolation(Exception):
    pass


class ClusterToken:
    """Join secret produced by the bootstrap node; never logged in full."""

    def __init__(self, value: str):
        value = value.strip()
        if not value:
            raise PreconditionViolation("Cluster token is empty")
        self.value = value

    def __repr__(self):
        return f'<ClusterToken {self.value[:6]}...>'

    def __eq__(self, other):
        if not isinstance(other, ClusterToken):
            return NotImplemented
        return self.value == other.value

    def __hash__(self):
        return hash(self.value)


class TokenVault:
    """Single place the token passes through on its way to the joiners.

    It is accepted only from a healthy bootstrap node and handed to each
    joiner once.
    """

    def __init__(self, bootstrap: Node):
        self._bootstrap = bootstrap
        self._token: Optional[ClusterToken] = None
        self._delivered = []
        self._lock = threading.Lock()

    def __repr__(self):
        return f'<TokenVault of {self._bootstrap.name}>'

    def _require_healthy_bootstrap(self, action):
        if self._bootstrap.state is not NodeState.SERVICE_HEALTHY:
            raise PreconditionViolation(
                f"Cannot {action}: bootstrap node {self._bootstrap.name} is "
                f"{self._bootstrap.state.value}, not {NodeState.SERVICE_HEALTHY.value}")

    def store(self, token: ClusterToken):
        with self._lock:
            self._require_healthy_bootstrap("store the cluster token")
            if self._token is not None and self._token != token:
                raise PreconditionViolation(f"{self}: token changed after it was stored")
            self._token = token
        _logger.info("%s: token stored: %r", self, token)

    def issue(self, joiner: str) -> ClusterToken:
        with self._lock:
            self._require_healthy_bootstrap(f"issue the cluster token to {joiner}")
            if self._token is None:
                raise PreconditionViolation(f"{self}: no token yet, cannot issue it to {joiner}")
            if joiner in self._delivered:
                raise PreconditionViolation(f"{self}: token already issued to {joiner}")
            self._delivered.append(joiner)
        _logger.info("%s: token issued to %s", self, joiner)
        return self._token

    def delivered_to(self) -> Sequence[str]:
        with self._lock:
            return list(self._delivered)


_logger = logging.getLogger(__name__)
