# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from ipaddress import IPv4Address
from typing import List
from typing import Optional

from cluster_roles._k3s import AGENT_SERVICE
from cluster_roles._k3s import API_PORT
from cluster_roles._k3s import SERVER_SERVICE
from cluster_roles._k3s import TOKEN_PATH
from cluster_roles._k3s import agent_environment
from cluster_roles._k3s import bootstrap_environment
from cluster_roles._k3s import env_path
from cluster_roles._k3s import joiner_server_environment
from cluster_roles._k3s import k3s_flags
from cluster_roles._k3s import ready_nodes
from cluster_roles._k3s import service_name
from cluster_roles._token import ClusterToken
from cluster_roles._token import PreconditionViolation
from cluster_roles._token import TokenVault
from convergence import Probe
from identity import ip_for
from network_profiles import NetworkProfile
from network_profiles import TopologyVariant
from vm.fleet import Fleet
from vm.node import Node
from vm.node import NodeRole
from vm.node import NodeState

_KUBECTL = ['k3s', 'kubectl']


class RoleConfigurator:
    """Write role configuration of k3s and tell whether it became healthy.

    The bootstrap node initializes the cluster. Joiners need its token,
    which is only available once the bootstrap node is healthy.
    """

    def __init__(self, fleet: Fleet, profile: NetworkProfile, variant: TopologyVariant):
        self._fleet = fleet
        self._profile = profile
        self._bootstrap = fleet.node(variant.bootstrap().name)
        self.vault = TokenVault(self._bootstrap)

    def __repr__(self):
        return f'<RoleConfigurator {self._profile.name} bootstrap={self._bootstrap.name}>'

    @property
    def bootstrap(self) -> Node:
        return self._bootstrap

    def bootstrap_endpoint(self) -> IPv4Address:
        return ip_for(self._profile, self._bootstrap.name).ip

    def apply_workarounds(self, node: Node):
        """Undo what the image does at boot that gets in the way of the test."""
        for unit in SERVER_SERVICE, AGENT_SERVICE:
            if self._fleet.is_service_active(node, unit):
                _logger.warning("%s: %s started at boot, stop it", node.name, unit)
                self._fleet.service(node, unit).stop()
        self._fleet.write_file(node, '/etc/hostname', f'{node.name}\n')
        self._fleet.run(node, ['hostname', node.name], check=True)
        networking = self._fleet.networking(node)
        if not networking.has_default_route():
            gateway = self._profile.networks()['cluster'].network_address + 254
            _logger.info("%s: no default route, add one via %s", node.name, gateway)
            networking.add_route(None, self._profile.cluster_interface(), via=gateway)
        # k3s (kubelet) fails in containers without /dev/kmsg.
        self._fleet.run(node, ['ln', '-sf', '/dev/null', '/dev/kmsg'], check=True)

    def configure_bootstrap(self, node: Node):
        if node is not self._bootstrap:
            raise PreconditionViolation(f"{node.name} is not the bootstrap node {self._bootstrap.name}")
        self._require_network(node)
        flags = k3s_flags(self._profile, node.name, node.role, self._bootstrap.name)
        self._write_environment(node, bootstrap_environment(flags))
        self._fleet.service(node, SERVER_SERVICE).start()
        _logger.info("%s: cluster initialization started", node.name)

    def read_token(self) -> ClusterToken:
        """Take the token from the bootstrap node; only once it is healthy."""
        if self._bootstrap.state is not NodeState.SERVICE_HEALTHY:
            raise PreconditionViolation(
                f"Token read from {self._bootstrap.name} while it is {self._bootstrap.state.value}")
        token = ClusterToken(self._fleet.read_file(self._bootstrap, TOKEN_PATH))
        self.vault.store(token)
        return token

    def configure_joiner(self, node: Node, bootstrap_endpoint: IPv4Address, token: Optional[ClusterToken]):
        if token is None or not token.value:
            raise PreconditionViolation(f"{node.name}: joiner configured without a cluster token")
        if node.role not in (NodeRole.JOINER_SERVER, NodeRole.AGENT):
            raise PreconditionViolation(f"{node.name} is {node.role.value}, not a joiner")
        if self._bootstrap.state is not NodeState.SERVICE_HEALTHY:
            raise PreconditionViolation(
                f"{node.name}: join while bootstrap {self._bootstrap.name} is {self._bootstrap.state.value}")
        self._require_network(node)
        flags = k3s_flags(self._profile, node.name, node.role, self._bootstrap.name)
        if node.role is NodeRole.JOINER_SERVER:
            environment = joiner_server_environment(bootstrap_endpoint, token.value, flags)
            self._fleet.write_file(node, TOKEN_PATH, token.value + '\n')
        else:
            environment = agent_environment(bootstrap_endpoint, token.value, flags)
        self._write_environment(node, environment)
        self._fleet.service(node, service_name(node.role)).start()
        _logger.info("%s: joining %s", node.name, bootstrap_endpoint)

    def _require_network(self, node: Node):
        if not node.state.reached(NodeState.NETWORK_CONFIGURED):
            raise PreconditionViolation(
                f"{node.name}: cluster service started while the node is {node.state.value}")

    def _write_environment(self, node: Node, text: str):
        self._fleet.write_file(node, env_path(node.role), text)
        self._fleet.run(node, ['systemctl', 'daemon-reload'], check=True)

    def bootstrap_problems(self) -> List[str]:
        node = self._bootstrap
        if not self._fleet.is_service_active(node, SERVER_SERVICE):
            return [f"{SERVER_SERVICE} is not active"]
        result = []
        _, sockets = self._fleet.run(node, ['ss', '-tln'])
        if f':{API_PORT} ' not in sockets:
            result.append(f"port {API_PORT} is not listening")
        code, readyz = self._fleet.run(node, [*_KUBECTL, 'get', '--raw', '/readyz'])
        if code != 0 or readyz.strip() != 'ok':
            result.append(f"/readyz says {readyz.strip()!r}")
        if node.name not in self.ready_nodes():
            result.append(f"{node.name} is not Ready")
        return result

    def bootstrap_probe(self) -> Probe:
        return Probe(
            f"{self._bootstrap.name} initialized the cluster and is Ready",
            self.bootstrap_problems,
            lambda problems: not problems,
            )

    def joiner_problems(self, node: Node) -> List[str]:
        unit = service_name(node.role)
        if not self._fleet.is_service_active(node, unit):
            return [f"{unit} is not active"]
        if node.name not in self.ready_nodes():
            return [f"{self._bootstrap.name} does not list {node.name} as Ready"]
        return []

    def joiner_probe(self, node: Node) -> Probe:
        return Probe(
            f"{node.name} joined {self._bootstrap.name} and is Ready",
            lambda: self.joiner_problems(node),
            lambda problems: not problems,
            )

    def ready_nodes(self) -> List[str]:
        code, output = self._fleet.run(self._bootstrap, [*_KUBECTL, 'get', 'nodes', '--no-headers'])
        if code != 0:
            return []
        return ready_nodes(output)

    def all_healthy_probe(self, node: Node, expected_count: int) -> Probe:
        """The node is Ready and so are exactly as many nodes as expected."""
        return Probe(
            f"{node.name} is one of {expected_count} Ready nodes",
            self.ready_nodes,
            lambda ready: node.name in ready and len(ready) == expected_count,
            )


_logger = logging.getLogger(__name__)
