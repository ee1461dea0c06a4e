# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from ipaddress import IPv4Address
from typing import List
from typing import Mapping
from typing import Sequence

from identity import ip_for
from network_profiles import NetworkProfile
from vm.node import NodeRole

API_PORT = 6443
SERVER_SERVICE = 'k3s-server.service'
AGENT_SERVICE = 'k3s-agent.service'
SERVER_ENV_PATH = '/etc/default/k3s-server'
AGENT_ENV_PATH = '/etc/default/k3s-agent'
TOKEN_PATH = '/var/lib/rancher/k3s/server/token'


def service_name(role: NodeRole) -> str:
    return SERVER_SERVICE if role.is_server() else AGENT_SERVICE


def env_path(role: NodeRole) -> str:
    return SERVER_ENV_PATH if role.is_server() else AGENT_ENV_PATH


def server_url(address: IPv4Address) -> str:
    return f'https://{address}:{API_PORT}'


def k3s_flags(profile: NetworkProfile, node: str, role: NodeRole, bootstrap: str) -> List[str]:
    """Pin k3s to the cluster network of the profile.

    >>> from network_profiles import load_profile
    >>> k3s_flags(load_profile('vlans'), 'agent-1', NodeRole.AGENT, 'server-1')
    ['--node-ip=192.168.200.3', '--flannel-iface=eth1.200']
    """
    address = ip_for(profile, node).ip
    flags = [f'--node-ip={address}', f'--flannel-iface={profile.cluster_interface()}']
    if role.is_server():
        flags.append(f'--advertise-address={address}')
        flags.append(f'--tls-san={ip_for(profile, bootstrap).ip}')
    return flags


def _render(variables: Mapping[str, str]) -> str:
    return ''.join(f'{name}="{value}"\n' for name, value in variables.items())


def bootstrap_environment(flags: Sequence[str]) -> str:
    return _render({'K3S_SERVER_OPTS': ' '.join(['--cluster-init', *flags])})


def joiner_server_environment(bootstrap: IPv4Address, token: str, flags: Sequence[str]) -> str:
    return _render({
        'K3S_SERVER_OPTS': ' '.join(['--server', server_url(bootstrap), *flags]),
        'K3S_TOKEN': token,
        })


def agent_environment(bootstrap: IPv4Address, token: str, flags: Sequence[str]) -> str:
    return _render({
        'K3S_URL': server_url(bootstrap),
        'K3S_TOKEN': token,
        'K3S_AGENT_OPTS': ' '.join(flags),
        })


def ready_nodes(kubectl_output: str) -> List[str]:
    """Names of Ready nodes from `kubectl get nodes --no-headers`.

    >>> ready_nodes('server-1 Ready control-plane 5m v1\\nagent-1 NotReady <none> 1m v1\\n')
    ['server-1']
    """
    result = []
    for line in kubectl_output.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue
        if 'Ready' in fields[1].split(','):
            result.append(fields[0])
    return result
