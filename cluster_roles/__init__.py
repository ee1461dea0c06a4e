# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from cluster_roles._configurator import RoleConfigurator
from cluster_roles._k3s import AGENT_SERVICE
from cluster_roles._k3s import SERVER_SERVICE
from cluster_roles._k3s import TOKEN_PATH
from cluster_roles._k3s import env_path
from cluster_roles._k3s import k3s_flags
from cluster_roles._k3s import ready_nodes
from cluster_roles._k3s import service_name
from cluster_roles._token import ClusterToken
from cluster_roles._token import PreconditionViolation
from cluster_roles._token import TokenVault

__all__ = [
    'AGENT_SERVICE',
    'ClusterToken',
    'PreconditionViolation',
    'RoleConfigurator',
    'SERVER_SERVICE',
    'TOKEN_PATH',
    'TokenVault',
    'env_path',
    'k3s_flags',
    'ready_nodes',
    'service_name',
    ]
