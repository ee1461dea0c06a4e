# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from doubles.cluster_node._fake_cluster import FakeCluster
from doubles.cluster_node._fake_cluster import FakeNodeAccess
from doubles.cluster_node._fake_cluster import FakeVmControl
from doubles.cluster_node._fake_machine import FakeMachine
from doubles.cluster_node._fake_machine import FakeNetworking
from doubles.cluster_node._fake_machine import FakeService
from doubles.cluster_node._fake_machine import K3S_TOKEN_PATH

__all__ = [
    'FakeCluster',
    'FakeMachine',
    'FakeNetworking',
    'FakeNodeAccess',
    'FakeService',
    'FakeVmControl',
    'K3S_TOKEN_PATH',
    ]
