# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest

from convergence import CancellationToken
from convergence import Cancelled
from convergence import PollTimeout
from doubles.cluster_node import FakeCluster
from network_profiles import load_profile
from network_profiles import load_variant
from os_access import ProcessError
from vm.fleet import NodeNotRunning
from vm.hypervisor import HypervisorError
from vm.node import IllegalTransition
from vm.node import Node
from vm.node import NodeRole
from vm.node import NodeState


class TestNodeState(unittest.TestCase):

    def test_forward_one_step_at_a_time(self):
        node = Node('server-1', NodeRole.BOOTSTRAP)
        node.move_to(NodeState.BOOTING)
        node.move_to(NodeState.READY)
        with self.assertRaises(IllegalTransition):
            node.move_to(NodeState.SERVICE_STARTING)
        with self.assertRaises(IllegalTransition):
            node.move_to(NodeState.BOOTING)
        self.assertIs(node.state, NodeState.READY)

    def test_failed_then_shut_down_is_final(self):
        node = Node('agent-1', NodeRole.AGENT)
        node.move_to(NodeState.BOOTING)
        node.move_to(NodeState.FAILED)
        with self.assertRaises(IllegalTransition):
            node.move_to(NodeState.READY)
        node.move_to(NodeState.SHUT_DOWN)
        with self.assertRaises(IllegalTransition):
            node.move_to(NodeState.FAILED)
        with self.assertRaises(IllegalTransition):
            node.move_to(NodeState.SHUT_DOWN)

    def test_reached(self):
        self.assertTrue(NodeState.SERVICE_HEALTHY.reached(NodeState.NETWORK_CONFIGURED))
        self.assertTrue(NodeState.READY.reached(NodeState.READY))
        self.assertFalse(NodeState.READY.reached(NodeState.NETWORK_CONFIGURED))
        self.assertFalse(NodeState.FAILED.reached(NodeState.READY))

    def test_roles(self):
        self.assertTrue(NodeRole.BOOTSTRAP.is_server())
        self.assertTrue(NodeRole.JOINER_SERVER.is_server())
        self.assertFalse(NodeRole.AGENT.is_server())
        self.assertFalse(NodeRole.AUXILIARY_DHCP.is_cluster_member())


class TestFleet(unittest.TestCase):

    def setUp(self):
        profile = load_profile('simple')
        self.cluster = FakeCluster(profile, load_variant('2-servers', profile))
        self.fleet = self.cluster.fleet()
        self.server_1 = self.fleet.node('server-1')
        self.server_2 = self.fleet.node('server-2')

    def test_start(self):
        self.cluster.machine('server-1').boot_delay_polls = 3
        self.fleet.start(self.server_1, timeout_sec=5)
        self.assertIs(self.server_1.state, NodeState.READY)
        self.assertEqual(self.cluster.actions('server-1'), ['power on'])

    def test_start_timeout(self):
        self.cluster.machine('server-1').never_boots = True
        with self.assertRaises(PollTimeout) as caught:
            self.fleet.start(self.server_1, timeout_sec=0.1)
        self.assertIn("server-1 accepts commands", str(caught.exception))
        self.assertIs(self.server_1.state, NodeState.BOOTING)

    def test_start_launch_failure(self):
        self.cluster.machine('server-1').fail_power_on = True
        with self.assertRaises(HypervisorError):
            self.fleet.start(self.server_1, timeout_sec=5)

    def test_start_cancelled(self):
        cancellation = CancellationToken()
        fleet = self.cluster.fleet(cancellation)
        self.cluster.machine('server-2').never_boots = True
        cancellation.cancel_after(0.1, "test abort")
        with self.assertRaises(Cancelled):
            fleet.start(fleet.node('server-2'), timeout_sec=30)

    def test_commands_rejected_before_ready(self):
        with self.assertRaises(NodeNotRunning):
            self.fleet.run(self.server_1, ['hostname'])
        with self.assertRaises(NodeNotRunning):
            self.fleet.is_service_active(self.server_1, 'k3s-server.service')

    def test_run(self):
        self.fleet.start(self.server_1, timeout_sec=5)
        self.assertEqual(self.fleet.run(self.server_1, ['hostname']), (0, 'localhost\n'))
        code, _ = self.fleet.run(self.server_1, ['no-such-command'])
        self.assertEqual(code, 127)
        with self.assertRaises(ProcessError):
            self.fleet.run(self.server_1, ['cat', '/etc/missing'], check=True)

    def test_is_service_active(self):
        self.fleet.start(self.server_1, timeout_sec=5)
        self.assertFalse(self.fleet.is_service_active(self.server_1, 'k3s-server.service'))
        self.assertFalse(self.fleet.is_service_active(self.server_1, 'no-such.service'))

    def test_wait_for_condition(self):
        self.fleet.start(self.server_1, timeout_sec=5)
        self.fleet.wait_for_condition(self.server_1, ['hostname'], timeout_sec=1)
        with self.assertRaises(PollTimeout) as caught:
            self.fleet.wait_for_condition(
                self.server_1, ['cat', '/etc/missing'], timeout_sec=0.1, description="file appears")
        self.assertIn("file appears", str(caught.exception))
        self.assertIs(caught.exception.last_observed, False)

    def test_graceful_shutdown(self):
        self.fleet.start(self.server_1, timeout_sec=5)
        self.fleet.shutdown(self.server_1, graceful=True, grace_sec=1)
        self.assertIs(self.server_1.state, NodeState.SHUT_DOWN)
        self.assertEqual(self.cluster.actions('server-1'), ['power on', 'shutdown requested', 'released'])
        with self.assertRaises(NodeNotRunning):
            self.fleet.run(self.server_1, ['hostname'])

    def test_shutdown_all_kills_stuck_vm(self):
        self.fleet.start(self.server_1, timeout_sec=5)
        self.fleet.start(self.server_2, timeout_sec=5)
        self.cluster.machine('server-2').ignores_acpi = True
        self.fleet.shutdown_all(grace_sec=0.1)
        self.assertEqual(self.cluster.actions('server-1'), ['power on', 'shutdown requested', 'released'])
        self.assertEqual(
            self.cluster.actions('server-2'),
            ['power on', 'shutdown requested', 'killed', 'released'])
        for node in self.fleet.nodes():
            self.assertIs(node.state, NodeState.SHUT_DOWN)

    def test_shutdown_all_never_started(self):
        self.fleet.shutdown_all(grace_sec=0.1)
        for node in self.fleet.nodes():
            self.assertIs(node.state, NodeState.SHUT_DOWN)
        self.assertEqual(self.cluster.actions('server-1'), ['released'])

    def test_fail(self):
        self.fleet.start(self.server_1, timeout_sec=5)
        self.fleet.fail(self.server_1)
        self.fleet.fail(self.server_1)
        self.assertIs(self.server_1.state, NodeState.FAILED)
        # Diagnostics are read from failed nodes.
        self.assertEqual(self.fleet.run(self.server_1, ['hostname'])[0], 0)


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
