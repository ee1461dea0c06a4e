# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import json
import logging
import time
import unittest
from subprocess import TimeoutExpired

from cluster_roles import TOKEN_PATH
from convergence import CancellationToken
from doubles.cluster_node import FakeCluster
from network_profiles import load_profile
from network_profiles import load_variant
from sequencer import ExitCode
from sequencer import PhaseName
from sequencer import PhaseSequencer
from vm.node import NodeState


class _Run:

    def __init__(self, profile_name, variant_name='2-servers', *, timeouts=None, release_dhcp_server=False, **knobs):
        self.profile = load_profile(profile_name)
        self.variant = load_variant(variant_name, self.profile)
        self.cluster = FakeCluster(self.profile, self.variant, **knobs)
        self.cancellation = CancellationToken()
        self.fleet = self.cluster.fleet(self.cancellation)
        self.timeouts = {phase: 5 for phase in PhaseName}
        self.timeouts.update(timeouts or {})
        self.release_dhcp_server = release_dhcp_server

    def sequencer(self, sequencer_type=PhaseSequencer):
        return sequencer_type(
            self.fleet, self.profile, self.variant,
            timeouts=self.timeouts,
            poll_interval_sec=0.01,
            shutdown_grace_sec=0.2,
            log_tail_lines=10,
            release_dhcp_server=self.release_dhcp_server,
            cancellation=self.cancellation,
            )

    def run(self):
        return self.sequencer().run()


class _SkipsBootstrapPhase(PhaseSequencer):

    def phases(self):
        return [phase for phase in super().phases() if phase.name is not PhaseName.BOOTSTRAP_HEALTHY]


class _NetworkActionNeverReturns(PhaseSequencer):

    def _configure_network(self, node):
        raise TimeoutExpired(['ip', 'link', 'show'], 0.5)


class TestPhases(unittest.TestCase):

    def test_order_and_governed_nodes(self):
        run = _Run('simple', '2-servers-1-agent')
        phases = run.sequencer().phases()
        self.assertEqual([p.name for p in phases], list(PhaseName))
        self.assertEqual([p.predecessor for p in phases], [None, *list(PhaseName)[:-1]])
        nodes = {p.name: [n.name for n in p.nodes] for p in phases}
        self.assertEqual(nodes[PhaseName.BOOTSTRAP_HEALTHY], ['server-1'])
        self.assertEqual(nodes[PhaseName.JOINERS_HEALTHY], ['server-2', 'agent-1'])
        self.assertEqual(nodes[PhaseName.ALL_HEALTHY], ['server-1', 'server-2', 'agent-1'])

    def test_dhcp_server_boots_and_serves_network(self):
        run = _Run('dhcp')
        phases = {p.name: p for p in run.sequencer().phases()}
        self.assertIn('dhcp-server', [n.name for n in phases[PhaseName.BOOT].nodes])
        network = phases[PhaseName.NETWORK]
        self.assertEqual([n.name for n in network.nodes], ['server-1', 'server-2'])
        self.assertEqual([n.name for n in network.prelude_nodes], ['dhcp-server'])
        self.assertEqual([n.name for n in network.governed()], ['dhcp-server', 'server-1', 'server-2'])
        for phase in phases.values():
            if phase.name is not PhaseName.BOOT:
                self.assertNotIn('dhcp-server', [n.name for n in phase.nodes])

    def test_config_keys(self):
        self.assertEqual(PhaseName.BOOT.config_key(), 'timeout.boot')
        self.assertEqual(PhaseName.ROLE_WORKAROUNDS.config_key(), 'timeout.role_workarounds')
        self.assertEqual(PhaseName.ALL_HEALTHY.config_key(), 'timeout.all_healthy')

    def test_from_config(self):
        run = _Run('simple')
        config = {phase.config_key(): '7' for phase in PhaseName}
        config.update({
            'poll_interval_sec': '0.01',
            'shutdown_grace_sec': '0.2',
            'log_tail_lines': '10',
            'release_dhcp_server': 'false',
            })
        sequencer = PhaseSequencer.from_config(run.fleet, run.profile, run.variant, config)
        self.assertEqual({p.timeout_sec for p in sequencer.phases()}, {7})


class TestRun(unittest.TestCase):

    def test_simple_two_servers(self):
        run = _Run('simple')
        result = run.run()
        self.assertTrue(result.passed, result.message)
        self.assertEqual(result.exit_code, ExitCode.PASSED)
        self.assertEqual(list(result.phases_passed), list(PhaseName))
        self.assertEqual(run.cluster.ready_members(), [
            ('server-1', 'control-plane,etcd,master'),
            ('server-2', 'control-plane,etcd,master'),
            ])
        for node in run.fleet.nodes():
            self.assertIs(node.state, NodeState.SHUT_DOWN)
            self.assertIn('released', run.cluster.actions(node.name))

    def test_bootstrap_healthy_before_joiners_start(self):
        run = _Run('vlans', '2-servers-1-agent')
        result = run.run()
        self.assertTrue(result.passed, result.message)
        token_read = run.cluster.first_event('server-1', f'read {TOKEN_PATH}')
        self.assertGreater(token_read, run.cluster.first_event('server-1', 'start k3s-server.service'))
        self.assertGreater(run.cluster.first_event('server-2', 'start k3s-server.service'), token_read)
        self.assertGreater(run.cluster.first_event('agent-1', 'start k3s-agent.service'), token_read)

    def test_token_issued_once_per_joiner(self):
        run = _Run('simple', '1-server-2-agents')
        sequencer = run.sequencer()
        result = sequencer.run()
        self.assertTrue(result.passed, result.message)
        self.assertEqual(sorted(sequencer.roles.vault.delivered_to()), ['agent-1', 'agent-2'])

    def test_bonding_with_failover(self):
        run = _Run('bonding-vlans', '2-servers-2-agents', preexisting_bond_mode='balance-rr')
        result = run.run()
        self.assertTrue(result.passed, result.message)
        actions = run.cluster.actions('agent-2')
        self.assertIn('delete bond0', actions)
        self.assertIn('bond bond0 active-backup', actions)
        self.assertIn('link eth1 down', actions)
        self.assertEqual(len(run.cluster.ready_members()), 4)

    def test_dhcp_with_released_server(self):
        run = _Run('dhcp', release_dhcp_server=True)
        result = run.run()
        self.assertTrue(result.passed, result.message)
        dhcp_actions = run.cluster.actions('dhcp-server')
        self.assertIn('restart dnsmasq.service', dhcp_actions)
        released = run.cluster.first_event('dhcp-server', 'released')
        self.assertGreater(released, run.cluster.first_event('server-2', 'link eth1 up'))
        self.assertLess(released, run.cluster.first_event('server-1', 'start k3s-server.service'))

    def test_token_before_bootstrap_health(self):
        run = _Run('simple')
        result = run.sequencer(_SkipsBootstrapPhase).run()
        self.assertEqual(result.exit_code, ExitCode.PHASE_FAILED)
        self.assertIs(result.failed_phase, PhaseName.JOINERS_HEALTHY)
        self.assertIn('token', result.message)
        self.assertEqual(run.cluster.first_event('server-2', 'start k3s-server.service'), -1)

    def test_bootstrap_never_ready(self):
        run = _Run('simple', timeouts={PhaseName.BOOTSTRAP_HEALTHY: 0.3}, api_never_ready=True)
        for index in range(30):
            run.cluster.machine('server-1').log('k3s-server.service', f"waiting for apiserver {index}")
        result = run.run()
        self.assertFalse(result.passed)
        self.assertEqual(result.exit_code, ExitCode.TIMEOUT)
        self.assertIs(result.failed_phase, PhaseName.BOOTSTRAP_HEALTHY)
        self.assertEqual(result.bundle.phase, 'BootstrapHealthy')
        self.assertEqual(result.bundle.failing_probe, "server-1 initialized the cluster and is Ready")
        [server_1] = result.bundle.nodes
        self.assertEqual(server_1.node, 'server-1')
        self.assertEqual(server_1.state, 'Failed')
        self.assertIn('Active: active', server_1.service_status)
        self.assertEqual(len(server_1.log_tail.splitlines()), 10)
        self.assertIn('192.168.1.1/24', server_1.interfaces)
        self.assertEqual(run.cluster.first_event('server-2', 'start k3s-server.service'), -1)
        report = json.loads(json.dumps(result.to_dict(), default=str))
        self.assertEqual(report['exit_code'], 3)
        self.assertEqual(report['failed_phase'], 'BootstrapHealthy')
        self.assertEqual(report['phases_passed'], ['Boot', 'Network', 'RoleWorkarounds'])
        for node in run.fleet.nodes():
            self.assertIs(node.state, NodeState.SHUT_DOWN)

    def test_missing_kernel_module(self):
        run = _Run('vlans', missing_modules=['8021q'])
        result = run.run()
        self.assertEqual(result.exit_code, ExitCode.PHASE_FAILED)
        self.assertIs(result.failed_phase, PhaseName.NETWORK)
        self.assertIn('8021q', result.message)
        self.assertEqual(len(result.bundle.nodes), 2)

    def test_node_never_boots(self):
        run = _Run('simple', timeouts={PhaseName.BOOT: 0.2})
        run.cluster.machine('server-2').never_boots = True
        result = run.run()
        self.assertEqual(result.exit_code, ExitCode.TIMEOUT)
        self.assertIs(result.failed_phase, PhaseName.BOOT)
        self.assertEqual(result.bundle.failing_probe, "server-2 accepts commands")
        self.assertNotIn('link eth1 up', run.cluster.actions('server-1'))

    def test_launch_failure(self):
        run = _Run('simple')
        run.cluster.machine('server-1').fail_power_on = True
        result = run.run()
        self.assertEqual(result.exit_code, ExitCode.PHASE_FAILED)
        self.assertIs(result.failed_phase, PhaseName.BOOT)
        self.assertIn('released', run.cluster.actions('server-2'))

    def test_cancelled(self):
        run = _Run('simple')
        run.cluster.machine('server-1').never_boots = True
        run.cancellation.cancel_after(0.2, "SIGTERM received")
        result = run.run()
        self.assertEqual(result.exit_code, ExitCode.TIMEOUT)
        self.assertIs(result.failed_phase, PhaseName.BOOT)
        self.assertIn('SIGTERM', result.message)
        for node in run.fleet.nodes():
            self.assertIs(node.state, NodeState.SHUT_DOWN)

    def test_cancelled_before_start(self):
        run = _Run('simple')
        run.cancellation.cancel("global timeout")
        result = run.run()
        self.assertEqual(result.exit_code, ExitCode.TIMEOUT)
        self.assertEqual(run.cluster.first_event('server-1', 'power on'), -1)

    def test_ignores_acpi_is_killed(self):
        run = _Run('simple')
        run.cluster.machine('server-2').ignores_acpi = True
        result = run.run()
        self.assertTrue(result.passed, result.message)
        self.assertIn('killed', run.cluster.actions('server-2'))
        self.assertNotIn('killed', run.cluster.actions('server-1'))

    def test_hung_command(self):
        run = _Run('simple')
        run.cluster.hang_command('server-2', 'ln')
        result = run.run()
        self.assertEqual(result.exit_code, ExitCode.PHASE_FAILED)
        self.assertIs(result.failed_phase, PhaseName.ROLE_WORKAROUNDS)
        self.assertIn('did not exit in 60 sec', result.message)
        self.assertEqual(result.bundle.node('server-2').state, 'Failed')
        for node in run.fleet.nodes():
            self.assertIs(node.state, NodeState.SHUT_DOWN)

    def test_unexpected_error_fails_phase(self):
        run = _Run('simple')
        with self.assertLogs('sequencer', logging.ERROR) as logs:
            result = run.sequencer(_NetworkActionNeverReturns).run()
        self.assertEqual(result.exit_code, ExitCode.PHASE_FAILED)
        self.assertIs(result.failed_phase, PhaseName.NETWORK)
        self.assertIn('timed out after 0.5 seconds', result.message)
        self.assertEqual([n.node for n in result.bundle.nodes], ['server-1', 'server-2'])
        self.assertTrue(any('unexpected error' in line for line in logs.output))
        for node in run.fleet.nodes():
            self.assertIs(node.state, NodeState.SHUT_DOWN)

    def test_network_phase_bounded_by_its_timeout(self):
        run = _Run('dhcp', timeouts={PhaseName.NETWORK: 1}, withhold_leases=True)
        run.cluster.delay_command('dhcp-server', 0.6, 'ss')
        started_at = time.monotonic()
        result = run.run()
        self.assertLess(time.monotonic() - started_at, 1.5)
        self.assertEqual(result.exit_code, ExitCode.TIMEOUT)
        self.assertIs(result.failed_phase, PhaseName.NETWORK)
        self.assertIn('run ss -ulnp', run.cluster.actions('dhcp-server'))

    def test_dhcp_server_failure_diagnosed(self):
        run = _Run('dhcp', timeouts={PhaseName.NETWORK: 0.3})
        run.cluster.break_command('dhcp-server', 'ss')
        result = run.run()
        self.assertEqual(result.exit_code, ExitCode.TIMEOUT)
        self.assertIs(result.failed_phase, PhaseName.NETWORK)
        self.assertEqual(result.bundle.failing_probe, "dnsmasq.service listens on UDP port 67 on dhcp-server")
        self.assertEqual([n.node for n in result.bundle.nodes], ['dhcp-server', 'server-1', 'server-2'])
        self.assertEqual(result.bundle.node('dhcp-server').state, 'Failed')
        self.assertEqual(result.bundle.node('server-1').state, 'Ready')
        self.assertEqual(run.cluster.first_event('server-1', 'link eth1 up'), -1)


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
