# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import json
import logging
import tempfile
import unittest
from datetime import datetime
from datetime import timezone
from pathlib import Path

from diagnostics import DiagnosticsCollector
from diagnostics import write_report
from doubles.cluster_node import FakeCluster
from network_profiles import load_profile
from network_profiles import load_variant


class TestDiagnosticsCollector(unittest.TestCase):

    def setUp(self):
        profile = load_profile('dhcp')
        self.cluster = FakeCluster(profile, load_variant('2-servers', profile))
        self.fleet = self.cluster.fleet()
        for node in self.fleet.nodes():
            self.fleet.start(node, timeout_sec=5)
        self.collector = DiagnosticsCollector(self.fleet, log_tail_lines=2)

    def test_collect(self):
        machine = self.cluster.machine('server-1')
        for index in range(5):
            machine.log('k3s-server.service', f"line {index}")
        bundle = self.collector.collect('BootstrapHealthy', 'server-1 is Ready', self.fleet.nodes())
        self.assertEqual(bundle.phase, 'BootstrapHealthy')
        self.assertEqual(bundle.failing_probe, 'server-1 is Ready')
        server_1 = bundle.node('server-1')
        self.assertEqual(server_1.state, 'Ready')
        self.assertEqual(server_1.service, 'k3s-server.service')
        self.assertIn('Active: inactive', server_1.service_status)
        self.assertEqual(server_1.log_tail, 'line 3\nline 4\n')
        self.assertIn('link/ether 52:54:00:a9:d3:01', server_1.interfaces)
        self.assertIn('default via 10.0.2.2 dev eth0', server_1.routes)
        dhcp_server = bundle.node('dhcp-server')
        self.assertEqual(dhcp_server.service, 'dnsmasq.service')
        self.assertTrue(dhcp_server.extras['leases'].startswith('<unavailable: '))

    def test_unreadable_pieces_become_placeholders(self):
        self.cluster.break_command('server-2', 'ip', 'route')
        self.fleet.shutdown(self.fleet.node('server-1'), graceful=True, grace_sec=1)
        with self.assertLogs('diagnostics._collector', logging.ERROR):
            bundle = self.collector.collect('Network', 'network is up', self.fleet.nodes())
        server_1 = bundle.node('server-1')
        self.assertEqual(server_1.state, 'ShutDown')
        for piece in server_1.service_status, server_1.log_tail, server_1.interfaces, server_1.routes:
            self.assertIn('NodeNotRunning', piece)
        server_2 = bundle.node('server-2')
        self.assertTrue(server_2.routes.startswith('<unavailable: '))
        self.assertIn('eth1', server_2.interfaces)


class TestReport(unittest.TestCase):

    def test_directory_and_file(self):
        started_at = datetime(2024, 5, 17, 10, 30, 5, tzinfo=timezone.utc)
        with tempfile.TemporaryDirectory() as tmp:
            path = write_report({'passed': True}, Path(tmp), started_at)
            self.assertEqual(path.name, 'report-20240517T103005Z.json')
            self.assertEqual(json.loads(path.read_text()), {'passed': True})
            explicit = Path(tmp) / 'nested' / 'result.json'
            self.assertEqual(write_report({'exit_code': 1}, explicit, started_at), explicit)
            self.assertEqual(json.loads(explicit.read_text()), {'exit_code': 1})


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
