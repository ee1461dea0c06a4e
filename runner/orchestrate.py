# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import logging
import signal
import sys
from contextlib import ExitStack
from datetime import datetime
from datetime import timezone
from pathlib import Path
from typing import Callable
from typing import Mapping
from typing import Optional
from typing import Sequence

from cluster_roles import k3s_flags
from config import global_config
from convergence import CancellationToken
from diagnostics import write_report
from identity import assert_no_collisions
from identity import mac_for
from network_profiles import ConfigurationError
from network_profiles import DhcpProfile
from network_profiles import NetworkProfile
from network_profiles import TopologyVariant
from network_profiles import list_profiles
from network_profiles import list_variants
from network_profiles import load_profile
from network_profiles import load_variant
from runner._logging import init_logging
from runner._logging import remove_handlers
from sequencer import ExitCode
from sequencer import PhaseName
from sequencer import PhaseSequencer
from vm.fleet import Fleet
from vm.fleet import plan_nodes
from vm.node import NodeRole
from vm.qemu import make_qemu_fleet

FleetFactory = Callable[
    [TopologyVariant, NetworkProfile, Mapping[str, str], Path, Path, Optional[CancellationToken]],
    Fleet,
    ]


def main(
        args: Sequence[str],
        fleet_factory: FleetFactory = make_qemu_fleet,
        config: Mapping[str, str] = global_config,
        ) -> int:
    parser = argparse.ArgumentParser(prog='python -m runner.orchestrate')
    commands = parser.add_subparsers(dest='command', required=True)
    run_parser = commands.add_parser('run', help="Boot the nodes and bring the cluster up")
    run_parser.add_argument('profile')
    run_parser.add_argument('variant')
    run_parser.add_argument(
        '--timeout', type=float, metavar='N',
        help="Abort the whole run after N seconds; default is global_timeout_sec from config")
    run_parser.add_argument(
        '--dry-run', action='store_true',
        help="Print the node plan and the phases, don't boot anything")
    run_parser.add_argument(
        '--report-path', type=Path, metavar='P',
        help="JSON report file or directory to put it into")
    commands.add_parser('list-variants', help="Topology variants and network profiles")
    parsed_args = parser.parse_args(args)
    if parsed_args.command == 'list-variants':
        _print_variants()
        return ExitCode.PASSED
    try:
        profile = load_profile(parsed_args.profile)
        variant = load_variant(parsed_args.variant, profile)
        assert_no_collisions(profile, [node.name for node in variant.nodes])
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        return ExitCode.CONFIGURATION_ERROR
    if parsed_args.dry_run:
        _print_plan(profile, variant)
        return ExitCode.PASSED
    timeout_sec = parsed_args.timeout
    if timeout_sec is None:
        timeout_sec = float(config['global_timeout_sec'])
    return _run(profile, variant, timeout_sec, parsed_args.report_path, fleet_factory, config)


def _run(
        profile: NetworkProfile,
        variant: TopologyVariant,
        timeout_sec: float,
        report_path: Optional[Path],
        fleet_factory: FleetFactory,
        config: Mapping[str, str],
        ) -> int:
    started_at = datetime.now(timezone.utc)
    run_id = f'{profile.name}-{variant.name}-{started_at:%Y%m%dT%H%M%SZ}'
    log_dir = Path(config['log_dir']).expanduser() / run_id
    run_dir = Path(config['run_dir']).expanduser() / run_id
    cancellation = CancellationToken()
    with ExitStack() as exit_stack:
        exit_stack.callback(remove_handlers, init_logging(run_id, log_dir))
        _logger.info("Run %s: profile %s, variant %s, timeout %g sec", run_id, profile.name, variant.name, timeout_sec)
        timer = cancellation.cancel_after(timeout_sec, f"global timeout of {timeout_sec:g} sec")
        exit_stack.callback(timer.cancel)
        _cancel_on_signals(exit_stack, cancellation)
        try:
            fleet = fleet_factory(variant, profile, config, run_dir, log_dir, cancellation)
            sequencer = PhaseSequencer.from_config(fleet, profile, variant, config, cancellation)
        except ConfigurationError as e:
            _logger.error("Run %s: %s", run_id, e)
            return ExitCode.CONFIGURATION_ERROR
        result = sequencer.run()
        if result.passed:
            _logger.info("Run %s: passed", run_id)
        else:
            _logger.error("Run %s: failed with exit code %d: %s", run_id, result.exit_code, result.message)
        if report_path is not None:
            report = {
                'run_id': run_id,
                'profile': profile.name,
                'variant': variant.name,
                'started_at': started_at.isoformat(timespec='seconds'),
                'finished_at': datetime.now(timezone.utc).isoformat(timespec='seconds'),
                'log_dir': str(log_dir),
                **result.to_dict(),
                }
            write_report(report, report_path, started_at)
        return result.exit_code


def _cancel_on_signals(exit_stack: ExitStack, cancellation: CancellationToken):
    def handler(signum, _frame):
        cancellation.cancel(f"{signal.Signals(signum).name} received")

    for signum in signal.SIGINT, signal.SIGTERM:
        previous = signal.signal(signum, handler)
        exit_stack.callback(signal.signal, signum, previous)


def _print_variants():
    # The simple profile addresses every node of every variant.
    profile = load_profile('simple')
    for name in list_variants():
        variant = load_variant(name, profile)
        nodes = ', '.join(f'{node.name} ({node.role.value})' for node in variant.nodes)
        print(f'{name}: {nodes}')
    print(f"Profiles: {', '.join(list_profiles())}")


def _print_plan(profile: NetworkProfile, variant: TopologyVariant):
    bootstrap = variant.bootstrap().name
    print(f"Profile {profile.name}, variant {variant.name}")
    for node in plan_nodes(variant, profile):
        print(f"{node.name} ({node.role.value})")
        for nic, segment in sorted(profile.segments().items()):
            print(f"  {nic}: {mac_for(node.name, segment)}")
        for network, address in profile.addresses.get(node.name, {}).items():
            print(f"  {network}: {address}")
        if node.role is NodeRole.AUXILIARY_DHCP and isinstance(profile, DhcpProfile):
            server = profile.server
            print(f"  dnsmasq: {server.address}, range {server.range_start}-{server.range_end}, lease {server.lease_time}")
        if node.role.is_cluster_member():
            print(f"  k3s: {' '.join(k3s_flags(profile, node.name, node.role, bootstrap))}")
    print(f"Phases: {' -> '.join(phase.value for phase in PhaseName)}")


_logger = logging.getLogger(__name__)


if __name__ == '__main__':
    exit(main(sys.argv[1:]))
