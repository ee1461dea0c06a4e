# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import sys
from typing import Sequence

from identity._registry import dhcp_reservations
from identity._registry import ip_for
from identity._registry import mac_for
from network_profiles import ConfigurationError
from network_profiles import load_profile
from network_profiles import load_variant


def main(args: Sequence[str]) -> int:
    """Print identities the way the image build pipeline consumes them."""
    parser = argparse.ArgumentParser(prog='python -m identity')
    commands = parser.add_subparsers(dest='command', required=True)
    mac_parser = commands.add_parser('mac', help="MAC of a node NIC on a segment")
    mac_parser.add_argument('node')
    mac_parser.add_argument('segment', type=int)
    ip_parser = commands.add_parser('ip', help="Address of a node in a profile")
    ip_parser.add_argument('profile')
    ip_parser.add_argument('node')
    ip_parser.add_argument('--network', default='cluster')
    reservations_parser = commands.add_parser(
        'reservations', help="DHCP reservations as dnsmasq dhcp-host lines")
    reservations_parser.add_argument('profile')
    reservations_parser.add_argument('variant')
    parsed_args = parser.parse_args(args)
    try:
        if parsed_args.command == 'mac':
            print(mac_for(parsed_args.node, parsed_args.segment))
        elif parsed_args.command == 'ip':
            profile = load_profile(parsed_args.profile)
            print(ip_for(profile, parsed_args.node, parsed_args.network))
        else:
            profile = load_profile(parsed_args.profile)
            variant = load_variant(parsed_args.variant, profile)
            nodes = [node.name for node in variant.cluster_nodes()]
            for reservation in dhcp_reservations(profile, nodes):
                print(f'dhcp-host={reservation.mac},{reservation.name},{reservation.ip.ip}')
    except (ConfigurationError, ValueError) as e:
        print(e, file=sys.stderr)
        return 2
    return 0


if __name__ == '__main__':
    exit(main(sys.argv[1:]))
