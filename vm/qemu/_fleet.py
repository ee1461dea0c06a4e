# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from pathlib import Path
from typing import Mapping
from typing import Optional

from config import first_match
from convergence import CancellationToken
from identity import mac_for
from identity import vm_name
from network_profiles import ConfigurationError
from network_profiles import NetworkProfile
from network_profiles import TopologyVariant
from os_access import PosixNodeAccess
from vm.fleet import Fleet
from vm.fleet import FleetMember
from vm.fleet import plan_nodes
from vm.qemu._qemu_vm import QemuNic
from vm.qemu._qemu_vm import QemuVm


def make_qemu_fleet(
        variant: TopologyVariant,
        profile: NetworkProfile,
        config: Mapping[str, str],
        run_dir: Path,
        log_dir: Path,
        cancellation: Optional[CancellationToken] = None,
        ) -> Fleet:
    """One QEMU VM per variant node, wired to the profile's segments.

    The NIC MACs come from the same function the images use to
    self-assign addresses, so DHCP reservations and static configuration
    match what the guests see.
    """
    ssh_key_file = config.get('ssh_key_file')
    if ssh_key_file:
        try:
            private_key = Path(ssh_key_file).expanduser().read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read ssh_key_file {ssh_key_file}: {e}")
    else:
        private_key = None
    segments = sorted(profile.segments().values())
    image_dir = Path(config['image_dir']).expanduser()
    members = []
    for index, node in enumerate(plan_nodes(variant, profile)):
        image = first_match(config, [
            f'image.{profile.name}.{node.name}',
            f'image.{profile.name}',
            'image',
            ])
        memory_mb = first_match(config, [f'vm_memory_mb.{node.role.value}', 'vm_memory_mb'])
        ssh_port = int(config['ssh_base_port']) + index
        nics = [
            QemuNic(mac_for(node.name, segment), int(config['mcast_base_port']) + segment)
            for segment in segments
            ]
        vm = QemuVm(
            vm_name(node.name),
            qemu_binary=config['qemu_binary'],
            qemu_img_binary=config['qemu_img_binary'],
            base_image=image_dir / image,
            run_dir=run_dir,
            log_dir=log_dir,
            memory_mb=int(memory_mb),
            cpus=int(config['vm_cpus']),
            ssh_port=ssh_port,
            nics=nics,
            )
        access = PosixNodeAccess.to_vm('127.0.0.1', ssh_port, config['ssh_username'], private_key)
        _logger.debug("%s: %r, SSH port %d, NICs %s", node.name, vm, ssh_port, nics)
        members.append(FleetMember(node, vm, access))
    return Fleet(members, cancellation, poll_interval_sec=float(config['poll_interval_sec']))


_logger = logging.getLogger(__name__)
