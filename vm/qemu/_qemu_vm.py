# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import subprocess
from pathlib import Path
from typing import NamedTuple
from typing import Optional
from typing import Sequence

from os_access import ProcessError
from os_access.local_shell import local_shell
from vm.hypervisor import HypervisorError
from vm.hypervisor import VmControl
from vm.qemu._qmp import QmpClient
from vm.qemu._qmp import QmpError

# Every VM joins the segment by the same group; the port tells segments apart.
_MCAST_GROUP = '230.0.0.1'


class QemuNic(NamedTuple):
    mac: str
    mcast_port: int


class QemuVm(VmControl):
    """QEMU process with a disposable overlay on top of a shared image.

    NIC eth0 is user-mode networking with SSH forwarded from the host,
    the rest are socket-multicast segments shared with the other VMs.
    """

    def __init__(
            self,
            name: str,
            *,
            qemu_binary: str,
            qemu_img_binary: str,
            base_image: Path,
            run_dir: Path,
            log_dir: Path,
            memory_mb: int,
            cpus: int,
            ssh_port: int,
            nics: Sequence[QemuNic],
            ):
        super().__init__(name)
        self._qemu_binary = qemu_binary
        self._qemu_img_binary = qemu_img_binary
        self._base_image = base_image
        self._overlay = run_dir / f'{name}.qcow2'
        self._qmp_socket = run_dir / f'{name}.qmp'
        self._run_dir = run_dir
        self._log_dir = log_dir
        self._memory_mb = memory_mb
        self._cpus = cpus
        self._ssh_port = ssh_port
        self._nics = list(nics)
        self._process: Optional[subprocess.Popen] = None
        self._log_file = None

    def command(self) -> Sequence[str]:
        command = [
            self._qemu_binary,
            '-name', self.name,
            '-machine', 'q35,accel=kvm:tcg',
            '-m', str(self._memory_mb),
            '-smp', str(self._cpus),
            '-display', 'none',
            '-drive', f'file={self._overlay},if=virtio,format=qcow2',
            '-serial', f'file:{self._log_dir / f"{self.name}.console.log"}',
            '-qmp', f'unix:{self._qmp_socket},server=on,wait=off',
            '-netdev', f'user,id=mgmt,hostfwd=tcp:127.0.0.1:{self._ssh_port}-:22',
            '-device', 'virtio-net-pci,netdev=mgmt',
            ]
        for index, nic in enumerate(self._nics, 1):
            command += [
                '-netdev', f'socket,id=seg{index},mcast={_MCAST_GROUP}:{nic.mcast_port}',
                '-device', f'virtio-net-pci,netdev=seg{index},mac={nic.mac}',
                ]
        return command

    def power_on(self):
        if self.is_running():
            raise HypervisorError(f"{self} is already running")
        if not self._base_image.exists():
            raise HypervisorError(f"{self}: image {self._base_image} does not exist")
        self._run_dir.mkdir(parents=True, exist_ok=True)
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._overlay.unlink(missing_ok=True)
        try:
            local_shell.run([
                self._qemu_img_binary, 'create',
                '-f', 'qcow2',
                '-F', 'qcow2',
                '-b', self._base_image.absolute(),
                self._overlay,
                ])
        except ProcessError as e:
            raise HypervisorError(f"{self}: cannot create overlay: {e}")
        command = self.command()
        _logger.info("%s: start: %s", self, ' '.join(command))
        self._log_file = (self._log_dir / f'{self.name}.qemu.log').open('ab')
        try:
            self._process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=self._log_file,
                stderr=subprocess.STDOUT,
                )
        except OSError as e:
            raise HypervisorError(f"{self}: cannot launch {self._qemu_binary}: {e}")

    def request_shutdown(self):
        if not self.is_running():
            return
        try:
            QmpClient(self._qmp_socket).execute('system_powerdown')
        except QmpError as e:
            # Killed afterwards by the caller if it doesn't exit.
            _logger.warning("%s: graceful shutdown not requested: %s", self, e)

    def kill(self):
        if self._process is None:
            return
        self._process.kill()
        self._process.wait(timeout=30)
        _logger.info("%s: killed", self)

    def is_running(self):
        return self._process is not None and self._process.poll() is None

    def release(self):
        if self.is_running():
            raise HypervisorError(f"{self} is still running")
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None
        self._overlay.unlink(missing_ok=True)
        self._qmp_socket.unlink(missing_ok=True)


_logger = logging.getLogger(__name__)
