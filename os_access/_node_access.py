# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import logging
from abc import ABCMeta
from abc import abstractmethod
from subprocess import CompletedProcess
from typing import Optional
from typing import Sequence
from typing import Union

from os_access._command import DEFAULT_RUN_TIMEOUT_SEC
from os_access._command import Shell
from os_access._linux_networking import LinuxNetworking
from os_access._networking import Networking
from os_access._service_interface import Service
from os_access._ssh_shell import Ssh
from os_access._systemd_service import SystemdService


class NodeAccess(metaclass=ABCMeta):
    """Everything the orchestrator may do inside a node."""

    @abstractmethod
    def is_ready(self) -> bool:
        pass

    @abstractmethod
    def run(
            self,
            command: Union[str, Sequence[str]],
            timeout_sec: float = DEFAULT_RUN_TIMEOUT_SEC,
            input: Optional[bytes] = None,  # noqa PyShadowingBuiltins
            ) -> CompletedProcess:
        """Run without checking the exit status."""
        pass

    @property
    @abstractmethod
    def networking(self) -> Networking:
        pass

    @abstractmethod
    def service(self, name: str) -> Service:
        pass

    @abstractmethod
    def write_file(self, path: str, text: str):
        pass

    @abstractmethod
    def read_file(self, path: str) -> str:
        pass

    @abstractmethod
    def close(self):
        pass


class PosixNodeAccess(NodeAccess):

    def __init__(self, shell: Shell):
        self.shell = shell
        self._networking = LinuxNetworking(shell)

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.shell!r}>'

    @classmethod
    def to_vm(cls, address: str, ssh_port: int, username: str, private_key: Optional[str]) -> PosixNodeAccess:
        return cls(Ssh(address, ssh_port, username, private_key))

    def is_ready(self):
        return self.shell.is_working()

    def run(self, command, timeout_sec=DEFAULT_RUN_TIMEOUT_SEC, input=None):
        return self.shell.run(command, input=input, timeout_sec=timeout_sec, check=False)

    @property
    def networking(self):
        return self._networking

    def service(self, name):
        return SystemdService(self.shell, name)

    def write_file(self, path, text):
        self.shell.run(['mkdir', '-p', path.rpartition('/')[0] or '/'])
        self.shell.run(['tee', path], input=text.encode())
        _logger.debug("%r: wrote %s:\n%s", self, path, text)

    def read_file(self, path):
        return self.shell.run(['cat', path]).stdout.decode()

    def close(self):
        self.shell.close()


_logger = logging.getLogger(__name__)
