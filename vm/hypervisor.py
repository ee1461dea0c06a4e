# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from abc import ABCMeta
from abc import abstractmethod


class HypervisorError(Exception):
    pass


class VmControl(metaclass=ABCMeta):
    """Power control of one VM process; knows nothing about the guest OS."""

    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.name}>'

    @abstractmethod
    def power_on(self):
        pass

    @abstractmethod
    def request_shutdown(self):
        """Ask the guest to power off (ACPI); don't wait."""
        pass

    @abstractmethod
    def kill(self):
        pass

    @abstractmethod
    def is_running(self) -> bool:
        pass

    @abstractmethod
    def release(self):
        """Free host resources: disks, sockets, files. The VM must be off."""
        pass
