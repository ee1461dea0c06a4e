# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from abc import ABCMeta
from abc import abstractmethod
from typing import NamedTuple
from typing import Optional


class ServiceStatus(NamedTuple):
    """Unit state as systemctl show reports it."""

    active_state: str
    sub_state: str
    pid: int  # 0 means no process.

    @property
    def is_active(self):
        return self.active_state == 'active'


class Service(metaclass=ABCMeta):

    @abstractmethod
    def start(self, timeout_sec: Optional[float] = None):
        pass

    @abstractmethod
    def stop(self, timeout_sec: Optional[float] = None):
        pass

    @abstractmethod
    def restart(self, timeout_sec: Optional[float] = None):
        pass

    @abstractmethod
    def status(self) -> ServiceStatus:
        pass

    @abstractmethod
    def status_text(self) -> str:
        """Human-readable status as printed by the service manager."""
        pass

    @abstractmethod
    def log_tail(self, lines: int) -> str:
        pass

    def is_active(self) -> bool:
        return self.status().is_active
