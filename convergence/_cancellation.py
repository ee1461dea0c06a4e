# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import threading
from typing import Optional

_logger = logging.getLogger(__name__)


class Cancelled(Exception):

    def __init__(self, reason: str):
        super().__init__(f"Cancelled: {reason}")
        self.reason = reason


class CancellationToken:
    """One flag for the whole run; every wait observes it.

    Sleeping is done on the event, so a cancelled run wakes all waiters
    immediately instead of after their current delay.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None

    def __repr__(self):
        if self._event.is_set():
            return f'<CancellationToken cancelled: {self._reason}>'
        return '<CancellationToken>'

    def cancel(self, reason: str):
        with self._lock:
            if self._event.is_set():
                _logger.debug("Already cancelled (%s); ignore: %s", self._reason, reason)
                return
            self._reason = reason
            self._event.set()
        _logger.warning("Run cancelled: %s", reason)

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise Cancelled(self._reason)

    def sleep(self, delay_sec: float):
        if self._event.wait(delay_sec):
            raise Cancelled(self._reason)

    def cancel_after(self, timeout_sec: float, reason: str) -> threading.Timer:
        timer = threading.Timer(timeout_sec, self.cancel, args=[reason])
        timer.daemon = True
        timer.start()
        return timer
