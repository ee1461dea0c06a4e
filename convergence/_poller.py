# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from __future__ import annotations

import logging
import time
from typing import Any
from typing import Callable
from typing import NamedTuple
from typing import Optional
from typing import Tuple
from typing import Type

from convergence._cancellation import CancellationToken
from convergence._cancellation import Cancelled

_logger = logging.getLogger(__name__)


class Probe(NamedTuple):
    """Side-effect-free observation and the condition it must satisfy.

    Errors of the transient types are recorded as the observed value and
    retried. Any other error ends the wait.
    """

    description: str
    observe: Callable[[], Any]
    accept: Callable[[Any], bool] = bool
    transient: Tuple[Type[BaseException], ...] = ()


class PollTimeout(Exception):

    def __init__(self, description: str, timeout_sec: float, attempts: int, last_observed):
        super().__init__(
            f"Timed out ({timeout_sec:g} seconds, {attempts} attempts) waiting until "
            f"{description}; last observed: {last_observed!r}")
        self.description = description
        self.timeout_sec = timeout_sec
        self.attempts = attempts
        self.last_observed = last_observed


class ProbeError(Exception):

    def __init__(self, description: str, error: Exception):
        super().__init__(f"Probe failed while waiting until {description}: {error}")
        self.description = description
        self.error = error


class Wait:

    def __init__(
            self,
            until: str,
            timeout_sec: float = 30,
            interval_sec: float = 1,
            cancellation: Optional[CancellationToken] = None,
            ):
        self._until = until
        assert timeout_sec is not None
        self._timeout_sec = timeout_sec
        self._interval_sec = interval_sec
        self._cancellation = cancellation
        self._started_at = time.monotonic()
        self.attempts_made = 0
        _logger.debug("Waiting until %s: %.1f sec.", self._until, self._timeout_sec)

    def again(self) -> bool:
        self.attempts_made += 1
        since_start_sec = time.monotonic() - self._started_at
        if since_start_sec > self._timeout_sec:
            _logger.warning(
                "Timed out waiting until %s: %g/%g sec, %d attempts.",
                self._until, since_start_sec, self._timeout_sec, self.attempts_made)
            return False
        _logger.debug(
            "Continue waiting until %s: %.1f/%.1f sec, %d attempts.",
            self._until, since_start_sec, self._timeout_sec, self.attempts_made)
        return True

    def sleep(self):
        left_sec = self._timeout_sec - (time.monotonic() - self._started_at)
        # The last attempt happens right at the deadline.
        delay_sec = max(0., min(self._interval_sec, left_sec))
        if self._cancellation is None:
            time.sleep(delay_sec)
        else:
            self._cancellation.sleep(delay_sec)


_nothing_observed = '<nothing observed>'


def poll(
        probe: Probe,
        *,
        interval_sec: float = 1,
        timeout_sec: float = 30,
        cancellation: Optional[CancellationToken] = None,
        ):
    """Observe until accepted, return the accepted value.

    This is the only retry loop in the project: callers never retry
    the whole operation themselves.
    """
    wait = Wait(probe.description, timeout_sec, interval_sec, cancellation)
    last_observed = _nothing_observed
    while True:
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        try:
            value = probe.observe()
        except Cancelled:
            raise
        except probe.transient as e:
            _logger.debug("Waiting until %s: transient error: %r", probe.description, e)
            last_observed = e
        except Exception as e:
            raise ProbeError(probe.description, e) from e
        else:
            if probe.accept(value):
                _logger.debug("Waiting until %s: succeeded (got %r)", probe.description, value)
                return value
            last_observed = value
        if not wait.again():
            raise PollTimeout(probe.description, timeout_sec, wait.attempts_made, last_observed)
        wait.sleep()


def seconds_left(deadline: float) -> float:
    """Time until the monotonic deadline, zero once it has passed.

    Waits that share one deadline take what the previous ones left.
    """
    return max(0., deadline - time.monotonic())
