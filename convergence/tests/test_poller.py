# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import threading
import time
import unittest

from convergence import CancellationToken
from convergence import Cancelled
from convergence import PollTimeout
from convergence import Probe
from convergence import ProbeError
from convergence import poll
from convergence import seconds_left


class _Counter:

    def __init__(self, succeed_at):
        self.calls = 0
        self._succeed_at = succeed_at

    def __repr__(self):
        return '<Counter>'

    def value(self):
        self.calls += 1
        return self.calls >= self._succeed_at


class TestPoll(unittest.TestCase):

    def test_success_after_several_attempts(self):
        counter = _Counter(succeed_at=3)
        result = poll(Probe("counter reaches 3", counter.value), interval_sec=0.01, timeout_sec=5)
        self.assertIs(result, True)
        self.assertEqual(counter.calls, 3)

    def test_accepted_value_returned(self):
        values = iter(['', 'starting', 'active'])
        probe = Probe("service is active", lambda: next(values), lambda v: v == 'active')
        self.assertEqual(poll(probe, interval_sec=0.01, timeout_sec=5), 'active')

    def test_timeout_names_condition_and_last_value(self):
        probe = Probe("eth1 has 192.168.1.1/24", lambda: ['192.168.1.7/24'], lambda v: False)
        with self.assertRaises(PollTimeout) as ctx:
            poll(probe, interval_sec=0.01, timeout_sec=0.1)
        e = ctx.exception
        self.assertEqual(e.description, "eth1 has 192.168.1.1/24")
        self.assertEqual(e.last_observed, ['192.168.1.7/24'])
        self.assertGreaterEqual(e.attempts, 2)
        self.assertIn("eth1 has 192.168.1.1/24", str(e))
        self.assertIn("192.168.1.7/24", str(e))

    def test_unexpected_error_is_not_retried(self):
        calls = []

        def observe():
            calls.append(1)
            raise RuntimeError("boom")

        with self.assertRaises(ProbeError) as ctx:
            poll(Probe("never", observe), interval_sec=0.01, timeout_sec=5)
        self.assertEqual(len(calls), 1)
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    def test_transient_error_is_retried_and_reported(self):
        def observe():
            raise ConnectionRefusedError("port closed")

        probe = Probe("port open", observe, transient=(ConnectionRefusedError,))
        with self.assertRaises(PollTimeout) as ctx:
            poll(probe, interval_sec=0.01, timeout_sec=0.1)
        self.assertIsInstance(ctx.exception.last_observed, ConnectionRefusedError)

    def test_cancel_wakes_sleeping_poll(self):
        token = CancellationToken()
        threading.Timer(0.1, token.cancel, args=["abort requested"]).start()
        started_at = time.monotonic()
        with self.assertRaises(Cancelled) as ctx:
            poll(Probe("never", lambda: False), interval_sec=30, timeout_sec=60, cancellation=token)
        self.assertLess(time.monotonic() - started_at, 5)
        self.assertEqual(ctx.exception.reason, "abort requested")

    def test_already_cancelled_does_not_observe(self):
        token = CancellationToken()
        token.cancel("global timeout")
        calls = []
        probe = Probe("never", lambda: calls.append(1))
        with self.assertRaises(Cancelled):
            poll(probe, interval_sec=0.01, timeout_sec=1, cancellation=token)
        self.assertEqual(calls, [])

    def test_cancelled_inside_probe_propagates(self):
        token = CancellationToken()

        def observe():
            token.cancel("signal")
            token.raise_if_cancelled()

        with self.assertRaises(Cancelled):
            poll(Probe("never", observe, transient=(Exception,)), interval_sec=0.01, timeout_sec=1)


class TestCancellationToken(unittest.TestCase):

    def test_first_reason_wins(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        self.assertTrue(token.is_cancelled())
        self.assertEqual(token.reason, "first")

    def test_cancel_after(self):
        token = CancellationToken()
        token.cancel_after(0.05, "global timeout")
        with self.assertRaises(Cancelled):
            token.sleep(5)
        self.assertEqual(token.reason, "global timeout")


class TestDeadline(unittest.TestCase):

    def test_passed_deadline_leaves_nothing(self):
        self.assertEqual(seconds_left(time.monotonic() - 5), 0)

    def test_time_left_shrinks(self):
        deadline = time.monotonic() + 10
        first = seconds_left(deadline)
        time.sleep(0.05)
        self.assertLess(seconds_left(deadline), first)
        self.assertGreater(first, 9)

    def test_poll_at_passed_deadline_observes_once(self):
        counter = _Counter(succeed_at=1)
        self.assertTrue(poll(
            Probe("counted", counter.value), interval_sec=0.01, timeout_sec=seconds_left(time.monotonic())))
        self.assertEqual(counter.calls, 1)


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
