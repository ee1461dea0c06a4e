# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest
from subprocess import TimeoutExpired

from os_access import NodeUnreachable
from os_access import ProcessError
from os_access import ProcessTimeout
from os_access import Ssh
from os_access.local_shell import local_shell


class TestLocalShell(unittest.TestCase):

    def test_stdout(self):
        result = local_shell.run(['echo', 'cluster'])
        self.assertEqual(result.returncode, 0)
        self.assertEqual(result.stdout, b'cluster\n')

    def test_input_passed_to_stdin(self):
        data = b'K3S_TOKEN=secret\n' * 1000
        result = local_shell.run(['cat'], input=data)
        self.assertEqual(result.stdout, data)

    def test_script(self):
        result = local_shell.run('echo one\necho two >&2')
        self.assertEqual(result.stdout, b'one\n')
        self.assertIn(b'two', result.stderr)

    def test_env(self):
        result = local_shell.run('echo "$NODE_NAME"', env={'NODE_NAME': 'server-1'})
        self.assertEqual(result.stdout, b'server-1\n')

    def test_failure_message_contains_stderr(self):
        with self.assertRaises(ProcessError) as ctx:
            local_shell.run('echo "no such interface" >&2; exit 3')
        self.assertEqual(ctx.exception.returncode, 3)
        self.assertIn("exit status 3", str(ctx.exception))
        self.assertIn("no such interface", str(ctx.exception))

    def test_unchecked_failure(self):
        result = local_shell.run(['false'], check=False)
        self.assertEqual(result.returncode, 1)

    def test_timeout(self):
        with self.assertRaises(ProcessTimeout) as ctx:
            local_shell.run(['sleep', '10'], timeout_sec=0.5)
        self.assertIsInstance(ctx.exception, ProcessError)
        self.assertIsInstance(ctx.exception.__cause__, TimeoutExpired)
        self.assertIn("did not exit in 0.5 sec", str(ctx.exception))

    def test_timeout_unchecked(self):
        with self.assertRaises(ProcessTimeout):
            local_shell.run('echo started; sleep 10', timeout_sec=0.5, check=False)


class _ClosedClient:

    def __init__(self):
        self.closed = False

    def get_transport(self):
        return None

    def close(self):
        self.closed = True


class TestSshSession(unittest.TestCase):

    def test_lost_session_is_unreachable_node(self):
        ssh = Ssh('127.0.0.1', 2222, 'root', None)
        client = _ClosedClient()
        ssh._client = client
        with self.assertRaises(NodeUnreachable):
            ssh.run(['hostname'])
        self.assertTrue(client.closed)
        self.assertIsNone(ssh._client)


if __name__ == '__main__':
    logging.basicConfig(level=logging.DEBUG)
    unittest.main()
