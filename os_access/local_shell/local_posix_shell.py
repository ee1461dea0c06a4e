# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import os
import signal
import subprocess
from selectors import DefaultSelector
from selectors import EVENT_READ
from typing import Dict

from os_access._command import Run
from os_access._command import Shell
from os_access._posix_shell import augment_script
from os_access._posix_shell import command_to_script
from os_access._posix_shell import env_values_to_str


class _LocalRun(Run):
    """Process on the host, e.g. qemu-img; pipes are read without threads."""

    def __init__(self, args, **popen_kwargs):
        self._process = subprocess.Popen(args, **popen_kwargs)
        super().__init__(self._process.args)
        self._selector = DefaultSelector()
        self._open: Dict[int, str] = {}
        for name, pipe in ('stdout', self._process.stdout), ('stderr', self._process.stderr):
            self._open[pipe.fileno()] = name
            self._selector.register(pipe.fileno(), EVENT_READ)

    @property
    def returncode(self):
        return self._process.poll()

    def receive(self, timeout_sec):
        chunks = {name: b'' for name in self._open.values()}
        for key, _events in self._selector.select(timeout_sec):
            name = self._open[key.fd]
            chunk = os.read(key.fd, 16 * 1024)
            if chunk:
                chunks[name] = chunk
            else:
                self._forget(key.fd)
                chunks[name] = None
        return chunks.get('stdout'), chunks.get('stderr')

    def _forget(self, fd):
        self._selector.unregister(fd)
        name = self._open.pop(fd)
        getattr(self._process, name).close()

    def send(self, bytes_buffer, is_last=False):
        stdin = self._process.stdin
        try:
            written = stdin.write(bytes_buffer)
        except BrokenPipeError:
            _logger.debug("%s: stdin is closed by the process", self.args)
            stdin.close()
            return len(bytes_buffer)
        if is_last and written == len(bytes_buffer):
            stdin.close()
        return written

    def wait(self, timeout=None):
        return self._process.wait(timeout=timeout)

    def kill(self):
        self._process.send_signal(signal.SIGKILL)

    def close(self):
        for fd in list(self._open):
            self._forget(fd)
        self._selector.close()
        if not self._process.stdin.closed:
            self._process.stdin.close()


class _LocalShell(Shell):

    def __repr__(self):
        return '<LocalShell>'

    def Popen(self, command, cwd=None, env=None):
        kwargs = dict(
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            bufsize=0,
            close_fds=True,
            cwd=None if cwd is None else os.fspath(cwd),
            env=None if env is None else {**os.environ, **env_values_to_str(env)},
            )
        if isinstance(command, str):
            return _LocalRun(augment_script(command, set_eux='\n' in command), shell=True, **kwargs)
        _logger.debug("Local command: %s", command_to_script(command))
        return _LocalRun([str(arg) for arg in command], shell=False, **kwargs)

    def is_working(self):
        return True

    def close(self):
        pass


local_shell = _LocalShell()

_logger = logging.getLogger(__name__)
