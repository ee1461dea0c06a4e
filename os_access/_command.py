# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex
import time
from abc import ABCMeta
from abc import abstractmethod
from subprocess import CalledProcessError
from subprocess import CompletedProcess
from subprocess import SubprocessError
from subprocess import TimeoutExpired
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union

DEFAULT_RUN_TIMEOUT_SEC = 60

_Bytes = Union[bytes, bytearray, memoryview]


class ProcessError(CalledProcessError):
    """Unexpected non-zero exit of a command run on a node."""

    def __str__(self):
        stderr = (self.stderr or b'').decode(errors='backslashreplace')[-5000:].strip()
        if self.returncode is None:
            status = "no exit status"
        else:
            status = f"exit status {self.returncode}"
        return f"{_describe(self.cmd)} failed with {status}: {stderr or '(no stderr)'}"


class ProcessTimeout(ProcessError):
    """Command still running when its time was up; it was stopped."""

    def __init__(self, cmd, timeout_sec: float, stdout, stderr):
        super().__init__(None, cmd, stdout, stderr)
        self.timeout_sec = timeout_sec

    def __str__(self):
        stderr = (self.stderr or b'').decode(errors='backslashreplace')[-5000:].strip()
        return f"{_describe(self.cmd)} did not exit in {self.timeout_sec:g} sec: {stderr or '(no stderr)'}"


def _describe(args) -> str:
    if isinstance(args, str):
        return repr(args)
    return repr(shlex.join(str(arg) for arg in args))


class _Stream:
    """Output collected chunk by chunk until the other side closes it."""

    def __init__(self, name: str):
        self._name = name
        self._received: List[bytes] = []
        self.closed = False

    def feed(self, chunk: Optional[_Bytes]):
        if self.closed:
            if chunk:
                raise RuntimeError(f"{self._name}: data after close")
            return
        if chunk is None:
            self.closed = True
            return
        if chunk:
            self._received.append(bytes(chunk))
            _logger.debug("%s: %s", self._name, bytes(chunk).decode(errors='backslashreplace').rstrip())

    def collected(self) -> bytes:
        return b''.join(self._received)


class Run(metaclass=ABCMeta):
    """Started command; communicate() drains its streams."""

    _stop_wait_sec = 30

    def __init__(self, args):
        self.args = args

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.returncode is None:
            outcome = self._stop()
            self.close()
            if exc_type is None:
                raise SubprocessError(f"Command {_describe(self.args)} outlived its context: {outcome}")
            _logger.warning("Command %s outlived its context: %s", _describe(self.args), outcome)
        else:
            self.close()

    def _stop(self) -> str:
        try:
            self.kill()
        except NotImplementedError:
            return "cannot kill"
        try:
            self.wait(self._stop_wait_sec)
        except TimeoutExpired:
            return f"still running {self._stop_wait_sec} sec after kill"
        return "killed"

    @property
    @abstractmethod
    def returncode(self) -> Optional[int]:
        pass

    @abstractmethod
    def wait(self, timeout=None) -> int:
        pass

    @abstractmethod
    def send(self, bytes_buffer: _Bytes, is_last=False) -> int:
        pass

    @abstractmethod
    def receive(self, timeout_sec: float) -> Tuple[Optional[bytes], Optional[bytes]]:
        """Chunks of stdout and stderr; None for a stream closed by the command."""
        pass

    @abstractmethod
    def kill(self):
        pass

    @abstractmethod
    def close(self):
        pass

    def communicate(
            self,
            input: Optional[_Bytes] = None,  # noqa PyShadowingBuiltins
            timeout_sec: float = DEFAULT_RUN_TIMEOUT_SEC,
            ) -> Tuple[bytes, bytes]:
        pending = None if input is None else memoryview(input)
        streams = _Stream('stdout'), _Stream('stderr')
        deadline = time.monotonic() + timeout_sec
        while True:
            # Paramiko sets the exit status in its own thread. Output received
            # after the status has been seen is the whole output.
            exited = self.returncode is not None
            for stream, chunk in zip(streams, self.receive(timeout_sec=min(1., timeout_sec / 2.))):
                stream.feed(chunk)
            if exited and all(stream.closed for stream in streams):
                break
            if time.monotonic() > deadline:
                if exited:
                    _logger.debug("%s: exited, streams left open", _describe(self.args))
                    break
                stdout, stderr = (stream.collected() for stream in streams)
                raise TimeoutExpired(self.args, timeout_sec, stdout, stderr)
            if pending is not None and exited:
                _logger.error("%s: exited before reading its input", _describe(self.args))
                pending = None
            elif pending is not None:
                pending = pending[self.send(pending, is_last=True):]
                if not pending:
                    pending = None
        stdout, stderr = (stream.collected() for stream in streams)
        return stdout, stderr


class Shell(metaclass=ABCMeta):

    @abstractmethod
    def Popen(self, args, **kwargs) -> Run:  # noqa PyPep8Naming
        pass

    @abstractmethod
    def is_working(self) -> bool:
        pass

    @abstractmethod
    def close(self):
        pass

    def run(
            self,
            args,
            input: Optional[_Bytes] = None,  # noqa PyShadowingBuiltins
            timeout_sec: float = DEFAULT_RUN_TIMEOUT_SEC,
            check=True,
            **kwargs) -> CompletedProcess:
        _logger.info("%r: run %s", self, _describe(args))
        started_at = time.monotonic()
        try:
            with self.Popen(args, **kwargs) as run:
                stdout, stderr = run.communicate(input=input, timeout_sec=timeout_sec)
                returncode = run.returncode
        except TimeoutExpired as e:
            raise ProcessTimeout(args, timeout_sec, e.stdout, e.stderr) from e
        _logger.debug("%r: exit status %s in %.1f sec", self, returncode, time.monotonic() - started_at)
        if check and returncode != 0:
            raise ProcessError(returncode, args, stdout, stderr)
        return CompletedProcess(args, returncode, stdout, stderr)


_logger = logging.getLogger(__name__)
