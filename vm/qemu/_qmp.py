# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import json
import logging
import socket
from pathlib import Path
from typing import Any
from typing import Mapping
from typing import Optional

from vm.hypervisor import HypervisorError


class QmpError(HypervisorError):
    pass


class QmpClient:
    """QEMU Machine Protocol over a UNIX socket; one connection per command.

    See: https://www.qemu.org/docs/master/interop/qmp-spec.html
    """

    def __init__(self, socket_path: Path, timeout_sec: float = 10):
        self._socket_path = socket_path
        self._timeout_sec = timeout_sec

    def __repr__(self):
        return f'<QmpClient {self._socket_path}>'

    def execute(self, command: str, arguments: Optional[Mapping[str, Any]] = None):
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.settimeout(self._timeout_sec)
                sock.connect(str(self._socket_path))
                with sock.makefile('rwb') as stream:
                    greeting = self._receive(stream)
                    if 'QMP' not in greeting:
                        raise QmpError(f"{self}: unexpected greeting {greeting}")
                    self._call(stream, 'qmp_capabilities', None)
                    return self._call(stream, command, arguments)
        except OSError as e:
            raise QmpError(f"{self}: {command}: {e}")

    def _call(self, stream, command, arguments):
        request = {'execute': command}
        if arguments is not None:
            request['arguments'] = arguments
        _logger.debug("%s: send %s", self, request)
        stream.write(json.dumps(request).encode() + b'\r\n')
        stream.flush()
        while True:
            response = self._receive(stream)
            if 'event' in response:
                _logger.debug("%s: event %s", self, response['event'])
                continue
            if 'error' in response:
                raise QmpError(f"{self}: {command}: {response['error'].get('desc', response['error'])}")
            return response['return']

    def _receive(self, stream) -> Mapping[str, Any]:
        line = stream.readline()
        if not line:
            raise QmpError(f"{self}: connection closed by QEMU")
        return json.loads(line)


_logger = logging.getLogger(__name__)
