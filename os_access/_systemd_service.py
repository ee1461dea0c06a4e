# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging

from os_access._command import ProcessError
from os_access._command import Shell
from os_access._exceptions import ServiceNotFoundError
from os_access._exceptions import ServiceStartError
from os_access._service_interface import Service
from os_access._service_interface import ServiceStatus


class SystemdService(Service):
    """Control a Systemd unit with `systemctl` and read its journal."""

    def __init__(self, shell: Shell, name: str):
        self._shell = shell
        self._name = name

    def __repr__(self):
        return '<SystemdService {} at {}>'.format(self._name, self._shell)

    def start(self, timeout_sec=None):
        self._run_transition('start', timeout_sec)

    def restart(self, timeout_sec=None):
        self._run_transition('restart', timeout_sec)

    def _run_transition(self, verb, timeout_sec):
        if timeout_sec is None:
            timeout_sec = 30
        _logger.info("%s service %s.", verb.capitalize(), self._name)
        try:
            self._shell.run(['systemctl', verb, self._name], timeout_sec=timeout_sec)
        except ProcessError as e:
            raise ServiceStartError(
                f"Service {self._name} failed to {verb} with exit code {e.returncode}: "
                f"{e.stderr.decode(errors='backslashreplace').strip()}")

    def stop(self, timeout_sec=None):
        if timeout_sec is None:
            timeout_sec = 30
        _logger.info("Stop service %s.", self._name)
        self._shell.run(['systemctl', 'stop', self._name], timeout_sec=timeout_sec)

    def status(self):
        result = self._shell.run([
            'systemctl', 'show', '-p', 'ActiveState,SubState,MainPID,LoadState', self._name])
        data = dict(line.split('=', 1) for line in result.stdout.decode('ascii').splitlines() if '=' in line)
        if data['LoadState'] == 'not-found':
            raise ServiceNotFoundError(f"Service {self._name!r} not found")
        return ServiceStatus(data['ActiveState'], data['SubState'], int(data['MainPID']))

    def status_text(self):
        # Exit status is non-zero for inactive units; the text is what matters.
        result = self._shell.run(
            ['systemctl', 'status', '--no-pager', '--full', self._name], check=False)
        return result.stdout.decode(errors='backslashreplace')

    def log_tail(self, lines):
        result = self._shell.run(
            ['journalctl', '-u', self._name, '-n', lines, '--no-pager'], check=False)
        return result.stdout.decode(errors='backslashreplace')


_logger = logging.getLogger(__name__)
