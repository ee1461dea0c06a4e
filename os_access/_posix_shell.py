# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import os
import shlex
from ipaddress import IPv4Address
from ipaddress import IPv4Interface
from ipaddress import IPv4Network
from textwrap import dedent
from typing import Mapping

_Arg = (str, int, IPv4Address, IPv4Interface, IPv4Network, os.PathLike)


def _arg_to_str(arg) -> str:
    if isinstance(arg, bool) or not isinstance(arg, _Arg):
        raise TypeError(f"Cannot pass {arg!r} of type {type(arg).__name__} to a command")
    if isinstance(arg, os.PathLike):
        return os.fspath(arg)
    return str(arg)


def quote_arg(arg):
    return shlex.quote(_arg_to_str(arg))


def command_to_script(command):
    """Command line as sh would run it.

    >>> command_to_script(['ip', 'addr', 'add', IPv4Interface('192.168.1.1/24'), 'dev', 'eth1'])
    'ip addr add 192.168.1.1/24 dev eth1'
    >>> command_to_script(['hostname', 'server 1'])
    "hostname 'server 1'"
    """
    return shlex.join(_arg_to_str(arg) for arg in command)


def env_values_to_str(env: Mapping[str, object]) -> Mapping[str, str]:
    result = {}
    for name, value in env.items():
        if value is None:
            result[name] = ''
        elif isinstance(value, bool):
            result[name] = 'true' if value else 'false'
        else:
            result[name] = _arg_to_str(value)
    return result


def augment_script(script, cwd=None, set_eux=True):
    lines = []
    if set_eux:
        lines.append('set -eux')  # Plain sh: no pipefail.
    if cwd is not None:
        lines.append(command_to_script(['cd', cwd]))
    lines.append(dedent(script).strip())
    return '\n'.join(lines)
