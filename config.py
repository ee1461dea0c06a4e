# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import fnmatch
import logging
import os
import socket
from configparser import ConfigParser
from pathlib import Path
from typing import Mapping
from typing import Sequence

_logger = logging.getLogger(__name__)


def _read_config(*paths: Path) -> Mapping[str, str]:
    """Read and resolve overrides according to versions.

    Sections are host masks: "[defaults]", "[ci-runner-*]".
    Optionally add ";v123" to sections like "[ci-runner-*;v2]".
    If not specified, "v0" is assumed.
    Higher versions override lower versions; with equal versions,
    later files and later sections win.
    """
    config_parts = []
    host = socket.gethostname()
    for path_i, path in enumerate(paths):
        config_parser = ConfigParser(interpolation=None)
        config_parser.read(path)
        for section_i, section in enumerate(config_parser.sections()):
            mask, version = _parse_section_header(section)
            if fnmatch.fnmatch(host, mask):
                _logger.debug("Config %s: section %s: read", path, section)
                config_parts.append((version, path_i, section_i, config_parser.items(section)))
            else:
                _logger.debug("Config %s: section %s: skip", path, section)
    config_parts.sort(key=lambda part: part[:3])
    config = {}
    for _version, _path_i, _section_i, items in config_parts:
        config.update(items)
    return config


def _parse_section_header(section):
    if section == 'defaults':
        return '*', 0
    mask, _semicolon, extra = section.partition(';')
    if not extra:
        return mask, 0
    if extra.startswith('v'):
        try:
            return mask, int(extra[1:])
        except ValueError:
            raise ValueError(f"Cannot parse {extra} in {section}")
    raise ValueError(f"Unknown {extra} in {section}")


_no_default = object()


def first_match(config: Mapping[str, str], keys: Sequence[str], default=_no_default):
    """Value of the first key present, most specific key goes first.

    >>> first_match({'image': 'debian.qcow2'}, ['image.simple.server-1', 'image.simple', 'image'])
    'debian.qcow2'
    """
    for key in keys:
        if key in config:
            return config[key]
    if default is _no_default:
        raise KeyError(f"None of {list(keys)} is configured")
    return default


def _config_paths() -> Sequence[Path]:
    paths = [
        Path(__file__).with_name('config.ini'),
        Path('~/.config/cluster_orchestrator.ini').expanduser(),
        ]
    # CI jobs pass a generated file; it wins over the per-user one.
    extra = os.getenv('CLUSTER_ORCHESTRATOR_CONFIG')
    if extra:
        paths.append(Path(extra).expanduser())
    return paths


global_config = _read_config(*_config_paths())

if __name__ == '__main__':
    for k, v in global_config.items():
        print(k + '=' + v)
