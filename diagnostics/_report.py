# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any
from typing import Mapping


def write_report(report: Mapping[str, Any], path: Path, started_at: datetime) -> Path:
    """Write JSON report to the file or, if it's a directory, into it.

    A directory gets a file named after the run start time so reports of
    successive runs don't overwrite each other.
    """
    if path.is_dir():
        path = path / f'report-{started_at:%Y%m%dT%H%M%SZ}.json'
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report, indent=2, default=str) + '\n')
    _logger.info("Report written to %s", path)
    return path


_logger = logging.getLogger(__name__)
