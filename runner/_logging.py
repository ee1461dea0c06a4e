# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import logging.handlers
from pathlib import Path
from typing import Sequence

_formatter = logging.Formatter('%(asctime)s %(threadName)10s %(name)s %(levelname)s %(message)s')


def init_logging(run_id: str, log_dir: Path) -> Sequence[logging.Handler]:
    """Full log of the run to a file, progress to stderr."""
    logging.getLogger().setLevel(logging.DEBUG)
    log_dir.mkdir(parents=True, exist_ok=True)
    # One file per run; rotation only caps a runaway debug log.
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / f'{run_id}.log', maxBytes=200 * 1024**2, backupCount=3, encoding='utf8')
    file_handler.setFormatter(_formatter)
    file_handler.setLevel(logging.DEBUG)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(_formatter)
    stream_handler.setLevel(logging.INFO)
    handlers = [file_handler, stream_handler]
    for handler in handlers:
        logging.getLogger().addHandler(handler)
    return handlers


def remove_handlers(handlers: Sequence[logging.Handler]):
    for handler in handlers:
        logging.getLogger().removeHandler(handler)
        handler.close()
