"""Per-run debug loggers."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def run_logger_name(run_id: str) -> str:
    return f"complianceprobe_{run_id}"


def setup_logger(
    debug_file: Path, verbose: bool = False, logger_name: str = "complianceprobe"
) -> logging.Logger:
    """Return a logger that records a whole playbook run in ``debug_file``.

    Command output is logged line by line at DEBUG, so the file is the full
    transcript of the run. With ``verbose`` the same records go to stderr.

    Runners for several hosts may share one process, so every run needs its
    own ``logger_name`` (see :func:`run_logger_name`).

    Raises:
        RuntimeError: ``logger_name`` already has handlers attached.
    """
    logger = logging.getLogger(logger_name)
    if logger.handlers:
        raise RuntimeError(
            f"Logger '{logger_name}' already exists with handlers attached; "
            "use a unique logger name per run"
        )
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    debug_file.parent.mkdir(parents=True, exist_ok=True)
    handlers: list[logging.Handler] = [logging.FileHandler(debug_file, encoding="utf-8")]
    if verbose:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
