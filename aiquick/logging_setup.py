"""CLI logging setup: plain console output plus an optional deploy log file."""

import logging
import sys
from datetime import datetime

from aiquick.redact import SecretRedactingFilter

FILE_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"


def default_log_file_name(now=None):
    """Timestamped log file name, e.g. ``deploy-20250101-120000.log``."""
    now = now or datetime.now()
    return f"deploy-{now:%Y%m%d-%H%M%S}.log"


def setup_cli_logging(log_file=None):
    """Configure root logger with plain message format for CLI commands.

    Console output is identical to print(). When *log_file* is given, every
    record is also written there with timestamps and levels; ``"auto"``
    picks a timestamped name in the working directory.

    Returns:
        Path of the log file, or None.
    """
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)

    if log_file == "auto":
        log_file = default_log_file_name()
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        file_handler.addFilter(SecretRedactingFilter())
        root.addHandler(file_handler)
    return log_file
