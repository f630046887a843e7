# src/config/logging_config.py

"""Per-run timestamped logging for the price engine and its workers.

Every launch (CLI lookup or worker process) writes one file under
``logs/``, e.g. ``logs/run_20260214_153045.log``.  All ``price_engine.*``
loggers share it, so an aggregation call, the adapter attempts it fanned
out to, and any job retries it triggered can be read in one place.

Adapter calls run on ``asyncio.to_thread`` workers, so the thread name is
part of the file format.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from src.config.settings import Settings

ROOT_LOGGER_NAME = "price_engine"

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | "
    "%(module)s:%(funcName)s:%(lineno)d | %(message)s"
)

_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty third-party loggers capped at WARNING
_NOISY_LOGGERS: tuple[str, ...] = ("curl_cffi", "urllib3", "asyncio")


def setup_logging(
    logs_dir: Path | None = None,
    console_level: int = logging.WARNING,
) -> Path:
    """Attach file + console handlers to the ``price_engine`` logger.

    Calling it again in the same process is a no-op apart from
    returning a fresh path name; handlers are never duplicated.

    Returns:
        The :class:`~pathlib.Path` of this run's log file.
    """
    target_dir = logs_dir or Settings.LOGS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)

    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = target_dir / f"run_{stamp}.log"

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(logging.DEBUG)
    if root.handlers:
        return log_file

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT)
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)
    )

    root.addHandler(file_handler)
    root.addHandler(console_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info("Logging initialised, writing to %s", log_file)
    return log_file
