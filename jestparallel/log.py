"""
Logging setup for jestparallel.

Results are the only thing that may ever reach stdout, so diagnostics go to
stderr or to a log file.
"""
import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = "jestparallel"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_HANDLER_MARKER = "_jestparallel_handler"


def _create_handler(log_file: Optional[Union[str, Path]]) -> logging.Handler:
    handler: logging.Handler
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    setattr(handler, _HANDLER_MARKER, True)
    return handler


def configure_logging(
    level: Union[int, str] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    Attach a single stderr or file handler to the package logger.

    Calling this again replaces the handler installed by a previous call and
    leaves handlers added by the host application alone.

    Args:
        level: Logging level name or number
        log_file: Write to this file instead of stderr

    Returns:
        The configured package logger
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in list(package_logger.handlers):
        if getattr(existing, _HANDLER_MARKER, False):
            package_logger.removeHandler(existing)
            existing.close()

    package_logger.addHandler(_create_handler(log_file))
    package_logger.setLevel(level.upper() if isinstance(level, str) else level)
    package_logger.propagate = False
    return package_logger
