import logging
import os
import sys

LOG_LEVEL_ENV = "CAPFETCH_LOG_LEVEL"

# Chatty at DEBUG on every retry and pooled connection
NOISY_LOGGERS = ("urllib3", "asyncio")


def _resolve_level(level):
    if level is not None:
        return level
    name = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level=None):
    """
    Configure logging to stderr; stdout is reserved for the JSON envelope.
    Level comes from `level`, else CAPFETCH_LOG_LEVEL, else INFO.
    """
    level = _resolve_level(level)
    fmt = '[%(levelname)s] %(message)s'
    if level <= logging.DEBUG:
        fmt = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
