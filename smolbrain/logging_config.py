"""
Logging configuration for smolbrain.

Every command runs with library chatter suppressed: the embedding
libraries print progress bars and warnings that would mix with command
output. Operations on a store are always recorded in a rotating log
inside the store directory, whatever the verbosity.
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "smolbrain"

OPS_LOG_FILENAME = "smolbrain-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

# Loggers of the embedding providers and their HTTP client
_LIBRARY_LOGGERS = ("transformers", "sentence_transformers", "httpx", "openai")

_QUIET_ENV = {
    "HF_HUB_DISABLE_PROGRESS_BARS": "1",
    "HF_HUB_DISABLE_TELEMETRY": "1",
    "TRANSFORMERS_VERBOSITY": "error",
    "TOKENIZERS_PARALLELISM": "false",
}

_DEBUG_HANDLER_NAME = "smolbrain-debug"


def _quiet_environment(override: bool) -> None:
    for key, value in _QUIET_ENV.items():
        if override:
            os.environ[key] = value
        else:
            os.environ.setdefault(key, value)


# Must run before sentence-transformers is imported; values the user set win
if not os.environ.get("SMOLBRAIN_VERBOSE"):
    _quiet_environment(override=False)


def configure_quiet_mode(quiet: bool = True):
    """
    Suppress or restore embedding library output.

    Args:
        quiet: If True, silence library progress bars, warnings and
            log records below ERROR. If False, hand the library loggers
            back to the root logger's level.
    """
    if quiet:
        _quiet_environment(override=True)
        warnings.filterwarnings("ignore")
        level = logging.ERROR
    else:
        level = logging.NOTSET
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def enable_debug_mode():
    """Send debug records from smolbrain and its libraries to stderr."""
    warnings.filterwarnings("default")
    os.environ.pop("HF_HUB_DISABLE_PROGRESS_BARS", None)
    os.environ.pop("TRANSFORMERS_VERBOSITY", None)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Named so repeated --verbose invocations in one process add it once
    if not any(h.get_name() == _DEBUG_HANDLER_NAME for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_DEBUG_HANDLER_NAME)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
        root_logger.addHandler(handler)

    for name in (LOGGER_NAME,) + _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """Attach the operations log of a store to the smolbrain logger.

    Records go to ``{store_path}/smolbrain-ops.log``, rotated at
    OPS_LOG_MAX_BYTES with OPS_LOG_BACKUPS old files kept. The caller
    owns the returned handler and passes it to remove_ops_log().
    """
    log_path = Path(store_path) / OPS_LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=OPS_LOG_MAX_BYTES,
        backupCount=OPS_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(process)d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    ))

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.addHandler(handler)
    # INFO must reach the file even when the console is quiet
    if app_logger.level == logging.NOTSET or app_logger.level > logging.INFO:
        app_logger.setLevel(logging.INFO)
    return handler


def remove_ops_log(handler: RotatingFileHandler) -> None:
    """Detach and close a handler returned by configure_ops_log()."""
    logging.getLogger(LOGGER_NAME).removeHandler(handler)
    handler.close()
