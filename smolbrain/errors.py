"""
Exceptions and error logging for smolbrain.

The CLI logs full stack traces for debugging while showing clean
messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class SmolbrainError(Exception):
    """Base class for all smolbrain errors."""


class NotFoundError(SmolbrainError):
    """No memory exists with the requested id. Informational."""

    def __init__(self, id: int):
        self.id = id
        super().__init__(f"No memory found with id {id}.")


class TaskError(SmolbrainError):
    """The memory exists but is not a task. Informational."""

    def __init__(self, id: int):
        self.id = id
        super().__init__(f"Memory {id} is not a task.")


class ValidationError(SmolbrainError, ValueError):
    """Caller supplied invalid input (empty content, bad status, ...)."""


class StorageError(SmolbrainError):
    """The underlying store is unreachable or corrupt."""


class EmbeddingProviderError(SmolbrainError):
    """The embedding provider is unavailable or returned an unusable vector."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting SMOLBRAIN_STORE_PATH."""
    store = os.environ.get("SMOLBRAIN_STORE_PATH")
    if store:
        return Path(store) / "smolbrain-errors.log"
    return Path.home() / ".smolbrain" / "smolbrain-errors.log"


def log_exception(exc: Exception, context: str = "", log_path: Path | None = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        log_path: Explicit log file (default: inside the store directory)

    Returns:
        Path to the error log file
    """
    log_path = log_path or _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # Error log is best-effort
    return log_path
