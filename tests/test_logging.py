"""
Tests for console quieting, debug output and the per-store operations log.
"""

import logging
from pathlib import Path

import pytest

from smolbrain.api import Brain
from smolbrain.errors import StorageError
from smolbrain.logging_config import (
    LOGGER_NAME,
    OPS_LOG_FILENAME,
    configure_ops_log,
    configure_quiet_mode,
    enable_debug_mode,
    remove_ops_log,
)


@pytest.fixture
def restore_logging(monkeypatch):
    """Put logger levels, root handlers and quiet env vars back afterwards."""
    for key in ("HF_HUB_DISABLE_PROGRESS_BARS", "TRANSFORMERS_VERBOSITY", "TOKENIZERS_PARALLELISM"):
        monkeypatch.delenv(key, raising=False)
    names = ("", LOGGER_NAME, "transformers", "sentence_transformers", "httpx", "openai")
    levels = {name: logging.getLogger(name).level for name in names}
    root_handlers = list(logging.getLogger().handlers)
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)
    for handler in list(logging.getLogger().handlers):
        if handler not in root_handlers:
            logging.getLogger().removeHandler(handler)


def _ops_handlers(path):
    return [
        h for h in logging.getLogger(LOGGER_NAME).handlers
        if getattr(h, "baseFilename", None)
        and Path(h.baseFilename).resolve() == (path / OPS_LOG_FILENAME).resolve()
    ]


class TestConsole:

    def test_quiet_mode(self, restore_logging):
        configure_quiet_mode(quiet=True)
        assert logging.getLogger("sentence_transformers").level == logging.ERROR
        assert logging.getLogger("openai").level == logging.ERROR

    def test_quiet_mode_off_restores_libraries(self, restore_logging):
        configure_quiet_mode(quiet=True)
        configure_quiet_mode(quiet=False)
        assert logging.getLogger("transformers").level == logging.NOTSET

    def test_debug_handler_added_once(self, restore_logging):
        enable_debug_mode()
        enable_debug_mode()
        names = [h.get_name() for h in logging.getLogger().handlers]
        assert names.count("smolbrain-debug") == 1
        assert logging.getLogger(LOGGER_NAME).level == logging.DEBUG


class TestOpsLog:

    def test_records_logger_name(self, tmp_path):
        handler = configure_ops_log(tmp_path)
        try:
            logging.getLogger("smolbrain.api").info("add id=%d", 7)
        finally:
            remove_ops_log(handler)
        text = (tmp_path / OPS_LOG_FILENAME).read_text()
        assert "INFO smolbrain.api: add id=7" in text

    def test_removed_handler_stops_writing(self, tmp_path):
        handler = configure_ops_log(tmp_path)
        remove_ops_log(handler)
        logging.getLogger("smolbrain.api").info("after removal")
        assert _ops_handlers(tmp_path) == []
        assert "after removal" not in (tmp_path / OPS_LOG_FILENAME).read_text()

    def test_brain_close_detaches(self, tmp_path, mock_embedder):
        b = Brain(tmp_path / "store", embedding_provider=mock_embedder)
        assert len(_ops_handlers(tmp_path / "store")) == 1
        b.close()
        assert _ops_handlers(tmp_path / "store") == []

    def test_failed_open_detaches(self, store_dir):
        (store_dir / "smolbrain.db").write_bytes(b"not a database" * 100)
        with pytest.raises(StorageError):
            Brain(store_dir)
        assert _ops_handlers(store_dir) == []
