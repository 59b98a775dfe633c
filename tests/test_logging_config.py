from __future__ import annotations

import logging
import logging.handlers

import pytest

from concurrence_limiter.logging_config import RUNTIME_LOG_NAME, configure_logging


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_runtime_log_and_quiet_http_loggers(tmp_path, restore_root_logging) -> None:
    log_dir = tmp_path / "nested" / "logs"

    configure_logging("debug", log_dir, retention_days=0)

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert log_dir.is_dir()
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING

    rotating = [h for h in root.handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)]
    assert len(rotating) == 1
    assert rotating[0].baseFilename == str(log_dir / RUNTIME_LOG_NAME)
    assert rotating[0].backupCount == 1
