"""Tests for the shared logging setup."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from dex_indexer.utils.logger import LOG_FILE_NAME, configure_log_dir, get_logger


@pytest.fixture
def restore_log_dir(monkeypatch: pytest.MonkeyPatch) -> Iterator[pytest.MonkeyPatch]:
    yield monkeypatch
    monkeypatch.undo()
    configure_log_dir()


def test_log_dir_read_when_configured(restore_log_dir: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Test loggers created before the log directory is set still write there."""
    logger = get_logger("dex_indexer.tests.early_logger")
    restore_log_dir.setenv("DEX_INDEXER_LOG_DIR", str(tmp_path / "logs"))

    log_file = configure_log_dir()
    logger.debug("written after the move")

    assert log_file == tmp_path / "logs" / LOG_FILE_NAME
    assert "written after the move" in log_file.read_text(encoding="utf-8")


def test_log_progress_percentage(capsys) -> None:
    """Test progress over an inclusive range is reported to the console."""
    logger = get_logger("dex_indexer.tests.progress")

    logger.log_progress(149, 100, 199)

    assert "Progress: 50/100 blocks (50.0%)" in capsys.readouterr().out
