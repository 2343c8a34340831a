"""Tests for logging setup."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from langclient.logging_config import configure_logging


@pytest.mark.usefixtures("restore_root_logger")
class TestConfigureLogging:
    def test_stderr_only(self) -> None:
        configure_logging("warning")

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].level == logging.WARNING
        assert root.level == logging.WARNING

    def test_rotating_files_per_level(self, tmp_path: Path) -> None:
        configure_logging(logging.INFO, log_dir=tmp_path / "logs")

        root = logging.getLogger()
        files = sorted(
            (Path(h.baseFilename).name, h.level) for h in root.handlers if isinstance(h, RotatingFileHandler)
        )
        assert files == [
            ("langclient-debug.log", logging.DEBUG),
            ("langclient-error.log", logging.ERROR),
            ("langclient-info.log", logging.INFO),
        ]
        assert root.level == logging.DEBUG

        logging.getLogger("langclient.test").error("written everywhere")
        for handler in root.handlers:
            handler.flush()
        assert "written everywhere" in (tmp_path / "logs" / "langclient-error.log").read_text()
        assert "written everywhere" in (tmp_path / "logs" / "langclient-debug.log").read_text()

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging("chatty")
