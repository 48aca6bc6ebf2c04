"""Tests for fwlink.core.logging."""

from __future__ import annotations

import json
import logging

import pytest

from fwlink.core.logging import setup_logging


@pytest.fixture
def restore_fwlink_logger():
    logger = logging.getLogger("fwlink")
    saved = (logger.level, list(logger.handlers), logger.propagate)
    yield logger
    logger.setLevel(saved[0])
    logger.handlers[:] = saved[1]
    logger.propagate = saved[2]


class TestSetupLogging:
    def test_default_level_info(self, restore_fwlink_logger):
        setup_logging()
        assert restore_fwlink_logger.level == logging.INFO

    def test_verbose_is_debug(self, restore_fwlink_logger):
        setup_logging(verbose=True)
        assert restore_fwlink_logger.level == logging.DEBUG

    def test_env_level_wins(self, restore_fwlink_logger, monkeypatch):
        monkeypatch.setenv("FWLINK_LOG_LEVEL", "warning")
        setup_logging(verbose=True)
        assert restore_fwlink_logger.level == logging.WARNING

    def test_records_go_to_stderr(self, restore_fwlink_logger, capsys):
        setup_logging()
        logging.getLogger("fwlink.build.composer").info("Composed %d units", 3)
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Composed 3 units" in captured.err

    def test_json_format(self, restore_fwlink_logger, monkeypatch, capsys):
        monkeypatch.setenv("FWLINK_LOG_FORMAT", "json")
        setup_logging()
        logging.getLogger("fwlink.target.resolver").warning("Resolved %s", "thumb/v7e-m/nofp")
        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "Resolved thumb/v7e-m/nofp"
        assert record["level"] == "warning"
        assert record["logger"] == "fwlink.target.resolver"
