"""Tests for the output directory lock."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from fwlink.core.lock import LOCK_NAME, OutputLock
from fwlink.exceptions import OutputLocked


class TestOutputLock:
    def test_acquire_writes_pid_and_release_removes(self, tmp_path: Path):
        lock = OutputLock(tmp_path / "out")
        lock.acquire()
        assert (tmp_path / "out" / LOCK_NAME).read_text() == str(os.getpid())
        lock.release()
        assert not (tmp_path / "out" / LOCK_NAME).exists()

    def test_second_holder_rejected(self, tmp_path: Path):
        with OutputLock(tmp_path):
            with pytest.raises(OutputLocked, match=str(os.getpid())):
                OutputLock(tmp_path).acquire()

    def test_released_on_exception(self, tmp_path: Path):
        with pytest.raises(ValueError):
            with OutputLock(tmp_path):
                raise ValueError("build failed")
        OutputLock(tmp_path).acquire()

    def test_failed_acquire_keeps_foreign_lock(self, tmp_path: Path):
        (tmp_path / LOCK_NAME).write_text("")
        lock = OutputLock(tmp_path)
        with pytest.raises(OutputLocked, match=r"pid \?"):
            lock.acquire()
        lock.release()
        assert (tmp_path / LOCK_NAME).exists()
