"""Tests for BuildProgress."""

from __future__ import annotations

import time

import pytest

from fwlink.progress import BuildProgress


class TestBuildProgress:
    def test_basic_flow(self):
        progress = BuildProgress()
        progress.start("compile")
        progress.complete("compile", detail="12 objects")

        summary = progress.summary()
        assert len(summary["phases"]) == 1
        assert summary["phases"][0]["status"] == "completed"
        assert summary["phases"][0]["detail"] == "12 objects"

    def test_fail(self):
        progress = BuildProgress()
        progress.start("link")
        progress.fail("link", "undefined reference to `main'")

        summary = progress.summary()
        assert summary["phases"][0]["status"] == "failed"
        assert summary["phases"][0]["error"] == "undefined reference to `main'"

    def test_skip(self):
        progress = BuildProgress()
        progress.skip("bridge", "no headers configured")
        assert progress.status_of("bridge") == "skipped"
        assert progress.summary()["phases"][0]["detail"] == "no headers configured"

    def test_duration(self):
        progress = BuildProgress()
        progress.start("resolve")
        time.sleep(0.01)
        progress.complete("resolve")

        p = progress.phases[0]
        assert p.duration is not None
        assert p.duration >= 0.01

    def test_listener(self):
        events = []
        progress = BuildProgress()
        progress.listeners.append(lambda p: events.append((p.phase, p.status)))

        progress.start("select")
        progress.complete("select")

        assert events == [("select", "running"), ("select", "completed")]

    def test_broken_listener_does_not_break_build(self):
        progress = BuildProgress()
        progress.listeners.append(lambda p: 1 / 0)
        progress.start("compose")
        progress.complete("compose")
        assert progress.status_of("compose") == "completed"

    def test_unknown_phase_is_pending(self):
        assert BuildProgress().status_of("publish") == "pending"


class TestPhaseContext:
    def test_success_with_detail(self):
        progress = BuildProgress()
        with progress.phase("compile") as record:
            record.detail = "5 objects"
        assert progress.status_of("compile") == "completed"
        assert progress.summary()["phases"][0]["detail"] == "5 objects"

    def test_exception_marks_failed_and_propagates(self):
        progress = BuildProgress()
        with pytest.raises(RuntimeError, match="boom"):
            with progress.phase("link"):
                raise RuntimeError("boom")
        assert progress.status_of("link") == "failed"
        assert progress.summary()["phases"][0]["error"] == "boom"

    def test_phases_in_order(self):
        progress = BuildProgress()
        for name in ("resolve", "select", "compose"):
            with progress.phase(name):
                pass
        summary = progress.summary()
        assert [p["phase"] for p in summary["phases"]] == ["resolve", "select", "compose"]
        assert summary["total_duration"] >= 0
