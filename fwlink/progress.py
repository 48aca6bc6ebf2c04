"""Phase tracking for a firmware build."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

logger = logging.getLogger(__name__)

BUILD_PHASES = ("resolve", "select", "compose", "bridge", "compile", "link", "publish")


@dataclass
class PhaseRecord:
    phase: str
    status: str = "pending"  # "pending" | "running" | "completed" | "failed" | "skipped"
    start_time: float | None = None
    end_time: float | None = None
    detail: str = ""
    error: str | None = None

    @property
    def duration(self) -> float | None:
        if self.start_time is not None and self.end_time is not None:
            return round(self.end_time - self.start_time, 3)
        return None


class BuildProgress:
    """Record status transitions of build phases and notify listeners."""

    def __init__(self) -> None:
        self.phases: list[PhaseRecord] = []
        self._by_name: dict[str, PhaseRecord] = {}
        self.listeners: list[Callable[[PhaseRecord], None]] = []

    def start(self, phase: str) -> None:
        record = PhaseRecord(phase=phase, status="running", start_time=time.monotonic())
        self.phases.append(record)
        self._by_name[phase] = record
        self._notify(record)

    def complete(self, phase: str, detail: str = "") -> None:
        record = self._by_name.get(phase)
        if record:
            record.status = "completed"
            record.end_time = time.monotonic()
            record.detail = detail
            self._notify(record)

    def fail(self, phase: str, error: str) -> None:
        record = self._by_name.get(phase)
        if record:
            record.status = "failed"
            record.end_time = time.monotonic()
            record.error = error
            self._notify(record)

    def skip(self, phase: str, reason: str) -> None:
        record = PhaseRecord(phase=phase, status="skipped", detail=reason)
        self.phases.append(record)
        self._by_name[phase] = record
        self._notify(record)

    @contextmanager
    def phase(self, name: str) -> Iterator[PhaseRecord]:
        """Run a block as phase ``name``; exceptions mark it failed and propagate.

        The block may set ``record.detail`` to annotate the completed phase.
        """
        self.start(name)
        record = self._by_name[name]
        try:
            yield record
        except BaseException as e:
            self.fail(name, str(e) or type(e).__name__)
            raise
        self.complete(name, record.detail)

    def status_of(self, phase: str) -> str:
        record = self._by_name.get(phase)
        return record.status if record else "pending"

    def summary(self) -> dict[str, Any]:
        total = sum(p.duration or 0 for p in self.phases)
        return {
            "phases": [
                {
                    "phase": p.phase,
                    "status": p.status,
                    "duration": p.duration,
                    "detail": p.detail,
                    "error": p.error,
                }
                for p in self.phases
            ],
            "total_duration": round(total, 3),
        }

    def _notify(self, record: PhaseRecord) -> None:
        for listener in self.listeners:
            try:
                listener(record)
            except Exception:
                logger.debug("Progress listener error for phase %s", record.phase, exc_info=True)
