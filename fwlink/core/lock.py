"""Exclusive ownership of a build output directory."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fwlink.exceptions import OutputLocked

logger = logging.getLogger(__name__)

LOCK_NAME = ".fwlink.lock"


class OutputLock:
    """Lock file created with O_EXCL; holds the owner's PID.

    Usage::

        with OutputLock(output_dir):
            ...  # build, then publish the artifact
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.path = self.directory / LOCK_NAME
        self._held = False

    def acquire(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            owner = self._read_owner()
            raise OutputLocked(
                f"Output directory {self.directory} is in use by another build (pid {owner}); "
                f"remove {self.path} if that build is gone"
            ) from None
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        self._held = True
        logger.debug("Acquired output lock %s", self.path)

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False
            logger.debug("Released output lock %s", self.path)

    def _read_owner(self) -> str:
        try:
            return self.path.read_text().strip() or "?"
        except OSError:
            return "?"

    def __enter__(self) -> OutputLock:
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
