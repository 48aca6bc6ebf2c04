"""Detect application references to untranslatable bridge markers.

The compiler reports a marker when it is expanded; this check reports the
same failure before any compile starts, naming the original C macro and
the first use site.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from fwlink.exceptions import UntranslatableDeclaration
from fwlink.models.declarations import BridgedDeclaration

logger = logging.getLogger(__name__)

# comments and string/char literals never count as uses
_NOISE_RE = re.compile(r'//[^\n]*|/\*.*?\*/|b?"(?:\\.|[^\\"])*"', re.DOTALL)


def _blank(m: re.Match[str]) -> str:
    return re.sub(r"[^\n]", " ", m.group())


def iter_sources(paths: list[Path], suffixes: tuple[str, ...] = (".rs",)) -> list[Path]:
    """Expand directories into the source files below them, sorted."""
    files: list[Path] = []
    for p in paths:
        p = Path(p)
        if p.is_dir():
            files.extend(sorted(f for f in p.rglob("*") if f.suffix in suffixes and f.is_file()))
        elif p.is_file():
            files.append(p)
    return files


def check_usage(sources: list[Path], bridged: list[BridgedDeclaration]) -> int:
    """Raise ``UntranslatableDeclaration`` on the first reference to a marker.

    Returns the number of files scanned. Markers nobody references are
    harmless and never fail the check.
    """
    markers = {b.name: b for b in bridged if not b.translated}
    files = iter_sources(sources)
    if not markers:
        return len(files)
    pattern = re.compile(r"(?<![\w#])(" + "|".join(re.escape(n) for n in sorted(markers)) + r")\b")
    for path in files:
        text = _NOISE_RE.sub(_blank, path.read_text(encoding="utf-8", errors="replace"))
        m = pattern.search(text)
        if m:
            name = m.group(1)
            line = text.count("\n", 0, m.start()) + 1
            marker = markers[name]
            raise UntranslatableDeclaration(name, marker.reason, f"{path}:{line}")
    logger.debug("No references to %d untranslatable marker(s) in %d file(s)", len(markers), len(files))
    return len(files)
