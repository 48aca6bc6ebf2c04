"""System library selector — canonical triple -> precompiled runtime library files.

The toolchain driver performs this lookup implicitly from its multilib
configuration; fwlink needs the concrete paths up front (to pass them to a
link it drives itself), so the same decision is made here from the layout
data.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from fwlink.exceptions import LibraryNotFound, ToolchainNotFound
from fwlink.models.build import LibrarySelection, LibraryVariant
from fwlink.models.target import CanonicalTriple
from fwlink.toolchain.layout import DEFAULT_LIBRARIES, LibrarySpec, ToolchainLayout

logger = logging.getLogger(__name__)


def _version_key(path: Path) -> tuple:
    """Sort key for versioned directories such as ``lib/gcc/arm-none-eabi/13.2.1``."""
    return tuple(int(p) if p.isdigit() else -1 for p in re.split(r"[.\-]", path.name))


class SystemLibrarySelector:
    """Locate each required runtime library variant for a triple."""

    def __init__(self, toolchain_root: str | Path, layout: ToolchainLayout | None = None) -> None:
        self.root = Path(toolchain_root)
        self.layout = layout or ToolchainLayout.default()

    def select(
        self,
        triple: CanonicalTriple,
        names: list[str] | tuple[str, ...] = DEFAULT_LIBRARIES,
        minimal: bool = False,
    ) -> LibrarySelection:
        """Resolve ``names`` for ``triple``.

        Args:
            triple: Canonical triple from the target resolver.
            names: Logical library names, in link order.
            minimal: Prefer reduced-footprint variants (newlib-nano) where the
                layout declares one.

        Returns:
            LibrarySelection with found variants and per-name failures.

        Raises:
            ToolchainNotFound: toolchain root does not exist.
        """
        if not self.root.is_dir():
            raise ToolchainNotFound(f"Toolchain root not found: {self.root}")

        selection = LibrarySelection()
        for name in names:
            spec = self.layout.spec_for(name)
            if spec is None:
                selection.missing[name] = LibraryNotFound(name, [])
                logger.warning("No layout entry for library '%s' in %s", name, self.layout.name)
                continue
            variant = self._probe(spec, triple, minimal)
            if isinstance(variant, LibraryNotFound):
                selection.missing[name] = variant
                logger.info("Library '%s' not found for %s", name, triple)
            else:
                selection.found[name] = variant
                logger.info(
                    "Selected %s library '%s': %s", variant.variant, name, variant.path
                )
        return selection

    def library_dirs(self, spec: LibrarySpec, triple: CanonicalTriple) -> list[Path]:
        """Candidate directories for ``spec``, best first."""
        segment = spec.segment or self.layout.segment
        fragment = triple.as_path(self.layout.triple_format)
        if "*" in segment:
            # Versioned install dirs: newest first
            bases = sorted(self.root.glob(segment), key=_version_key, reverse=True)
            return [b / fragment for b in bases if b.is_dir()]
        return [self.root / segment / fragment]

    def _probe(
        self, spec: LibrarySpec, triple: CanonicalTriple, minimal: bool
    ) -> LibraryVariant | LibraryNotFound:
        candidates: list[tuple[str, str]] = []
        if minimal:
            candidates += [(f, "minimal") for f in spec.minimal]
        candidates += [(f, "standard") for f in spec.standard]

        searched: list[str] = []
        for directory in self.library_dirs(spec, triple):
            for file_name, variant in candidates:
                path = directory / file_name
                searched.append(str(path))
                if path.is_file():
                    if minimal and spec.minimal and variant == "standard":
                        logger.warning(
                            "Minimal variant of '%s' not installed; using %s",
                            spec.logical_name,
                            path.name,
                        )
                    return LibraryVariant(
                        logical_name=spec.logical_name,
                        path=path,
                        triple=triple,
                        variant=variant,
                    )
        return LibraryNotFound(spec.logical_name, searched)
