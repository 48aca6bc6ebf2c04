"""Data models for library selection, build units and link plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from fwlink.exceptions import LibraryNotFound
from fwlink.models.target import CanonicalTriple

# Source suffix -> compile language
LANGUAGE_BY_SUFFIX: dict[str, str] = {
    ".c": "c",
    ".s": "asm",
    ".S": "asm",
    ".rs": "rust",
}


@dataclass(frozen=True)
class LibraryVariant:
    """One resolved precompiled runtime library."""

    logical_name: str  # "libc" | "math" | "syscall-stub" | "compiler-support"
    path: Path
    triple: CanonicalTriple
    variant: str = "standard"  # "standard" | "minimal"


@dataclass
class LibrarySelection:
    """Selector output: resolved libraries plus per-name failures."""

    found: dict[str, LibraryVariant] = field(default_factory=dict)
    missing: dict[str, LibraryNotFound] = field(default_factory=dict)

    def require(self, names: list[str] | tuple[str, ...]) -> None:
        """Raise the failure of the first required library that is missing."""
        for name in names:
            if name in self.missing:
                raise self.missing[name]

    def variants(self, optional: set[str] | frozenset[str] = frozenset()) -> list[LibraryVariant]:
        """Found libraries in selection order; ``optional`` names may be absent."""
        self.require([n for n in self.missing if n not in optional])
        return list(self.found.values())


@dataclass(frozen=True, eq=False)
class BuildUnit:
    """A named bundle of sources and build metadata.

    Units compare by identity: two units may share a name only by mistake,
    and the composer reports that rather than silently merging them.

    A Rust unit lists only its crate root; modules it declares with ``mod``
    are compiled through that root into one object.
    """

    name: str
    sources: tuple[Path, ...] = ()
    include_dirs: tuple[Path, ...] = ()
    defines: tuple[str, ...] = ()
    linker_script: Path | None = None
    dependencies: tuple[BuildUnit, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "sources", tuple(Path(s) for s in self.sources))
        object.__setattr__(self, "include_dirs", tuple(Path(d) for d in self.include_dirs))
        object.__setattr__(self, "defines", tuple(self.defines))
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        if self.linker_script is not None:
            object.__setattr__(self, "linker_script", Path(self.linker_script))

    def __repr__(self) -> str:
        deps = ", ".join(d.name for d in self.dependencies)
        return f"BuildUnit({self.name!r}, sources={len(self.sources)}, deps=[{deps}])"


@dataclass(frozen=True)
class CompileStep:
    """Compile one source of one unit into one object file."""

    unit: str
    source: Path
    object_path: Path
    language: str
    include_dirs: tuple[Path, ...] = ()
    defines: tuple[str, ...] = ()


@dataclass(frozen=True)
class LinkPlan:
    """Fully resolved, ordered link input. Consumed by the linker as a value."""

    compile_steps: tuple[CompileStep, ...]
    libraries: tuple[LibraryVariant, ...]
    linker_script: Path
    entry_symbol: str
    unit_order: tuple[str, ...]

    @property
    def objects(self) -> tuple[Path, ...]:
        """Object files in link order (dependency order, then source order)."""
        return tuple(step.object_path for step in self.compile_steps)

    @property
    def library_paths(self) -> tuple[Path, ...]:
        return tuple(lib.path for lib in self.libraries)
