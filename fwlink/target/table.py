"""Target mapping tables — architecture and FPU variant data.

The tables are data, not logic: a new FPU revision or core family is a new
entry here (or in a TOML overlay), never a change to the resolver.

Example overlay (``targets.toml``)::

    [fpu."fpv5-d16"]
    aliases = ["fpv5-dp"]
    fpu_class = "+dp"
    features = ["+fp-armv8d16", "+fp64"]

    [architecture."armv8-m.main"]
    multilib = "v8-m.main"
    rust_target = "thumbv8m.main-none-eabi"
    fpus = ["fpv5-sp-d16", "fpv5-d16"]
"""

from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fwlink.exceptions import ConfigError

_SEPARATORS_RE = re.compile(r"[\s_]+")


def normalize_name(name: str) -> str:
    """Lowercase and fold whitespace/underscores to dashes."""
    return _SEPARATORS_RE.sub("-", name.strip().lower())


def normalize_feature(feature: str) -> str:
    """Return a feature in ``+name`` / ``-name`` form."""
    f = feature.strip().lower()
    if not f:
        raise ConfigError("Empty target feature")
    if f[0] not in "+-":
        f = "+" + f
    return f


def negate_feature(feature: str) -> str:
    return ("-" if feature[0] == "+" else "+") + feature[1:]


@dataclass(frozen=True)
class ArchitectureSpec:
    name: str
    multilib: str  # directory name under the ISA level, e.g. "v7e-m"
    rust_target: str  # soft-float Rust target; "hf" is appended for hard float
    default_isa: str = "thumb"
    isas: tuple[str, ...] = ("thumb",)
    fpus: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True)
class FpuSpec:
    name: str
    fpu_class: str  # "+fp" (single precision) | "+dp" (double precision)
    features: tuple[str, ...]
    conflicts: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()


# Features that contradict any hardware float ABI
HARD_FLOAT_CONFLICTS: tuple[str, ...] = ("+soft-float",)

_DEFAULT_ARCHITECTURES: list[ArchitectureSpec] = [
    ArchitectureSpec(
        name="armv6-m",
        multilib="v6-m",
        rust_target="thumbv6m-none-eabi",
        aliases=("armv6m", "thumbv6m", "v6-m", "cortex-m0"),
    ),
    ArchitectureSpec(
        name="armv7-m",
        multilib="v7-m",
        rust_target="thumbv7m-none-eabi",
        aliases=("armv7m", "thumbv7m", "v7-m", "cortex-m3"),
    ),
    ArchitectureSpec(
        name="armv7e-m",
        multilib="v7e-m",
        rust_target="thumbv7em-none-eabi",
        fpus=("fpv4-sp-d16", "fpv5-sp-d16", "fpv5-d16"),
        aliases=("armv7em", "thumbv7em", "v7e-m", "armv7e-m-class-core"),
    ),
    ArchitectureSpec(
        name="armv8-m.main",
        multilib="v8-m.main",
        rust_target="thumbv8m.main-none-eabi",
        fpus=("fpv5-sp-d16", "fpv5-d16"),
        aliases=("armv8m.main", "thumbv8m.main", "v8-m.main"),
    ),
]

_DEFAULT_FPUS: list[FpuSpec] = [
    FpuSpec(
        name="fpv4-sp-d16",
        fpu_class="+fp",
        features=("+vfp4d16sp",),
        conflicts=("+fp64", "+d32"),
        aliases=("fpv4-sp", "vfpv4-sp-d16", "single-precision-v4"),
    ),
    FpuSpec(
        name="fpv5-sp-d16",
        fpu_class="+fp",
        features=("+fp-armv8d16sp",),
        conflicts=("+fp64", "+d32"),
        aliases=("fpv5-sp", "single-precision-v5"),
    ),
    FpuSpec(
        name="fpv5-d16",
        fpu_class="+dp",
        features=("+fp-armv8d16", "+fp64"),
        conflicts=("+d32",),
        aliases=("fpv5-dp", "fpv5", "double-precision-v5"),
    ),
]


@dataclass
class TargetTable:
    """Injectable architecture/FPU mapping used by the resolver."""

    architectures: dict[str, ArchitectureSpec] = field(default_factory=dict)
    fpus: dict[str, FpuSpec] = field(default_factory=dict)

    @classmethod
    def default(cls) -> TargetTable:
        table = cls()
        for arch in _DEFAULT_ARCHITECTURES:
            table.add_architecture(arch)
        for fpu in _DEFAULT_FPUS:
            table.add_fpu(fpu)
        return table

    def add_architecture(self, spec: ArchitectureSpec) -> None:
        self.architectures[normalize_name(spec.name)] = spec

    def add_fpu(self, spec: FpuSpec) -> None:
        self.fpus[normalize_name(spec.name)] = spec

    def find_architecture(self, name: str) -> ArchitectureSpec | None:
        return self._find(self.architectures, name)

    def find_fpu(self, name: str) -> FpuSpec | None:
        return self._find(self.fpus, name)

    def fpu_features(self) -> frozenset[str]:
        """Every feature any FPU variant maps to or rules out."""
        return frozenset(f for fpu in self.fpus.values() for f in (*fpu.features, *fpu.conflicts))

    @staticmethod
    def _find(entries: dict, name: str):
        key = normalize_name(name)
        if key in entries:
            return entries[key]
        for spec in entries.values():
            if key in (normalize_name(a) for a in spec.aliases):
                return spec
        return None

    # ── loading ──

    @classmethod
    def from_toml(cls, path: str | Path, base: TargetTable | None = None) -> TargetTable:
        """Load a TOML overlay on top of ``base`` (default table if omitted)."""
        try:
            data = tomllib.loads(Path(path).read_text())
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Cannot read target table {path}: {e}") from e
        return cls.from_dict(data, base=base)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: TargetTable | None = None) -> TargetTable:
        table = base.copy() if base is not None else cls.default()
        try:
            for name, entry in data.get("architecture", {}).items():
                table.add_architecture(
                    ArchitectureSpec(
                        name=name,
                        multilib=entry["multilib"],
                        rust_target=entry["rust_target"],
                        default_isa=entry.get("default_isa", "thumb"),
                        isas=tuple(entry.get("isas", ["thumb"])),
                        fpus=tuple(entry.get("fpus", [])),
                        aliases=tuple(entry.get("aliases", [])),
                    )
                )
            for name, entry in data.get("fpu", {}).items():
                table.add_fpu(
                    FpuSpec(
                        name=name,
                        fpu_class=entry["fpu_class"],
                        features=tuple(normalize_feature(f) for f in entry["features"]),
                        conflicts=tuple(normalize_feature(f) for f in entry.get("conflicts", [])),
                        aliases=tuple(entry.get("aliases", [])),
                    )
                )
        except (KeyError, TypeError) as e:
            raise ConfigError(f"Malformed target table entry: {e}") from e
        return table

    def copy(self) -> TargetTable:
        return TargetTable(architectures=dict(self.architectures), fpus=dict(self.fpus))
