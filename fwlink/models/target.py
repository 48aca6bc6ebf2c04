"""Data models for target descriptors and canonical triples."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

DEFAULT_TRIPLE_FORMAT = "{isa}/{arch}{fpu_class}/{abi}"


class FloatAbi(Enum):
    """Floating-point calling convention."""

    HARD = "hard"
    SOFT = "soft"

    @classmethod
    def parse(cls, value: str | FloatAbi) -> FloatAbi:
        if isinstance(value, FloatAbi):
            return value
        key = value.strip().lower()
        if key in ("hard", "hardware", "hf"):
            return cls.HARD
        if key in ("soft", "software", "softfp"):
            return cls.SOFT
        raise ValueError(f"Unknown float ABI: {value!r} (expected 'hardware' or 'software')")


@dataclass(frozen=True)
class TargetDescriptor:
    """Abstract hardware target as written by the user.

    Names are kept as given; the resolver normalises them.
    """

    architecture: str
    cpu_model: str
    float_abi: FloatAbi = FloatAbi.SOFT
    fpu_variant: str | None = None
    isa_mode: str | None = None
    extra_features: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        # Accept plain strings and iterables at construction time
        object.__setattr__(self, "float_abi", FloatAbi.parse(self.float_abi))
        object.__setattr__(self, "extra_features", frozenset(self.extra_features))


@dataclass(frozen=True)
class CanonicalTriple:
    """Normalised lookup key shared by the library selector and compiler flags."""

    architecture: str  # multilib directory name, e.g. "v7e-m"
    isa: str  # "thumb" | "arm"
    fpu_class: str  # "" | "+fp" | "+dp"
    abi: str  # "nofp" | "softfp" | "hard"

    def as_path(self, fmt: str = DEFAULT_TRIPLE_FORMAT) -> str:
        """Render the multilib directory fragment, e.g. ``thumb/v7e-m+fp/hard``."""
        return fmt.format(
            isa=self.isa,
            arch=self.architecture,
            fpu_class=self.fpu_class,
            abi=self.abi,
        )

    def __str__(self) -> str:
        return self.as_path()


@dataclass(frozen=True)
class ResolvedTarget:
    """Validated descriptor with its triple and effective backend features."""

    descriptor: TargetDescriptor
    triple: CanonicalTriple
    architecture: str  # canonical architecture name, e.g. "armv7e-m"
    fpu_variant: str | None  # canonical FPU name, e.g. "fpv5-sp-d16"
    features: tuple[str, ...]
    rust_target: str

    @property
    def gcc_float_abi(self) -> str:
        """Value for ``-mfloat-abi``."""
        if self.triple.abi == "nofp":
            return "soft"
        return self.triple.abi
