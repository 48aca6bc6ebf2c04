"""Target descriptor resolver — descriptor -> canonical triple + feature set.

Both the library selector and every compiler invocation key off the
resolved triple, so resolution is a pure function of the descriptor and the
table: equal descriptors (modulo aliases, case and feature order) always
resolve identically.
"""

from __future__ import annotations

import logging

from fwlink.exceptions import InconsistentTargetFeatures, UnsupportedTarget
from fwlink.models.target import CanonicalTriple, FloatAbi, ResolvedTarget, TargetDescriptor
from fwlink.target.table import (
    HARD_FLOAT_CONFLICTS,
    TargetTable,
    negate_feature,
    normalize_feature,
    normalize_name,
)

logger = logging.getLogger(__name__)

_NO_FPU = {"", "none", "nofp", "soft"}

_default_table: TargetTable | None = None


def _table_or_default(table: TargetTable | None) -> TargetTable:
    global _default_table
    if table is not None:
        return table
    if _default_table is None:
        _default_table = TargetTable.default()
    return _default_table


def resolve_target(descriptor: TargetDescriptor, table: TargetTable | None = None) -> ResolvedTarget:
    """Validate a descriptor and derive its triple and effective features.

    Raises:
        UnsupportedTarget: unknown architecture, ISA or FPU variant.
        InconsistentTargetFeatures: extra features contradict the FPU/float ABI.
    """
    table = _table_or_default(table)

    arch = table.find_architecture(descriptor.architecture)
    if arch is None:
        raise UnsupportedTarget(
            f"Unknown architecture '{descriptor.architecture}'. "
            f"Supported: {sorted(table.architectures)}"
        )

    isa = normalize_name(descriptor.isa_mode) if descriptor.isa_mode else arch.default_isa
    if isa not in arch.isas:
        raise UnsupportedTarget(f"{arch.name} does not support instruction set '{isa}'")

    fpu = None
    if descriptor.fpu_variant is not None and normalize_name(descriptor.fpu_variant) not in _NO_FPU:
        fpu = table.find_fpu(descriptor.fpu_variant)
        if fpu is None:
            raise UnsupportedTarget(
                f"No feature mapping for FPU variant '{descriptor.fpu_variant}'. "
                f"Known: {sorted(table.fpus)}"
            )
        if fpu.name not in arch.fpus:
            raise UnsupportedTarget(f"{arch.name} cores do not carry a {fpu.name} FPU")

    extras = {normalize_feature(f) for f in descriptor.extra_features}
    hard = descriptor.float_abi is FloatAbi.HARD

    if hard and fpu is None:
        raise InconsistentTargetFeatures(
            f"Hardware float ABI requested for {arch.name} without an FPU variant"
        )

    mapped = set(fpu.features) if fpu else set()
    fpu_only = table.fpu_features() if fpu is None else frozenset()
    for feature in sorted(extras):
        if negate_feature(feature) in mapped:
            raise InconsistentTargetFeatures(
                f"Feature '{feature}' contradicts FPU variant '{fpu.name}'"
            )
        if fpu and feature in fpu.conflicts:
            raise InconsistentTargetFeatures(
                f"Feature '{feature}' is not available on FPU variant '{fpu.name}'"
            )
        if feature in fpu_only:
            raise InconsistentTargetFeatures(
                f"Feature '{feature}' requires an FPU but {arch.name} was resolved without one"
            )
        if hard and feature in HARD_FLOAT_CONFLICTS:
            raise InconsistentTargetFeatures(f"Feature '{feature}' contradicts hardware float ABI")

    if fpu is None:
        triple = CanonicalTriple(architecture=arch.multilib, isa=isa, fpu_class="", abi="nofp")
    else:
        triple = CanonicalTriple(
            architecture=arch.multilib,
            isa=isa,
            fpu_class=fpu.fpu_class,
            abi="hard" if hard else "softfp",
        )

    features = tuple(sorted(mapped | extras))
    rust_target = arch.rust_target + ("hf" if hard else "")

    logger.debug("Resolved %s/%s -> %s %s", arch.name, fpu.name if fpu else "nofp", triple, features)
    return ResolvedTarget(
        descriptor=descriptor,
        triple=triple,
        architecture=arch.name,
        fpu_variant=fpu.name if fpu else None,
        features=features,
        rust_target=rust_target,
    )


def canonicalize(descriptor: TargetDescriptor, table: TargetTable | None = None) -> CanonicalTriple:
    """Return only the canonical triple for ``descriptor``."""
    return resolve_target(descriptor, table).triple
