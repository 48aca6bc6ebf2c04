"""Build unit composer — unit graph + libraries -> one LinkPlan.

Every unit's sources become standalone object inputs of the final link; no
unit is ever collapsed into an intermediate archive (see
``fwlink.build.linkage`` for why).
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path

from fwlink.exceptions import CompositionError, CyclicDependency, MissingLinkerScript
from fwlink.models.build import LANGUAGE_BY_SUFFIX, BuildUnit, CompileStep, LibraryVariant, LinkPlan

logger = logging.getLogger(__name__)

DEFAULT_ENTRY_SYMBOL = "Reset_Handler"


class ScriptPrecedence(Enum):
    """Which unit's linker script wins when several units declare one."""

    ROOT = "root"  # outermost unit closest to the root wins (default)
    DEEPEST = "deepest"  # first script in dependency order wins


def topological_units(root: BuildUnit) -> list[BuildUnit]:
    """Return units reachable from ``root``, dependencies first.

    Depth-first post-order with an in-progress marker; shared dependencies
    appear once, at their first position.

    Raises:
        CyclicDependency: a unit is reached again while still in progress.
        CompositionError: two different units share a name.
    """
    ordered: list[BuildUnit] = []
    done: set[int] = set()
    in_progress: list[BuildUnit] = []
    names: dict[str, BuildUnit] = {}

    def visit(unit: BuildUnit) -> None:
        if id(unit) in done:
            return
        if any(u is unit for u in in_progress):
            start = next(i for i, u in enumerate(in_progress) if u is unit)
            cycle = [u.name for u in in_progress[start:]] + [unit.name]
            raise CyclicDependency(cycle)
        other = names.get(unit.name)
        if other is not None and other is not unit:
            raise CompositionError(f"Two different build units are named '{unit.name}'")
        names[unit.name] = unit

        in_progress.append(unit)
        for dep in unit.dependencies:
            visit(dep)
        in_progress.pop()
        done.add(id(unit))
        ordered.append(unit)

    visit(root)
    return ordered


def effective_linker_script(
    ordered: list[BuildUnit],
    precedence: ScriptPrecedence = ScriptPrecedence.ROOT,
) -> Path:
    """Pick exactly one linker script from units in dependency order.

    With ROOT precedence the root (last in dependency order) wins, then the
    units nearest to it; with DEEPEST the first script in dependency order
    wins.
    """
    scripted = [u for u in ordered if u.linker_script is not None]
    if not scripted:
        raise MissingLinkerScript(
            f"No build unit reachable from '{ordered[-1].name}' declares a linker script"
        )
    chosen = scripted[-1] if precedence is ScriptPrecedence.ROOT else scripted[0]
    if len(scripted) > 1:
        logger.info(
            "Linker script from unit '%s' wins (%s precedence); ignored: %s",
            chosen.name,
            precedence.value,
            [u.name for u in scripted if u is not chosen],
        )
    return chosen.linker_script


def compose(
    root: BuildUnit,
    libraries: list[LibraryVariant] | tuple[LibraryVariant, ...],
    build_dir: str | Path,
    entry_symbol: str = DEFAULT_ENTRY_SYMBOL,
    script_precedence: ScriptPrecedence = ScriptPrecedence.ROOT,
) -> LinkPlan:
    """Merge ``root`` and its transitive dependencies into a LinkPlan.

    The composer does not compile anything; it only orders the work.
    """
    ordered = topological_units(root)
    script = effective_linker_script(ordered, script_precedence)
    obj_root = Path(build_dir) / "obj"

    steps: list[CompileStep] = []
    seen_objects: dict[Path, str] = {}
    for unit in ordered:
        crate_roots = [s for s in unit.sources if LANGUAGE_BY_SUFFIX.get(s.suffix) == "rust"]
        if len(crate_roots) > 1:
            raise CompositionError(
                f"Unit '{unit.name}' lists several Rust sources ({', '.join(map(str, crate_roots))}); "
                "list only the crate root, modules are compiled through it"
            )
        base = _source_base(unit)
        for source in unit.sources:
            language = LANGUAGE_BY_SUFFIX.get(source.suffix)
            if language is None:
                raise CompositionError(
                    f"Unit '{unit.name}': unsupported source type '{source.suffix}' ({source})"
                )
            object_path = (obj_root / unit.name / source.resolve().relative_to(base)).with_suffix(".o")
            if object_path in seen_objects:
                raise CompositionError(
                    f"Sources {seen_objects[object_path]} and {source} of unit "
                    f"'{unit.name}' both compile to {object_path}"
                )
            seen_objects[object_path] = str(source)
            steps.append(
                CompileStep(
                    unit=unit.name,
                    source=source,
                    object_path=object_path,
                    language=language,
                    include_dirs=_collect_include_dirs(unit),
                    defines=unit.defines,
                )
            )

    plan = LinkPlan(
        compile_steps=tuple(steps),
        libraries=tuple(libraries),
        linker_script=script,
        entry_symbol=entry_symbol,
        unit_order=tuple(u.name for u in ordered),
    )
    logger.info(
        "Composed %d units, %d objects, %d libraries (script: %s)",
        len(ordered),
        len(steps),
        len(plan.libraries),
        script,
    )
    return plan


def _source_base(unit: BuildUnit) -> Path | None:
    """Deepest directory holding every source of ``unit``."""
    if not unit.sources:
        return None
    return Path(os.path.commonpath([s.resolve().parent for s in unit.sources]))


def _collect_include_dirs(unit: BuildUnit) -> tuple[Path, ...]:
    """Own include dirs first, then those of transitive dependencies."""
    dirs: list[Path] = []
    stack = [unit]
    visited: set[int] = set()
    while stack:
        current = stack.pop(0)
        if id(current) in visited:
            continue
        visited.add(id(current))
        for d in current.include_dirs:
            if d not in dirs:
                dirs.append(d)
        stack.extend(current.dependencies)
    return tuple(dirs)
