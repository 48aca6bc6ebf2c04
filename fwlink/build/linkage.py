"""Symbol linkage policy — weak/strong resolution across composed units.

Firmware relies on weak definitions as replaceable defaults: the vendor
startup code defines every interrupt/exception handler as a weak alias of a
no-op ``Default_Handler``, and application units supply strong definitions
for the handlers they actually use.

A traditional static linker treats the two kinds of input differently:

* an object file on the command line is always loaded, and a strong
  definition in it replaces any weak definition of the same name;
* an archive member is extracted only when it defines a symbol that is
  *currently undefined*. A weak definition already counts as a definition,
  so a member whose only job is to supply the strong override is never
  extracted.

If composed units were first collapsed into per-unit static archives, the
member holding a strong handler would be skipped whenever the vendor's weak
default had already been loaded. The link succeeds and the image silently
runs the no-op default handler. No compiler or linker diagnostic is
produced; the defect only shows up at runtime.

Policy: every compiled object of every build unit is passed to the final
link as a standalone input, in dependency order. Only the precompiled
system libraries selected for the target are archives. The composer builds
plans that way by construction; ``assert_flat`` checks an input list against
a plan, and ``resolve_symbols`` models the resolution rules so the policy
can be tested directly.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from fwlink.exceptions import DuplicateSymbol, LinkagePolicyViolation
from fwlink.models.build import LinkPlan

logger = logging.getLogger(__name__)


class Binding(Enum):
    WEAK = "weak"
    STRONG = "strong"


@dataclass(frozen=True)
class Symbol:
    name: str
    binding: Binding
    defining_unit: str
    defining_input: str = ""


@dataclass
class ObjectSymbols:
    """Symbol table of one object file."""

    path: str
    unit: str
    defined: dict[str, Binding] = field(default_factory=dict)
    undefined: set[str] = field(default_factory=set)


@dataclass
class Archive:
    """A static library: members are loaded only on demand."""

    path: str
    members: list[ObjectSymbols] = field(default_factory=list)
    system: bool = False  # precompiled toolchain library


LinkInput = ObjectSymbols | Archive


@dataclass
class Resolution:
    """Outcome of a modelled link."""

    symbols: dict[str, Symbol]
    loaded: list[str]  # object paths / archive(member) paths in load order
    undefined: set[str]
    weak_defaults: dict[str, str]  # symbol -> unit that supplied the weak default

    def provider(self, name: str) -> str | None:
        sym = self.symbols.get(name)
        return sym.defining_unit if sym else None


def resolve_symbols(inputs: list[LinkInput], entry: str) -> Resolution:
    """Model how a traditional static linker resolves ``inputs``.

    Inputs are processed left to right. Objects are always loaded. An archive
    is rescanned until no member defines a still-undefined symbol (GNU ld
    behaviour within one archive); earlier archives are not revisited.

    Raises:
        DuplicateSymbol: two strong definitions of one name are loaded.
    """
    symbols: dict[str, Symbol] = {}
    weak_defaults: dict[str, str] = {}
    referenced: set[str] = {entry}
    loaded: list[str] = []

    def undefined() -> set[str]:
        return {name for name in referenced if name not in symbols}

    def load(obj: ObjectSymbols, label: str) -> None:
        loaded.append(label)
        for name, binding in obj.defined.items():
            new = Symbol(name, binding, obj.unit, label)
            current = symbols.get(name)
            if current is None:
                symbols[name] = new
                if binding is Binding.WEAK:
                    weak_defaults[name] = obj.unit
            elif current.binding is Binding.WEAK and binding is Binding.STRONG:
                symbols[name] = new
            elif current.binding is Binding.STRONG and binding is Binding.STRONG:
                raise DuplicateSymbol(name, current.defining_input, label)
            elif binding is Binding.WEAK:
                weak_defaults.setdefault(name, obj.unit)
        referenced.update(obj.undefined)

    for item in inputs:
        if isinstance(item, ObjectSymbols):
            load(item, item.path)
            continue
        pending = list(item.members)
        progress = True
        while progress:
            progress = False
            wanted = undefined()
            for member in list(pending):
                if wanted & set(member.defined):
                    load(member, f"{item.path}({Path(member.path).name})")
                    pending.remove(member)
                    wanted = undefined()
                    progress = True

    return Resolution(
        symbols=symbols,
        loaded=loaded,
        undefined=undefined(),
        weak_defaults=weak_defaults,
    )


def weak_overrides(resolution: Resolution) -> dict[str, tuple[str, str]]:
    """Symbols with a weak default: name -> (default unit, final provider unit)."""
    return {
        name: (default_unit, resolution.symbols[name].defining_unit)
        for name, default_unit in sorted(resolution.weak_defaults.items())
        if name in resolution.symbols
    }


def plan_inputs(
    plan: LinkPlan,
    object_symbols: dict[Path, ObjectSymbols],
    library_symbols: dict[Path, list[ObjectSymbols]] | None = None,
) -> list[LinkInput]:
    """Link inputs for ``plan`` under the flat-object policy."""
    inputs: list[LinkInput] = [object_symbols[obj] for obj in plan.objects]
    library_symbols = library_symbols or {}
    for lib in plan.libraries:
        inputs.append(Archive(str(lib.path), library_symbols.get(lib.path, []), system=True))
    return inputs


def archived_unit_inputs(
    plan: LinkPlan,
    object_symbols: dict[Path, ObjectSymbols],
) -> list[LinkInput]:
    """Link inputs as they would look if each unit were pre-archived.

    This is the layout the policy forbids; it exists so the failure mode can
    be reproduced in tests and diagnostics.
    """
    inputs: list[LinkInput] = []
    for unit in plan.unit_order:
        members = [
            object_symbols[step.object_path]
            for step in plan.compile_steps
            if step.unit == unit
        ]
        if members:
            inputs.append(Archive(f"lib{unit}.a", members))
    inputs.extend(Archive(str(lib.path), [], system=True) for lib in plan.libraries)
    return inputs


def assert_flat(inputs: list[LinkInput], plan: LinkPlan) -> None:
    """Reject input lists that archive objects owned by the plan's units."""
    units = set(plan.unit_order)
    for item in inputs:
        if isinstance(item, Archive) and not item.system:
            owned = sorted({m.unit for m in item.members if m.unit in units})
            if owned or not item.members:
                raise LinkagePolicyViolation(
                    f"{item.path} archives objects of build unit(s) {owned or '?'}; "
                    "composed units must be linked as standalone objects so strong "
                    "definitions can override weak defaults"
                )



def assert_flat_command(args: list[str], plan: LinkPlan) -> None:
    """Check a concrete link argument list against the flat-object rule.

    Every object of the plan must appear as its own argument, and the only
    archives allowed are the plan's system libraries.
    """
    system = {str(p) for p in plan.library_paths}
    archives = [a for a in args if a.endswith(".a") and a not in system]
    if archives:
        raise LinkagePolicyViolation(
            f"Link command passes non-system archive(s) {archives}; composed units "
            "must be linked as standalone objects"
        )
    present = set(args)
    absent = [str(o) for o in plan.objects if str(o) not in present]
    if absent:
        raise LinkagePolicyViolation(f"Link command is missing unit object(s) {absent}")


# ── nm output ──

# "08000190 W HardFault_Handler" / "         U main"
_NM_LINE_RE = re.compile(r"^(?:[0-9a-fA-F]+\s+)?\s*([A-Za-z])\s+(\S+)$")
_STRONG_TYPES = set("TDBRCAG")  # global text/data/bss/rodata/common/abs/small data
_WEAK_TYPES = set("WV")


def parse_nm_output(text: str, path: str, unit: str) -> ObjectSymbols:
    """Parse ``nm -g`` output for one object into an ObjectSymbols table."""
    table = ObjectSymbols(path=path, unit=unit)
    for raw in text.splitlines():
        m = _NM_LINE_RE.match(raw.strip())
        if not m:
            continue
        kind, name = m.group(1), m.group(2)
        if kind == "U":
            table.undefined.add(name)
        elif kind == "w" or kind == "v":
            # undefined weak reference: referenced, never forces extraction
            continue
        elif kind in _WEAK_TYPES:
            table.defined[name] = Binding.WEAK
        elif kind in _STRONG_TYPES:
            table.defined[name] = Binding.STRONG
    return table
