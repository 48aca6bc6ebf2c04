"""Data models for C declarations and their bridged Rust counterparts.

Extraction yields a closed set of declaration variants; the translator
dispatches on the variant type.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class CType:
    """A C type as written in a declaration.

    ``name`` is the normalised base type ("uint32_t", "unsigned int",
    "struct foo", "void", a typedef name). ``pointer`` counts indirections;
    ``const`` applies to the innermost pointee (or the value itself when not
    a pointer). ``array`` holds dimensions, outermost first.
    """

    name: str
    pointer: int = 0
    const: bool = False
    array: tuple[int, ...] = ()
    function: FunctionDecl | None = None  # set for function-pointer types

    @property
    def is_void(self) -> bool:
        return self.name == "void" and self.pointer == 0 and not self.array


@dataclass(frozen=True)
class Field:
    name: str
    ctype: CType
    bit_width: int | None = None


@dataclass(frozen=True)
class Param:
    name: str
    ctype: CType


# ── declaration variants ──


@dataclass(frozen=True)
class StructDecl:
    name: str
    fields: tuple[Field, ...]
    is_union: bool = False
    packed: bool = False
    tag: str | None = None
    location: str = ""
    problem: str | None = None  # set when the body uses constructs we do not lay out


@dataclass(frozen=True)
class FunctionDecl:
    name: str
    return_type: CType
    params: tuple[Param, ...] = ()
    variadic: bool = False
    location: str = ""


@dataclass(frozen=True)
class TypedefDecl:
    name: str
    target: CType
    location: str = ""


@dataclass(frozen=True)
class EnumDecl:
    name: str
    members: tuple[tuple[str, str | None], ...]  # (name, value expression)
    location: str = ""


@dataclass(frozen=True)
class VariableDecl:
    name: str
    ctype: CType
    location: str = ""


@dataclass(frozen=True)
class ConstantMacro:
    """Object-like macro; may or may not reduce to a constant."""

    name: str
    body: str
    location: str = ""


@dataclass(frozen=True)
class ExpressionMacro:
    """Function-like macro; never statically translatable."""

    name: str
    params: tuple[str, ...]
    body: str
    location: str = ""


ForeignDeclaration = (
    StructDecl | FunctionDecl | TypedefDecl | EnumDecl | VariableDecl | ConstantMacro | ExpressionMacro
)


# ── bridge output ──


class Verdict(Enum):
    TRANSLATED = "translated"
    UNTRANSLATABLE = "untranslatable"


@dataclass(frozen=True)
class FieldLayout:
    name: str
    offset: int
    size: int
    align: int


@dataclass(frozen=True)
class StructLayout:
    size: int
    align: int
    fields: tuple[FieldLayout, ...]

    def offset_of(self, name: str) -> int:
        for f in self.fields:
            if f.name == name:
                return f.offset
        raise KeyError(name)


@dataclass(frozen=True)
class BridgedDeclaration:
    """Rust rendition of one foreign declaration, with provenance."""

    name: str
    source: ForeignDeclaration
    verdict: Verdict
    rust: str = ""
    reason: str = ""
    layout: StructLayout | None = None
    value: int | float | None = None
    extern: bool = False  # rendered inside the extern "C" block

    @property
    def translated(self) -> bool:
        return self.verdict is Verdict.TRANSLATED
