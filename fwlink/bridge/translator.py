"""Translate extracted C declarations into Rust items.

Dispatch is by declaration variant. A declaration that cannot be rendered
faithfully is never dropped: it becomes an untranslatable marker, a
``macro_rules!`` item whose only arm expands to ``compile_error!``, so the
failure surfaces exactly where (and only if) application code uses it.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Callable

from fwlink.bridge.datamodel import ILP32_AAPCS, DataModel
from fwlink.bridge.expr import ConstEvaluator, CValue, NotConstant
from fwlink.bridge.layout import LayoutError, TypeEnvironment
from fwlink.models.declarations import (
    BridgedDeclaration,
    ConstantMacro,
    CType,
    EnumDecl,
    ExpressionMacro,
    ForeignDeclaration,
    FunctionDecl,
    StructDecl,
    TypedefDecl,
    VariableDecl,
    Verdict,
)

logger = logging.getLogger(__name__)

RUST_KEYWORDS = frozenset(
    "as async await break const continue crate dyn else enum extern false fn for gen if impl in let loop "
    "match mod move mut pub ref return self Self static struct super trait true type union unsafe use "
    "where while abstract become box do final macro override priv try typeof unsized virtual yield".split()
)
# Keywords that cannot be written as raw identifiers.
_NON_RAW = frozenset({"crate", "self", "Self", "super"})

_POINTER_SIZED = {
    "size_t": "usize",
    "uintptr_t": "usize",
    "ssize_t": "isize",
    "intptr_t": "isize",
    "ptrdiff_t": "isize",
}

_C_ESCAPE_RE = re.compile(r"\\x[0-9a-fA-F]+|\\[0-7]{1,3}|\\.|.", re.DOTALL)


class Untranslatable(Exception):
    """A declaration has no faithful Rust rendition."""


def rust_ident(name: str) -> str:
    if name in _NON_RAW:
        return f"{name}_"
    if name in RUST_KEYWORDS:
        return f"r#{name}"
    return name


def rust_string(text: str) -> str:
    """Rust string literal for arbitrary text."""
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n") + '"'


def render_marker(name: str, reason: str, location: str = "") -> str:
    where = f" ({location})" if location else ""
    message = f"C macro `{name}`{where} has no Rust translation: {reason}"
    return (
        f"macro_rules! {rust_ident(name)} {{\n"
        f"    ($($tt:tt)*) => {{\n"
        f"        compile_error!({rust_string(message)})\n"
        f"    }};\n"
        f"}}"
    )


def _byte_string(body: str) -> tuple[str, int]:
    """Rust byte-string literal (NUL-terminated) and its length for a C string body."""
    length = 0
    out: list[str] = []
    for piece in _C_ESCAPE_RE.findall(body):
        if piece.startswith("\\x"):
            if len(piece) != 4:
                raise Untranslatable(f"hex escape '{piece}' is not a single byte")
        elif len(piece) > 1 and piece[1] in "01234567":
            piece = f"\\x{int(piece[1:], 8):02x}"
        elif len(piece) == 2 and piece[1] not in "nrt0\\\"'":
            raise Untranslatable(f"escape '{piece}' has no Rust equivalent")
        elif len(piece) == 1 and ord(piece) > 127:
            raise Untranslatable("non-ASCII character in string literal")
        out.append(piece)
        length += 1
    return 'b"' + "".join(out) + '\\0"', length + 1


class Translator:
    """Translate one header set under one data model.

    All declarations are registered before any is rendered, so references
    to types and constants declared later in the headers resolve.
    """

    def __init__(self, model: DataModel = ILP32_AAPCS) -> None:
        self.model = model
        self.env = TypeEnvironment(model)
        self.macros: dict[str, ConstantMacro] = {}
        self.enum_values: dict[str, CValue] = {}
        self._values: dict[str, CValue] = {}
        self._failures: dict[str, str] = {}
        self._evaluating: set[str] = set()
        self._broken_types: dict[str, str] = {}
        self._handlers: dict[type, Callable[[ForeignDeclaration], BridgedDeclaration]] = {
            StructDecl: self._struct,
            FunctionDecl: self._function,
            TypedefDecl: self._typedef,
            EnumDecl: self._enum,
            VariableDecl: self._variable,
            ConstantMacro: self._constant,
            ExpressionMacro: self._expression_macro,
        }

    # ── entry point ──

    def translate(self, decls: list[ForeignDeclaration]) -> list[BridgedDeclaration]:
        self._register(decls)
        bridged: list[BridgedDeclaration] = []
        for decl in decls:
            handler = self._handlers.get(type(decl))
            if handler is None:
                raise TypeError(f"unknown declaration variant {type(decl).__name__}")
            try:
                result = handler(decl)
            except (Untranslatable, LayoutError) as exc:
                result = self._marker(decl, str(exc))
            bridged.append(result)
        untranslatable = sum(1 for b in bridged if not b.translated)
        logger.info(
            "Bridged %d declarations (%d untranslatable) for %s",
            len(bridged),
            untranslatable,
            self.model.name,
        )
        return bridged

    def _register(self, decls: list[ForeignDeclaration]) -> None:
        for decl in decls:
            if isinstance(decl, StructDecl):
                self.env.add_struct(decl)
            elif isinstance(decl, TypedefDecl):
                self.env.add_typedef(decl)
            elif isinstance(decl, ConstantMacro):
                self.macros[decl.name] = decl
        for decl in decls:
            if isinstance(decl, EnumDecl):
                self._register_enum(decl)
        for decl in decls:
            if isinstance(decl, StructDecl):
                try:
                    self.env.layout(decl)
                except LayoutError as exc:
                    self._broken_types[decl.name] = str(exc)
                    if decl.tag:
                        self._broken_types[f"{'union' if decl.is_union else 'struct'} {decl.tag}"] = str(exc)

    def _register_enum(self, decl: EnumDecl) -> None:
        try:
            values = self._enum_member_values(decl)
        except Untranslatable as exc:
            self._broken_types[decl.name] = str(exc)
            return
        size, unsigned = self.model.enum_storage([int(v.value) for _, v in values])
        for key in (decl.name, f"enum {decl.name}"):
            self.env.add_enum(key, size, unsigned)
        for member, value in values:
            self.enum_values[member] = value

    def _enum_member_values(self, decl: EnumDecl) -> list[tuple[str, CValue]]:
        values: list[tuple[str, CValue]] = []
        local: dict[str, CValue] = {}
        nxt = 0
        for member, expr in decl.members:
            if expr is not None:
                evaluator = ConstEvaluator(
                    self.model,
                    lookup=lambda n: local[n] if n in local else self._lookup(n),
                    type_width=self.env.integer_width,
                )
                try:
                    value = evaluator.evaluate(expr)
                except NotConstant as exc:
                    raise Untranslatable(f"enumerator '{member}': {exc}") from exc
                if value.floating:
                    raise Untranslatable(f"enumerator '{member}' is not an integer")
                nxt = int(value.value)
            local[member] = CValue(nxt, 32, False)
            values.append((member, local[member]))
            nxt += 1
        return values

    # ── constants ──

    def _lookup(self, name: str) -> CValue | None:
        if name in self.enum_values:
            return self.enum_values[name]
        if name not in self.macros:
            return None
        return self.constant_value(name)

    def constant_value(self, name: str) -> CValue | None:
        """Value of object-like macro ``name``; None when it is not a constant."""
        if name in self._values:
            return self._values[name]
        if name in self._failures or name in self._evaluating:
            return None
        macro = self.macros[name]
        self._evaluating.add(name)
        try:
            value = self._evaluate_macro(macro)
        except NotConstant as exc:
            self._failures[name] = str(exc)
            return None
        finally:
            self._evaluating.discard(name)
        self._values[name] = value
        return value

    def _evaluate_macro(self, macro: ConstantMacro) -> CValue:
        body = macro.body.strip()
        if not body:
            raise NotConstant("macro has no value")
        evaluator = ConstEvaluator(self.model, lookup=self._lookup, type_width=self.env.integer_width)
        try:
            return evaluator.evaluate(body)
        except NotConstant as exc:
            msg = str(exc)
            # report the root cause instead of "unknown identifier"
            m = re.match(r"unknown identifier '(\w+)'", msg)
            if m and m.group(1) in self._failures:
                raise NotConstant(f"depends on '{m.group(1)}' ({self._failures[m.group(1)]})") from exc
            if m and m.group(1) in self._evaluating:
                raise NotConstant(f"recursive reference to '{m.group(1)}'") from exc
            raise

    # ── handlers ──

    def _constant(self, decl: ConstantMacro) -> BridgedDeclaration:
        body = decl.body.strip()
        string = re.fullmatch(r'\(?\s*"((?:\\.|[^\\"])*)"\s*\)?', body)
        if string:
            literal, length = _byte_string(string.group(1))
            rust = f"pub const {rust_ident(decl.name)}: &[u8; {length}] = {literal};"
            return BridgedDeclaration(decl.name, decl, Verdict.TRANSLATED, rust=rust)

        value = self.constant_value(decl.name)
        if value is None:
            raise Untranslatable(self._failures.get(decl.name, "not a constant expression"))
        if value.floating:
            if math.isinf(value.value) or math.isnan(value.value):
                raise Untranslatable("non-finite floating constant")
            rust_type = "f32" if value.bits == 32 else "f64"
            literal = repr(float(value.value))
        else:
            rust_type = f"{'u' if value.unsigned else 'i'}{value.bits}"
            literal = f"0x{value.value:X}" if value.unsigned and value.value > 255 else str(value.value)
        rust = f"pub const {rust_ident(decl.name)}: {rust_type} = {literal};"
        return BridgedDeclaration(decl.name, decl, Verdict.TRANSLATED, rust=rust, value=value.value)

    def _expression_macro(self, decl: ExpressionMacro) -> BridgedDeclaration:
        return self._marker(decl, f"function-like macro ({', '.join(decl.params) or 'no parameters'})")

    def _struct(self, decl: StructDecl) -> BridgedDeclaration:
        if decl.name in self._broken_types:
            raise Untranslatable(self._broken_types[decl.name])
        layout = self.env.layout(decl)
        name = rust_ident(decl.name)
        keyword = "union" if decl.is_union else "struct"
        repr_attr = "#[repr(C, packed)]" if decl.packed else "#[repr(C)]"
        lines = [repr_attr, "#[derive(Clone, Copy)]", f"pub {keyword} {name} {{"]
        for f in decl.fields:
            lines.append(f"    pub {rust_ident(f.name)}: {self.rust_type(f.ctype)},")
        lines.append("}")
        lines.append("const _: () = {")
        lines.append(f"    assert!(core::mem::size_of::<{name}>() == {layout.size});")
        lines.append(f"    assert!(core::mem::align_of::<{name}>() == {layout.align});")
        for fl in layout.fields:
            lines.append(f"    assert!(core::mem::offset_of!({name}, {rust_ident(fl.name)}) == {fl.offset});")
        lines.append("};")
        return BridgedDeclaration(decl.name, decl, Verdict.TRANSLATED, rust="\n".join(lines), layout=layout)

    def _enum(self, decl: EnumDecl) -> BridgedDeclaration:
        if decl.name in self._broken_types:
            raise Untranslatable(self._broken_types[decl.name])
        size, unsigned = self.env.enums[decl.name]
        repr_type = f"{'u' if unsigned else 'i'}{size * 8}"
        name = rust_ident(decl.name)
        lines = [f"pub type {name} = {repr_type};"]
        for member, _ in decl.members:
            lines.append(f"pub const {rust_ident(member)}: {name} = {self.enum_values[member].value};")
        return BridgedDeclaration(decl.name, decl, Verdict.TRANSLATED, rust="\n".join(lines))

    def _typedef(self, decl: TypedefDecl) -> BridgedDeclaration:
        target = self.rust_type(decl.target)
        if target == rust_ident(decl.name):
            # typedef struct foo foo;
            return BridgedDeclaration(decl.name, decl, Verdict.TRANSLATED)
        rust = f"pub type {rust_ident(decl.name)} = {target};"
        return BridgedDeclaration(decl.name, decl, Verdict.TRANSLATED, rust=rust)

    def _function(self, decl: FunctionDecl) -> BridgedDeclaration:
        rust = f"pub fn {rust_ident(decl.name)}{self._signature(decl)};"
        return BridgedDeclaration(decl.name, decl, Verdict.TRANSLATED, rust=rust, extern=True)

    def _variable(self, decl: VariableDecl) -> BridgedDeclaration:
        mutability = "" if decl.ctype.const and not decl.ctype.pointer else "mut "
        rust = f"pub static {mutability}{rust_ident(decl.name)}: {self.rust_type(decl.ctype)};"
        return BridgedDeclaration(decl.name, decl, Verdict.TRANSLATED, rust=rust, extern=True)

    def _marker(self, decl: ForeignDeclaration, reason: str) -> BridgedDeclaration:
        logger.debug("Untranslatable %s: %s", decl.name, reason)
        return BridgedDeclaration(
            decl.name,
            decl,
            Verdict.UNTRANSLATABLE,
            rust=render_marker(decl.name, reason, decl.location),
            reason=reason,
        )

    # ── types ──

    def _signature(self, fn: FunctionDecl) -> str:
        params = [f"{rust_ident(p.name)}: {self.rust_type(p.ctype)}" for p in fn.params]
        if fn.variadic:
            params.append("...")
        ret = "" if fn.return_type.is_void else f" -> {self.rust_type(fn.return_type)}"
        return f"({', '.join(params)}){ret}"

    def rust_type(self, ctype: CType) -> str:
        """Rust spelling of ``ctype`` with identical size, alignment and signedness."""
        if ctype.function is not None:
            sig = self._signature(ctype.function)
            rendered = f'Option<unsafe extern "C" fn{sig}>'
            for _ in range(ctype.pointer):
                rendered = f"*mut {rendered}"
        elif ctype.pointer:
            rendered = self._pointee(ctype.name)
            for level in range(ctype.pointer):
                qualifier = "const" if level == 0 and ctype.const else "mut"
                rendered = f"*{qualifier} {rendered}"
        else:
            rendered = self._base(ctype.name)
        for dim in reversed(ctype.array):
            rendered = f"[{rendered}; {dim}]"
        return rendered

    def _pointee(self, name: str) -> str:
        if name == "void":
            return "core::ffi::c_void"
        try:
            return self._base(name)
        except Untranslatable:
            # opaque handle: layout of the pointee does not matter
            return "core::ffi::c_void"

    def _base(self, name: str) -> str:
        if name in _POINTER_SIZED:
            return _POINTER_SIZED[name]
        if name == "void":
            raise Untranslatable("'void' used as a value type")
        if name in ("_Bool", "bool"):
            return "bool"
        scalar = self.model.scalar(name)
        if scalar is not None:
            if scalar.floating:
                return "f32" if scalar.size == 4 else "f64"
            return f"{'u' if scalar.unsigned else 'i'}{scalar.size * 8}"
        if name in self._broken_types:
            raise Untranslatable(f"depends on untranslatable '{name}' ({self._broken_types[name]})")
        if name in self.env.structs:
            return rust_ident(self.env.structs[name].name)
        if name in self.env.enums:
            return rust_ident(name.removeprefix("enum "))
        if name in self.env.typedefs:
            # the typedef's own item reports failures of its target
            self.rust_type(self.env.typedefs[name])
            return rust_ident(name)
        raise Untranslatable(f"unknown type '{name}'")


def translate(decls: list[ForeignDeclaration], model: DataModel = ILP32_AAPCS) -> list[BridgedDeclaration]:
    """Translate ``decls`` for ``model``; every declaration yields one result."""
    return Translator(model).translate(decls)
