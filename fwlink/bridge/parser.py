"""C header extraction: a small conditional-aware preprocessor plus
regex-driven declaration parsing.

This is not a C compiler. It understands what vendor device headers and HAL
interfaces use at declaration level: conditionals, object-like macro
substitution, ``typedef struct``/``union``/``enum``, prototypes, scalar and
function-pointer typedefs, ``extern`` variables and ``#define`` macros.
Inline function bodies are skipped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from fwlink.bridge.datamodel import ILP32_AAPCS, DataModel, normalize_type_name
from fwlink.bridge.expr import ConstEvaluator, CValue, NotConstant
from fwlink.exceptions import HeaderParseError
from fwlink.models.declarations import (
    ConstantMacro,
    CType,
    EnumDecl,
    ExpressionMacro,
    Field,
    ForeignDeclaration,
    FunctionDecl,
    Param,
    StructDecl,
    TypedefDecl,
    VariableDecl,
)

logger = logging.getLogger(__name__)

COMMAND_LINE = "<command line>"

_COMMENT_RE = re.compile(
    r'//[^\n]*|/\*.*?\*/|"(?:\\.|[^\\"\n])*"|\'(?:\\.|[^\\\'\n])*\'',
    re.DOTALL,
)
_DIRECTIVE_RE = re.compile(r"^\s*#\s*(\w+)\s*(.*)$")
_DEFINE_RE = re.compile(r"^([A-Za-z_]\w*)(\(([^)]*)\))?\s*(.*)$")
_IDENT_RE = re.compile(r"\b[A-Za-z_]\w*\b")
_ATTRIBUTE_RE = re.compile(r"__attribute__\s*\(\(")
_LEADING_WS_RE = re.compile(r"\s*")
_PACKED_WORDS = ("__packed", "__PACKED")

_QUALIFIERS = {"const", "volatile", "register", "static", "extern", "inline", "__inline", "restrict", "__restrict"}
_BUILTIN_SPECIFIERS = {"signed", "unsigned", "short", "long", "int", "char", "float", "double", "void", "_Bool", "bool"}
_AGGREGATE_KEYWORDS = ("struct", "union", "enum")


@dataclass
class MacroDefinition:
    name: str
    params: tuple[str, ...] | None
    body: str
    location: str


@dataclass
class _Frame:
    parent_active: bool
    active: bool
    taken: bool
    seen_else: bool = False


@dataclass
class PreprocessedHeaders:
    """Output of the preprocessor pass."""

    code: list[tuple[Path, str]] = field(default_factory=list)
    macros: dict[str, MacroDefinition] = field(default_factory=dict)
    missing_includes: list[str] = field(default_factory=list)


def strip_comments(text: str) -> str:
    """Remove C and C++ comments, keeping string literals and line numbers."""

    def _replace(m: re.Match[str]) -> str:
        s = m.group()
        if s.startswith("/"):
            return "\n" * s.count("\n") if "\n" in s else " "
        return s

    return _COMMENT_RE.sub(_replace, text)


def _logical_lines(text: str) -> list[tuple[int, str, int]]:
    """Join backslash continuations: (first line number, text, physical line count)."""
    out: list[tuple[int, str, int]] = []
    physical = text.split("\n")
    i = 0
    while i < len(physical):
        start = i
        line = physical[i]
        while line.endswith("\\") and i + 1 < len(physical):
            i += 1
            line = line[:-1] + " " + physical[i]
        out.append((start + 1, line, i - start + 1))
        i += 1
    return out


def parse_define(text: str) -> tuple[str, str]:
    """Split an injected definition ``NAME`` or ``NAME=value``."""
    name, sep, value = text.partition("=")
    name = name.strip()
    if not re.fullmatch(r"[A-Za-z_]\w*", name):
        raise HeaderParseError(f"Invalid preprocessor definition '{text}'")
    return name, value.strip() if sep else "1"


class HeaderPreprocessor:
    """Conditional-aware preprocessing of a set of headers.

    Macros are global across headers and visible in definition order;
    object-like macros are substituted into code lines as they are read.
    """

    def __init__(
        self,
        defines: dict[str, str] | None = None,
        include_dirs: list[Path] | None = None,
        model: DataModel = ILP32_AAPCS,
    ) -> None:
        self.include_dirs = [Path(d) for d in include_dirs or []]
        self.model = model
        self.result = PreprocessedHeaders()
        self._visited: set[Path] = set()
        for name, value in (defines or {}).items():
            self.result.macros[name] = MacroDefinition(name, None, value, COMMAND_LINE)

    def run(self, headers: list[Path]) -> PreprocessedHeaders:
        for header in headers:
            self._process_file(Path(header))
        return self.result

    # ── files ──

    def _process_file(self, path: Path) -> None:
        resolved = path.resolve()
        if resolved in self._visited:
            return
        self._visited.add(resolved)
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise HeaderParseError(f"Cannot read header {path}: {exc}") from exc

        logger.debug("Preprocessing %s", path)
        stack: list[_Frame] = []
        code: list[str] = []
        for lineno, line, span in _logical_lines(strip_comments(text)):
            active = not stack or stack[-1].active
            m = _DIRECTIVE_RE.match(line)
            if m:
                self._directive(m.group(1), m.group(2).strip(), stack, active, path, lineno)
                code.append("\n" * (span - 1))
                continue
            code.append((self._expand(line) if active else "") + "\n" * (span - 1))
        if stack:
            raise HeaderParseError(f"{path}: unterminated conditional block")
        self.result.code.append((path, "\n".join(code)))

    def _find_include(self, target: str, current: Path, quoted: bool) -> Path | None:
        candidates = [current.parent] if quoted else []
        candidates.extend(self.include_dirs)
        for directory in candidates:
            p = directory / target
            if p.is_file():
                return p
        return None

    # ── directives ──

    def _directive(
        self, name: str, arg: str, stack: list[_Frame], active: bool, path: Path, lineno: int
    ) -> None:
        where = f"{path}:{lineno}"
        if name in ("if", "ifdef", "ifndef"):
            if not active:
                stack.append(_Frame(parent_active=False, active=False, taken=True))
                return
            if name == "ifdef":
                cond = arg.split()[0] in self.result.macros if arg else False
            elif name == "ifndef":
                cond = arg.split()[0] not in self.result.macros if arg else True
            else:
                cond = self._condition(arg, where)
            stack.append(_Frame(parent_active=True, active=cond, taken=cond))
            return
        if name in ("elif", "else", "endif") and not stack:
            raise HeaderParseError(f"{where}: #{name} without #if")
        if name == "elif":
            frame = stack[-1]
            if frame.seen_else:
                raise HeaderParseError(f"{where}: #elif after #else")
            if frame.parent_active and not frame.taken:
                frame.active = self._condition(arg, where)
                frame.taken = frame.active
            else:
                frame.active = False
            return
        if name == "else":
            frame = stack[-1]
            if frame.seen_else:
                raise HeaderParseError(f"{where}: duplicate #else")
            frame.seen_else = True
            frame.active = frame.parent_active and not frame.taken
            frame.taken = True
            return
        if name == "endif":
            stack.pop()
            return
        if not active:
            return

        if name == "define":
            self._define(arg, where)
        elif name == "undef":
            self.result.macros.pop(arg.split()[0] if arg else "", None)
        elif name == "include":
            self._include(arg, path, where)
        elif name == "error":
            raise HeaderParseError(f"{where}: #error {arg}")
        elif name in ("pragma", "warning", "line", "ident"):
            pass
        else:
            logger.debug("%s: ignoring unknown directive #%s", where, name)

    def _condition(self, expr: str, where: str) -> bool:
        evaluator = ConstEvaluator(
            self.model,
            lookup=self._macro_value,
            is_defined=lambda n: n in self.result.macros,
        )
        try:
            return evaluator.evaluate(self._expand(expr, keep_defined=True)).truthy
        except NotConstant as exc:
            raise HeaderParseError(f"{where}: cannot evaluate #if {expr}: {exc}") from exc

    def _macro_value(self, name: str) -> CValue | None:
        macro = self.result.macros.get(name)
        if macro is None or macro.params is not None:
            return None
        evaluator = ConstEvaluator(self.model, lookup=self._macro_value, is_defined=lambda n: n in self.result.macros)
        try:
            return evaluator.evaluate(self._expand(macro.body)) if macro.body else None
        except NotConstant:
            return None

    def _define(self, arg: str, where: str) -> None:
        m = _DEFINE_RE.match(arg)
        if not m:
            raise HeaderParseError(f"{where}: malformed #define {arg}")
        name, has_params, params, body = m.group(1), m.group(2), m.group(3), m.group(4).strip()
        param_tuple = tuple(p.strip() for p in params.split(",") if p.strip()) if has_params else None
        # redefinition moves the macro to the end so later lookups see it
        self.result.macros.pop(name, None)
        self.result.macros[name] = MacroDefinition(name, param_tuple, body, where)

    def _include(self, arg: str, current: Path, where: str) -> None:
        m = re.match(r'^"([^"]+)"|^<([^>]+)>', arg)
        if not m:
            raise HeaderParseError(f"{where}: malformed #include {arg}")
        target = m.group(1) or m.group(2)
        found = self._find_include(target, current, quoted=m.group(1) is not None)
        if found is None:
            # toolchain and libc headers are outside the bridged set
            logger.debug("%s: include '%s' not found, skipped", where, target)
            self.result.missing_includes.append(target)
            return
        self._process_file(found)

    # ── macro substitution ──

    def _expand(self, text: str, keep_defined: bool = False, _active: frozenset[str] = frozenset()) -> str:
        macros = self.result.macros
        after_defined = False

        def _sub(m: re.Match[str]) -> str:
            nonlocal after_defined
            word = m.group()
            if keep_defined and word == "defined":
                after_defined = True
                return word
            if after_defined:
                after_defined = False
                return word
            macro = macros.get(word)
            if macro is None or macro.params is not None or word in _active:
                return word
            return self._expand(macro.body, keep_defined, _active | {word})

        return _IDENT_RE.sub(_sub, text)


# ── declaration extraction ──


def _strip_attributes(text: str) -> tuple[str, bool]:
    """Remove ``__attribute__((...))`` groups; report whether any said packed."""
    packed = any(w in text.split() for w in _PACKED_WORDS)
    for word in _PACKED_WORDS:
        text = re.sub(rf"\b{word}\b", " ", text)
    while True:
        m = _ATTRIBUTE_RE.search(text)
        if not m:
            break
        depth = 2
        i = m.end()
        while i < len(text) and depth:
            if text[i] == "(":
                depth += 1
            elif text[i] == ")":
                depth -= 1
            i += 1
        if "packed" in text[m.end():i]:
            packed = True
        text = text[: m.start()] + " " + text[i:]
    return text, packed


def split_top_level(text: str, sep: str) -> list[str]:
    """Split ``text`` on ``sep`` outside braces, parentheses and brackets."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch in "{([":
            depth += 1
        elif ch in "})]":
            depth -= 1
        if ch == sep and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return parts


@dataclass
class _Statement:
    text: str
    line: int
    has_body: bool = False


def _line_of(code: str, start: int) -> int:
    """1-based line of the first non-blank character at or after ``start``."""
    m = _LEADING_WS_RE.match(code, start)
    return code.count("\n", 0, m.end()) + 1


def split_statements(code: str) -> list[_Statement]:
    """Split preprocessed code into top-level statements.

    A statement ends at ``;`` outside any brace, or at the closing brace of
    a function definition (a body following ``)``).
    """
    statements: list[_Statement] = []
    depth = 0
    start = 0
    body_is_function = False
    has_body = False
    i = 0
    n = len(code)
    while i < n:
        ch = code[i]
        if ch == '"' or ch == "'":
            j = i + 1
            while j < n and code[j] != ch:
                j += 2 if code[j] == "\\" else 1
            i = j + 1
            continue
        if ch == "{":
            if depth == 0:
                head = code[start:i].strip()
                body_is_function = head.endswith(")") and not head.startswith("typedef")
                if re.fullmatch(r'extern\s+"C"', head):
                    # linkage block: its contents are top-level declarations
                    start = i + 1
                    i += 1
                    continue
                has_body = True
            depth += 1
        elif ch == "}":
            if depth == 0:
                # closing brace of an extern "C" block
                start = i + 1
                i += 1
                continue
            depth -= 1
            if depth == 0 and body_is_function:
                statements.append(_Statement(code[start : i + 1], _line_of(code, start), True))
                start = i + 1
                body_is_function = has_body = False
        elif ch == ";" and depth == 0:
            statements.append(_Statement(code[start:i], _line_of(code, start), has_body))
            start = i + 1
            has_body = False
        i += 1
    return statements


class DeclarationExtractor:
    """Turn preprocessed code and macros into declaration variants."""

    def __init__(self, model: DataModel = ILP32_AAPCS, macros: dict[str, MacroDefinition] | None = None) -> None:
        self.model = model
        self.macros = macros or {}
        self.declarations: list[ForeignDeclaration] = []
        self._anonymous = 0

    # ── macros ──

    def add_macros(self) -> None:
        for macro in self.macros.values():
            if macro.params is not None:
                self.declarations.append(ExpressionMacro(macro.name, macro.params, macro.body, macro.location))
            else:
                self.declarations.append(ConstantMacro(macro.name, macro.body, macro.location))

    # ── code ──

    def add_code(self, path: Path, code: str) -> None:
        for stmt in split_statements(code):
            text, packed = _strip_attributes(stmt.text)
            text = " ".join(text.split())
            if not text:
                continue
            location = f"{path}:{stmt.line}"
            try:
                self._statement(text, packed, stmt, location)
            except _Unparsed as exc:
                logger.debug("%s: skipped declaration (%s): %.60s", location, exc, text)

    def _statement(self, text: str, packed: bool, stmt: _Statement, location: str) -> None:
        if stmt.has_body and text.endswith("}") and not re.match(r"^(typedef\s+)?(struct|union|enum)\b", text):
            logger.debug("%s: skipping function definition", location)
            return
        if text.startswith("typedef "):
            self._typedef(text[len("typedef "):], packed, location)
            return
        m = re.match(r"^(struct|union|enum)\s+(\w+)\s*\{(.*)\}\s*(.*)$", text, re.DOTALL)
        if m:
            keyword, tag, body, _declarators = m.groups()
            if keyword == "enum":
                self.declarations.append(EnumDecl(tag, self._enum_members(body), location))
            else:
                self.declarations.append(
                    self._struct(tag, tag, body, keyword == "union", packed, location)
                )
            return
        if re.fullmatch(r"(struct|union|enum)\s+\w+", text):
            return  # forward declaration
        if "{" in text:
            raise _Unparsed("unrecognised braced declaration")
        words = text.split()
        if words[0] == "static":
            return
        if "(" in text and not _is_function_pointer(text):
            self._prototype(text[len("extern "):] if words[0] == "extern" else text, location)
            return
        if words[0] == "extern":
            name, ctype = parse_declarator(text[len("extern "):], self._dimension)
            if name:
                self.declarations.append(VariableDecl(name, ctype, location))
            return
        raise _Unparsed("not an extern declaration")

    def _typedef(self, rest: str, packed: bool, location: str) -> None:
        m = re.match(r"^(struct|union|enum)\s*(\w+)?\s*\{(.*)\}\s*(.*)$", rest, re.DOTALL)
        if m:
            keyword, tag, body, declarators = m.groups()
            names = [d.strip() for d in split_top_level(declarators, ",") if d.strip()]
            if not names:
                raise _Unparsed("typedef without a name")
            primary = names[0]
            if not re.fullmatch(r"\w+", primary):
                raise _Unparsed(f"unsupported typedef declarator '{primary}'")
            if keyword == "enum":
                self.declarations.append(EnumDecl(primary, self._enum_members(body), location))
                base = primary
            else:
                self.declarations.append(
                    self._struct(primary, tag, body, keyword == "union", packed, location)
                )
                base = primary
            for extra in names[1:]:
                name, ctype = parse_declarator(f"{base} {extra}", self._dimension)
                if name:
                    self.declarations.append(TypedefDecl(name, ctype, location))
            return
        name, ctype = parse_declarator(rest, self._dimension)
        if not name:
            raise _Unparsed("typedef without a name")
        self.declarations.append(TypedefDecl(name, ctype, location))

    def _prototype(self, text: str, location: str) -> None:
        m = re.match(r"^(?P<ret>.*?)\b(?P<name>[A-Za-z_]\w*)\s*\((?P<params>.*)\)$", text, re.DOTALL)
        if not m or not m.group("ret").strip():
            raise _Unparsed("not a prototype")
        words = m.group("ret").split()
        if "static" in words or "inline" in words or "__STATIC_INLINE" in words:
            return
        _, ret = parse_declarator(m.group("ret"), self._dimension)
        params, variadic = parse_params(m.group("params"), self._dimension)
        self.declarations.append(FunctionDecl(m.group("name"), ret, params, variadic, location))

    def _struct(
        self, name: str, tag: str | None, body: str, is_union: bool, packed: bool, location: str
    ) -> StructDecl:
        fields: list[Field] = []
        problem: str | None = None
        for member in split_top_level(body, ";"):
            member = " ".join(member.split())
            if not member:
                continue
            if "{" in member:
                problem = f"nested aggregate in '{name}' is not laid out"
                continue
            bit_width = None
            bf = re.match(r"^(.*?)\s*:\s*(.+)$", member)
            if bf and "(" not in bf.group(1):
                member, width = bf.group(1), bf.group(2)
                try:
                    bit_width = int(self._dimension(width))
                except _Unparsed:
                    problem = f"bit-field width '{width}' is not constant"
                    continue
            declarators = split_top_level(member, ",")
            try:
                first_name, first_type = parse_declarator(declarators[0], self._dimension)
            except _Unparsed as exc:
                problem = f"member '{member}' in '{name}': {exc}"
                continue
            if not first_name:
                problem = f"unnamed member in '{name}'"
                continue
            fields.append(Field(first_name, first_type, bit_width))
            base = _base_text(declarators[0], first_name)
            for extra in declarators[1:]:
                extra_name, extra_type = parse_declarator(f"{base} {extra.strip()}", self._dimension)
                if extra_name:
                    fields.append(Field(extra_name, extra_type, bit_width))
        return StructDecl(
            name=name,
            fields=tuple(fields),
            is_union=is_union,
            packed=packed,
            tag=tag,
            location=location,
            problem=problem,
        )

    @staticmethod
    def _enum_members(body: str) -> tuple[tuple[str, str | None], ...]:
        members: list[tuple[str, str | None]] = []
        for item in split_top_level(body, ","):
            item = item.strip()
            if not item:
                continue
            name, sep, expr = item.partition("=")
            members.append((name.strip(), expr.strip() if sep else None))
        return tuple(members)

    def _dimension(self, text: str) -> int:
        evaluator = ConstEvaluator(self.model)
        try:
            value = evaluator.evaluate(text)
        except NotConstant as exc:
            raise _Unparsed(f"array dimension '{text}': {exc}") from exc
        if value.floating or value.value < 0:
            raise _Unparsed(f"invalid array dimension '{text}'")
        return int(value.value)


class _Unparsed(Exception):
    """Statement outside the understood declaration subset."""


def _is_function_pointer(text: str) -> bool:
    """True when the first parenthesis opens a `(*name)` declarator."""
    return text.split("(", 1)[1].lstrip().startswith("*")


def _base_text(declarator: str, name: str) -> str:
    """Type part of ``declarator`` without pointer stars, name and array suffix."""
    head = re.sub(r"\[[^\]]*\]", "", declarator)
    idx = head.rfind(name)
    head = head[:idx] if idx >= 0 else head
    return head.replace("*", " ").strip()


def parse_params(text: str, dimension=None) -> tuple[tuple[Param, ...], bool]:
    """Parse a parameter list; returns (params, variadic)."""
    text = text.strip()
    if not text or text == "void":
        return (), False
    params: list[Param] = []
    variadic = False
    for i, part in enumerate(split_top_level(text, ",")):
        part = part.strip()
        if part == "...":
            variadic = True
            continue
        name, ctype = parse_declarator(part, dimension, parameter=True)
        params.append(Param(name or f"arg{i}", ctype))
    return tuple(params), variadic


def parse_declarator(text: str, dimension=None, parameter: bool = False) -> tuple[str | None, CType]:
    """Parse ``TYPE [*...] [NAME] [dims]`` into (name, CType).

    Handles function pointers ``RET (*NAME)(PARAMS)``. In parameter
    position an array decays to a pointer.
    """
    text = " ".join(text.split())
    fp = re.match(r"^(?P<ret>.+?)\(\s*\*\s*(?P<name>\w*)\s*\)\s*\((?P<params>.*)\)$", text)
    if fp:
        _, ret = parse_declarator(fp.group("ret"), dimension)
        params, variadic = parse_params(fp.group("params"), dimension)
        sig = FunctionDecl(name="", return_type=ret, params=params, variadic=variadic)
        return fp.group("name") or None, CType(name="fn", function=sig)

    dims: list[int] = []
    m = re.search(r"((?:\[[^\]]*\]\s*)+)$", text)
    if m:
        for raw in re.findall(r"\[([^\]]*)\]", m.group(1)):
            raw = raw.strip()
            if not raw:
                dims.append(0)
            elif raw.isdigit():
                dims.append(int(raw))
            elif dimension is not None:
                dims.append(dimension(raw))
            else:
                raise _Unparsed(f"array dimension '{raw}'")
        text = text[: m.start()].strip()

    head, _, _ = text.partition("*")
    pointer = text.count("*")
    const = "const" in head.split()
    words = [w for w in text.replace("*", " ").split() if w not in _QUALIFIERS]
    if not words:
        raise _Unparsed(f"no type in '{text}'")

    if words[0] in _AGGREGATE_KEYWORDS:
        if len(words) < 2:
            raise _Unparsed("anonymous aggregate type")
        base, rest = f"{words[0]} {words[1]}", words[2:]
    else:
        specifiers = []
        while words and words[0] in _BUILTIN_SPECIFIERS:
            specifiers.append(words.pop(0))
        if specifiers:
            base, rest = normalize_type_name(specifiers), words
        else:
            base, rest = words[0], words[1:]
    if len(rest) > 1:
        raise _Unparsed(f"unexpected words in declarator '{text}'")
    name = rest[0] if rest else None

    if parameter and dims:
        pointer += 1
        dims = dims[1:]
    if 0 in dims[1:]:
        raise _Unparsed("incomplete inner array dimension")
    return name, CType(name=base, pointer=pointer, const=const, array=tuple(dims))


def extract_declarations(
    headers: list[Path],
    defines: dict[str, str] | list[str] | None = None,
    include_dirs: list[Path] | None = None,
    model: DataModel = ILP32_AAPCS,
) -> list[ForeignDeclaration]:
    """Preprocess ``headers`` and return their declarations in source order.

    ``defines`` are the definitions a compiler would otherwise receive as
    ``-D`` flags; they are visible to conditionals and bridged as constants.
    """
    if isinstance(defines, list):
        defines = dict(parse_define(d) for d in defines)
    pre = HeaderPreprocessor(defines, include_dirs, model).run(headers)
    extractor = DeclarationExtractor(model, pre.macros)
    extractor.add_macros()
    for path, code in pre.code:
        extractor.add_code(path, code)
    logger.info(
        "Extracted %d declarations from %d header(s)",
        len(extractor.declarations),
        len(pre.code),
    )
    return extractor.declarations
