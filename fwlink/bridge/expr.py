"""C integer/float constant expression evaluator.

Used for ``#if`` conditions and for reducing object-like macros to typed
constants. Anything that is not a pure constant expression (assignments,
pointer casts, calls, unknown identifiers) raises ``NotConstant`` with a
reason; callers turn that into an explicit untranslatable marker.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from fwlink.bridge.datamodel import DataModel, normalize_type_name


class NotConstant(Exception):
    """Expression cannot be evaluated statically."""


@dataclass(frozen=True)
class CValue:
    value: int | float
    bits: int = 32
    unsigned: bool = False
    floating: bool = False

    @property
    def truthy(self) -> bool:
        return self.value != 0


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<float>(?:\d+\.\d*|\.\d+)(?:[eE][+-]?\d+)?[fFlL]?|\d+[eE][+-]?\d+[fFlL]?)
  | (?P<int>(?:0[xX][0-9a-fA-F]+|0[bB][01]+|\d+)[uUlL]*)
  | (?P<char>'(?:\\.|[^\\'])+')
  | (?P<string>"(?:\\.|[^\\"])*")
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op><<=|>>=|\.\.\.|->|\+\+|--|<<|>>|<=|>=|==|!=|&&|\|\||[-+*/%&|^]=|[-+*/%&|^~!<>?:(),=\[\].;{}#])
    """,
    re.VERBOSE,
)

_ASSIGNMENT_OPS = {"=", "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=", "<<=", ">>=", "++", "--"}

_CHAR_ESCAPES = {"n": 10, "t": 9, "r": 13, "0": 0, "\\": 92, "'": 39, '"': 34, "a": 7, "b": 8, "f": 12, "v": 11}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m:
            raise NotConstant(f"unexpected character {text[pos]!r}")
        pos = m.end()
        kind = m.lastgroup
        if kind == "ws":
            continue
        tokens.append(Token(kind, m.group()))
    return tokens


def wrap(value: int, bits: int, unsigned: bool) -> int:
    mask = (1 << bits) - 1
    value &= mask
    if not unsigned and value >> (bits - 1):
        value -= 1 << bits
    return value


def _fits(value: int, bits: int, unsigned: bool) -> bool:
    if unsigned:
        return 0 <= value < (1 << bits)
    return -(1 << (bits - 1)) <= value < (1 << (bits - 1))


class ConstEvaluator:
    """Evaluate C constant expressions under a data model.

    Args:
        model: Data model giving ``long`` width and typedef widths.
        lookup: Resolves identifiers to values (earlier macro constants).
        is_defined: Answers ``defined(NAME)``; enables preprocessor mode, in
            which unknown identifiers evaluate to 0 as in ``#if``.
        type_width: Resolves extra integer type names (typedefs) for casts.
    """

    def __init__(
        self,
        model: DataModel,
        lookup: Callable[[str], CValue | None] | None = None,
        is_defined: Callable[[str], bool] | None = None,
        type_width: Callable[[str], tuple[int, bool] | None] | None = None,
    ) -> None:
        self.model = model
        self.lookup = lookup or (lambda name: None)
        self.is_defined = is_defined
        self.type_width = type_width or (lambda name: None)
        self._tokens: list[Token] = []
        self._pos = 0

    # ── entry point ──

    def evaluate(self, text: str) -> CValue:
        self._tokens = tokenize(text)
        if not self._tokens:
            raise NotConstant("empty expression")
        for tok in self._tokens:
            if tok.kind == "op" and tok.text in _ASSIGNMENT_OPS:
                raise NotConstant(f"assignment operator '{tok.text}' has no constant value")
            if tok.kind == "string":
                raise NotConstant("string literal in arithmetic expression")
        self._pos = 0
        result = self._ternary()
        if self._pos != len(self._tokens):
            raise NotConstant(f"unexpected token '{self._tokens[self._pos].text}'")
        return result

    # ── token helpers ──

    def _peek(self, offset: int = 0) -> Token | None:
        i = self._pos + offset
        return self._tokens[i] if i < len(self._tokens) else None

    def _accept(self, text: str) -> bool:
        tok = self._peek()
        if tok is not None and tok.kind == "op" and tok.text == text:
            self._pos += 1
            return True
        return False

    def _expect(self, text: str) -> None:
        if not self._accept(text):
            tok = self._peek()
            raise NotConstant(f"expected '{text}', got '{tok.text if tok else 'end of input'}'")

    # ── grammar ──

    def _ternary(self) -> CValue:
        cond = self._binary(0)
        if self._accept("?"):
            a = self._ternary()
            self._expect(":")
            b = self._ternary()
            chosen = a if cond.truthy else b
            if a.floating or b.floating:
                return CValue(float(chosen.value), 64, floating=True)
            bits, unsigned = self._common(a, b)
            return CValue(wrap(int(chosen.value), bits, unsigned), bits, unsigned)
        return cond

    _LEVELS: tuple[tuple[str, ...], ...] = (
        ("||",),
        ("&&",),
        ("|",),
        ("^",),
        ("&",),
        ("==", "!="),
        ("<", ">", "<=", ">="),
        ("<<", ">>"),
        ("+", "-"),
        ("*", "/", "%"),
    )

    def _binary(self, level: int) -> CValue:
        if level == len(self._LEVELS):
            return self._unary()
        left = self._binary(level + 1)
        while True:
            tok = self._peek()
            if tok is None or tok.kind != "op" or tok.text not in self._LEVELS[level]:
                return left
            self._pos += 1
            right = self._binary(level + 1)
            left = self._apply(tok.text, left, right)

    def _unary(self) -> CValue:
        tok = self._peek()
        if tok is not None and tok.kind == "op":
            if tok.text in ("+", "-", "~", "!"):
                self._pos += 1
                return self._apply_unary(tok.text, self._unary())
            if tok.text == "(" and self._cast_ahead():
                return self._cast()
        return self._primary()

    def _primary(self) -> CValue:
        tok = self._peek()
        if tok is None:
            raise NotConstant("unexpected end of expression")
        self._pos += 1
        if tok.kind == "int":
            return self._int_literal(tok.text)
        if tok.kind == "float":
            single = tok.text[-1] in "fF"
            return CValue(float(tok.text.rstrip("fFlL")), 32 if single else 64, floating=True)
        if tok.kind == "char":
            return CValue(self._char_value(tok.text), 32, False)
        if tok.kind == "ident":
            return self._identifier(tok.text)
        if tok.kind == "op" and tok.text == "(":
            value = self._ternary()
            self._expect(")")
            return value
        raise NotConstant(f"unexpected token '{tok.text}'")

    def _identifier(self, name: str) -> CValue:
        if name == "defined" and self.is_defined is not None:
            parens = self._accept("(")
            tok = self._peek()
            if tok is None or tok.kind != "ident":
                raise NotConstant("defined() requires an identifier")
            self._pos += 1
            if parens:
                self._expect(")")
            return CValue(int(self.is_defined(tok.text)))
        nxt = self._peek()
        if nxt is not None and nxt.kind == "op" and nxt.text == "(":
            raise NotConstant(f"call to '{name}' is not a constant expression")
        if name in ("sizeof", "_Alignof", "alignof"):
            raise NotConstant(f"'{name}' is not evaluated")
        value = self.lookup(name)
        if value is not None:
            return value
        if self.is_defined is not None:
            return CValue(0)
        raise NotConstant(f"unknown identifier '{name}'")

    # ── casts ──

    def _cast_ahead(self) -> bool:
        """True when the parenthesised tokens ahead name a type."""
        words: list[str] = []
        i = 1
        while True:
            tok = self._peek(i)
            if tok is None:
                return False
            if tok.kind == "op" and tok.text == ")":
                break
            if tok.kind == "op" and tok.text == "*":
                words.append("*")
            elif tok.kind == "ident":
                words.append(tok.text)
            else:
                return False
            i += 1
        if not words:
            return False
        if "*" in words:
            # "(T *)" or "(T * const)"; "(A * B)" is a multiplication
            star = words.index("*")
            tail = [w for w in words[star:] if w not in ("*", "const", "volatile")]
            return star > 0 and not tail
        return self._type_name(words) is not None

    def _type_name(self, words: list[str]) -> tuple[int, bool] | None:
        name = normalize_type_name(words)
        return self.model.integer(name) or self.type_width(name)

    def _cast(self) -> CValue:
        self._expect("(")
        words: list[str] = []
        while not self._accept(")"):
            tok = self._peek()
            words.append(tok.text)
            self._pos += 1
        if "*" in words:
            raise NotConstant(f"pointer cast '({' '.join(words)})' has no constant value")
        width = self._type_name(words)
        if width is None:
            raise NotConstant(f"cast to unknown type '{' '.join(words)}'")
        bits, unsigned = width
        operand = self._unary()
        if operand.floating:
            operand = CValue(int(operand.value), 64, False)
        return CValue(wrap(int(operand.value), bits, unsigned), bits, unsigned)

    # ── arithmetic ──

    def _int_literal(self, text: str) -> CValue:
        body = text.rstrip("uUlL")
        suffix = text[len(body):].lower()
        if body.lower().startswith("0x"):
            value, decimal = int(body, 16), False
        elif body.lower().startswith("0b"):
            value, decimal = int(body[2:], 2), False
        elif len(body) > 1 and body.startswith("0"):
            try:
                value, decimal = int(body, 8), False
            except ValueError:
                raise NotConstant(f"invalid octal literal '{text}'") from None
        else:
            value, decimal = int(body), True

        longs = suffix.count("l")
        want_unsigned = "u" in suffix
        long_bits = self.model.long_bits
        ranks = [32, long_bits, 64][longs:]
        candidates: list[tuple[int, bool]] = []
        for bits in ranks:
            if not want_unsigned:
                candidates.append((bits, False))
            if want_unsigned or not decimal:
                candidates.append((bits, True))
        for bits, unsigned in candidates:
            if _fits(value, bits, unsigned):
                return CValue(value, bits, unsigned)
        return CValue(wrap(value, 64, True), 64, True)

    @staticmethod
    def _char_value(text: str) -> int:
        inner = text[1:-1]
        if inner.startswith("\\"):
            esc = inner[1:]
            if esc.startswith("x"):
                return int(esc[1:], 16)
            if esc.isdigit():
                return int(esc, 8)
            if esc in _CHAR_ESCAPES:
                return _CHAR_ESCAPES[esc]
            raise NotConstant(f"unsupported escape in {text}")
        if len(inner) != 1:
            raise NotConstant(f"multi-character constant {text}")
        return ord(inner)

    @staticmethod
    def _promote(v: CValue) -> CValue:
        if v.floating or v.bits >= 32:
            return v
        return CValue(int(v.value), 32, False)

    def _common(self, a: CValue, b: CValue) -> tuple[int, bool]:
        a, b = self._promote(a), self._promote(b)
        if a.bits == b.bits:
            return a.bits, a.unsigned or b.unsigned
        wider = a if a.bits > b.bits else b
        return wider.bits, wider.unsigned

    def _apply_unary(self, op: str, v: CValue) -> CValue:
        if op == "!":
            return CValue(int(not v.truthy))
        if v.floating:
            if op == "~":
                raise NotConstant("'~' applied to a floating constant")
            return CValue(-v.value if op == "-" else v.value, v.bits, floating=True)
        v = self._promote(v)
        if op == "+":
            return v
        if op == "-":
            return CValue(wrap(-int(v.value), v.bits, v.unsigned), v.bits, v.unsigned)
        return CValue(wrap(~int(v.value), v.bits, v.unsigned), v.bits, v.unsigned)

    def _apply(self, op: str, a: CValue, b: CValue) -> CValue:
        if op == "&&":
            return CValue(int(a.truthy and b.truthy))
        if op == "||":
            return CValue(int(a.truthy or b.truthy))
        if op in ("==", "!=", "<", ">", "<=", ">="):
            x, y = self._comparable(a, b)
            result = {
                "==": x == y, "!=": x != y, "<": x < y,
                ">": x > y, "<=": x <= y, ">=": x >= y,
            }[op]
            return CValue(int(result))

        if a.floating or b.floating:
            if op not in ("+", "-", "*", "/"):
                raise NotConstant(f"operator '{op}' applied to a floating constant")
            x, y = float(a.value), float(b.value)
            if op == "/" and y == 0:
                raise NotConstant("division by zero")
            value = {"+": x + y, "-": x - y, "*": x * y, "/": x / y if y else 0.0}[op]
            bits = 64 if 64 in (a.bits if a.floating else 0, b.bits if b.floating else 0) else 32
            return CValue(value, bits, floating=True)

        if op in ("<<", ">>"):
            left = self._promote(a)
            count = int(b.value)
            if count < 0 or count >= left.bits:
                raise NotConstant(f"shift by {count} is out of range for a {left.bits}-bit value")
            x = int(left.value)
            value = x << count if op == "<<" else x >> count
            return CValue(wrap(value, left.bits, left.unsigned), left.bits, left.unsigned)

        bits, unsigned = self._common(a, b)
        x = wrap(int(a.value), bits, unsigned)
        y = wrap(int(b.value), bits, unsigned)
        if op in ("/", "%"):
            if y == 0:
                raise NotConstant("division by zero")
            q = abs(x) // abs(y)
            if (x < 0) != (y < 0):
                q = -q
            value = q if op == "/" else x - q * y
        else:
            value = {
                "+": x + y, "-": x - y, "*": x * y,
                "&": x & y, "|": x | y, "^": x ^ y,
            }[op]
        return CValue(wrap(value, bits, unsigned), bits, unsigned)

    def _comparable(self, a: CValue, b: CValue) -> tuple[int | float, int | float]:
        if a.floating or b.floating:
            return float(a.value), float(b.value)
        bits, unsigned = self._common(a, b)
        return wrap(int(a.value), bits, unsigned), wrap(int(b.value), bits, unsigned)
