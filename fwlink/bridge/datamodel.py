"""C data models — sizes, alignments and signedness of scalar types per ABI."""

from __future__ import annotations

from dataclasses import dataclass

# Fixed-width and standard typedefs: name -> (bits, unsigned); pointer-sized
# types use bits=0 and take the model's pointer width.
_FIXED_WIDTH: dict[str, tuple[int, bool]] = {
    "int8_t": (8, False),
    "uint8_t": (8, True),
    "int16_t": (16, False),
    "uint16_t": (16, True),
    "int32_t": (32, False),
    "uint32_t": (32, True),
    "int64_t": (64, False),
    "uint64_t": (64, True),
    "intptr_t": (0, False),
    "uintptr_t": (0, True),
    "size_t": (0, True),
    "ssize_t": (0, False),
    "ptrdiff_t": (0, False),
}


@dataclass(frozen=True)
class Scalar:
    size: int
    align: int
    unsigned: bool = False
    floating: bool = False


@dataclass(frozen=True)
class DataModel:
    """Scalar type sizes for one ABI."""

    name: str
    long_bits: int
    pointer_bits: int
    char_unsigned: bool
    int64_align: int = 8
    double_align: int = 8
    short_enums: bool = False

    @property
    def pointer_size(self) -> int:
        return self.pointer_bits // 8

    def scalar(self, name: str) -> Scalar | None:
        """Layout of a named scalar type, or None if ``name`` is not a scalar."""
        if name in _FIXED_WIDTH:
            bits, unsigned = _FIXED_WIDTH[name]
            bits = bits or self.pointer_bits
            return self._int(bits, unsigned)
        if name in ("char",):
            return Scalar(1, 1, unsigned=self.char_unsigned)
        if name == "signed char":
            return Scalar(1, 1)
        if name == "unsigned char":
            return Scalar(1, 1, unsigned=True)
        if name in ("bool", "_Bool"):
            return Scalar(1, 1, unsigned=True)
        if name in ("short", "unsigned short"):
            return self._int(16, name.startswith("unsigned"))
        if name in ("int", "unsigned int"):
            return self._int(32, name.startswith("unsigned"))
        if name in ("long", "unsigned long"):
            return self._int(self.long_bits, name.startswith("unsigned"))
        if name in ("long long", "unsigned long long"):
            return self._int(64, name.startswith("unsigned"))
        if name == "float":
            return Scalar(4, 4, floating=True)
        if name == "double":
            return Scalar(8, self.double_align, floating=True)
        if name == "long double":
            # AAPCS: long double is double; LP64 hosts differ and are not supported here
            return Scalar(8, self.double_align, floating=True) if self.long_bits == 32 else None
        return None

    def integer(self, name: str) -> tuple[int, bool] | None:
        """(bits, unsigned) for integer type names; None otherwise."""
        s = self.scalar(name)
        if s is None or s.floating:
            return None
        return s.size * 8, s.unsigned

    def enum_storage(self, values: list[int]) -> tuple[int, bool]:
        """(size in bytes, unsigned) of an enum type holding `values`."""
        low = min(values, default=0)
        high = max(values, default=0)
        unsigned = low >= 0
        sizes = (1, 2, 4, 8) if self.short_enums else (4, 8)
        for size in sizes:
            if _fits_range(low, high, size * 8, unsigned):
                return size, unsigned
        raise ValueError(f"enum values {low}..{high} exceed 64 bits")

    def _int(self, bits: int, unsigned: bool) -> Scalar:
        align = self.int64_align if bits == 64 else bits // 8
        return Scalar(bits // 8, align, unsigned=unsigned)


# Arm EABI / AAPCS32 as used by Cortex-M: 32-bit long and pointers, unsigned
# plain char, 8-byte aligned 64-bit scalars. Bare-metal EABI enums are sized
# to the smallest integer holding their values (GCC -fshort-enums default).
ILP32_AAPCS = DataModel(
    name="ilp32-aapcs", long_bits=32, pointer_bits=32, char_unsigned=True, short_enums=True
)

# 64-bit System V hosts (x86_64 Linux): signed plain char.
LP64 = DataModel(name="lp64", long_bits=64, pointer_bits=64, char_unsigned=False)

DATA_MODELS: dict[str, DataModel] = {m.name: m for m in (ILP32_AAPCS, LP64)}


_BUILTIN_WORDS = {"signed", "unsigned", "short", "long", "int", "char", "float", "double", "void", "_Bool", "bool"}


def normalize_type_name(words: list[str]) -> str:
    """Canonical spelling of a builtin C type from its specifier words.

    ``["unsigned", "long", "int"]`` -> ``"unsigned long"``; ``["signed"]`` ->
    ``"int"``. Words that are not builtin specifiers are joined unchanged
    (typedef names, ``struct tag``).
    """
    words = [w for w in words if w not in ("const", "volatile", "register", "static", "extern", "inline")]
    if not words or any(w not in _BUILTIN_WORDS for w in words):
        return " ".join(words)
    unsigned = "unsigned" in words
    signed = "signed" in words
    longs = words.count("long")
    if "char" in words:
        return "unsigned char" if unsigned else ("signed char" if signed else "char")
    if "short" in words:
        base = "short"
    elif "double" in words:
        return "long double" if longs else "double"
    elif "float" in words:
        return "float"
    elif "void" in words:
        return "void"
    elif "_Bool" in words or "bool" in words:
        return "_Bool"
    elif longs >= 2:
        base = "long long"
    elif longs == 1:
        base = "long"
    else:
        base = "int"
    return f"unsigned {base}" if unsigned else base


def _fits_range(low: int, high: int, bits: int, unsigned: bool) -> bool:
    if unsigned:
        return high < (1 << bits)
    return -(1 << (bits - 1)) <= low and high < (1 << (bits - 1))
