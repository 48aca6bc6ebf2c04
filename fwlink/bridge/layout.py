"""Struct/union layout under a C data model.

Byte-for-byte layout equivalence is the contract of the bridge: the Rust
``#[repr(C)]`` type must have the same size, alignment and field offsets as
the C type compiled for the target. Offsets are computed here from the
declaration and emitted as compile-time assertions next to the Rust type.
"""

from __future__ import annotations

from fwlink.bridge.datamodel import DataModel
from fwlink.models.declarations import CType, FieldLayout, StructDecl, StructLayout, TypedefDecl


class LayoutError(Exception):
    """A type's size or alignment cannot be determined."""


def align_up(offset: int, align: int) -> int:
    return (offset + align - 1) // align * align


class TypeEnvironment:
    """Named types visible to the bridge: typedefs, structs/unions, enums."""

    def __init__(self, model: DataModel) -> None:
        self.model = model
        self.typedefs: dict[str, CType] = {}
        self.structs: dict[str, StructDecl] = {}
        self.enums: dict[str, tuple[int, bool]] = {}
        self._layouts: dict[str, StructLayout] = {}

    def add_struct(self, decl: StructDecl) -> None:
        self.structs[decl.name] = decl
        if decl.tag:
            keyword = "union" if decl.is_union else "struct"
            self.structs[f"{keyword} {decl.tag}"] = decl

    def add_typedef(self, decl: TypedefDecl) -> None:
        self.typedefs[decl.name] = decl.target

    def add_enum(self, name: str, size: int = 4, unsigned: bool = False) -> None:
        self.enums[name] = (size, unsigned)

    def resolve(self, ctype: CType, _depth: int = 0) -> CType:
        """Follow typedef chains down to a builtin, struct or pointer type."""
        if _depth > 32:
            raise LayoutError(f"typedef cycle through '{ctype.name}'")
        if ctype.pointer or ctype.function is not None:
            return ctype
        target = self.typedefs.get(ctype.name)
        if target is None:
            return ctype
        inner = self.resolve(target, _depth + 1)
        return CType(
            name=inner.name,
            pointer=inner.pointer,
            const=inner.const or ctype.const,
            array=ctype.array + inner.array,
            function=inner.function,
        )

    def integer_width(self, name: str) -> tuple[int, bool] | None:
        """(bits, unsigned) when ``name`` is an integer typedef or enum."""
        if name in self.enums:
            size, unsigned = self.enums[name]
            return size * 8, unsigned
        if name in self.typedefs:
            resolved = self.resolve(CType(name))
            if resolved.pointer or resolved.array:
                return None
            return self.model.integer(resolved.name) or self.integer_width(resolved.name)
        return None

    def size_align(self, ctype: CType) -> tuple[int, int]:
        resolved = self.resolve(ctype)
        if resolved.pointer or resolved.function is not None:
            size = align = self.model.pointer_size
        else:
            size, align = self._base_size_align(resolved.name)
        for dim in resolved.array:
            size *= dim
        return size, align

    def _base_size_align(self, name: str) -> tuple[int, int]:
        scalar = self.model.scalar(name)
        if scalar is not None:
            return scalar.size, scalar.align
        if name in self.enums:
            size = self.enums[name][0]
            return size, size
        if name == "void":
            raise LayoutError("'void' has no size")
        decl = self.structs.get(name)
        if decl is None:
            raise LayoutError(f"unknown type '{name}'")
        layout = self.layout(decl)
        return layout.size, layout.align

    def layout(self, decl: StructDecl) -> StructLayout:
        """Compute (and cache) the layout of ``decl``."""
        cached = self._layouts.get(decl.name)
        if cached is not None:
            return cached
        if decl.problem:
            raise LayoutError(decl.problem)
        if not decl.fields:
            raise LayoutError(f"'{decl.name}' is incomplete (no fields)")

        fields: list[FieldLayout] = []
        offset = 0
        struct_align = 1
        for f in decl.fields:
            if f.bit_width is not None:
                raise LayoutError(f"bit-field '{f.name}' has no portable byte layout")
            size, align = self.size_align(f.ctype)
            if decl.packed:
                align = 1
            field_offset = 0 if decl.is_union else align_up(offset, align)
            fields.append(FieldLayout(name=f.name, offset=field_offset, size=size, align=align))
            struct_align = max(struct_align, align)
            offset = max(offset, size) if decl.is_union else field_offset + size

        layout = StructLayout(
            size=align_up(offset, struct_align),
            align=struct_align,
            fields=tuple(fields),
        )
        self._layouts[decl.name] = layout
        return layout
