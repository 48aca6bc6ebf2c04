"""Render bridged declarations as one Rust module."""

from __future__ import annotations

from fwlink.models.declarations import BridgedDeclaration

HEADER = """\
// Generated by fwlink from C headers. Do not edit.
//
// Untranslatable C declarations are emitted as macros that expand to
// compile_error!; include this module with #[macro_use] so every use site
// reports them.
#![allow(non_camel_case_types, non_snake_case, non_upper_case_globals)]
#![allow(dead_code, unused_macros)]
"""


def render_bindings(bridged: list[BridgedDeclaration], data_model: str = "") -> str:
    """Module text: plain items in source order, then one ``extern "C"`` block."""
    parts = [HEADER]
    if data_model:
        parts.append(f"// data model: {data_model}\n")
    externs: list[str] = []
    for item in bridged:
        if not item.rust:
            continue
        if item.extern and item.translated:
            externs.append(item.rust)
        else:
            parts.append(item.rust + "\n")
    if externs:
        body = "\n".join(f"    {line}" for line in externs)
        parts.append(f'unsafe extern "C" {{\n{body}\n}}\n')
    return "\n".join(parts)
