"""Toolchain installation layout — where precompiled runtime libraries live.

The layout is an external contract with the installed toolchain
(``<root>/<segment>/<triple>/<file>``) and changes between toolchain
releases, so it is data that can be replaced from TOML rather than code.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fwlink.exceptions import ConfigError
from fwlink.models.target import DEFAULT_TRIPLE_FORMAT

DEFAULT_LIBRARIES = ("libc", "math", "syscall-stub", "compiler-support")


@dataclass(frozen=True)
class LibrarySpec:
    """File names for one logical library."""

    logical_name: str
    standard: tuple[str, ...]
    minimal: tuple[str, ...] = ()
    segment: str | None = None  # overrides ToolchainLayout.segment; may contain one '*'


@dataclass
class ToolchainLayout:
    name: str = "arm-none-eabi"
    segment: str = "arm-none-eabi/lib"
    triple_format: str = DEFAULT_TRIPLE_FORMAT
    libraries: dict[str, LibrarySpec] = field(default_factory=dict)

    @classmethod
    def default(cls) -> ToolchainLayout:
        """GNU Arm Embedded layout (newlib + newlib-nano multilibs)."""
        layout = cls()
        for spec in (
            LibrarySpec("libc", standard=("libc.a",), minimal=("libc_nano.a",)),
            LibrarySpec("minimal-libc", standard=("libc.a",), minimal=("libc_nano.a",)),
            LibrarySpec("math", standard=("libm.a",)),
            LibrarySpec("syscall-stub", standard=("libnosys.a",)),
            LibrarySpec(
                "compiler-support",
                standard=("libgcc.a",),
                segment="lib/gcc/arm-none-eabi/*",
            ),
        ):
            layout.libraries[spec.logical_name] = spec
        return layout

    def spec_for(self, logical_name: str) -> LibrarySpec | None:
        return self.libraries.get(logical_name)

    @classmethod
    def from_toml(cls, path: str | Path) -> ToolchainLayout:
        try:
            data = tomllib.loads(Path(path).read_text())
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Cannot read toolchain layout {path}: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolchainLayout:
        """Build a layout from a ``[layout]`` / ``[library.<name>]`` mapping."""
        header = data.get("layout", {})
        layout = cls(
            name=header.get("name", "custom"),
            segment=header.get("segment", cls.segment),
            triple_format=header.get("triple_format", DEFAULT_TRIPLE_FORMAT),
        )
        try:
            for name, entry in data.get("library", {}).items():
                layout.libraries[name] = LibrarySpec(
                    logical_name=name,
                    standard=tuple(entry["standard"]),
                    minimal=tuple(entry.get("minimal", [])),
                    segment=entry.get("segment"),
                )
        except (KeyError, TypeError) as e:
            raise ConfigError(f"Malformed library entry in toolchain layout: {e}") from e
        return layout
