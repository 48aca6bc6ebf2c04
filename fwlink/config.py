"""Project manifest (``firmware.toml``) loading and validation.

Relative paths resolve against the directory holding the manifest.
``FWLINK_TOOLCHAIN_ROOT`` overrides ``[toolchain] root``.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from fwlink.build.composer import DEFAULT_ENTRY_SYMBOL, ScriptPrecedence
from fwlink.exceptions import ConfigError, CyclicDependency
from fwlink.models.build import BuildUnit
from fwlink.models.target import FloatAbi, TargetDescriptor
from fwlink.target.table import TargetTable
from fwlink.toolchain.invoker import DEFAULT_TIMEOUT
from fwlink.toolchain.layout import DEFAULT_LIBRARIES, ToolchainLayout

logger = logging.getLogger(__name__)

MANIFEST_NAME = "firmware.toml"
TOOLCHAIN_ROOT_ENV = "FWLINK_TOOLCHAIN_ROOT"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TargetConfig(_Section):
    architecture: str
    cpu_model: str
    float_abi: str = "software"
    fpu_variant: str | None = None
    isa_mode: str | None = None
    extra_features: list[str] = Field(default_factory=list)
    table: Path | None = None  # TOML overlay for the target table

    @field_validator("float_abi")
    @classmethod
    def _known_abi(cls, v: str) -> str:
        FloatAbi.parse(v)
        return v

    def descriptor(self) -> TargetDescriptor:
        return TargetDescriptor(
            architecture=self.architecture,
            cpu_model=self.cpu_model,
            float_abi=FloatAbi.parse(self.float_abi),
            fpu_variant=self.fpu_variant,
            isa_mode=self.isa_mode,
            extra_features=frozenset(self.extra_features),
        )


class ToolchainConfig(_Section):
    root: Path | None = None
    prefix: str = "arm-none-eabi-"
    layout: Path | None = None  # TOML overlay for the library layout
    libraries: list[str] = Field(default_factory=lambda: list(DEFAULT_LIBRARIES))
    optional_libraries: list[str] = Field(default_factory=lambda: ["syscall-stub"])
    minimal: bool = False
    timeout: float = DEFAULT_TIMEOUT

    @field_validator("timeout")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v


class UnitConfig(_Section):
    sources: list[Path] = Field(default_factory=list)
    include_dirs: list[Path] = Field(default_factory=list)
    defines: list[str] = Field(default_factory=list)
    linker_script: Path | None = None
    dependencies: list[str] = Field(default_factory=list)


class BridgeConfig(_Section):
    headers: list[Path] = Field(default_factory=list)
    include_dirs: list[Path] = Field(default_factory=list)
    defines: list[str] = Field(default_factory=list)
    output: Path | None = None
    sources: list[Path] = Field(default_factory=list)  # application code checked for marker use
    data_model: str = "ilp32-aapcs"


class ProjectSection(_Section):
    name: str
    root_unit: str
    output: Path = Path("build/firmware.elf")
    build_dir: Path = Path("build")
    entry_symbol: str = DEFAULT_ENTRY_SYMBOL
    script_precedence: ScriptPrecedence = ScriptPrecedence.ROOT
    jobs: int = Field(default=4, ge=1)

    @field_validator("name", "root_unit", mode="before")
    @classmethod
    def _strip_whitespace(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v


class ProjectConfig(BaseModel):
    """Validated contents of one manifest."""

    model_config = ConfigDict(extra="forbid")

    project: ProjectSection
    target: TargetConfig
    toolchain: ToolchainConfig = Field(default_factory=ToolchainConfig)
    units: dict[str, UnitConfig]
    bridge: BridgeConfig | None = None
    base_dir: Path = Path(".")

    # ── derived objects ──

    def target_table(self) -> TargetTable | None:
        if self.target.table is None:
            return None
        return TargetTable.from_toml(self.target.table)

    def toolchain_layout(self) -> ToolchainLayout:
        if self.toolchain.layout is None:
            return ToolchainLayout.default()
        return ToolchainLayout.from_toml(self.toolchain.layout)

    def toolchain_root(self) -> Path:
        env = os.environ.get(TOOLCHAIN_ROOT_ENV)
        if env:
            return Path(env)
        if self.toolchain.root is None:
            raise ConfigError(f"No toolchain root: set [toolchain] root or {TOOLCHAIN_ROOT_ENV}")
        return self.toolchain.root

    def build_units(self) -> BuildUnit:
        """Build the unit graph and return the root unit."""
        built: dict[str, BuildUnit] = {}
        path: list[str] = []

        def make(name: str) -> BuildUnit:
            if name in built:
                return built[name]
            if name in path:
                raise CyclicDependency(path[path.index(name):] + [name])
            cfg = self.units.get(name)
            if cfg is None:
                owner = f" (required by '{path[-1]}')" if path else ""
                raise ConfigError(f"Unknown build unit '{name}'{owner}")
            path.append(name)
            deps = tuple(make(d) for d in cfg.dependencies)
            path.pop()
            built[name] = BuildUnit(
                name=name,
                sources=tuple(cfg.sources),
                include_dirs=tuple(cfg.include_dirs),
                defines=tuple(cfg.defines),
                linker_script=cfg.linker_script,
                dependencies=deps,
            )
            return built[name]

        root = make(self.project.root_unit)
        unused = sorted(set(self.units) - set(built))
        if unused:
            logger.warning("Units not reachable from '%s': %s", root.name, ", ".join(unused))
        return root


def _resolve_paths(config: ProjectConfig, base: Path) -> ProjectConfig:
    def r(p: Path | None) -> Path | None:
        if p is None:
            return None
        p = p.expanduser()
        return p if p.is_absolute() else base / p

    def rs(paths: list[Path]) -> list[Path]:
        return [r(p) for p in paths]

    project = config.project.model_copy(
        update={"output": r(config.project.output), "build_dir": r(config.project.build_dir)}
    )
    target = config.target.model_copy(update={"table": r(config.target.table)})
    toolchain = config.toolchain.model_copy(
        update={"root": r(config.toolchain.root), "layout": r(config.toolchain.layout)}
    )
    units = {
        name: u.model_copy(
            update={
                "sources": rs(u.sources),
                "include_dirs": rs(u.include_dirs),
                "linker_script": r(u.linker_script),
            }
        )
        for name, u in config.units.items()
    }
    bridge = None
    if config.bridge is not None:
        bridge = config.bridge.model_copy(
            update={
                "headers": rs(config.bridge.headers),
                "include_dirs": rs(config.bridge.include_dirs),
                "output": r(config.bridge.output),
                "sources": rs(config.bridge.sources),
            }
        )
    return config.model_copy(
        update={
            "project": project,
            "target": target,
            "toolchain": toolchain,
            "units": units,
            "bridge": bridge,
            "base_dir": base,
        }
    )


def parse_config(data: dict, base_dir: str | Path = ".") -> ProjectConfig:
    """Validate manifest ``data``; relative paths resolve against ``base_dir``."""
    try:
        config = ProjectConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid manifest: {e}") from e
    return _resolve_paths(config, Path(base_dir).resolve())


def load_config(path: str | Path) -> ProjectConfig:
    """Load ``firmware.toml`` (or the manifest inside directory ``path``)."""
    path = Path(path)
    if path.is_dir():
        path = path / MANIFEST_NAME
    try:
        data = tomllib.loads(path.read_text())
    except OSError as e:
        raise ConfigError(f"Cannot read manifest {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    logger.debug("Loaded manifest %s", path)
    return parse_config(data, path.parent)
