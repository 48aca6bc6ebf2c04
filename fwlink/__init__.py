"""fwlink: firmware build composition and linkage engine."""

__version__ = "0.1.0"

from fwlink.bridge import check_usage, extract_declarations, render_bindings, translate
from fwlink.build.builder import BuildResult, FirmwareBuilder
from fwlink.build.composer import ScriptPrecedence, compose
from fwlink.build.linkage import assert_flat, resolve_symbols
from fwlink.config import ProjectConfig, load_config
from fwlink.models.build import BuildUnit, LinkPlan
from fwlink.models.target import CanonicalTriple, FloatAbi, ResolvedTarget, TargetDescriptor
from fwlink.target.resolver import canonicalize, resolve_target
from fwlink.toolchain.selector import SystemLibrarySelector

__all__ = [
    "BuildResult",
    "BuildUnit",
    "CanonicalTriple",
    "FirmwareBuilder",
    "FloatAbi",
    "LinkPlan",
    "ProjectConfig",
    "ResolvedTarget",
    "ScriptPrecedence",
    "SystemLibrarySelector",
    "TargetDescriptor",
    "assert_flat",
    "canonicalize",
    "check_usage",
    "compose",
    "extract_declarations",
    "load_config",
    "render_bindings",
    "resolve_symbols",
    "resolve_target",
    "translate",
]
