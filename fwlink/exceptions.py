"""Custom exceptions for fwlink."""

from __future__ import annotations


class FwlinkError(Exception):
    """Base exception for all fwlink errors."""


class ConfigError(FwlinkError):
    """Raised when a project manifest or data table is invalid."""


class UnsupportedTarget(FwlinkError):
    """Raised when a target descriptor has no entry in the target table."""


class InconsistentTargetFeatures(UnsupportedTarget):
    """Raised when requested features contradict the declared FPU variant."""


class ToolchainNotFound(FwlinkError):
    """Raised when the toolchain root directory does not exist."""


class LibraryNotFound(FwlinkError):
    """Raised when a logical system library has no file under the toolchain root."""

    def __init__(self, logical_name: str, searched: list[str]):
        self.logical_name = logical_name
        self.searched = searched
        super().__init__(
            f"Library '{logical_name}' not found; searched: {', '.join(searched) or '(nothing)'}"
        )


class CyclicDependency(FwlinkError):
    """Raised when the build unit graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic build unit dependency: {' -> '.join(cycle)}")


class CompositionError(FwlinkError):
    """Raised when build units cannot be merged into one link plan."""


class MissingLinkerScript(CompositionError):
    """Raised when no unit in the graph supplies a linker script."""


class LinkagePolicyViolation(FwlinkError):
    """Raised when a link input list would archive composed units."""


class DuplicateSymbol(FwlinkError):
    """Raised when two strong definitions of one symbol reach the link."""

    def __init__(self, name: str, first: str, second: str):
        self.name = name
        self.first = first
        self.second = second
        super().__init__(f"Duplicate strong symbol '{name}' defined in {first} and {second}")


class UntranslatableDeclaration(FwlinkError):
    """Raised when application code references an untranslatable bridge marker."""

    def __init__(self, name: str, reason: str, location: str = ""):
        self.name = name
        self.reason = reason
        self.location = location
        where = f" at {location}" if location else ""
        super().__init__(f"Use of untranslatable C macro '{name}'{where}: {reason}")


class ToolchainInvocationFailed(FwlinkError):
    """Raised when an external toolchain program exits non-zero or times out."""

    def __init__(self, program: str, returncode: int | None, stderr: str):
        self.program = program
        self.returncode = returncode
        self.stderr = stderr
        status = "timed out" if returncode is None else f"rc={returncode}"
        super().__init__(f"{program} failed ({status}): {stderr}")


class BuildCancelled(FwlinkError):
    """Raised when a build is aborted between steps."""


class OutputLocked(FwlinkError):
    """Raised when another build holds the output directory."""


class HeaderParseError(FwlinkError):
    """Raised when a C header cannot be preprocessed (e.g. an active ``#error``)."""
