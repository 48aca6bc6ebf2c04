"""External toolchain contract — program path + ordered argument list.

Success is decided by exit status only; stderr is kept verbatim for
diagnostics and never parsed for correctness decisions.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from fwlink.exceptions import ToolchainInvocationFailed, ToolchainNotFound
from fwlink.models.build import CompileStep, LinkPlan
from fwlink.models.target import ResolvedTarget

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300  # seconds per tool invocation


@dataclass(frozen=True)
class Toolchain:
    """Programs used for a build. Names are looked up on PATH unless absolute."""

    cc: str = "arm-none-eabi-gcc"
    rustc: str = "rustc"
    linker: str = "arm-none-eabi-gcc"
    nm: str = "arm-none-eabi-nm"

    @classmethod
    def under(cls, root: str | Path, prefix: str = "arm-none-eabi-") -> Toolchain:
        """Toolchain whose GNU tools live in ``<root>/bin``."""
        bin_dir = Path(root) / "bin"
        return cls(
            cc=str(bin_dir / f"{prefix}gcc"),
            linker=str(bin_dir / f"{prefix}gcc"),
            nm=str(bin_dir / f"{prefix}nm"),
        )


class ToolchainInvoker:
    """Run toolchain programs and turn failures into ToolchainInvocationFailed."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def run(self, program: str, args: list[str], cwd: str | Path | None = None) -> str:
        """Run ``program args...``; return stdout.

        Raises:
            ToolchainNotFound: program cannot be executed.
            ToolchainInvocationFailed: non-zero exit or timeout.
        """
        cmd = [program, *args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ToolchainNotFound(f"Toolchain program not found: {program}") from e
        except subprocess.TimeoutExpired as e:
            stderr = e.stderr.decode(errors="replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
            raise ToolchainInvocationFailed(program, None, stderr) from e

        if result.returncode != 0:
            raise ToolchainInvocationFailed(program, result.returncode, result.stderr)
        if result.stderr:
            logger.debug("%s stderr: %s", Path(program).name, result.stderr.strip())
        return result.stdout


# ── command construction ──


def gcc_target_flags(target: ResolvedTarget) -> list[str]:
    """``-mcpu``/``-mthumb``/``-mfloat-abi``/``-mfpu`` flags for a resolved target."""
    flags = [f"-mcpu={target.descriptor.cpu_model}"]
    if target.triple.isa == "thumb":
        flags.append("-mthumb")
    flags.append(f"-mfloat-abi={target.gcc_float_abi}")
    if target.fpu_variant and target.triple.abi != "nofp":
        flags.append(f"-mfpu={target.fpu_variant}")
    return flags


def rustc_target_flags(target: ResolvedTarget) -> list[str]:
    flags = [
        "--target",
        target.rust_target,
        "-C",
        f"target-cpu={target.descriptor.cpu_model}",
    ]
    if target.features:
        flags += ["-C", "target-feature=" + ",".join(target.features)]
    return flags


def compile_command(toolchain: Toolchain, step: CompileStep, target: ResolvedTarget) -> tuple[str, list[str]]:
    """Program and arguments that compile ``step`` into its object file."""
    if step.language == "rust":
        args = [
            *rustc_target_flags(target),
            "--crate-type",
            "lib",
            "--emit",
            f"obj={step.object_path}",
            "-C",
            "panic=abort",
            "-C",
            "opt-level=s",
            str(step.source),
        ]
        return toolchain.rustc, args

    args = [*gcc_target_flags(target), "-ffreestanding", "-ffunction-sections", "-fdata-sections"]
    args += [f"-I{d}" for d in step.include_dirs]
    args += [f"-D{d}" for d in step.defines]
    args += ["-c", str(step.source), "-o", str(step.object_path)]
    return toolchain.cc, args


def link_command(
    toolchain: Toolchain,
    plan: LinkPlan,
    target: ResolvedTarget,
    output: Path,
) -> tuple[str, list[str]]:
    """Program and arguments for the final link of ``plan`` into ``output``.

    Unit objects are listed individually (never archived); system libraries
    are grouped so their mutual references resolve regardless of order.
    """
    args = [
        *gcc_target_flags(target),
        "-nostartfiles",
        "-nostdlib",
        "-Wl,--gc-sections",
        f"-T{plan.linker_script}",
        f"-Wl,--entry={plan.entry_symbol}",
        *[str(obj) for obj in plan.objects],
    ]
    if plan.libraries:
        args += ["-Wl,--start-group", *[str(p) for p in plan.library_paths], "-Wl,--end-group"]
    args += ["-o", str(output)]
    return toolchain.linker, args
