"""Firmware build orchestrator — resolve, select, compose, bridge, compile, link, publish.

Every resolution-phase error (target, libraries, unit graph, linker
script) is raised before the first compiler process starts. Objects are
compiled in parallel; the link waits for all of them. The linker writes to
a temporary file next to the final artifact, which is moved into place
only when the whole build succeeded.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from fwlink.bridge import DATA_MODELS, check_usage, extract_declarations, render_bindings, translate
from fwlink.build.composer import compose
from fwlink.build.linkage import (
    assert_flat_command,
    parse_nm_output,
    plan_inputs,
    resolve_symbols,
    weak_overrides,
)
from fwlink.config import ProjectConfig
from fwlink.core.lock import OutputLock
from fwlink.exceptions import BuildCancelled, ConfigError, FwlinkError
from fwlink.models.build import CompileStep, LibrarySelection, LinkPlan
from fwlink.models.declarations import BridgedDeclaration
from fwlink.models.target import ResolvedTarget
from fwlink.progress import BuildProgress
from fwlink.target.resolver import resolve_target
from fwlink.toolchain.invoker import Toolchain, ToolchainInvoker, compile_command, link_command
from fwlink.toolchain.selector import SystemLibrarySelector

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Outcome of a successful build."""

    output: Path
    target: ResolvedTarget
    plan: LinkPlan
    libraries: LibrarySelection
    bridged: list[BridgedDeclaration] = field(default_factory=list)
    bindings: Path | None = None
    overrides: dict[str, tuple[str, str]] = field(default_factory=dict)  # symbol -> (weak unit, winner)


class FirmwareBuilder:
    """Drive one build described by a ProjectConfig.

    Args:
        config: Validated manifest.
        invoker: Runs toolchain programs (injectable for tests).
        toolchain: Program names; defaults to the GNU Arm tools under the
            toolchain root's ``bin`` directory.
        cancel_event: Set from another thread to abort between steps.
        inspect_symbols: Run ``nm`` on every object before linking and
            report which weak defaults were overridden.
    """

    def __init__(
        self,
        config: ProjectConfig,
        invoker: ToolchainInvoker | None = None,
        toolchain: Toolchain | None = None,
        cancel_event: threading.Event | None = None,
        inspect_symbols: bool = False,
    ) -> None:
        self.config = config
        self.invoker = invoker or ToolchainInvoker(timeout=config.toolchain.timeout)
        self._toolchain = toolchain
        self.cancel_event = cancel_event or threading.Event()
        self.inspect_symbols = inspect_symbols
        self.progress = BuildProgress()
        self._abort = threading.Event()

    @property
    def toolchain(self) -> Toolchain:
        if self._toolchain is None:
            self._toolchain = Toolchain.under(self.config.toolchain_root(), self.config.toolchain.prefix)
        return self._toolchain

    def cancel(self) -> None:
        self.cancel_event.set()

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise BuildCancelled("Build cancelled")

    # ── resolution phases ──

    def resolve(self) -> ResolvedTarget:
        target = resolve_target(self.config.target.descriptor(), self.config.target_table())
        logger.info("Resolved target %s (%s)", target.triple, target.rust_target)
        return target

    def find_libraries(self, target: ResolvedTarget) -> LibrarySelection:
        """Probe every configured library; missing ones are reported, not raised."""
        tc = self.config.toolchain
        selector = SystemLibrarySelector(self.config.toolchain_root(), self.config.toolchain_layout())
        return selector.select(target.triple, tc.libraries, minimal=tc.minimal)

    def select_libraries(self, target: ResolvedTarget) -> LibrarySelection:
        tc = self.config.toolchain
        selection = self.find_libraries(target)
        selection.require([n for n in tc.libraries if n not in tc.optional_libraries])
        return selection

    def compose(self, selection: LibrarySelection) -> LinkPlan:
        project = self.config.project
        return compose(
            self.config.build_units(),
            selection.variants(optional=set(self.config.toolchain.optional_libraries)),
            project.build_dir,
            entry_symbol=project.entry_symbol,
            script_precedence=project.script_precedence,
        )

    def plan(self) -> tuple[ResolvedTarget, LibrarySelection, LinkPlan]:
        """Run resolve/select/compose without invoking any toolchain program."""
        with self.progress.phase("resolve"):
            target = self.resolve()
        with self.progress.phase("select"):
            selection = self.select_libraries(target)
        with self.progress.phase("compose"):
            plan = self.compose(selection)
        return target, selection, plan

    # ── bridge ──

    def bridge(self) -> tuple[list[BridgedDeclaration], Path | None]:
        """Extract, translate and write bindings; fail if app code uses a marker."""
        cfg = self.config.bridge
        if cfg is None or not cfg.headers:
            return [], None
        model = DATA_MODELS.get(cfg.data_model)
        if model is None:
            raise ConfigError(
                f"Unknown data model '{cfg.data_model}' (known: {', '.join(sorted(DATA_MODELS))})"
            )
        decls = extract_declarations(cfg.headers, cfg.defines, cfg.include_dirs, model)
        bridged = translate(decls, model)
        output = None
        if cfg.output is not None:
            output = cfg.output
            _write_atomic(output, render_bindings(bridged, model.name))
            logger.info("Wrote bindings %s", output)
        check_usage(cfg.sources, bridged)
        return bridged, output

    # ── compile / link ──

    def _compile_one(self, step: CompileStep, target: ResolvedTarget) -> Path:
        if self.cancel_event.is_set() or self._abort.is_set():
            raise BuildCancelled(f"Skipped {step.source}")
        program, args = compile_command(self.toolchain, step, target)
        self.invoker.run(program, args)
        logger.debug("Compiled %s -> %s", step.source, step.object_path)
        return step.object_path

    def compile(self, plan: LinkPlan, target: ResolvedTarget) -> list[Path]:
        """Compile every step in parallel; re-raise the first failure."""
        for step in plan.compile_steps:
            step.object_path.parent.mkdir(parents=True, exist_ok=True)
        self._abort.clear()
        failure: FwlinkError | None = None
        objects: list[Path] = []
        with ThreadPoolExecutor(max_workers=self.config.project.jobs) as pool:
            futures = {pool.submit(self._compile_one, step, target): step for step in plan.compile_steps}
            for future in as_completed(futures):
                try:
                    objects.append(future.result())
                except BuildCancelled:
                    continue
                except FwlinkError as e:
                    if failure is None:
                        failure = e
                        self._abort.set()
                        logger.error("Compile failed for %s", futures[future].source)
        if failure is not None:
            raise failure
        self._check_cancelled()
        return objects

    def symbol_report(self, plan: LinkPlan) -> dict[str, tuple[str, str]]:
        """Model the link from ``nm`` output; returns overridden weak defaults."""
        tables = {
            step.object_path: parse_nm_output(
                self.invoker.run(self.toolchain.nm, ["-g", str(step.object_path)]),
                str(step.object_path),
                step.unit,
            )
            for step in plan.compile_steps
        }
        resolution = resolve_symbols(plan_inputs(plan, tables), plan.entry_symbol)
        overrides = weak_overrides(resolution)
        for name, (default_unit, winner) in overrides.items():
            if default_unit != winner:
                logger.info("Weak default %s from '%s' overridden by '%s'", name, default_unit, winner)
        return overrides

    def link(self, plan: LinkPlan, target: ResolvedTarget) -> Path:
        """Link into a temporary file beside the output; return its path."""
        output = self.config.project.output
        output.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=output.parent, prefix=f".{output.name}.", suffix=".tmp")
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            program, args = link_command(self.toolchain, plan, target, tmp)
            assert_flat_command(args, plan)
            self.invoker.run(program, args)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return tmp

    # ── full build ──

    def build(self) -> BuildResult:
        output = self.config.project.output
        with OutputLock(output.parent):
            target, selection, plan = self.plan()
            self._check_cancelled()

            with self.progress.phase("bridge"):
                bridged, bindings = self.bridge()
            self._check_cancelled()

            with self.progress.phase("compile"):
                self.compile(plan, target)

            overrides: dict[str, tuple[str, str]] = {}
            with self.progress.phase("link"):
                if self.inspect_symbols:
                    overrides = self.symbol_report(plan)
                tmp = self.link(plan, target)

            try:
                with self.progress.phase("publish"):
                    self._check_cancelled()
                    os.replace(tmp, output)
            finally:
                tmp.unlink(missing_ok=True)

        logger.info("Built %s", output)
        return BuildResult(
            output=output,
            target=target,
            plan=plan,
            libraries=selection,
            bridged=bridged,
            bindings=bindings,
            overrides=overrides,
        )


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
