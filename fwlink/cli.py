"""CLI entry point: fwlink.

Subcommands:
    fwlink resolve --arch armv7e-m --cpu cortex-m4 --fpu fpv4-sp-d16 --float-abi hard
    fwlink libs [MANIFEST]          # system libraries selected for the target
    fwlink plan [MANIFEST]          # unit order, compile steps, link command
    fwlink bridge [MANIFEST]        # generate Rust bindings, check marker use
    fwlink build [MANIFEST]         # full build
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import click

from fwlink.build.builder import FirmwareBuilder
from fwlink.config import load_config
from fwlink.core.logging import setup_logging
from fwlink.exceptions import FwlinkError
from fwlink.models.target import FloatAbi, TargetDescriptor
from fwlink.target.resolver import resolve_target
from fwlink.target.table import TargetTable
from fwlink.toolchain.invoker import gcc_target_flags, link_command, rustc_target_flags

_STATUS_ICONS = {
    "completed": "+",
    "failed": "!",
    "skipped": "-",
    "running": "~",
    "pending": ".",
}


@contextmanager
def _errors() -> Iterator[None]:
    """Turn FwlinkError into a one-line message and exit code 1."""
    try:
        yield
    except FwlinkError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _builder(manifest: str, **kwargs) -> FirmwareBuilder:
    return FirmwareBuilder(load_config(manifest), **kwargs)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def main(verbose: bool) -> None:
    """fwlink: firmware build composition and linkage."""
    setup_logging(verbose)


@main.command("resolve")
@click.option("--arch", "architecture", required=True, help="Architecture name, e.g. armv7e-m")
@click.option("--cpu", "cpu_model", required=True, help="CPU model, e.g. cortex-m4")
@click.option("--fpu", "fpu_variant", default=None, help="FPU variant or 'none'")
@click.option("--float-abi", default="software", help="hardware | software")
@click.option("--isa", "isa_mode", default=None, help="Instruction set mode (thumb)")
@click.option("--feature", "features", multiple=True, help="Extra feature flag (+x / -x)")
@click.option("--table", type=click.Path(exists=True), default=None, help="Target table overlay (TOML)")
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
def resolve_cmd(
    architecture: str,
    cpu_model: str,
    fpu_variant: str | None,
    float_abi: str,
    isa_mode: str | None,
    features: tuple[str, ...],
    table: str | None,
    as_json: bool,
) -> None:
    """Resolve a target descriptor to its canonical triple and flags."""
    with _errors():
        try:
            abi = FloatAbi.parse(float_abi)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--float-abi") from e
        descriptor = TargetDescriptor(
            architecture=architecture,
            cpu_model=cpu_model,
            float_abi=abi,
            fpu_variant=fpu_variant,
            isa_mode=isa_mode,
            extra_features=frozenset(features),
        )
        target = resolve_target(descriptor, TargetTable.from_toml(table) if table else None)

    info = {
        "triple": str(target.triple),
        "rust_target": target.rust_target,
        "features": list(target.features),
        "gcc_flags": gcc_target_flags(target),
        "rustc_flags": rustc_target_flags(target),
    }
    if as_json:
        click.echo(json.dumps(info, indent=2))
        return
    click.echo(f"Triple: {info['triple']}")
    click.echo(f"Rust target: {info['rust_target']}")
    click.echo(f"Features: {','.join(info['features']) or '(none)'}")
    click.echo(f"GCC flags: {' '.join(info['gcc_flags'])}")
    click.echo(f"rustc flags: {' '.join(info['rustc_flags'])}")


@main.command("libs")
@click.argument("manifest", type=click.Path(exists=True), default=".")
@click.option("--minimal/--standard", default=None, help="Override the manifest's library variant")
def libs_cmd(manifest: str, minimal: bool | None) -> None:
    """Show the system libraries selected for the project's target."""
    with _errors():
        builder = _builder(manifest)
        if minimal is not None:
            builder.config.toolchain.minimal = minimal
        target = builder.resolve()
        tc = builder.config.toolchain
        selection = builder.find_libraries(target)

    click.echo(f"Triple: {target.triple}")
    for name, lib in selection.found.items():
        click.echo(f"  [+] {name} ({lib.variant}): {lib.path}")
    for name, err in selection.missing.items():
        optional = " (optional)" if name in tc.optional_libraries else ""
        click.echo(f"  [!] {name}{optional}: not found")
        for searched in err.searched:
            click.echo(f"        searched {searched}")
    required_missing = [n for n in selection.missing if n not in tc.optional_libraries]
    if required_missing:
        sys.exit(1)


@main.command("plan")
@click.argument("manifest", type=click.Path(exists=True), default=".")
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
def plan_cmd(manifest: str, as_json: bool) -> None:
    """Show the composed link plan without compiling."""
    with _errors():
        builder = _builder(manifest)
        target, _, plan = builder.plan()
        program, args = link_command(
            builder.toolchain,
            plan,
            target,
            builder.config.project.output,
        )

    if as_json:
        click.echo(
            json.dumps(
                {
                    "triple": str(target.triple),
                    "units": list(plan.unit_order),
                    "objects": [str(o) for o in plan.objects],
                    "libraries": [str(p) for p in plan.library_paths],
                    "linker_script": str(plan.linker_script),
                    "entry": plan.entry_symbol,
                    "link": [program, *args],
                },
                indent=2,
            )
        )
        return
    click.echo(f"Triple: {target.triple}")
    click.echo(f"Units (dependency order): {' -> '.join(plan.unit_order)}")
    click.echo(f"Linker script: {plan.linker_script}")
    click.echo(f"Entry: {plan.entry_symbol}")
    click.echo(f"\nCompile steps ({len(plan.compile_steps)}):")
    for step in plan.compile_steps:
        click.echo(f"  [{step.unit}] {step.source} -> {step.object_path}")
    click.echo(f"\nLibraries ({len(plan.libraries)}):")
    for lib in plan.libraries:
        click.echo(f"  {lib.logical_name} ({lib.variant}): {lib.path}")
    click.echo(f"\nLink: {program} {' '.join(args)}")


@main.command("bridge")
@click.argument("manifest", type=click.Path(exists=True), default=".")
@click.option("-o", "--output", type=click.Path(), default=None, help="Override the bindings output path")
def bridge_cmd(manifest: str, output: str | None) -> None:
    """Generate Rust bindings from the configured C headers."""
    with _errors():
        builder = _builder(manifest)
        if builder.config.bridge is None:
            click.echo("Error: manifest has no [bridge] section", err=True)
            sys.exit(1)
        if output:
            builder.config.bridge.output = Path(output).resolve()
        bridged, path = builder.bridge()

    translated = [b for b in bridged if b.translated]
    markers = [b for b in bridged if not b.translated]
    click.echo(f"Declarations: {len(bridged)} ({len(translated)} translated, {len(markers)} untranslatable)")
    for marker in markers:
        click.echo(f"  [-] {marker.name}: {marker.reason}")
    if path is not None:
        click.echo(f"Bindings written to {path}")


@main.command("build")
@click.argument("manifest", type=click.Path(exists=True), default=".")
@click.option("--inspect-symbols", is_flag=True, help="Report weak symbol overrides using nm")
def build_cmd(manifest: str, inspect_symbols: bool) -> None:
    """Build the firmware image."""
    builder = None
    try:
        with _errors():
            builder = _builder(manifest, inspect_symbols=inspect_symbols)
            result = builder.build()
    finally:
        if builder is not None:
            _print_summary(builder)

    click.echo(f"\nBuilt {result.output}")
    click.echo(f"  Target: {result.target.triple}")
    click.echo(f"  Objects: {len(result.plan.compile_steps)}")
    click.echo(f"  Libraries: {', '.join(result.libraries.found)}")
    for name, (default_unit, winner) in result.overrides.items():
        if default_unit != winner:
            click.echo(f"  Override: {name} ({default_unit} -> {winner})")


def _print_summary(builder: FirmwareBuilder) -> None:
    summary = builder.progress.summary()
    if not summary["phases"]:
        return
    click.echo(f"Pipeline summary (total: {summary['total_duration']}s):", err=True)
    for p in summary["phases"]:
        icon = _STATUS_ICONS.get(p["status"], "?")
        duration = f" ({p['duration']}s)" if p["duration"] else ""
        detail = f" - {p['detail']}" if p["detail"] else ""
        click.echo(f"  [{icon}] {p['phase']}{duration}{detail}", err=True)


if __name__ == "__main__":
    main()
