"""Shared pytest fixtures for fwlink tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from fwlink.models.target import FloatAbi, TargetDescriptor

MULTILIBS = (
    "thumb/v7e-m+fp/hard",
    "thumb/v7e-m+fp/softfp",
    "thumb/v7e-m/nofp",
    "thumb/v6-m/nofp",
)
GCC_VERSIONS = ("12.2.1", "13.2.1")


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"!<arch>\n")
    return path


@pytest.fixture
def toolchain_root(tmp_path: Path) -> Path:
    """Fake GNU Arm Embedded install with newlib, newlib-nano and libgcc multilibs."""
    root = tmp_path / "gcc-arm"
    for multilib in MULTILIBS:
        lib = root / "arm-none-eabi" / "lib" / multilib
        for name in ("libc.a", "libc_nano.a", "libm.a", "libnosys.a"):
            _touch(lib / name)
        for version in GCC_VERSIONS:
            _touch(root / "lib" / "gcc" / "arm-none-eabi" / version / multilib / "libgcc.a")
    (root / "bin").mkdir()
    return root


@pytest.fixture
def m4_hard() -> TargetDescriptor:
    return TargetDescriptor(
        architecture="armv7e-m",
        cpu_model="cortex-m4",
        float_abi=FloatAbi.HARD,
        fpu_variant="fpv4-sp-d16",
    )


@pytest.fixture
def m4_soft() -> TargetDescriptor:
    return TargetDescriptor(
        architecture="armv7e-m",
        cpu_model="cortex-m4",
        float_abi=FloatAbi.SOFT,
        fpu_variant="fpv4-sp-d16",
    )


MANIFEST = """\
[project]
name = "blinky"
root_unit = "app"
output = "out/blinky.elf"
build_dir = "build"
jobs = 2

[target]
architecture = "armv7e-m"
cpu_model = "cortex-m4"
fpu_variant = "fpv4-sp-d16"
float_abi = "hardware"

[toolchain]
root = "{root}"

[units.app]
sources = ["app/main.c", "app/irq.c"]
include_dirs = ["app/include"]
dependencies = ["hal", "vendor"]

[units.hal]
sources = ["hal/gpio.c"]
include_dirs = ["hal/include"]
dependencies = ["vendor"]

[units.vendor]
sources = ["vendor/startup.s", "vendor/system.c"]
include_dirs = ["vendor/include"]
linker_script = "vendor/device.ld"
defines = ["STM32F411xE"]
"""


@pytest.fixture
def project_dir(tmp_path: Path, toolchain_root: Path) -> Path:
    """A three-unit firmware project (app -> hal -> vendor) with a manifest."""
    proj = tmp_path / "proj"
    for rel in (
        "app/main.c",
        "app/irq.c",
        "hal/gpio.c",
        "vendor/startup.s",
        "vendor/system.c",
        "vendor/device.ld",
    ):
        p = proj / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text("/* stub */\n")
    (proj / "firmware.toml").write_text(MANIFEST.format(root=toolchain_root.as_posix()))
    return proj


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("FWLINK_TOOLCHAIN_ROOT", raising=False)
    monkeypatch.delenv("FWLINK_LOG_LEVEL", raising=False)
    monkeypatch.delenv("FWLINK_LOG_FORMAT", raising=False)
