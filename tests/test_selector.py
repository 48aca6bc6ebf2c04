"""Tests for SystemLibrarySelector against a fake toolchain tree."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from fwlink.exceptions import LibraryNotFound, ToolchainNotFound
from fwlink.models.target import FloatAbi, TargetDescriptor
from fwlink.target.resolver import canonicalize
from fwlink.toolchain.layout import LibrarySpec, ToolchainLayout
from fwlink.toolchain.selector import SystemLibrarySelector


class TestSelect:
    def test_standard_variants(self, toolchain_root: Path, m4_hard):
        triple = canonicalize(m4_hard)
        selection = SystemLibrarySelector(toolchain_root).select(triple)

        assert not selection.missing
        assert list(selection.found) == ["libc", "math", "syscall-stub", "compiler-support"]
        libc = selection.found["libc"]
        assert libc.path.name == "libc.a"
        assert libc.variant == "standard"
        assert libc.triple == triple

    def test_triple_fragment_appears_once(self, toolchain_root: Path, m4_hard):
        triple = canonicalize(m4_hard)
        fragment = triple.as_path()
        selection = SystemLibrarySelector(toolchain_root).select(triple)
        for lib in selection.found.values():
            assert lib.path.as_posix().count(fragment) == 1
            assert lib.path.is_file()

    def test_hard_and_soft_pick_different_files(self, toolchain_root: Path, m4_hard, m4_soft):
        selector = SystemLibrarySelector(toolchain_root)
        hard = selector.select(canonicalize(m4_hard), ["libc"]).found["libc"]
        soft = selector.select(canonicalize(m4_soft), ["libc"]).found["libc"]
        assert hard.path != soft.path
        assert "/hard/" in hard.path.as_posix()
        assert "/softfp/" in soft.path.as_posix()

    def test_cortex7_class_core_hard_and_soft_file_sets(self, toolchain_root: Path):
        def descriptor(abi: FloatAbi) -> TargetDescriptor:
            return TargetDescriptor(
                architecture="armv7e-m class core",
                fpu_variant="single-precision v5",
                float_abi=abi,
                cpu_model="cortex-class-7",
            )

        selector = SystemLibrarySelector(toolchain_root)
        hard = selector.select(canonicalize(descriptor(FloatAbi.HARD)))
        soft = selector.select(canonicalize(descriptor(FloatAbi.SOFT)))

        assert not hard.missing and not soft.missing
        hard_paths = {lib.path for lib in hard.found.values()}
        soft_paths = {lib.path for lib in soft.found.values()}
        assert hard_paths.isdisjoint(soft_paths)
        assert all("thumb/v7e-m+fp/hard" in p.as_posix() for p in hard_paths)
        assert all("thumb/v7e-m+fp/softfp" in p.as_posix() for p in soft_paths)

    def test_minimal_prefers_nano(self, toolchain_root: Path, m4_hard):
        selection = SystemLibrarySelector(toolchain_root).select(canonicalize(m4_hard), minimal=True)
        libc = selection.found["libc"]
        assert libc.path.name == "libc_nano.a"
        assert libc.variant == "minimal"
        # libraries without a reduced variant fall back to the standard one
        assert selection.found["math"].variant == "standard"

    @pytest.mark.parametrize(
        "minimal, filename, variant",
        [(True, "libc_nano.a", "minimal"), (False, "libc.a", "standard")],
    )
    def test_minimal_libc_logical_name(self, toolchain_root: Path, m4_hard, minimal, filename, variant):
        triple = canonicalize(m4_hard)
        selection = SystemLibrarySelector(toolchain_root).select(triple, ["minimal-libc"], minimal=minimal)
        assert not selection.missing
        lib = selection.found["minimal-libc"]
        assert lib.path == toolchain_root / "arm-none-eabi" / "lib" / triple.as_path() / filename
        assert lib.variant == variant

    def test_minimal_missing_falls_back_with_warning(self, toolchain_root: Path, m4_hard, caplog):
        triple = canonicalize(m4_hard)
        (toolchain_root / "arm-none-eabi" / "lib" / triple.as_path() / "libc_nano.a").unlink()
        with caplog.at_level(logging.WARNING, logger="fwlink"):
            selection = SystemLibrarySelector(toolchain_root).select(triple, ["libc"], minimal=True)
        assert selection.found["libc"].path.name == "libc.a"
        assert selection.found["libc"].variant == "standard"
        assert "Minimal variant" in caplog.text

    def test_newest_libgcc(self, toolchain_root: Path, m4_hard):
        selection = SystemLibrarySelector(toolchain_root).select(canonicalize(m4_hard), ["compiler-support"])
        assert "13.2.1" in selection.found["compiler-support"].path.parts

    def test_version_sort_is_numeric(self, toolchain_root: Path, m4_hard):
        triple = canonicalize(m4_hard)
        newer = toolchain_root / "lib" / "gcc" / "arm-none-eabi" / "9.3.1" / triple.as_path() / "libgcc.a"
        newer.parent.mkdir(parents=True)
        newer.write_bytes(b"")
        selection = SystemLibrarySelector(toolchain_root).select(triple, ["compiler-support"])
        # 13 > 9 numerically even though "9" sorts after "1" as text
        assert "13.2.1" in selection.found["compiler-support"].path.parts


class TestMissing:
    def test_missing_root(self, tmp_path: Path, m4_hard):
        with pytest.raises(ToolchainNotFound):
            SystemLibrarySelector(tmp_path / "nope").select(canonicalize(m4_hard))

    def test_missing_library_reported_per_name(self, toolchain_root: Path, m4_hard):
        triple = canonicalize(m4_hard)
        (toolchain_root / "arm-none-eabi" / "lib" / triple.as_path() / "libm.a").unlink()
        selection = SystemLibrarySelector(toolchain_root).select(triple)

        assert set(selection.missing) == {"math"}
        err = selection.missing["math"]
        assert isinstance(err, LibraryNotFound)
        assert err.logical_name == "math"
        assert any(s.endswith("libm.a") for s in err.searched)
        assert "libc" in selection.found

    def test_require_raises_missing(self, toolchain_root: Path, m4_hard):
        triple = canonicalize(m4_hard)
        (toolchain_root / "arm-none-eabi" / "lib" / triple.as_path() / "libnosys.a").unlink()
        selection = SystemLibrarySelector(toolchain_root).select(triple)
        assert len(selection.variants(optional={"syscall-stub"})) == 3
        with pytest.raises(LibraryNotFound, match="syscall-stub"):
            selection.require(["libc", "syscall-stub"])

    def test_unknown_logical_name(self, toolchain_root: Path, m4_hard):
        selection = SystemLibrarySelector(toolchain_root).select(canonicalize(m4_hard), ["libstdc++"])
        assert "libstdc++" in selection.missing

    def test_unsupported_multilib(self, toolchain_root: Path):
        d = TargetDescriptor(architecture="armv8-m.main", cpu_model="cortex-m33")
        selection = SystemLibrarySelector(toolchain_root).select(canonicalize(d), ["libc"])
        assert "libc" in selection.missing


class TestLayout:
    def test_custom_layout_from_toml(self, tmp_path: Path, m4_hard):
        root = tmp_path / "llvm"
        lib = root / "lib" / "clang-runtimes" / "v7e-m_hard_fpv4_sp_d16" / "lib"
        lib.mkdir(parents=True)
        (lib / "libc.a").write_bytes(b"")
        layout_file = tmp_path / "layout.toml"
        layout_file.write_text(
            """
[layout]
name = "llvm-embedded"
segment = "lib/clang-runtimes"
triple_format = "{arch}_{abi}_fpv4_sp_d16/lib"

[library.libc]
standard = ["libc.a"]
"""
        )
        layout = ToolchainLayout.from_toml(layout_file)
        triple = canonicalize(m4_hard)
        selection = SystemLibrarySelector(root, layout).select(triple, ["libc"])
        assert selection.found["libc"].path == lib / "libc.a"

    def test_library_dirs_glob(self, toolchain_root: Path, m4_hard):
        selector = SystemLibrarySelector(toolchain_root)
        spec = LibrarySpec("compiler-support", ("libgcc.a",), segment="lib/gcc/arm-none-eabi/*")
        dirs = selector.library_dirs(spec, canonicalize(m4_hard))
        assert [d.parts[-4] for d in dirs] == ["13.2.1", "12.2.1"]
