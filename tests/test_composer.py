"""Tests for build unit composition."""

from __future__ import annotations

from pathlib import Path

import pytest

from fwlink.build.composer import ScriptPrecedence, compose, effective_linker_script, topological_units
from fwlink.exceptions import CompositionError, CyclicDependency, MissingLinkerScript
from fwlink.models.build import BuildUnit, LibraryVariant
from fwlink.models.target import CanonicalTriple

TRIPLE = CanonicalTriple(architecture="v7e-m", isa="thumb", fpu_class="+fp", abi="hard")


def _libc() -> LibraryVariant:
    return LibraryVariant("libc", Path("/gcc/arm-none-eabi/lib/thumb/v7e-m+fp/hard/libc.a"), TRIPLE)


def _units():
    vendor = BuildUnit(
        "vendor",
        sources=("vendor/startup.s", "vendor/system.c"),
        include_dirs=("vendor/include",),
        linker_script="vendor/device.ld",
    )
    hal = BuildUnit("hal", sources=("hal/gpio.c",), include_dirs=("hal/include",), dependencies=(vendor,))
    app = BuildUnit(
        "app",
        sources=("app/main.c", "app/irq.c"),
        include_dirs=("app/include",),
        dependencies=(hal, vendor),
    )
    return app, hal, vendor


class TestTopologicalOrder:
    def test_dependencies_first(self):
        app, _, _ = _units()
        assert [u.name for u in topological_units(app)] == ["vendor", "hal", "app"]

    def test_diamond_visits_shared_unit_once(self):
        core = BuildUnit("core", sources=("core.c",))
        left = BuildUnit("left", sources=("left.c",), dependencies=(core,))
        right = BuildUnit("right", sources=("right.c",), dependencies=(core,))
        top = BuildUnit("top", sources=("top.c",), dependencies=(left, right))
        names = [u.name for u in topological_units(top)]
        assert names == ["core", "left", "right", "top"]

    def test_cycle(self):
        a = BuildUnit("a")
        b = BuildUnit("b", dependencies=(a,))
        # frozen dataclass: close the loop the way a buggy loader would
        object.__setattr__(a, "dependencies", (b,))
        with pytest.raises(CyclicDependency) as exc:
            topological_units(a)
        assert exc.value.cycle == ["a", "b", "a"]
        assert "a -> b -> a" in str(exc.value)

    def test_self_cycle(self):
        a = BuildUnit("a")
        object.__setattr__(a, "dependencies", (a,))
        with pytest.raises(CyclicDependency):
            topological_units(a)

    def test_duplicate_names_rejected(self):
        left = BuildUnit("util", sources=("a.c",))
        right = BuildUnit("util", sources=("b.c",))
        top = BuildUnit("top", dependencies=(left, right))
        with pytest.raises(CompositionError, match="util"):
            topological_units(top)


class TestLinkerScript:
    def _chain(self):
        vendor = BuildUnit("vendor", linker_script="vendor.ld")
        board = BuildUnit("board", linker_script="board.ld", dependencies=(vendor,))
        app = BuildUnit("app", dependencies=(board,))
        return topological_units(app)

    def test_root_precedence_default(self):
        assert effective_linker_script(self._chain()) == Path("board.ld")

    def test_deepest_precedence(self):
        assert effective_linker_script(self._chain(), ScriptPrecedence.DEEPEST) == Path("vendor.ld")

    def test_root_own_script_wins(self):
        vendor = BuildUnit("vendor", linker_script="vendor.ld")
        app = BuildUnit("app", linker_script="app.ld", dependencies=(vendor,))
        assert effective_linker_script(topological_units(app)) == Path("app.ld")

    def test_missing(self):
        app = BuildUnit("app", sources=("main.c",))
        with pytest.raises(MissingLinkerScript):
            compose(app, [], "build")


class TestCompose:
    def test_plan_is_flat_objects_in_order(self, tmp_path: Path):
        app, _, _ = _units()
        plan = compose(app, [_libc()], tmp_path)

        assert plan.unit_order == ("vendor", "hal", "app")
        assert [p.relative_to(tmp_path).as_posix() for p in plan.objects] == [
            "obj/vendor/startup.o",
            "obj/vendor/system.o",
            "obj/hal/gpio.o",
            "obj/app/main.o",
            "obj/app/irq.o",
        ]
        assert all(p.suffix == ".o" for p in plan.objects)
        assert plan.library_paths == (_libc().path,)
        assert plan.linker_script == Path("vendor/device.ld")
        assert plan.entry_symbol == "Reset_Handler"

    def test_languages(self, tmp_path: Path):
        app, _, _ = _units()
        plan = compose(app, [], tmp_path)
        langs = {s.source.name: s.language for s in plan.compile_steps}
        assert langs["startup.s"] == "asm"
        assert langs["main.c"] == "c"

    def test_include_dirs_propagate_from_dependencies(self, tmp_path: Path):
        app, _, _ = _units()
        plan = compose(app, [], tmp_path)
        main = next(s for s in plan.compile_steps if s.source.name == "main.c")
        assert main.include_dirs == (Path("app/include"), Path("hal/include"), Path("vendor/include"))
        startup = next(s for s in plan.compile_steps if s.source.name == "startup.s")
        assert startup.include_dirs == (Path("vendor/include"),)

    def test_rust_sources(self, tmp_path: Path):
        app = BuildUnit("app", sources=("src/lib.rs",), linker_script="app.ld")
        plan = compose(app, [], tmp_path)
        assert plan.compile_steps[0].language == "rust"

    def test_unsupported_suffix(self, tmp_path: Path):
        app = BuildUnit("app", sources=("main.cpp",), linker_script="app.ld")
        with pytest.raises(CompositionError, match=".cpp"):
            compose(app, [], tmp_path)

    def test_same_stem_in_different_directories(self, tmp_path: Path):
        hal = BuildUnit("hal", sources=("a/init.c", "b/init.c"), linker_script="x.ld")
        plan = compose(hal, [], tmp_path)
        assert plan.objects == (
            tmp_path / "obj" / "hal" / "a" / "init.o",
            tmp_path / "obj" / "hal" / "b" / "init.o",
        )

    def test_object_name_collision(self, tmp_path: Path):
        app = BuildUnit("app", sources=("src/main.c", "src/main.s"), linker_script="app.ld")
        with pytest.raises(CompositionError, match="main.o"):
            compose(app, [], tmp_path)

    def test_single_rust_crate_root_per_unit(self, tmp_path: Path):
        app = BuildUnit("app", sources=("src/lib.rs", "src/bindings.rs"), linker_script="app.ld")
        with pytest.raises(CompositionError, match="crate root"):
            compose(app, [], tmp_path)

    def test_rust_crate_beside_c_sources(self, tmp_path: Path):
        app = BuildUnit("app", sources=("src/lib.rs", "src/shim.c"), linker_script="app.ld")
        plan = compose(app, [], tmp_path)
        assert [s.language for s in plan.compile_steps] == ["rust", "c"]

    def test_same_stem_in_different_units(self, tmp_path: Path):
        lib = BuildUnit("lib", sources=("lib/util.c",))
        app = BuildUnit("app", sources=("app/util.c",), linker_script="app.ld", dependencies=(lib,))
        plan = compose(app, [], tmp_path)
        assert len(set(plan.objects)) == 2

    def test_entry_symbol_override(self, tmp_path: Path):
        app = BuildUnit("app", sources=("main.c",), linker_script="app.ld")
        assert compose(app, [], tmp_path, entry_symbol="_start").entry_symbol == "_start"
