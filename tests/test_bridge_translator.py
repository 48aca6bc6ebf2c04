"""Tests for C -> Rust translation of extracted declarations."""

from __future__ import annotations

from pathlib import Path

import pytest

from fwlink.bridge import ILP32_AAPCS, LP64, extract_declarations, render_bindings, translate
from fwlink.bridge.translator import render_marker, rust_ident
from fwlink.models.declarations import ConstantMacro, Verdict


def _bridge(tmp_path: Path, text: str, model=ILP32_AAPCS, defines=None):
    header = tmp_path / "dev.h"
    header.write_text(text)
    decls = extract_declarations([header], defines, model=model)
    bridged = translate(decls, model)
    assert len(bridged) == len(decls)
    return {b.name: b for b in bridged}


CONSTANTS = """\
#define LED_PIN 5U
#define GPIO_BASE 0x40020000UL
#define NEG (-3)
#define TIMEOUT_MS (10 * 100)
#define RATIO 0.5f
#define NAME "blinky"
#define MASK (1UL << 31)
#define DERIVED (GPIO_BASE + 0x14U)
#define LATER (EARLIER * 2)
#define EARLIER 21
"""


class TestConstants:
    def test_values_and_types(self, tmp_path: Path):
        b = _bridge(tmp_path, CONSTANTS)
        assert b["LED_PIN"].rust == "pub const LED_PIN: u32 = 5;"
        assert b["GPIO_BASE"].rust == "pub const GPIO_BASE: u32 = 0x40020000;"
        assert b["NEG"].rust == "pub const NEG: i32 = -3;"
        assert b["TIMEOUT_MS"].rust == "pub const TIMEOUT_MS: i32 = 1000;"
        assert b["RATIO"].rust == "pub const RATIO: f32 = 0.5;"
        assert b["MASK"].rust == "pub const MASK: u32 = 0x80000000;"

    def test_string_literal(self, tmp_path: Path):
        b = _bridge(tmp_path, CONSTANTS)
        assert b["NAME"].rust == 'pub const NAME: &[u8; 7] = b"blinky\\0";'

    def test_references_other_macros(self, tmp_path: Path):
        b = _bridge(tmp_path, CONSTANTS)
        assert b["DERIVED"].value == 0x40020014
        assert b["LATER"].value == 42

    def test_long_is_wider_on_lp64(self, tmp_path: Path):
        b = _bridge(tmp_path, "#define BIG 1UL\n", model=LP64)
        assert b["BIG"].rust == "pub const BIG: u64 = 1;"

    def test_command_line_define(self, tmp_path: Path):
        b = _bridge(tmp_path, "", defines=["HSE_VALUE=8000000U"])
        assert b["HSE_VALUE"].rust == "pub const HSE_VALUE: u32 = 0x7A1200;"


MACROS = """\
#define SET_BIT(REG, BIT) ((REG) |= (BIT))
#define BUMP counter += 1
#define GPIOA ((GPIO_TypeDef *) 0x40020000UL)
#define GPIOA_ODR (GPIOA + 0x14)
#define USE_HAL_DRIVER
#define CALLS get_value()
"""


class TestMarkers:
    def test_function_like_macro(self, tmp_path: Path):
        b = _bridge(tmp_path, MACROS)["SET_BIT"]
        assert b.verdict is Verdict.UNTRANSLATABLE
        assert "function-like macro" in b.reason
        assert b.rust.startswith("macro_rules! SET_BIT {")
        assert "compile_error!" in b.rust
        assert "dev.h:1" in b.rust

    def test_compound_assignment(self, tmp_path: Path):
        b = _bridge(tmp_path, MACROS)["BUMP"]
        assert not b.translated
        assert "'+='" in b.reason

    def test_pointer_cast(self, tmp_path: Path):
        b = _bridge(tmp_path, MACROS)["GPIOA"]
        assert not b.translated
        assert "pointer cast" in b.reason

    def test_dependency_on_untranslatable(self, tmp_path: Path):
        b = _bridge(tmp_path, MACROS)["GPIOA_ODR"]
        assert not b.translated
        assert "depends on 'GPIOA'" in b.reason

    def test_empty_and_call(self, tmp_path: Path):
        b = _bridge(tmp_path, MACROS)
        assert b["USE_HAL_DRIVER"].reason == "macro has no value"
        assert "call to 'get_value'" in b["CALLS"].reason

    def test_render_marker_message(self):
        text = render_marker("SET_BIT", "function-like macro (REG, BIT)", "stm32.h:12")
        assert "C macro `SET_BIT` (stm32.h:12) has no Rust translation: function-like macro (REG, BIT)" in text
        assert "($($tt:tt)*)" in text


GPIO = """\
#define __IO volatile
typedef struct
{
  __IO uint32_t MODER;
  __IO uint32_t OTYPER;
  uint16_t RESERVED[2];
  __IO uint32_t BSRR;
} GPIO_TypeDef;
typedef struct __attribute__((packed)) { uint8_t kind; uint32_t len; } pkt_t;
typedef struct { uint32_t en : 1; uint32_t mode : 3; } ctrl_t;
void ctrl_set(ctrl_t *ctrl);
void ctrl_apply(ctrl_t ctrl);
"""


class TestStructs:
    def test_repr_c_with_layout_assertions(self, tmp_path: Path):
        b = _bridge(tmp_path, GPIO)["GPIO_TypeDef"]
        assert b.translated
        lines = b.rust.splitlines()
        assert lines[:3] == ["#[repr(C)]", "#[derive(Clone, Copy)]", "pub struct GPIO_TypeDef {"]
        assert "    pub RESERVED: [u16; 2]," in lines
        assert "    assert!(core::mem::size_of::<GPIO_TypeDef>() == 16);" in lines
        assert "    assert!(core::mem::align_of::<GPIO_TypeDef>() == 4);" in lines
        assert "    assert!(core::mem::offset_of!(GPIO_TypeDef, BSRR) == 12);" in lines

    def test_packed(self, tmp_path: Path):
        b = _bridge(tmp_path, GPIO)["pkt_t"]
        assert b.rust.startswith("#[repr(C, packed)]")
        assert b.layout.size == 5

    def test_bit_fields_become_marker(self, tmp_path: Path):
        b = _bridge(tmp_path, GPIO)
        assert not b["ctrl_t"].translated
        assert "bit-field" in b["ctrl_t"].reason

    def test_pointer_to_untranslatable_is_opaque(self, tmp_path: Path):
        b = _bridge(tmp_path, GPIO)["ctrl_set"]
        assert b.rust == "pub fn ctrl_set(ctrl: *mut core::ffi::c_void);"

    def test_value_of_untranslatable_is_marker(self, tmp_path: Path):
        b = _bridge(tmp_path, GPIO)["ctrl_apply"]
        assert not b.translated
        assert "ctrl_t" in b.reason


class TestEnums:
    HEADER = "typedef enum { MODE_OFF, MODE_ON = 4, MODE_AUTO } mode_t;\n#define DEFAULT_MODE MODE_ON\n"

    def test_short_enum_on_target(self, tmp_path: Path):
        b = _bridge(tmp_path, self.HEADER)
        assert b["mode_t"].rust.splitlines() == [
            "pub type mode_t = u8;",
            "pub const MODE_OFF: mode_t = 0;",
            "pub const MODE_ON: mode_t = 4;",
            "pub const MODE_AUTO: mode_t = 5;",
        ]
        assert b["DEFAULT_MODE"].value == 4

    def test_int_sized_enum_on_host(self, tmp_path: Path):
        b = _bridge(tmp_path, self.HEADER, model=LP64)
        assert b["mode_t"].rust.splitlines()[0] == "pub type mode_t = u32;"

    def test_enum_in_struct_uses_short_storage(self, tmp_path: Path):
        b = _bridge(tmp_path, self.HEADER + "typedef struct { mode_t mode; uint8_t flags; } cfg_t;\n")
        assert b["cfg_t"].layout.size == 2


class TestFunctionsAndVariables:
    HEADER = """\
uint32_t HAL_GetTick(void);
int log_printf(const char *fmt, ...);
void set_type(int type);
size_t buf_len(const void *buf);
extern volatile uint32_t SystemCoreClock;
extern const uint8_t AHBPrescTable[16];
typedef void (*irq_handler_t)(void);
void irq_register(unsigned int irq, irq_handler_t handler);
"""

    def test_functions_are_extern(self, tmp_path: Path):
        b = _bridge(tmp_path, self.HEADER)
        assert b["HAL_GetTick"].extern
        assert b["HAL_GetTick"].rust == "pub fn HAL_GetTick() -> u32;"
        assert b["log_printf"].rust == "pub fn log_printf(fmt: *const u8, ...) -> i32;"
        assert b["set_type"].rust == "pub fn set_type(r#type: i32);"
        assert b["buf_len"].rust == "pub fn buf_len(buf: *const core::ffi::c_void) -> usize;"

    def test_plain_char_signedness_follows_model(self, tmp_path: Path):
        b = _bridge(tmp_path, self.HEADER, model=LP64)
        assert b["log_printf"].rust == "pub fn log_printf(fmt: *const i8, ...) -> i32;"

    def test_variables(self, tmp_path: Path):
        b = _bridge(tmp_path, self.HEADER)
        assert b["SystemCoreClock"].rust == "pub static mut SystemCoreClock: u32;"
        assert b["AHBPrescTable"].rust == "pub static AHBPrescTable: [u8; 16];"

    def test_function_pointer_typedef(self, tmp_path: Path):
        b = _bridge(tmp_path, self.HEADER)
        assert b["irq_handler_t"].rust == 'pub type irq_handler_t = Option<unsafe extern "C" fn()>;'
        assert b["irq_register"].rust == "pub fn irq_register(irq: u32, handler: irq_handler_t);"


class TestRendering:
    def test_module_layout(self, tmp_path: Path):
        header = tmp_path / "hal.h"
        header.write_text(
            "#define LED_PIN 5U\n"
            "#define SET_BIT(REG, BIT) ((REG) |= (BIT))\n"
            "uint32_t HAL_GetTick(void);\n"
            "typedef struct { uint32_t a; } pair_t;\n"
        )
        text = render_bindings(translate(extract_declarations([header])), "ilp32-aapcs")
        assert text.startswith("// Generated by fwlink")
        assert "// data model: ilp32-aapcs" in text
        assert text.index("pub const LED_PIN") < text.index("macro_rules! SET_BIT") < text.index("pub struct pair_t")
        extern_block = text[text.index('unsafe extern "C" {'):]
        assert "    pub fn HAL_GetTick() -> u32;" in extern_block
        assert "macro_rules!" not in extern_block

    def test_no_extern_block_without_externs(self):
        text = render_bindings(translate([ConstantMacro("A", "1")]))
        assert 'extern "C"' not in text


@pytest.mark.parametrize(
    "name,expected",
    [("type", "r#type"), ("self", "self_"), ("match", "r#match"), ("len", "len")],
)
def test_rust_ident(name, expected):
    assert rust_ident(name) == expected
