"""C to Rust declaration bridge: extract, translate, render, check."""

from fwlink.bridge.datamodel import DATA_MODELS, ILP32_AAPCS, LP64, DataModel
from fwlink.bridge.emitter import render_bindings
from fwlink.bridge.parser import extract_declarations
from fwlink.bridge.translator import translate
from fwlink.bridge.usage import check_usage

__all__ = [
    "DATA_MODELS",
    "DataModel",
    "ILP32_AAPCS",
    "LP64",
    "check_usage",
    "extract_declarations",
    "render_bindings",
    "translate",
]
