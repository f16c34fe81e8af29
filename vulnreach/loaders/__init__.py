"""Loaders turning Go tool output into the analysis program model."""

from vulnreach.loaders.buildinfo import load_binary, parse_build_info, parse_symbols
from vulnreach.loaders.program_json import load_program

__all__ = ["load_binary", "load_program", "parse_build_info", "parse_symbols"]
