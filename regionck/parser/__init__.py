# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Parser for the function-level IR surface syntax (lark, LALR)."""

from .parser import ParseError, parse_file, parse_program

__all__ = ["ParseError", "parse_file", "parse_program"]
