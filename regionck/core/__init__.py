# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
regionck.core: shared primitives used across the verifier stages.

Modules:
  - span: source spans
  - diagnostics: Diagnostic record + taxonomy
  - shapes: type shapes, region slots and the struct table
"""

__all__ = ["span", "diagnostics", "shapes"]
