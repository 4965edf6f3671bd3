# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Source span representation used by regionck diagnostics.

A Span carries best-effort file/line/column info. Parser locations (lark
`Meta` objects) are converted with `Span.from_meta`; anything else that
exposes `line`/`column` attributes goes through `Span.from_loc`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Span:
	"""Represents a source span (best-effort file/line/column)."""

	file: Optional[str] = None
	line: Optional[int] = None
	column: Optional[int] = None
	end_line: Optional[int] = None
	end_column: Optional[int] = None

	@classmethod
	def from_loc(cls, loc: Any, *, file: Optional[str] = None) -> "Span":
		"""
		Construct a Span from any location-like object.

		If `loc` is already a Span it is returned unchanged. `None` maps to the
		`Span()` sentinel so diagnostics never carry a missing span.
		"""
		if loc is None:
			return cls(file=file)
		if isinstance(loc, cls):
			return loc
		return cls(
			file=file or getattr(loc, "file", None) or getattr(loc, "filename", None),
			line=getattr(loc, "line", None),
			column=getattr(loc, "column", None),
			end_line=getattr(loc, "end_line", None),
			end_column=getattr(loc, "end_column", None),
		)

	@classmethod
	def from_meta(cls, meta: Any, *, file: Optional[str] = None) -> "Span":
		"""Construct a Span from a lark `Meta` (empty metas map to the sentinel)."""
		if meta is None or getattr(meta, "empty", True):
			return cls(file=file)
		return cls.from_loc(meta, file=file)

	def __str__(self) -> str:
		file = self.file or "<input>"
		if self.line is None:
			return file
		if self.column is None:
			return f"{file}:{self.line}"
		return f"{file}:{self.line}:{self.column}"


__all__ = ["Span"]
