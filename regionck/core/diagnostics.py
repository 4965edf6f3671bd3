# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Common diagnostic structure for the verifier passes.

Diagnostics are plain data: passes append them to a list and keep going so
that every independent problem in a function is reported in one run. Nothing
in the verifier raises a diagnostic as an exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .span import Span


class DiagnosticKind(Enum):
	"""Diagnostic taxonomy; the value is the stable `E_...` code."""

	DANGLING_REFERENCE = "E_DANGLING_REFERENCE"
	BORROW_CONFLICT = "E_BORROW_CONFLICT"
	AMBIGUOUS_REGION = "E_AMBIGUOUS_REGION"
	UNRESOLVED_FIELD_REGION = "E_UNRESOLVED_FIELD_REGION"
	USE_AFTER_MOVE = "E_USE_AFTER_MOVE"
	INVALID_BORROW = "E_INVALID_BORROW"
	UNKNOWN_BINDING = "E_UNKNOWN_BINDING"
	UNKNOWN_REGION = "E_UNKNOWN_REGION"
	PARSE_ERROR = "E_PARSE"

	@property
	def title(self) -> str:
		"""CamelCase name used in human-readable output (e.g. `BorrowConflict`)."""
		return "".join(part.capitalize() for part in self.name.split("_"))


@dataclass
class Diagnostic:
	"""Represents a verifier diagnostic (error/note)."""

	message: str
	kind: Optional[DiagnosticKind] = None
	# Phase label: "parser", "structs", "regions" or "borrowcheck".
	phase: Optional[str] = None
	severity: str = "error"
	span: Span = field(default_factory=Span)  # Span() denotes unknown.
	notes: list[str] = field(default_factory=list)
	# Binding/reference names involved, in the order they appear in the message.
	names: tuple[str, ...] = ()
	# Explicit annotation that would resolve the problem (AmbiguousRegion).
	suggestion: Optional[str] = None
	# Function the diagnostic belongs to (None for program-level diagnostics).
	function: Optional[str] = None

	def __post_init__(self) -> None:
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	@property
	def code(self) -> Optional[str]:
		return self.kind.value if self.kind is not None else None

	def render(self) -> str:
		"""Human-readable single diagnostic, notes and suggestion on their own lines."""
		head = f"{self.span}: {self.severity}"
		if self.kind is not None:
			head += f"[{self.kind.title}]"
		lines = [f"{head}: {self.message}"]
		for note in self.notes:
			lines.append(f"  note: {note}")
		if self.suggestion:
			lines.append(f"  help: consider `{self.suggestion}`")
		return "\n".join(lines)

	def to_json(self) -> dict:
		"""Structured JSON-friendly dict (driver `--json` payload entry)."""
		return {
			"phase": self.phase,
			"kind": self.kind.title if self.kind is not None else None,
			"code": self.code,
			"message": self.message,
			"severity": self.severity,
			"file": self.span.file,
			"line": self.span.line,
			"column": self.span.column,
			"notes": list(self.notes),
			"names": list(self.names),
			"suggestion": self.suggestion,
			"function": self.function,
		}


__all__ = ["Diagnostic", "DiagnosticKind"]
