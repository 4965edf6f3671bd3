# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Closure capture tags.

The verifier never executes closures; the front end tells it *how* each
binding is captured and the reference graph builder turns that into borrow
or ownership events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterable

from regionck.core.span import Span


class CaptureMode(Enum):
	"""How a binding is captured."""

	SHARED = auto()     # read through a shared reference
	EXCLUSIVE = auto()  # mutate through an exclusive reference
	MOVE = auto()       # ownership transfer into the closure


@dataclass(frozen=True)
class Capture:
	"""Concrete capture with mode + span for diagnostics."""

	mode: CaptureMode
	name: str
	loc: Span = field(default_factory=Span)


def sort_captures(captures: Iterable[Capture]) -> list[Capture]:
	"""Return captures in a deterministic order (by captured name, then mode)."""
	return sorted(captures, key=lambda c: (c.name, c.mode.value))


__all__ = ["CaptureMode", "Capture", "sort_captures"]
