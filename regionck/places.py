# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Place representation and lvalue detection.

This models the "where" of values (bindings + projections) so the reference
graph builder can attribute every borrow and access to a binding. It answers:
  * Is this IR expression a place (borrowable/writable location)?
  * If so, which binding does it start from, and does it go through a
    dereference of a reference binding?
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Optional, Tuple

from regionck import ir as I


class IndexKind(Enum):
	"""What is known about an index operand: `v[2]` is CONST, `v[i]` is ANY."""

	ANY = auto()
	CONST = auto()


@dataclass(frozen=True)
class FieldProj:
	"""`.name`"""

	name: str


@dataclass(frozen=True)
class IndexProj:
	"""`[i]`; `value` holds the literal for CONST indices."""

	kind: IndexKind
	value: Optional[int] = None


@dataclass(frozen=True)
class DerefProj:
	"""
	Dereference projection (`*p`), also inserted for auto-deref when a field
	or index is taken through a reference binding (`r.f` == `(*r).f`).
	"""
	pass


Projection = FieldProj | IndexProj | DerefProj


@dataclass(frozen=True)
class PlaceBase:
	"""Identity for the root of a Place: the binding id plus its name."""

	binding_id: int
	name: str


@dataclass(frozen=True)
class Place:
	"""
	A borrowable/writable storage location.

	`foo.bar[0]` becomes base `foo` with projections `.bar`, `[0]`.
	"""

	base: PlaceBase
	projections: Tuple[Projection, ...] = field(default_factory=tuple)

	def with_projection(self, proj: Projection) -> "Place":
		"""Return a new Place with an additional projection appended."""
		return Place(self.base, self.projections + (proj,))

	@property
	def through_deref(self) -> bool:
		"""True when the place is reached through a reference (`*r`, `r.f`)."""
		return any(isinstance(p, DerefProj) for p in self.projections)

	def render(self) -> str:
		out = self.base.name
		projs = self.projections
		for idx, proj in enumerate(projs):
			if isinstance(proj, FieldProj):
				out += f".{proj.name}"
			elif isinstance(proj, IndexProj):
				out += f"[{proj.value if proj.kind is IndexKind.CONST else '_'}]"
			elif idx + 1 < len(projs) and not isinstance(projs[idx + 1], DerefProj):
				# Rendered as auto-deref: `r.f` rather than `(*r).f`.
				continue
			else:
				out = f"*{out}"
		return out


def places_overlap(a: Place, b: Place) -> bool:
	"""
	May two loans of one binding touch the same storage?

	`p` overlaps `p.left` and `p.left.x`; `p.left` and `p.right` are disjoint,
	as are `v[0]` and `v[1]`. A non-constant index overlaps every index.
	"""
	if a.base != b.base:
		return False
	for pa, pb in zip(a.projections, b.projections):
		if pa == pb:
			continue
		if isinstance(pa, FieldProj) and isinstance(pb, FieldProj):
			return False
		const_pair = (
			isinstance(pa, IndexProj)
			and isinstance(pb, IndexProj)
			and pa.kind is IndexKind.CONST
			and pb.kind is IndexKind.CONST
		)
		return not const_pair
	return True


def place_from_expr(
	expr: I.Expr,
	*,
	base_lookup: Callable[[str], Optional[PlaceBase]],
	is_ref_binding: Callable[[int], bool] = lambda _bid: False,
) -> Optional[Place]:
	"""
	Construct a `Place` from an IR expression when the expression is a place.

	Field and index projections taken directly on a reference binding get an
	implicit `DerefProj` first (auto-deref). Returns None for rvalues and for
	places whose root name does not resolve.
	"""
	if isinstance(expr, I.Var):
		base = base_lookup(expr.name)
		if base is None:
			return None
		return Place(base)
	if isinstance(expr, I.Deref):
		inner = place_from_expr(expr.subject, base_lookup=base_lookup, is_ref_binding=is_ref_binding)
		if inner is None:
			return None
		return inner.with_projection(DerefProj())
	if isinstance(expr, (I.Field, I.Index)):
		inner = place_from_expr(expr.subject, base_lookup=base_lookup, is_ref_binding=is_ref_binding)
		if inner is None:
			return None
		if not inner.projections and is_ref_binding(inner.base.binding_id):
			inner = inner.with_projection(DerefProj())
		if isinstance(expr, I.Field):
			return inner.with_projection(FieldProj(expr.name))
		const_val: Optional[int] = None
		if isinstance(expr.index, I.Literal) and expr.index.kind is I.LiteralKind.INT:
			const_val = int(expr.index.value)
		kind = IndexKind.CONST if const_val is not None else IndexKind.ANY
		return inner.with_projection(IndexProj(kind=kind, value=const_val))
	# Other expressions are rvalues: calls, literals, borrows, closures, ...
	return None


__all__ = [
	"IndexKind",
	"FieldProj",
	"IndexProj",
	"DerefProj",
	"Projection",
	"PlaceBase",
	"Place",
	"places_overlap",
	"place_from_expr",
]
