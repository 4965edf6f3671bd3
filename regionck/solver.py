# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Constraint solver and conflict checker (stage 4 of the per-function pipeline).

Outlives solving
----------------
Every region class starts with its own requirement:

  * a reference's own extent `[created, expires]` for body-local classes,
  * its own name for universal (signature) regions,
  * the `'static` flag for the concrete top.

A fixed-point worklist then pushes requirements along "longer outlives
shorter" edges (`req(longer) |= req(shorter)`). Requirements only grow and
are bounded by the function extent plus finitely many universals, so the
loop terminates.

Checks
------
  * A loan whose requirement exceeds its target binding's live extent, or
    that must outlive a signature region / `'static`, is a dangling
    reference. Reborrows through a reference are checked through the
    constraint to the reference they go through instead.
  * A signature region required to outlive another signature region it is
    not bounded by (or `'static`) is a dangling reference as well.
  * Per binding, any exclusive interval overlapping any other interval is a
    borrow conflict. Loans and accesses created in different arms of one
    `if` are skipped unless a loan escapes its loop iteration.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from regionck import ir as I
from regionck.core.diagnostics import Diagnostic, DiagnosticKind
from regionck.core.span import Span
from regionck.places import places_overlap
from regionck.ref_graph import Access, RefGraph, RefId, RefKind, Reference
from regionck.regions import CALLER_REGION, Constraint, RegionId, RegionInference, RegionKind
from regionck.scopes import BindingId, Extent, ScopeKind


@dataclass(frozen=True)
class Requirement:
	"""Lower bound of a region class: a point hull plus the named regions it must outlive."""

	extent: Optional[Extent] = None
	universals: FrozenSet[str] = frozenset()
	static: bool = False

	def join(self, other: "Requirement") -> "Requirement":
		if self.extent is None:
			extent = other.extent
		elif other.extent is None:
			extent = self.extent
		else:
			extent = self.extent.hull(other.extent)
		return Requirement(extent, self.universals | other.universals, self.static or other.static)

	@property
	def escapes(self) -> bool:
		"""True when the requirement reaches outside the function body."""
		return self.static or bool(self.universals)

	def __str__(self) -> str:
		parts = []
		if self.static:
			parts.append(I.STATIC_REGION)
		if self.extent is not None:
			parts.append(str(self.extent))
		parts += sorted(self.universals)
		return " + ".join(parts) if parts else "[]"


@dataclass
class _Item:
	"""A conflict-check participant: a loan or an instantaneous access."""

	seq: int
	kind: RefKind
	interval: Extent
	span: Span
	place: object
	loan: Optional[Reference] = None
	access: Optional[Access] = None
	escapes_loop: bool = False

	@property
	def start(self) -> int:
		return self.interval.lo


@dataclass
class Solution:
	"""Solved requirements, loan intervals and the diagnostics they imply."""

	inference: RegionInference
	requirement: Dict[RegionId, Requirement] = field(default_factory=dict)
	intervals: Dict[RefId, Extent] = field(default_factory=dict)
	diagnostics: List[Diagnostic] = field(default_factory=list)

	def requirement_of(self, rid: RefId) -> Requirement:
		table = self.inference.table
		return self.requirement.get(table.find(self.inference.ref_var[rid]), Requirement())

	def region_of(self, rid: RefId) -> str:
		"""The solved region of a reference: a name for signature regions, else its extent."""
		lead = self.inference.table.lead(self.inference.ref_var[rid])
		if lead.kind is not RegionKind.LOCAL and lead.name is not None:
			return lead.name
		return str(self.requirement_of(rid))


class Solver:
	"""Solve one function's constraints and run the dangling/conflict checks."""

	def __init__(self, inference: RegionInference, *, field_sensitive: bool = False) -> None:
		self.inference = inference
		self.graph: RefGraph = inference.graph
		self.tree = self.graph.tree
		self.table = inference.table
		self.field_sensitive = field_sensitive
		self.solution = Solution(inference=inference)
		self._witness_hi: Dict[RegionId, Constraint] = {}
		self._witness_escape: Dict[RegionId, Constraint] = {}

	def run(self) -> Solution:
		self._solve()
		self._check_loans()
		self._check_universals()
		self._compute_intervals()
		self._check_conflicts()
		return self.solution

	# Solving

	def _initial(self) -> Dict[RegionId, Requirement]:
		req: Dict[RegionId, Requirement] = {root: Requirement() for root in self.table.roots()}
		for root in req:
			lead = self.table.lead(root)
			if lead.kind is RegionKind.STATIC:
				req[root] = Requirement(static=True)
			elif lead.kind is RegionKind.UNIVERSAL:
				req[root] = Requirement(universals=frozenset([lead.name]))
		for ref in self.graph.references:
			root = self.table.find(self.inference.ref_var[ref.id])
			if self.table.lead(root).kind is RegionKind.LOCAL:
				req[root] = req[root].join(Requirement(extent=ref.own_extent))
		return req

	def _solve(self) -> None:
		req = self._initial()
		# shorter -> [(longer, constraint)]: when req(shorter) grows, revisit longer.
		succ: Dict[RegionId, List[Tuple[RegionId, Constraint]]] = {}
		for c in self.inference.constraints:
			longer, shorter = self.table.find(c.longer), self.table.find(c.shorter)
			if longer != shorter:
				succ.setdefault(shorter, []).append((longer, c))
		work = deque(sorted(req))
		queued: Set[RegionId] = set(work)
		while work:
			shorter = work.popleft()
			queued.discard(shorter)
			for longer, c in succ.get(shorter, []):
				before = req[longer]
				after = before.join(req[shorter])
				if after == before:
					continue
				req[longer] = after
				if _hi(after) != _hi(before):
					self._witness_hi[longer] = self._witness_hi.get(shorter, c)
				if after.escapes and (after.universals != before.universals or after.static != before.static):
					self._witness_escape[longer] = self._witness_escape.get(shorter, c)
				if longer not in queued:
					queued.add(longer)
					work.append(longer)
		self.solution.requirement = req

	# Diagnostics

	def _diagnostic(self, kind: DiagnosticKind, message: str, span: Span, *, names=(), notes=None) -> None:
		self.solution.diagnostics.append(
			Diagnostic(
				message=message,
				kind=kind,
				phase="borrowcheck",
				span=span or Span(),
				names=tuple(names),
				notes=list(notes or []),
				function=self.tree.fn.qualified_name,
			)
		)

	def _check_loans(self) -> None:
		"""A loan must not be required beyond the live extent of the storage it borrows."""
		for ref in self.graph.references:
			if not ref.is_loan or ref.through_ref or ref.target is None:
				continue
			b = self.tree.binding(ref.target)
			root = self.table.find(self.inference.ref_var[ref.id])
			req = self.solution.requirement.get(root, Requirement())
			if req.escapes:
				witness = self._witness_escape.get(root)
				if req.static:
					why = f"the reference must be valid for {I.STATIC_REGION}"
				else:
					outer = ", ".join(u for u in sorted(req.universals) if u != CALLER_REGION)
					why = f"the reference must outlive {outer}" if outer else "the reference escapes to the caller"
				self._diagnostic(
					DiagnosticKind.DANGLING_REFERENCE,
					f"'{b.name}' does not live long enough: {why}",
					witness.span if witness is not None else ref.span,
					names=(b.name,),
					notes=[f"borrow created here: {ref.span}", f"'{b.name}' is local to '{self.tree.fn.qualified_name}'"],
				)
			elif req.extent is not None and req.extent.hi > b.live.hi:
				witness = self._witness_hi.get(root)
				end_loc = self.tree.scope(b.scope).end_loc
				self._diagnostic(
					DiagnosticKind.DANGLING_REFERENCE,
					f"'{b.name}' does not live long enough",
					witness.span if witness is not None else ref.span,
					names=(b.name,),
					notes=[
						f"borrow created here: {ref.span}",
						f"'{b.name}' dropped here while still borrowed: {end_loc} (point {b.live.hi})",
						f"the reference is required until point {req.extent.hi}",
					],
				)

	def _check_universals(self) -> None:
		sig = self.inference.signature
		if sig is None:
			return
		for name, var in self.inference.universals.items():
			root = self.table.find(var)
			if self.table.lead(root).kind is RegionKind.STATIC:
				continue
			req = self.solution.requirement.get(root, Requirement())
			required = sorted(u for u in req.universals if u != name)
			if req.static:
				required.append(I.STATIC_REGION)
			missing = [u for u in required if not sig.outlives(name, u)]
			if not missing:
				continue
			witness = self._witness_escape.get(root)
			owners = [p.name for p in sig.params if any(s.region == name for s in p.slots)]
			subject = f"parameter '{owners[0]}'" if owners else f"region {name}"
			label = f"{name} (elided)" if name in sig.generated else name
			for other in missing:
				if other == CALLER_REGION:
					msg = f"{subject} (region {label}) escapes through a return type without regions"
					notes = ["only 'static data can be returned through a type that carries no region"]
				else:
					msg = f"{subject} (region {label}) does not outlive {other}"
					notes = [f"consider adding the bound `{name}: {other}` or returning data borrowed for {other}"]
				self._diagnostic(
					DiagnosticKind.DANGLING_REFERENCE,
					msg,
					witness.span if witness is not None else self.tree.fn.loc,
					names=tuple(owners) + (name, other),
					notes=notes,
				)

	# Conflicts

	def _compute_intervals(self) -> None:
		end = self.tree.end_point
		for ref in self.graph.references:
			if not ref.is_loan:
				continue
			req = self.solution.requirement_of(ref.id)
			hi = end if req.escapes else max(ref.created, req.extent.hi if req.extent is not None else ref.created)
			lo = ref.created
			if ref.loop is not None:
				solved_lo = req.extent.lo if req.extent is not None else lo
				if solved_lo < ref.created or hi > ref.loop.end:
					# Survives the back edge: live for the whole loop.
					lo, hi = ref.loop.start, max(hi, ref.loop.end)
			self.solution.intervals[ref.id] = Extent(lo, hi)

	def _items(self) -> Dict[BindingId, List[_Item]]:
		items: Dict[BindingId, List[_Item]] = {}
		seq = 0
		for ref in self.graph.references:
			if not ref.is_loan or ref.target is None:
				continue
			interval = self.solution.intervals[ref.id]
			escapes = interval.lo < ref.created
			items.setdefault(ref.target, []).append(
				_Item(seq, ref.kind, interval, ref.span, ref.place, loan=ref, escapes_loop=escapes)
			)
			seq += 1
		for acc in self.graph.accesses:
			items.setdefault(acc.binding, []).append(
				_Item(seq, acc.kind, Extent(acc.point, acc.point), acc.span, acc.place, access=acc)
			)
			seq += 1
		return items

	def _arms(self, point: int) -> Dict[int, int]:
		"""`if` point -> arm index, for every branch arm enclosing `point`."""
		scope = self.tree.innermost_scope_at(point)
		return {
			sc.if_point: sc.arm
			for sc in self.tree.scope_chain(scope.id)
			if sc.kind is ScopeKind.ARM and sc.if_point is not None
		}

	def _exclusive_arms(self, a: _Item, b: _Item) -> bool:
		if a.escapes_loop or b.escapes_loop:
			return False
		arms_a = self._arms(a.start)
		arms_b = self._arms(b.start)
		return any(p in arms_b and arms_b[p] != arm for p, arm in arms_a.items())

	def _check_conflicts(self) -> None:
		for bid, items in sorted(self._items().items()):
			items.sort(key=lambda it: (it.start, it.seq))
			for idx, later in enumerate(items):
				for earlier in items[:idx]:
					if earlier.access is not None and later.access is not None:
						continue
					if earlier.kind is RefKind.SHARED and later.kind is RefKind.SHARED:
						continue
					if not earlier.interval.overlaps(later.interval):
						continue
					if self.field_sensitive and not places_overlap(earlier.place, later.place):
						continue
					if self._exclusive_arms(earlier, later):
						continue
					self._report_conflict(bid, earlier, later)
					break

	def _report_conflict(self, bid: BindingId, earlier: _Item, later: _Item) -> None:
		name = self.tree.binding(bid).name
		if later.access is not None:
			if later.access.is_move:
				msg = f"cannot move '{name}' while borrowed"
			elif later.kind is RefKind.EXCLUSIVE:
				msg = f"cannot write to '{name}' while it is borrowed"
			else:
				msg = f"cannot use '{name}' while it is mutably borrowed"
		elif later.kind is RefKind.EXCLUSIVE:
			msg = f"cannot take mutable borrow while borrow active on '{name}'"
		else:
			msg = f"cannot take shared borrow while mutable borrow active on '{name}'"
		what = "borrow" if earlier.loan is not None else "access"
		notes = [f"{what} created here: {earlier.span}"]
		if earlier.loan is not None:
			notes.append(f"borrow considered live until point {earlier.interval.hi}")
		self._diagnostic(DiagnosticKind.BORROW_CONFLICT, msg, later.span, names=(name,), notes=notes)


def _hi(req: Requirement) -> Optional[int]:
	return req.extent.hi if req.extent is not None else None


def solve(inference: RegionInference, *, field_sensitive: bool = False) -> Solution:
	"""Run the solver and checks for one function."""
	return Solver(inference, field_sensitive=field_sensitive).run()


__all__ = ["Requirement", "Solution", "Solver", "solve"]
