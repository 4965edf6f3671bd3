# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Region variables and region inference (stage 3 of the per-function pipeline).

`RegionTable` is an arena of integer region indices with union-find
(path compression, union by rank); nothing in it owns anything else.

The inference engine gives every Reference a region variable, unifies
variables that carry the same explicit name (signature regions are
universal variables, `'static` is the concrete top), and turns the
reference graph's flows, call sites and return sites into outlives
`Constraint`s for the solver.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Set

from regionck import ir as I
from regionck.core.diagnostics import Diagnostic, DiagnosticKind
from regionck.core.span import Span
from regionck.ref_graph import CallSite, RefGraph, RefId, ReturnSite
from regionck.signatures import ElidedSignature, SignatureTable

RegionId = int

# Pseudo-universal for "whatever the caller keeps the result for": a value
# returned through a type without region slots must outlive it.
CALLER_REGION = "'<caller>"


class RegionKind(Enum):
	STATIC = 2       # concrete top
	UNIVERSAL = 1    # signature region: outlives the whole body
	LOCAL = 0        # inferred inside the body


@dataclass
class RegionVar:
	id: RegionId
	kind: RegionKind
	name: Optional[str] = None
	origin: str = ""


class RegionTable:
	"""Arena of region variables with union-find over their equivalence classes."""

	def __init__(self) -> None:
		self._vars: List[RegionVar] = []
		self._parent: List[RegionId] = []
		self._rank: List[int] = []
		# root -> strongest member (STATIC > UNIVERSAL > LOCAL)
		self._lead: Dict[RegionId, RegionId] = {}
		self.static = self.new(RegionKind.STATIC, I.STATIC_REGION, "concrete top")

	def __len__(self) -> int:
		return len(self._vars)

	def new(self, kind: RegionKind, name: Optional[str] = None, origin: str = "") -> RegionId:
		rid = len(self._vars)
		self._vars.append(RegionVar(rid, kind, name, origin))
		self._parent.append(rid)
		self._rank.append(0)
		self._lead[rid] = rid
		return rid

	def var(self, rid: RegionId) -> RegionVar:
		return self._vars[rid]

	def find(self, rid: RegionId) -> RegionId:
		root = rid
		while self._parent[root] != root:
			root = self._parent[root]
		while self._parent[rid] != root:
			self._parent[rid], rid = root, self._parent[rid]
		return root

	def union(self, a: RegionId, b: RegionId) -> RegionId:
		ra, rb = self.find(a), self.find(b)
		if ra == rb:
			return ra
		if self._rank[ra] < self._rank[rb]:
			ra, rb = rb, ra
		self._parent[rb] = ra
		if self._rank[ra] == self._rank[rb]:
			self._rank[ra] += 1
		la, lb = self._lead.pop(ra), self._lead.pop(rb)
		self._lead[ra] = la if self._vars[la].kind.value >= self._vars[lb].kind.value else lb
		return ra

	def lead(self, rid: RegionId) -> RegionVar:
		"""The strongest variable of `rid`'s class (decides the class's kind and name)."""
		return self._vars[self._lead[self.find(rid)]]

	def roots(self) -> List[RegionId]:
		return [rid for rid in range(len(self._vars)) if self.find(rid) == rid]


@dataclass(frozen=True)
class Constraint:
	"""Region `longer` must outlive region `shorter`."""

	longer: RegionId
	shorter: RegionId
	point: int
	span: Span
	reason: str


@dataclass
class RegionInference:
	"""Output of region inference for one function."""

	graph: RefGraph
	signature: Optional[ElidedSignature]
	table: RegionTable
	ref_var: Dict[RefId, RegionId] = field(default_factory=dict)
	universals: Dict[str, RegionId] = field(default_factory=dict)
	caller: Optional[RegionId] = None
	constraints: List[Constraint] = field(default_factory=list)
	diagnostics: List[Diagnostic] = field(default_factory=list)


class RegionInferenceEngine:
	"""Assign region variables and collect outlives constraints for one function."""

	def __init__(self, graph: RefGraph, signatures: SignatureTable) -> None:
		self.graph = graph
		self.signatures = signatures
		self.fn = graph.tree.fn
		self.result = RegionInference(
			graph=graph,
			signature=signatures.get(self.fn.qualified_name),
			table=RegionTable(),
		)
		self._unknown: Set[str] = set()

	def run(self) -> RegionInference:
		res = self.result
		table = res.table
		sig = res.signature
		if sig is not None:
			# The signature table is shared between threads: copy, never mutate.
			res.diagnostics.extend(replace(d, function=self.fn.qualified_name) for d in sig.diagnostics)
			for name in sig.region_names:
				origin = "elided" if name in sig.generated else "declared"
				res.universals[name] = table.new(RegionKind.UNIVERSAL, name, f"{origin} in signature")
		res.caller = table.new(RegionKind.UNIVERSAL, CALLER_REGION, "caller")
		for ref in self.graph.references:
			rv = table.new(RegionKind.LOCAL, None, ref.describe(self.graph.tree))
			res.ref_var[ref.id] = rv
			if ref.region is not None:
				self._bind_explicit(rv, ref.region, ref.span)
		for d in self.graph.derivations:
			self._constrain(res.ref_var[d.source], res.ref_var[d.dest], d.point, d.span, d.reason)
		for call in self.graph.calls:
			self._instantiate(call)
		for ret in self.graph.returns:
			self._return(ret)
		return res

	def _constrain(self, longer: RegionId, shorter: RegionId, point: int, span: Span, reason: str) -> None:
		self.result.constraints.append(Constraint(longer, shorter, point, span, reason))

	def _flow(self, longer: List[RegionId], shorter: List[RegionId], point: int, span: Span, reason: str) -> None:
		if len(longer) == len(shorter):
			for a, b in zip(longer, shorter):
				self._constrain(a, b, point, span, reason)
			return
		for a in longer:
			for b in shorter:
				self._constrain(a, b, point, span, reason)

	def _bind_explicit(self, rv: RegionId, name: str, span: Span) -> None:
		"""Unify a variable with the region its annotation names."""
		res = self.result
		if name == I.STATIC_REGION:
			res.table.union(rv, res.table.static)
			return
		universal = res.universals.get(name)
		if universal is not None:
			res.table.union(rv, universal)
			return
		if name in self._unknown:
			return
		self._unknown.add(name)
		res.diagnostics.append(
			Diagnostic(
				message=f"use of undeclared region {name} in '{self.fn.qualified_name}'",
				kind=DiagnosticKind.UNKNOWN_REGION,
				phase="regions",
				span=span,
				names=(name,),
				function=self.fn.qualified_name,
			)
		)

	def _instantiate(self, call: CallSite) -> None:
		"""Fresh variables for the callee's regions at this call site."""
		callee = self.signatures.get(call.callee)
		if callee is None:
			return
		table = self.result.table
		ref_var = self.result.ref_var
		inst: Dict[str, RegionId] = {}

		def _var(name: str) -> RegionId:
			if name == I.STATIC_REGION:
				return table.static
			if name not in inst:
				inst[name] = table.new(RegionKind.LOCAL, None, f"{name} of '{callee.qualified_name}' at {call.span}")
			return inst[name]

		reason = f"argument to '{callee.qualified_name}'"
		for arg_slots, param in zip(call.args, callee.params):
			param_vars = [_var(s.region) for s in param.slots if s.region is not None]
			self._flow([ref_var[a] for a in arg_slots], param_vars, call.point, call.span, reason)
		all_args = [ref_var[a] for slots in call.args for a in slots]
		for rid, slot in zip(call.result, callee.ret_slots):
			if slot.region is None:
				# Ambiguous callee: the result may borrow from any argument.
				for a in all_args:
					self._constrain(a, ref_var[rid], call.point, call.span, reason)
			else:
				self._constrain(_var(slot.region), ref_var[rid], call.point, call.span, f"result of '{callee.qualified_name}'")
		for name, bounds in callee.bounds.items():
			for b in bounds:
				self._constrain(_var(name), _var(b), call.point, call.span, f"bound {name}: {b} of '{callee.qualified_name}'")

	def _return(self, ret: ReturnSite) -> None:
		res = self.result
		values = [res.ref_var[s] for s in ret.slots]
		if not values:
			return
		sig = res.signature
		slots = sig.ret_slots if sig is not None else []
		if not slots:
			for v in values:
				self._constrain(v, res.caller, ret.point, ret.span, "returned value")
			return
		dests: List[Optional[RegionId]] = []
		for slot in slots:
			if slot.region is None:
				dests.append(None)  # ambiguous, already reported
			elif slot.region == I.STATIC_REGION:
				dests.append(res.table.static)
			else:
				dests.append(res.universals.get(slot.region))
		if len(values) == len(dests):
			pairs = [(v, d) for v, d in zip(values, dests)]
		else:
			pairs = [(v, d) for v in values for d in dests]
		for v, d in pairs:
			if d is not None:
				self._constrain(v, d, ret.point, ret.span, "returned value")


def infer_regions(graph: RefGraph, signatures: SignatureTable) -> RegionInference:
	"""Run region inference for one function."""
	return RegionInferenceEngine(graph, signatures).run()


__all__ = [
	"RegionId",
	"CALLER_REGION",
	"RegionKind",
	"RegionVar",
	"RegionTable",
	"Constraint",
	"RegionInference",
	"RegionInferenceEngine",
	"infer_regions",
]
