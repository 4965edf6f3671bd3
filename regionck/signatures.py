# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Function signatures and region elision.

Elision runs once per signature, before any body is analysed, and is purely a
function of the signature's shape:

  1. distinct-input: every elided reference slot of an input parameter gets a
     fresh region, pairwise distinct;
  2. single-input: if the inputs carry exactly one region, every elided return
     slot gets it;
  3. receiver: otherwise, if the function has a by-reference receiver, every
     elided return slot gets the receiver's region.

Anything else leaves the return slot unresolved and yields `AmbiguousRegion`
with a suggested explicit signature.

Generated region names are drawn from `'a, 'b, ...` skipping names the
signature already uses, so rendering an elided signature with `render()`
produces exactly the explicit signature that re-elides to the same result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional, Set, Tuple

from regionck import ir as I
from regionck.core.diagnostics import Diagnostic, DiagnosticKind
from regionck.core.shapes import (
	RefShape,
	RegionSlot,
	Shape,
	StructShape,
	StructTable,
	TupleShape,
	map_regions,
	region_slots,
	render_shape,
)
from regionck.core.span import Span

STATIC = I.STATIC_REGION


class ElisionRule(Enum):
	"""Which rule determined the return regions."""

	NO_RETURN_REGIONS = auto()  # return type carries no reference
	EXPLICIT = auto()           # every return slot annotated
	SINGLE_INPUT = auto()       # rule 2
	RECEIVER = auto()           # rule 3
	AMBIGUOUS = auto()          # no rule applies


@dataclass
class ParamSig:
	name: str
	shape: Shape            # every slot region filled in
	is_receiver: bool = False
	loc: Span = field(default_factory=Span)

	@property
	def slots(self) -> List[RegionSlot]:
		return region_slots(self.shape)


@dataclass
class ElidedSignature:
	"""
	A signature with every input region named and every resolvable return
	region filled in. Unresolved return slots keep `region=None`.
	"""

	name: str
	qualified_name: str
	params: List[ParamSig]
	ret_shape: Optional[Shape]
	region_names: List[str]
	generated: Set[str] = field(default_factory=set)
	bounds: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
	# Well-formedness: in `&'a T` every region inside `T` outlives `'a`. Never rendered.
	implied: Dict[str, Set[str]] = field(default_factory=dict)
	rule: ElisionRule = ElisionRule.NO_RETURN_REGIONS
	ambiguous: List[RegionSlot] = field(default_factory=list)
	diagnostics: List[Diagnostic] = field(default_factory=list)
	suggestion: Optional[str] = None

	@property
	def ret_slots(self) -> List[RegionSlot]:
		return region_slots(self.ret_shape) if self.ret_shape is not None else []

	@property
	def receiver(self) -> Optional[ParamSig]:
		if self.params and self.params[0].is_receiver:
			return self.params[0]
		return None

	def input_regions(self) -> List[str]:
		"""Distinct input regions in first-appearance order."""
		seen: List[str] = []
		for p in self.params:
			for slot in p.slots:
				if slot.region is not None and slot.region not in seen:
					seen.append(slot.region)
		return seen

	def outlives(self, longer: str, shorter: str) -> bool:
		"""True when `longer: shorter` holds by reflexivity, 'static, declared or implied bounds."""
		if longer == shorter or longer == STATIC:
			return True
		seen: Set[str] = set()
		stack = [longer]
		while stack:
			cur = stack.pop()
			if cur in seen:
				continue
			seen.add(cur)
			for nxt in list(self.bounds.get(cur, ())) + sorted(self.implied.get(cur, ())):
				if nxt == shorter or nxt == STATIC:
					return True
				stack.append(nxt)
		return False

	def render(self) -> str:
		"""Explicit signature text, e.g. `fn first<'a>(s: &'a Str) -> &'a Str`."""
		return f"fn {self.name}" + _render_parts(self.region_names, self.bounds, self.params, self.ret_shape)


def _render_param(p: ParamSig) -> str:
	if p.is_receiver:
		if isinstance(p.shape, RefShape):
			region = f"{p.shape.region} " if p.shape.region else ""
			mut = "mut " if p.shape.mutable else ""
			return f"&{region}{mut}self"
		return "self"
	return f"{p.name}: {render_shape(p.shape)}"


def _render_parts(
	region_names: List[str],
	bounds: Dict[str, Tuple[str, ...]],
	params: List[ParamSig],
	ret_shape: Optional[Shape],
) -> str:
	out = ""
	if region_names:
		decls = []
		for name in region_names:
			b = bounds.get(name, ())
			decls.append(f"{name}: {' + '.join(b)}" if b else name)
		out += "<" + ", ".join(decls) + ">"
	out += "(" + ", ".join(_render_param(p) for p in params) + ")"
	if ret_shape is not None:
		out += f" -> {render_shape(ret_shape)}"
	return out


def _fresh_names(taken: Set[str]) -> Iterator[str]:
	"""Yield `'a`..`'z`, then `'a1`..`'z1`, ... skipping taken names."""
	suffix = 0
	while True:
		for ch in "abcdefghijklmnopqrstuvwxyz":
			name = f"'{ch}{suffix if suffix else ''}"
			if name not in taken:
				yield name
		suffix += 1


def _explicit_names(shapes: List[Optional[Shape]]) -> Set[str]:
	names: Set[str] = set()
	for shape in shapes:
		if shape is None:
			continue
		for slot in region_slots(shape):
			if slot.region is not None:
				names.add(slot.region)
	return names


def _implied_bounds(shape: Shape, out: Dict[str, Set[str]]) -> None:
	"""Record `inner: outer` for every region nested under a reference `&'outer T`."""
	if isinstance(shape, RefShape):
		if shape.region is not None:
			for slot in region_slots(shape.inner):
				if slot.region is not None and slot.region != shape.region:
					out.setdefault(slot.region, set()).add(shape.region)
		_implied_bounds(shape.inner, out)
	elif isinstance(shape, StructShape):
		for arg in shape.args:
			_implied_bounds(arg, out)
	elif isinstance(shape, TupleShape):
		for item in shape.items:
			_implied_bounds(item, out)


def elide(fn: I.FnDef, structs: StructTable) -> ElidedSignature:
	"""Apply elision rules 1-3 to one function signature."""
	declared = [rp.name for rp in fn.region_params]
	bounds = {rp.name: tuple(rp.bounds) for rp in fn.region_params if rp.bounds}
	param_shapes = [structs.shape_of(p.type_expr) for p in fn.params]
	ret_shape = structs.shape_of(fn.ret) if fn.ret is not None else None
	taken = set(declared) | _explicit_names(param_shapes + [ret_shape])
	fresh = _fresh_names(taken)
	diags: List[Diagnostic] = []
	reported_unknown: Set[str] = set()

	def _check_declared(name: str, loc: Span) -> None:
		if name == STATIC or name in declared or name in reported_unknown:
			return
		reported_unknown.add(name)
		diags.append(
			Diagnostic(
				message=f"undeclared region {name} in signature of '{fn.qualified_name}'",
				kind=DiagnosticKind.UNKNOWN_REGION,
				phase="regions",
				span=loc,
				names=(name,),
				notes=[f"declare it: fn {fn.name}<{name}>(...)"],
			)
		)
	for rp in fn.region_params:
		for b in rp.bounds:
			_check_declared(b, rp.loc)

	# Rule 1: distinct-input.
	generated: List[str] = []
	params: List[ParamSig] = []
	for p, shape in zip(fn.params, param_shapes):
		def _fill(_idx: int, region: Optional[str], _loc=p.loc) -> str:
			if region is not None:
				_check_declared(region, _loc)
				return region
			name = next(fresh)
			generated.append(name)
			return name
		params.append(ParamSig(p.name, map_regions(shape, _fill), p.is_receiver, p.loc))

	sig = ElidedSignature(
		name=fn.name,
		qualified_name=fn.qualified_name,
		params=params,
		ret_shape=None,
		region_names=declared + generated,
		generated=set(generated),
		bounds=bounds,
		diagnostics=diags,
	)
	for p in params:
		_implied_bounds(p.shape, sig.implied)
	if ret_shape is None:
		return sig

	inputs = sig.input_regions()
	recv = sig.receiver
	recv_region = recv.shape.region if recv is not None and isinstance(recv.shape, RefShape) else None
	elided_ret = [slot for slot in region_slots(ret_shape) if slot.region is None]
	if not region_slots(ret_shape):
		rule = ElisionRule.NO_RETURN_REGIONS
		chosen: Optional[str] = None
	elif not elided_ret:
		rule = ElisionRule.EXPLICIT
		chosen = None
	elif len(inputs) == 1:
		rule = ElisionRule.SINGLE_INPUT
		chosen = inputs[0]
	elif recv_region is not None:
		rule = ElisionRule.RECEIVER
		chosen = recv_region
	else:
		rule = ElisionRule.AMBIGUOUS
		chosen = None

	def _fill_ret(_idx: int, region: Optional[str]) -> Optional[str]:
		if region is not None:
			_check_declared(region, fn.ret.loc if fn.ret is not None else fn.loc)
			return region
		return chosen

	sig.ret_shape = map_regions(ret_shape, _fill_ret)
	sig.rule = rule
	if rule is ElisionRule.AMBIGUOUS:
		sig.ambiguous = elided_ret
		sig.suggestion = suggest_annotation(fn, structs)
		for slot in elided_ret:
			diags.append(_ambiguous_diag(fn, sig, slot, inputs))
	return sig


def _ambiguous_diag(fn: I.FnDef, sig: ElidedSignature, slot: RegionSlot, inputs: List[str]) -> Diagnostic:
	ref_params = [p.name for p in sig.params if p.slots]
	if inputs:
		why = (
			f"elision gave its {len(ref_params)} reference parameters ({', '.join(ref_params)}) "
			f"distinct regions and there is no `&self` receiver"
		)
	else:
		why = "it has no reference parameters to borrow from"
	return Diagnostic(
		message=f"cannot infer the region of {slot.path} returned by '{fn.qualified_name}': {why}",
		kind=DiagnosticKind.AMBIGUOUS_REGION,
		phase="regions",
		span=fn.ret.loc if fn.ret is not None else fn.loc,
		names=tuple([fn.qualified_name] + ref_params),
		suggestion=sig.suggestion,
		notes=[
			"single-input propagation needs exactly one input region",
			"receiver propagation needs a by-reference receiver",
		],
	)


def suggest_annotation(fn: I.FnDef, structs: StructTable) -> str:
	"""
	Suggest an explicit signature resolving an ambiguous return region:
	every elided slot (inputs and return) shares one fresh region. Without
	elided inputs the return borrows the first explicit input region, and
	without any input region it must be `'static`.
	"""
	declared = [rp.name for rp in fn.region_params]
	bounds = {rp.name: tuple(rp.bounds) for rp in fn.region_params if rp.bounds}
	param_shapes = [structs.shape_of(p.type_expr) for p in fn.params]
	ret_shape = structs.shape_of(fn.ret) if fn.ret is not None else None
	taken = set(declared) | _explicit_names(param_shapes + [ret_shape])
	unified = "'r"
	n = 1
	while unified in taken:
		unified = f"'r{n}"
		n += 1

	used_unified = False

	def _fill(_idx: int, region: Optional[str]) -> str:
		nonlocal used_unified
		if region is not None:
			return region
		used_unified = True
		return unified

	params = [
		ParamSig(p.name, map_regions(shape, _fill), p.is_receiver)
		for p, shape in zip(fn.params, param_shapes)
	]
	explicit_inputs = [s.region for p in params for s in p.slots if s.region not in (None, unified)]
	if used_unified:
		ret_region = unified
	elif explicit_inputs:
		ret_region = explicit_inputs[0]
	else:
		ret_region = STATIC
	ret = None
	if ret_shape is not None:
		ret = map_regions(ret_shape, lambda _i, r: r if r is not None else ret_region)
	names = declared + ([unified] if used_unified else [])
	return _render_parts(names, bounds, params, ret)


class SignatureTable:
	"""
	Read-only, program-level table of elided signatures.

	Built once before any function body is analysed; per-function analyses
	only read it, so they can run in parallel.
	"""

	def __init__(self, functions: List[I.FnDef], structs: StructTable) -> None:
		self._by_name: Dict[str, ElidedSignature] = {}
		for fn in functions:
			self._by_name[fn.qualified_name] = elide(fn, structs)

	def get(self, qualified_name: str) -> Optional[ElidedSignature]:
		return self._by_name.get(qualified_name)

	def method(self, type_name: Optional[str], name: str) -> Optional[ElidedSignature]:
		if type_name is None:
			return None
		return self._by_name.get(f"{type_name}.{name}")

	def __iter__(self) -> Iterator[ElidedSignature]:
		return iter(self._by_name.values())


def receiver_type_name(shape: Optional[Shape]) -> Optional[str]:
	"""Type name used for method lookup (through any number of references)."""
	while isinstance(shape, RefShape):
		shape = shape.inner
	if isinstance(shape, StructShape):
		return shape.name
	if shape is not None and not isinstance(shape, RefShape):
		name = getattr(shape, "name", None)
		return name if name and name != "_" else None
	return None


__all__ = [
	"STATIC",
	"ElisionRule",
	"ParamSig",
	"ElidedSignature",
	"elide",
	"suggest_annotation",
	"SignatureTable",
	"receiver_type_name",
]
