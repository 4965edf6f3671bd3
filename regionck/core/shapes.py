# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Type shapes and region slots.

The verifier does not care *what* a type is, only *where references sit in
it*. A `Shape` is the skeleton of a declared type; `region_slots` flattens a
shape into the ordered list of places that need a region:

  &'a Holder<'b>   →  [slot('a, outer ref), slot('b, Holder region param 0)]
  (&Str, &mut Int) →  [slot(None, tuple.0), slot(None, tuple.1, mutable)]

Slot order is pre-order and stable, so two values of the same shape can be
related slot-by-slot.

`StructTable` is the read-only program-level table of composite types. Each
struct is validated once (`UnresolvedFieldRegion`), and the verdict is cached
so functions analysed in parallel only ever read it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from regionck import ir as I
from regionck.core.diagnostics import Diagnostic, DiagnosticKind
from regionck.core.span import Span


@dataclass(frozen=True)
class RefShape:
	inner: "Shape"
	region: Optional[str] = None
	mutable: bool = False


@dataclass(frozen=True)
class StructShape:
	name: str
	regions: Tuple[Optional[str], ...] = ()
	args: Tuple["Shape", ...] = ()


@dataclass(frozen=True)
class TupleShape:
	items: Tuple["Shape", ...] = ()


@dataclass(frozen=True)
class OpaqueShape:
	"""Any type without region structure (`Int`, `Str`, unknown names, ...)."""

	name: str = "_"


Shape = Union[RefShape, StructShape, TupleShape, OpaqueShape]


@dataclass(frozen=True)
class RegionSlot:
	"""
	One position inside a shape that carries a region.

	`region` is the explicit annotation (None when elided). `mutable` is only
	meaningful for reference slots. `path` describes the position for
	diagnostics (e.g. "`&Str` in tuple element 1").
	"""

	region: Optional[str]
	mutable: bool
	path: str
	is_ref: bool = True


def render_shape(shape: Shape) -> str:
	"""Render a shape back to surface syntax (elided regions stay elided)."""
	if isinstance(shape, RefShape):
		region = f"{shape.region} " if shape.region else ""
		mut = "mut " if shape.mutable else ""
		return f"&{region}{mut}{render_shape(shape.inner)}"
	if isinstance(shape, StructShape):
		parts = [r for r in shape.regions if r is not None]
		parts += [render_shape(a) for a in shape.args]
		return f"{shape.name}<{', '.join(parts)}>" if parts else shape.name
	if isinstance(shape, TupleShape):
		return "(" + ", ".join(render_shape(s) for s in shape.items) + ")"
	return shape.name


def region_slots(shape: Shape, path: str = "") -> List[RegionSlot]:
	"""Flatten a shape into its ordered region slots (pre-order)."""
	where = path or f"`{render_shape(shape)}`"
	if isinstance(shape, RefShape):
		slots = [RegionSlot(shape.region, shape.mutable, where)]
		return slots + region_slots(shape.inner, f"{where} (referent)")
	if isinstance(shape, StructShape):
		slots = [
			RegionSlot(region, False, f"{where} region parameter {idx}", is_ref=False)
			for idx, region in enumerate(shape.regions)
		]
		for arg in shape.args:
			slots += region_slots(arg, f"{where} type argument `{render_shape(arg)}`")
		return slots
	if isinstance(shape, TupleShape):
		slots = []
		for idx, item in enumerate(shape.items):
			slots += region_slots(item, f"{where} element {idx}")
		return slots
	return []


def map_regions(shape: Shape, fn) -> Shape:
	"""Return `shape` with every slot region replaced by `fn(slot_index, region)`."""
	counter = [0]

	def _walk(s: Shape) -> Shape:
		if isinstance(s, RefShape):
			idx = counter[0]
			counter[0] += 1
			region = fn(idx, s.region)
			return RefShape(_walk(s.inner), region, s.mutable)
		if isinstance(s, StructShape):
			regions = []
			for r in s.regions:
				regions.append(fn(counter[0], r))
				counter[0] += 1
			return StructShape(s.name, tuple(regions), tuple(_walk(a) for a in s.args))
		if isinstance(s, TupleShape):
			return TupleShape(tuple(_walk(i) for i in s.items))
		return s

	return _walk(shape)


@dataclass
class StructInfo:
	"""
	Validated view of a struct definition.

	`field_slots[field]` maps every region slot of the field's shape to the
	struct region parameter index it is tied to, `STATIC_REGION` for
	`'static`, or None when the slot is unresolved.
	"""

	name: str
	region_params: List[str]
	fields: Dict[str, Shape] = field(default_factory=dict)
	field_slots: Dict[str, List[Union[int, str, None]]] = field(default_factory=dict)
	well_formed: bool = True


class StructTable:
	"""
	Read-only table of struct definitions.

	`validate()` runs once per table and caches both the per-struct verdict and
	the diagnostics; later calls return the cached list.
	"""

	def __init__(self, structs: List[I.StructDef]) -> None:
		self._defs: Dict[str, I.StructDef] = {s.name: s for s in structs}
		self._infos: Dict[str, StructInfo] = {}
		self._diagnostics: Optional[List[Diagnostic]] = None

	def region_arity(self, name: str) -> int:
		sd = self._defs.get(name)
		return len(sd.region_params) if sd is not None else 0

	def info(self, name: str) -> Optional[StructInfo]:
		self.validate()
		return self._infos.get(name)

	def shape_of(self, texpr: Optional[I.TypeExpr]) -> Shape:
		"""Convert a type expression into a shape (struct region args padded to arity)."""
		if texpr is None:
			return OpaqueShape()
		if isinstance(texpr, I.RefTypeExpr):
			return RefShape(self.shape_of(texpr.inner), texpr.region, texpr.mutable)
		if isinstance(texpr, I.TupleTypeExpr):
			return TupleShape(tuple(self.shape_of(t) for t in texpr.items))
		if isinstance(texpr, I.NamedTypeExpr):
			args = tuple(self.shape_of(a) for a in texpr.args)
			if texpr.name in self._defs:
				arity = self.region_arity(texpr.name)
				regions: List[Optional[str]] = list(texpr.regions[:arity])
				regions += [None] * (arity - len(regions))
				return StructShape(texpr.name, tuple(regions), args)
			if args:
				return StructShape(texpr.name, (), args)
			return OpaqueShape(texpr.name)
		raise AssertionError(f"unknown type expression {texpr!r} (parser bug)")

	def validate(self) -> List[Diagnostic]:
		"""Validate every struct once; return the cached diagnostics."""
		if self._diagnostics is not None:
			return self._diagnostics
		diags: List[Diagnostic] = []
		for sd in self._defs.values():
			self._infos[sd.name] = self._validate_struct(sd, diags)
		self._diagnostics = diags
		return diags

	def _validate_struct(self, sd: I.StructDef, diags: List[Diagnostic]) -> StructInfo:
		params = [rp.name for rp in sd.region_params]
		info = StructInfo(name=sd.name, region_params=params)
		for fld in sd.fields:
			shape = self.shape_of(fld.type_expr)
			info.fields[fld.name] = shape
			mapping: List[Union[int, str, None]] = []
			for slot in region_slots(shape):
				if slot.region == I.STATIC_REGION:
					mapping.append(I.STATIC_REGION)
					continue
				if slot.region is not None and slot.region in params:
					mapping.append(params.index(slot.region))
					continue
				mapping.append(None)
				info.well_formed = False
				if slot.region is None:
					why = f"field '{fld.name}' stores {slot.path} without a region parameter"
				else:
					why = f"field '{fld.name}' uses region {slot.region} which struct '{sd.name}' does not declare"
				diags.append(
					Diagnostic(
						message=f"struct '{sd.name}': {why}",
						kind=DiagnosticKind.UNRESOLVED_FIELD_REGION,
						phase="structs",
						span=fld.loc or Span(),
						names=(sd.name, fld.name),
						notes=["a reference stored in a struct must state how long it remains valid"],
					)
				)
			info.field_slots[fld.name] = mapping
		return info


__all__ = [
	"RefShape",
	"StructShape",
	"TupleShape",
	"OpaqueShape",
	"Shape",
	"RegionSlot",
	"render_shape",
	"region_slots",
	"map_regions",
	"StructInfo",
	"StructTable",
]
