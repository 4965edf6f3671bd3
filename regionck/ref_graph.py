# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Reference graph builder (stage 2 of the per-function pipeline).

Walks a function body once, in program-point order, and records:

  * every `Reference` (loans of storage, copies held by bindings, call
    results, aggregate slots, string literals) with its BorrowEvents
    (Created / Read / Written / Expired, exactly one Expired each);
  * `Derivation` edges "source outlives dest" whenever a reference value
    flows into another slot (let, assignment, reborrow, struct literal);
  * `Access` records: instantaneous direct reads/writes/moves of bindings;
  * `OwnershipTransfer` records for `move x` and move captures;
  * `CallSite` / `ReturnSite` records that region inference instantiates
    against signatures.

Regions are not assigned here: a Reference only carries its explicit
annotation, if any. Use-after-move and non-place borrows are reported as the
walk goes, with the same wording the drift borrow checker uses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Set

from regionck import ir as I
from regionck.closures import CaptureMode, sort_captures
from regionck.core.diagnostics import Diagnostic, DiagnosticKind
from regionck.core.shapes import (
	OpaqueShape,
	RefShape,
	Shape,
	StructShape,
	StructTable,
	TupleShape,
	region_slots,
)
from regionck.core.span import Span
from regionck.places import DerefProj, FieldProj, IndexProj, Place, PlaceBase, place_from_expr
from regionck.scopes import BindingId, Extent, LoopInfo, ScopeTree
from regionck.signatures import ParamSig, SignatureTable, receiver_type_name

RefId = int


class LivenessMode(Enum):
	"""When does a holder's own reference stop being live?"""

	SCOPE = "scope"          # end of the holder's lexical scope
	LAST_USE = "last-use"    # last Read/Written event on the holder's reference


class RefKind(Enum):
	SHARED = auto()
	EXCLUSIVE = auto()


class EventKind(Enum):
	CREATED = auto()
	READ = auto()
	WRITTEN = auto()
	EXPIRED = auto()


class RefOrigin(Enum):
	"""How a Reference came to exist."""

	BORROW = auto()        # `&place` / `&mut place`
	AUTO_BORROW = auto()   # argument or receiver borrowed for a call
	CAPTURE = auto()       # closure capture by reference
	PARAM = auto()         # slot of a parameter, live for the whole body
	HOLDER = auto()        # slot held by a local binding
	CALL_RESULT = auto()   # slot of a call's return value
	AGGREGATE = auto()     # slot of a struct literal
	LITERAL = auto()       # string literal, or a 'static field slot


@dataclass
class Reference:
	"""
	One reference value.

	Loans (`is_loan`) borrow storage of `target`; every other reference is
	derived from loans/params/literals through `Derivation` edges. `holder`
	is the binding that stores this reference (None for temporaries).
	"""

	id: RefId
	kind: RefKind
	origin: RefOrigin
	created: int
	span: Span
	target: Optional[BindingId] = None
	place: Optional[Place] = None
	holder: Optional[BindingId] = None
	is_loan: bool = False
	through_ref: bool = False
	region: Optional[str] = None     # explicit annotation
	last_use: Optional[int] = None
	expires: int = -1
	loop: Optional[LoopInfo] = None  # innermost loop containing the creation point

	@property
	def is_temporary(self) -> bool:
		return self.holder is None and self.origin is not RefOrigin.PARAM

	@property
	def own_extent(self) -> Extent:
		return Extent(self.created, max(self.created, self.expires))

	def describe(self, tree: ScopeTree) -> str:
		mut = "mut " if self.kind is RefKind.EXCLUSIVE else ""
		if self.place is not None:
			return f"&{mut}{self.place.render()}"
		if self.holder is not None:
			return f"{tree.binding(self.holder).name} ({self.origin.name.lower()})"
		return self.origin.name.lower()


@dataclass(frozen=True)
class BorrowEvent:
	ref: RefId
	kind: EventKind
	point: int


@dataclass(frozen=True)
class Derivation:
	"""`source` must outlive `dest` (the value of `source` was stored into `dest`)."""

	source: RefId
	dest: RefId
	point: int
	span: Span
	reason: str


@dataclass(frozen=True)
class Access:
	"""An instantaneous direct access of a binding's storage."""

	binding: BindingId
	kind: RefKind
	point: int
	span: Span
	place: Place
	is_move: bool = False


@dataclass
class OwnershipTransfer:
	"""`move x` or a move capture; `into` is the binding the value ends up in."""

	binding: BindingId
	point: int
	span: Span
	via_capture: bool = False
	into: Optional[BindingId] = None


@dataclass
class CallSite:
	callee: str
	point: int
	span: Span
	args: List[List[RefId]] = field(default_factory=list)
	result: List[RefId] = field(default_factory=list)


@dataclass
class ReturnSite:
	slots: List[RefId]
	point: int
	span: Span


@dataclass
class RefGraph:
	"""Output of the reference graph builder for one function."""

	tree: ScopeTree
	references: List[Reference] = field(default_factory=list)
	events: List[BorrowEvent] = field(default_factory=list)
	derivations: List[Derivation] = field(default_factory=list)
	accesses: List[Access] = field(default_factory=list)
	transfers: List[OwnershipTransfer] = field(default_factory=list)
	calls: List[CallSite] = field(default_factory=list)
	returns: List[ReturnSite] = field(default_factory=list)
	holder_slots: Dict[BindingId, List[RefId]] = field(default_factory=dict)
	diagnostics: List[Diagnostic] = field(default_factory=list)

	def ref(self, rid: RefId) -> Reference:
		return self.references[rid]

	def events_for(self, rid: RefId) -> List[BorrowEvent]:
		return [ev for ev in self.events if ev.ref == rid]

	def loans_on(self, bid: BindingId) -> List[Reference]:
		return [r for r in self.references if r.is_loan and r.target == bid]


@dataclass
class _Value:
	"""The region slots carried by an evaluated expression, plus its shape."""

	slots: List[RefId]
	shape: Optional[Shape] = None


class RefGraphBuilder:
	"""Build the reference graph of one function."""

	def __init__(
		self,
		tree: ScopeTree,
		structs: StructTable,
		signatures: SignatureTable,
		*,
		liveness: LivenessMode = LivenessMode.SCOPE,
	) -> None:
		self.tree = tree
		self.structs = structs
		self.signatures = signatures
		self.liveness = liveness
		self.graph = RefGraph(tree=tree)
		self._moved: Dict[BindingId, OwnershipTransfer] = {}
		self._reported_moves: Set[BindingId] = set()
		self._needs_exclusive: Dict[RefId, Span] = {}
		self._stmt_transfers: List[OwnershipTransfer] = []

	def build(self) -> RefGraph:
		self._declare_params()
		self._walk_block(self.tree.fn.body)
		self._upgrade_exclusive()
		self._expire()
		return self.graph

	# References and events

	def _new_ref(
		self,
		kind: RefKind,
		origin: RefOrigin,
		created: int,
		span: Span,
		**extra,
	) -> Reference:
		loops = self.tree.loops_containing(created)
		ref = Reference(
			id=len(self.graph.references),
			kind=kind,
			origin=origin,
			created=created,
			span=span,
			loop=loops[0] if loops else None,
			**extra,
		)
		self.graph.references.append(ref)
		self._event(ref.id, EventKind.CREATED, created)
		return ref

	def _event(self, rid: RefId, kind: EventKind, point: int) -> None:
		self.graph.events.append(BorrowEvent(rid, kind, point))
		if kind in (EventKind.READ, EventKind.WRITTEN):
			ref = self.graph.references[rid]
			ref.last_use = point if ref.last_use is None else max(ref.last_use, point)

	def _derive(self, source: RefId, dest: RefId, point: int, span: Span, reason: str) -> None:
		self.graph.derivations.append(Derivation(source, dest, point, span, reason))

	def _require_exclusive(self, rid: RefId, span: Span) -> None:
		self._needs_exclusive.setdefault(rid, span)

	def _flow(self, sources: List[RefId], dests: List[RefId], point: int, span: Span, reason: str) -> None:
		"""Relate value slots positionally when the shapes agree, all-to-all otherwise."""
		if len(sources) == len(dests):
			for src, dst in zip(sources, dests):
				self._derive(src, dst, point, span, reason)
			return
		for src in sources:
			for dst in dests:
				self._derive(src, dst, point, span, reason)

	def _static_ref(self, point: int, span: Span) -> RefId:
		return self._new_ref(
			RefKind.SHARED,
			RefOrigin.LITERAL,
			point,
			span,
			region=I.STATIC_REGION,
		).id

	# Bindings

	def _declare_params(self) -> None:
		sig = self.signatures.get(self.tree.fn.qualified_name)
		start = self.tree.root.start
		for idx, param in enumerate(self.tree.fn.params):
			bid = self.tree.param_binding[param.name]
			b = self.tree.binding(bid)
			slots = sig.params[idx].slots if sig is not None else region_slots(b.shape)
			holders = []
			for slot in slots:
				ref = self._new_ref(
					RefKind.EXCLUSIVE if slot.mutable else RefKind.SHARED,
					RefOrigin.PARAM,
					start,
					param.loc,
					holder=bid,
					region=slot.region,
				)
				holders.append(ref.id)
			self.graph.holder_slots[bid] = holders

	def _holders(self, bid: BindingId) -> List[RefId]:
		return self.graph.holder_slots.get(bid, [])

	def _init_holders(
		self,
		bid: BindingId,
		value: Optional[_Value],
		declared: Optional[Shape],
		point: int,
		span: Span,
		reason: str,
	) -> List[RefId]:
		decl_slots = region_slots(declared) if declared is not None else None
		sources = value.slots if value is not None else []
		count = len(decl_slots) if decl_slots is not None else len(sources)
		holders = []
		for idx in range(count):
			src = self.graph.ref(sources[idx]) if idx < len(sources) and len(sources) == count else None
			if decl_slots is not None:
				kind = RefKind.EXCLUSIVE if decl_slots[idx].mutable else RefKind.SHARED
				region = decl_slots[idx].region
			else:
				kind = src.kind if src is not None else RefKind.SHARED
				region = None
			ref = self._new_ref(
				kind,
				RefOrigin.HOLDER,
				point,
				span,
				holder=bid,
				region=region,
				target=src.target if src is not None else None,
			)
			holders.append(ref.id)
		self.graph.holder_slots[bid] = holders
		if value is not None:
			self._flow(value.slots, holders, point, span, reason)
		return holders

	def _place(self, expr: I.Expr) -> Optional[Place]:
		def _lookup(name: str, _expr=expr) -> Optional[PlaceBase]:
			node = _expr
			while isinstance(node, (I.Field, I.Index, I.Deref)):
				node = node.subject
			bid = self.tree.var_binding.get(id(node))
			if bid is None:
				return None
			return PlaceBase(bid, self.tree.binding(bid).name)

		return place_from_expr(
			expr,
			base_lookup=_lookup,
			is_ref_binding=lambda bid: self.tree.binding(bid).is_ref,
		)

	def _place_value(self, place: Place, point: int, span: Span) -> _Value:
		"""Slots and shape stored at `place` (no events, no accesses)."""
		b = self.tree.binding(place.base.binding_id)
		slots = list(self._holders(b.id))
		shape = b.shape
		for proj in place.projections:
			if isinstance(proj, DerefProj):
				if isinstance(shape, RefShape):
					shape = shape.inner
					slots = slots[1:]
				else:
					shape = None
			elif isinstance(proj, FieldProj):
				slots, shape = self._field_value(slots, shape, proj.name, point, span)
			elif isinstance(proj, IndexProj):
				if isinstance(shape, StructShape) and shape.args:
					offset = len(shape.regions)
					elem = shape.args[0]
					slots = slots[offset:offset + len(region_slots(elem))]
					shape = elem
				else:
					slots, shape = [], None
		return _Value(slots, shape)

	def _field_value(self, slots, shape, name: str, point: int, span: Span):
		if not isinstance(shape, StructShape):
			return [], None
		info = self.structs.info(shape.name)
		if info is None or name not in info.fields:
			return [], None
		out = []
		for target in info.field_slots[name]:
			if target is None or target == I.STATIC_REGION:
				# A slot without a declared region only ever holds 'static data.
				out.append(self._static_ref(point, span))
			elif isinstance(target, int) and target < len(slots):
				out.append(slots[target])
		return out, info.fields[name]

	def _place_shape(self, place: Place) -> Optional[Shape]:
		shape = self.tree.binding(place.base.binding_id).shape
		for proj in place.projections:
			if isinstance(proj, DerefProj):
				shape = shape.inner if isinstance(shape, RefShape) else None
			elif isinstance(proj, FieldProj):
				info = self.structs.info(shape.name) if isinstance(shape, StructShape) else None
				shape = info.fields.get(proj.name) if info is not None else None
			else:
				shape = shape.args[0] if isinstance(shape, StructShape) and shape.args else None
		return shape

	# Accesses and moves

	def _diagnostic(self, kind: DiagnosticKind, message: str, span: Span, *, names=(), notes=None) -> None:
		self.graph.diagnostics.append(
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

	def _check_moved(self, bid: BindingId, span: Span) -> None:
		transfer = self._moved.get(bid)
		if transfer is None or bid in self._reported_moves:
			return
		self._reported_moves.add(bid)
		name = self.tree.binding(bid).name
		where = "captured by a move closure" if transfer.via_capture else "moved"
		self._diagnostic(
			DiagnosticKind.USE_AFTER_MOVE,
			f"use after move of '{name}'",
			span,
			names=(name,),
			notes=[f"value {where} at {transfer.span}"],
		)

	def _access(self, bid: BindingId, kind: RefKind, point: int, span: Span, place: Place, *, is_move: bool = False) -> None:
		self.graph.accesses.append(Access(bid, kind, point, span, place, is_move))

	def _read_binding(self, place: Place, point: int, span: Span) -> None:
		bid = place.base.binding_id
		self._check_moved(bid, span)
		self._access(bid, RefKind.SHARED, point, span, place)
		for rid in self._holders(bid):
			self._event(rid, EventKind.READ, point)

	def _move(self, place: Place, point: int, span: Span, *, via_capture: bool = False) -> _Value:
		bid = place.base.binding_id
		self._check_moved(bid, span)
		self._access(bid, RefKind.EXCLUSIVE, point, span, place, is_move=True)
		for rid in self._holders(bid):
			self._event(rid, EventKind.READ, point)
		value = self._place_value(place, point, span)
		if not place.projections:
			transfer = OwnershipTransfer(bid, point, span, via_capture=via_capture)
			self.graph.transfers.append(transfer)
			self._stmt_transfers.append(transfer)
			self._moved[bid] = transfer
		return value

	def _borrow_place(
		self,
		place: Place,
		mutable: bool,
		point: int,
		span: Span,
		origin: RefOrigin,
	) -> _Value:
		bid = place.base.binding_id
		self._check_moved(bid, span)
		loan = self._new_ref(
			RefKind.EXCLUSIVE if mutable else RefKind.SHARED,
			origin,
			point,
			span,
			target=bid,
			place=place,
			is_loan=True,
			through_ref=place.through_deref,
		)
		holders = self._holders(bid)
		if place.through_deref and holders:
			# Reborrow: the new reference cannot outlive the reference it goes through.
			outer = holders[0]
			self._derive(outer, loan.id, point, span, "reborrow")
			self._event(outer, EventKind.READ, point)
			if mutable:
				self._require_exclusive(outer, span)
		referent = self._place_value(place, point, span)
		shape = RefShape(referent.shape or OpaqueShape(), None, mutable)
		return _Value([loan.id] + referent.slots, shape)

	# Statements

	def _walk_block(self, block: I.Block) -> None:
		for stmt in block.statements:
			self._walk_stmt(stmt)

	def _walk_stmt(self, stmt: I.Stmt) -> None:
		if isinstance(stmt, I.Block):
			self._walk_block(stmt)
			return
		p = self.tree.stmt_point[id(stmt)]
		self._stmt_transfers = []
		if isinstance(stmt, I.Let):
			self._let(stmt, p)
		elif isinstance(stmt, I.Assign):
			self._assign(stmt, p)
		elif isinstance(stmt, I.ExprStmt):
			self._eval(stmt.expr, p)
		elif isinstance(stmt, I.Return):
			value = self._eval(stmt.value, p) if stmt.value is not None else _Value([])
			self.graph.returns.append(ReturnSite(value.slots, p, stmt.loc))
		elif isinstance(stmt, I.If):
			self._if(stmt, p)
		elif isinstance(stmt, I.While):
			self._while(stmt, p)
		else:
			raise AssertionError(f"unhandled statement {type(stmt).__name__} (reference graph bug)")

	def _let(self, stmt: I.Let, p: int) -> None:
		bid = self.tree.let_binding[id(stmt)]
		b = self.tree.binding(bid)
		value = self._eval(stmt.value, p) if stmt.value is not None else None
		if b.shape is None and value is not None:
			b.shape = value.shape
		declared = b.shape if stmt.type_expr is not None else None
		if value is not None or declared is not None:
			self._init_holders(bid, value, declared, p + 1, stmt.loc, "let")
		for transfer in self._stmt_transfers:
			transfer.into = bid

	def _assign(self, stmt: I.Assign, p: int) -> None:
		value = self._eval(stmt.value, p)
		target = stmt.target
		self._eval_indices(target, p)
		place = self._place(target)
		if place is None:
			return
		bid = place.base.binding_id
		b = self.tree.binding(bid)
		if not place.projections:
			# Whole-binding store: re-initializes a moved binding.
			self._access(bid, RefKind.EXCLUSIVE, p + 1, stmt.loc, place)
			self._moved.pop(bid, None)
			if b.shape is None:
				b.shape = value.shape
			if bid not in self.graph.holder_slots:
				self._init_holders(bid, value, None, p + 1, stmt.loc, "assignment")
			else:
				self._flow(value.slots, self._holders(bid), p + 1, stmt.loc, "assignment")
			for transfer in self._stmt_transfers:
				transfer.into = bid
			return
		self._check_moved(bid, stmt.loc)
		self._access(bid, RefKind.EXCLUSIVE, p + 1, stmt.loc, place)
		holders = self._holders(bid)
		if place.through_deref and holders:
			self._event(holders[0], EventKind.WRITTEN, p + 1)
			self._require_exclusive(holders[0], stmt.loc)
		dest = self._place_value(place, p + 1, stmt.loc)
		self._flow(value.slots, dest.slots, p + 1, stmt.loc, "assignment")

	def _if(self, stmt: I.If, p: int) -> None:
		self._eval(stmt.cond, p)
		before = dict(self._moved)
		self._walk_block(stmt.then_block)
		after_then = self._moved
		self._moved = dict(before)
		if stmt.else_block is not None:
			self._walk_block(stmt.else_block)
		merged = dict(self._moved)
		for bid, transfer in after_then.items():
			merged.setdefault(bid, transfer)
		self._moved = merged

	def _while(self, stmt: I.While, p: int) -> None:
		self._eval(stmt.cond, p)
		loop = next(lp for lp in self.tree.loops if lp.start == p)
		before = dict(self._moved)
		self._walk_block(stmt.body)
		for bid, transfer in self._moved.items():
			if bid in before or not loop.extent.contains(transfer.point):
				continue
			b = self.tree.binding(bid)
			if b.decl_point >= loop.start or bid in self._reported_moves:
				continue
			# Still moved on the back edge: the next iteration uses a moved value.
			self._reported_moves.add(bid)
			self._diagnostic(
				DiagnosticKind.USE_AFTER_MOVE,
				f"use after move of '{b.name}'",
				transfer.span,
				names=(b.name,),
				notes=["value moved here in the previous iteration of the loop"],
			)
		merged = dict(self._moved)
		for bid, transfer in before.items():
			merged.setdefault(bid, transfer)
		self._moved = merged

	# Expressions

	def _eval(self, expr: I.Expr, p: int) -> _Value:
		if isinstance(expr, I.Literal):
			if expr.kind is I.LiteralKind.STR:
				rid = self._static_ref(p, expr.loc)
				return _Value([rid], RefShape(OpaqueShape("Str"), I.STATIC_REGION))
			return _Value([], OpaqueShape("Bool" if expr.kind is I.LiteralKind.BOOL else "Int"))
		if isinstance(expr, (I.Var, I.Field, I.Index, I.Deref)):
			return self._eval_place_expr(expr, p)
		if isinstance(expr, I.Borrow):
			return self._eval_borrow(expr, p, RefOrigin.BORROW)
		if isinstance(expr, I.Move):
			place = self._place(expr.subject)
			if place is None:
				self._eval(expr.subject, p)
				if I.is_place_expr(expr.subject):
					return _Value([])
				self._diagnostic(DiagnosticKind.INVALID_BORROW, "move operand must be an addressable place", expr.loc)
				return _Value([])
			return self._move(place, p, expr.loc)
		if isinstance(expr, I.Call):
			return self._eval_call(expr, p)
		if isinstance(expr, I.MethodCall):
			return self._eval_method_call(expr, p)
		if isinstance(expr, I.StructLit):
			return self._eval_struct_lit(expr, p)
		if isinstance(expr, I.TupleLit):
			slots: List[RefId] = []
			shapes = []
			for item in expr.items:
				val = self._eval(item, p)
				slots += val.slots
				shapes.append(val.shape or OpaqueShape())
			return _Value(slots, TupleShape(tuple(shapes)))
		if isinstance(expr, I.Binary):
			self._eval(expr.left, p)
			self._eval(expr.right, p)
			return _Value([], OpaqueShape())
		if isinstance(expr, I.Closure):
			return self._eval_closure(expr, p)
		raise AssertionError(f"unhandled expression {type(expr).__name__} (reference graph bug)")

	def _eval_place_expr(self, expr: I.Expr, p: int) -> _Value:
		if isinstance(expr, I.Index):
			self._eval(expr.index, p)
		place = self._place(expr)
		if place is None:
			if not isinstance(expr, I.Var):
				# Projection of an rvalue (`f().x`): evaluate it, carry nothing.
				self._eval(expr.subject, p)
			return _Value([])
		self._read_binding(place, p, expr.loc)
		return self._place_value(place, p, expr.loc)

	def _eval_indices(self, expr: I.Expr, p: int) -> None:
		"""Read the index operands of a place expression (`i` in `&v[i]`)."""
		node = expr
		while isinstance(node, (I.Field, I.Index, I.Deref)):
			if isinstance(node, I.Index):
				self._eval(node.index, p)
			node = node.subject

	def _eval_borrow(self, expr: I.Borrow, p: int, origin: RefOrigin) -> _Value:
		self._eval_indices(expr.subject, p)
		place = self._place(expr.subject)
		if place is None:
			if I.is_place_expr(expr.subject):
				# Unresolved name, already reported.
				return _Value([])
			self._eval(expr.subject, p)
			self._diagnostic(DiagnosticKind.INVALID_BORROW, "cannot borrow from a non-lvalue expression", expr.loc)
			return _Value([])
		return self._borrow_place(place, expr.mutable, p, expr.loc, origin)

	def _eval_arg(self, arg: I.Expr, param: Optional[ParamSig], p: int) -> _Value:
		"""Evaluate a call argument, auto-borrowing for `&T` / `&mut T` parameters."""
		wants_ref = param is not None and isinstance(param.shape, RefShape)
		if wants_ref and not isinstance(arg, I.Borrow):
			place = self._place(arg)
			if place is not None and not isinstance(self._place_shape(place), RefShape):
				self._eval_indices(arg, p)
				return self._borrow_place(place, param.shape.mutable, p, arg.loc, RefOrigin.AUTO_BORROW)
		value = self._eval(arg, p)
		if wants_ref and param.shape.mutable and value.slots:
			# Passing an existing reference where `&mut` is required.
			self._require_exclusive(value.slots[0], arg.loc)
		return value

	def _call_result(self, sig, p: int, span: Span) -> List[RefId]:
		out = []
		for slot in sig.ret_slots:
			ref = self._new_ref(
				RefKind.EXCLUSIVE if slot.mutable else RefKind.SHARED,
				RefOrigin.CALL_RESULT,
				p,
				span,
			)
			out.append(ref.id)
		return out

	def _eval_call(self, expr: I.Call, p: int) -> _Value:
		local = self.tree.var_binding.get(id(expr))
		if local is not None:
			# Calling a closure held by a local binding.
			b = self.tree.binding(local)
			self._read_binding(Place(PlaceBase(local, b.name)), p, expr.loc)
			for arg in expr.args:
				self._eval(arg, p)
			return _Value([], OpaqueShape())
		sig = self.signatures.get(expr.fn)
		params = sig.params if sig is not None and len(sig.params) == len(expr.args) else None
		args = [self._eval_arg(arg, params[idx] if params else None, p) for idx, arg in enumerate(expr.args)]
		if sig is None:
			# Unresolved callee: arguments are plain reads, the result owns nothing.
			return _Value([], OpaqueShape())
		result = self._call_result(sig, p, expr.loc)
		self.graph.calls.append(CallSite(sig.qualified_name, p, expr.loc, [a.slots for a in args], result))
		return _Value(result, sig.ret_shape or OpaqueShape())

	def _eval_method_call(self, expr: I.MethodCall, p: int) -> _Value:
		recv_place = self._place(expr.receiver)
		recv_value: Optional[_Value] = None
		if recv_place is not None:
			recv_shape = self._place_shape(recv_place)
		else:
			recv_value = self._eval(expr.receiver, p)
			recv_shape = recv_value.shape
		sig = self.signatures.method(receiver_type_name(recv_shape), expr.name)
		if sig is None or sig.receiver is None:
			if recv_value is None and recv_place is not None:
				self._read_binding(recv_place, p, expr.receiver.loc)
			for arg in expr.args:
				self._eval(arg, p)
			return _Value([], OpaqueShape())
		recv_param = sig.receiver
		if recv_value is None:
			recv_value = self._eval_arg(expr.receiver, recv_param, p)
		elif isinstance(recv_param.shape, RefShape) and recv_param.shape.mutable and recv_value.slots:
			self._require_exclusive(recv_value.slots[0], expr.receiver.loc)
		rest = sig.params[1:]
		params = rest if len(rest) == len(expr.args) else None
		args = [self._eval_arg(arg, params[idx] if params else None, p) for idx, arg in enumerate(expr.args)]
		result = self._call_result(sig, p, expr.loc)
		self.graph.calls.append(
			CallSite(sig.qualified_name, p, expr.loc, [recv_value.slots] + [a.slots for a in args], result)
		)
		return _Value(result, sig.ret_shape or OpaqueShape())

	def _eval_struct_lit(self, expr: I.StructLit, p: int) -> _Value:
		info = self.structs.info(expr.name)
		if info is None:
			slots: List[RefId] = []
			for init in expr.fields:
				slots += self._eval(init.value, p).slots
			return _Value(slots, OpaqueShape(expr.name))
		agg = [
			self._new_ref(RefKind.SHARED, RefOrigin.AGGREGATE, p, expr.loc).id
			for _ in info.region_params
		]
		for init in expr.fields:
			value = self._eval(init.value, p)
			mapping = info.field_slots.get(init.name)
			if mapping is None:
				continue
			dests = []
			for target in mapping:
				if target is None or target == I.STATIC_REGION:
					dests.append(self._static_ref(p, init.loc))
				else:
					dests.append(agg[target])
			self._flow(value.slots, dests, p, init.loc, f"field '{init.name}'")
		return _Value(agg, StructShape(expr.name, (None,) * len(agg)))

	def _eval_closure(self, expr: I.Closure, p: int) -> _Value:
		slots: List[RefId] = []
		for cap in sort_captures(expr.captures):
			bid = self.tree.capture_binding.get((id(expr), cap.name))
			if bid is None:
				continue
			place = Place(PlaceBase(bid, cap.name))
			if cap.mode is CaptureMode.MOVE:
				slots += self._move(place, p, cap.loc, via_capture=True).slots
			else:
				mutable = cap.mode is CaptureMode.EXCLUSIVE
				slots += self._borrow_place(place, mutable, p, cap.loc, RefOrigin.CAPTURE).slots
		return _Value(slots, OpaqueShape("closure"))

	# Finishing

	def _upgrade_exclusive(self) -> None:
		"""
		A reference used to mutate is exclusive, and so is everything it derives from.

		Parameter and call-result slots get their kind from a signature, so a
		shared one reached here cannot be upgraded: the caller handed out a
		shared borrow. That is reported as a write through a shared reference.
		"""
		sources: Dict[RefId, List[RefId]] = {}
		for d in self.graph.derivations:
			sources.setdefault(d.dest, []).append(d.source)
		seen: Set[RefId] = set()
		for start in self._needs_exclusive:
			work = [start]
			while work:
				rid = work.pop()
				if rid in seen:
					continue
				seen.add(rid)
				ref = self.graph.ref(rid)
				if ref.origin is RefOrigin.LITERAL:
					continue
				if ref.kind is RefKind.SHARED and ref.origin in (RefOrigin.PARAM, RefOrigin.CALL_RESULT):
					self._report_shared_write(self.graph.ref(start), ref, self._needs_exclusive[start])
					continue
				ref.kind = RefKind.EXCLUSIVE
				work.extend(sources.get(rid, []))

	def _report_shared_write(self, written: Reference, fixed: Reference, span: Span) -> None:
		holder = written.holder if written.holder is not None else fixed.holder
		name = self.tree.binding(holder).name if holder is not None else None
		if fixed.origin is RefOrigin.PARAM:
			param = self.tree.binding(fixed.holder).name
			note = f"'{param}' is a shared reference in the signature of '{self.tree.fn.qualified_name}'"
		else:
			note = f"the reference is the shared result of the call at {fixed.span}"
		self._diagnostic(
			DiagnosticKind.BORROW_CONFLICT,
			f"cannot write through shared reference '{name}'" if name else "cannot write through a shared reference",
			span,
			names=(name,) if name else (),
			notes=[note],
		)

	def _expire(self) -> None:
		end = self.tree.end_point
		for ref in self.graph.references:
			if ref.is_temporary:
				ref.expires = ref.created
			elif ref.origin is RefOrigin.PARAM:
				ref.expires = end
			elif self.liveness is LivenessMode.LAST_USE:
				ref.expires = max(ref.created, ref.last_use if ref.last_use is not None else ref.created)
			else:
				ref.expires = self.tree.binding(ref.holder).live.hi
			self.graph.events.append(BorrowEvent(ref.id, EventKind.EXPIRED, ref.expires))


def build_ref_graph(
	tree: ScopeTree,
	structs: StructTable,
	signatures: SignatureTable,
	*,
	liveness: LivenessMode = LivenessMode.SCOPE,
) -> RefGraph:
	"""Run the reference graph builder for one function."""
	return RefGraphBuilder(tree, structs, signatures, liveness=liveness).build()


__all__ = [
	"RefId",
	"LivenessMode",
	"RefKind",
	"EventKind",
	"RefOrigin",
	"Reference",
	"BorrowEvent",
	"Derivation",
	"Access",
	"OwnershipTransfer",
	"CallSite",
	"ReturnSite",
	"RefGraph",
	"RefGraphBuilder",
	"build_ref_graph",
]
