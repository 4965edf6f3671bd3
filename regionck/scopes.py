# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Binding & scope builder (stage 1 of the per-function pipeline).

Walks a function's IR into:
  * a scope tree (root = function body) whose extents are contiguous ranges
    of program points, and
  * a binding table (params, receivers, lets) with ownership kind, declared
    shape and live extent.

Program points are integers allocated in a pre-order walk:
  - every block allocates one point for its opening and one for its closing
    brace;
  - every statement allocates two points: `p` (evaluation) and `p + 1`
    (commit: the store of an assignment / let).

Name resolution results are keyed by the identity of the IR node so the
reference graph builder can walk the same syntax without re-resolving.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Tuple

from regionck import ir as I
from regionck.core.diagnostics import Diagnostic, DiagnosticKind
from regionck.core.shapes import RefShape, Shape, StructTable
from regionck.core.span import Span

BindingId = int
ScopeId = int


@dataclass(frozen=True)
class Extent:
	"""Closed interval of program points `[lo, hi]`."""

	lo: int
	hi: int

	def contains(self, point: int) -> bool:
		return self.lo <= point <= self.hi

	def covers(self, other: "Extent") -> bool:
		return self.lo <= other.lo and other.hi <= self.hi

	def overlaps(self, other: "Extent") -> bool:
		return self.lo <= other.hi and other.lo <= self.hi

	def hull(self, other: "Extent") -> "Extent":
		return Extent(min(self.lo, other.lo), max(self.hi, other.hi))

	def __str__(self) -> str:
		return f"[{self.lo}, {self.hi}]"


class ScopeKind(Enum):
	FUNCTION = auto()
	BLOCK = auto()
	ARM = auto()        # then/else block of an `if`
	LOOP = auto()       # body of a `while`


class Ownership(Enum):
	"""Ownership kind of a binding."""

	OWNED = auto()
	PARAM_REF = auto()  # parameter received by reference


@dataclass
class Scope:
	"""A lexical extent; `points` lists the statement points it directly owns."""

	id: ScopeId
	kind: ScopeKind
	parent: Optional[ScopeId]
	start: int
	end: int = -1
	points: List[int] = field(default_factory=list)
	# ARM scopes: the point of the owning `if` and the arm index (0 then, 1 else).
	if_point: Optional[int] = None
	arm: Optional[int] = None
	end_loc: Span = field(default_factory=Span)

	@property
	def extent(self) -> Extent:
		return Extent(self.start, self.end)


@dataclass
class Binding:
	"""A named storage location declared in the function."""

	id: BindingId
	name: str
	scope: ScopeId
	ownership: Ownership
	decl_point: int
	live: Extent
	shape: Optional[Shape] = None    # declared shape; None until inferred
	mutable: bool = False
	is_param: bool = False
	is_receiver: bool = False
	loc: Span = field(default_factory=Span)

	@property
	def is_ref(self) -> bool:
		return isinstance(self.shape, RefShape)


@dataclass(frozen=True)
class LoopInfo:
	"""A `while` loop: condition point through the end of its body."""

	start: int
	end: int
	scope: ScopeId

	@property
	def extent(self) -> Extent:
		return Extent(self.start, self.end)


@dataclass
class ScopeTree:
	"""Output of the scope builder for one function."""

	fn: I.FnDef
	scopes: List[Scope] = field(default_factory=list)
	bindings: List[Binding] = field(default_factory=list)
	loops: List[LoopInfo] = field(default_factory=list)
	# id(IR node) -> resolved data
	var_binding: Dict[int, BindingId] = field(default_factory=dict)
	let_binding: Dict[int, BindingId] = field(default_factory=dict)
	capture_binding: Dict[Tuple[int, str], BindingId] = field(default_factory=dict)
	stmt_point: Dict[int, int] = field(default_factory=dict)
	stmt_scope: Dict[int, ScopeId] = field(default_factory=dict)
	block_scope: Dict[int, ScopeId] = field(default_factory=dict)
	param_binding: Dict[str, BindingId] = field(default_factory=dict)
	diagnostics: List[Diagnostic] = field(default_factory=list)

	@property
	def root(self) -> Scope:
		return self.scopes[0]

	@property
	def end_point(self) -> int:
		return self.root.end

	def binding(self, bid: BindingId) -> Binding:
		return self.bindings[bid]

	def scope(self, sid: ScopeId) -> Scope:
		return self.scopes[sid]

	def scope_chain(self, sid: ScopeId) -> List[Scope]:
		"""Return the scope and all of its ancestors, innermost first."""
		out = []
		cur: Optional[ScopeId] = sid
		while cur is not None:
			sc = self.scopes[cur]
			out.append(sc)
			cur = sc.parent
		return out

	def innermost_scope_at(self, point: int) -> Scope:
		"""Smallest scope whose extent contains `point`."""
		best = self.root
		for sc in self.scopes:
			if sc.extent.contains(point) and (sc.end - sc.start) < (best.end - best.start):
				best = sc
		return best

	def loops_containing(self, point: int) -> List[LoopInfo]:
		"""Loops whose extent contains `point`, innermost first."""
		found = [lp for lp in self.loops if lp.extent.contains(point)]
		return sorted(found, key=lambda lp: lp.end - lp.start)


class ScopeBuilder:
	"""
	Build the scope tree and binding table for one function.

	Undeclared names are reported (`UnknownBinding`) once per name and left
	unresolved; later stages skip unresolved places.
	"""

	def __init__(self, fn: I.FnDef, structs: StructTable) -> None:
		self.fn = fn
		self.structs = structs
		self.tree = ScopeTree(fn=fn)
		self._next_point = 0
		self._env: List[Dict[str, BindingId]] = []
		self._reported: set[str] = set()

	def build(self) -> ScopeTree:
		body = self.fn.body
		root = self._open_scope(ScopeKind.FUNCTION, None)
		self.tree.block_scope[id(body)] = root.id
		for param in self.fn.params:
			self._declare_param(param, root)
		self._walk_statements(body.statements, root)
		self._close_scope(root, body.end_loc)
		for b in self.tree.bindings:
			b.live = Extent(b.decl_point, self.tree.scope(b.scope).end)
		return self.tree

	# Points and scopes

	def _point(self, n: int = 1) -> int:
		p = self._next_point
		self._next_point += n
		return p

	def _open_scope(self, kind: ScopeKind, parent: Optional[Scope], **extra) -> Scope:
		sc = Scope(
			id=len(self.tree.scopes),
			kind=kind,
			parent=parent.id if parent is not None else None,
			start=self._point(),
			**extra,
		)
		self.tree.scopes.append(sc)
		self._env.append({})
		return sc

	def _close_scope(self, sc: Scope, end_loc: Span) -> None:
		sc.end = self._point()
		sc.end_loc = end_loc
		self._env.pop()

	# Bindings

	def _declare(
		self,
		name: str,
		scope: Scope,
		point: int,
		*,
		shape: Optional[Shape],
		ownership: Ownership = Ownership.OWNED,
		mutable: bool = False,
		is_param: bool = False,
		is_receiver: bool = False,
		loc: Span = Span(),
	) -> Binding:
		b = Binding(
			id=len(self.tree.bindings),
			name=name,
			scope=scope.id,
			ownership=ownership,
			decl_point=point,
			live=Extent(point, point),
			shape=shape,
			mutable=mutable,
			is_param=is_param,
			is_receiver=is_receiver,
			loc=loc,
		)
		self.tree.bindings.append(b)
		self._env[-1][name] = b.id
		return b

	def _declare_param(self, param: I.Param, root: Scope) -> None:
		shape = self.structs.shape_of(param.type_expr)
		ownership = Ownership.PARAM_REF if isinstance(shape, RefShape) else Ownership.OWNED
		b = self._declare(
			param.name,
			root,
			root.start,
			shape=shape,
			ownership=ownership,
			is_param=True,
			is_receiver=param.is_receiver,
			loc=param.loc,
		)
		self.tree.param_binding[param.name] = b.id

	def _lookup(self, name: str) -> Optional[BindingId]:
		for env in reversed(self._env):
			if name in env:
				return env[name]
		return None

	def _resolve(self, node: I.Expr, name: str) -> None:
		bid = self._lookup(name)
		if bid is not None:
			self.tree.var_binding[id(node)] = bid
			return
		if name in self._reported:
			return
		self._reported.add(name)
		self.tree.diagnostics.append(
			Diagnostic(
				message=f"unknown binding '{name}'",
				kind=DiagnosticKind.UNKNOWN_BINDING,
				phase="borrowcheck",
				span=node.loc,
				names=(name,),
				function=self.fn.qualified_name,
			)
		)

	# Walk

	def _walk_statements(self, stmts: List[I.Stmt], scope: Scope) -> None:
		for stmt in stmts:
			self._walk_stmt(stmt, scope)

	def _walk_block(self, block: I.Block, kind: ScopeKind, parent: Scope, **extra) -> Scope:
		sc = self._open_scope(kind, parent, **extra)
		self.tree.block_scope[id(block)] = sc.id
		self._walk_statements(block.statements, sc)
		self._close_scope(sc, block.end_loc)
		return sc

	def _walk_stmt(self, stmt: I.Stmt, scope: Scope) -> None:
		if isinstance(stmt, I.Block):
			self._walk_block(stmt, ScopeKind.BLOCK, scope)
			return
		p = self._point(2)
		scope.points.append(p)
		self.tree.stmt_point[id(stmt)] = p
		self.tree.stmt_scope[id(stmt)] = scope.id
		if isinstance(stmt, I.Let):
			if stmt.value is not None:
				self._walk_expr(stmt.value)
			shape = self.structs.shape_of(stmt.type_expr) if stmt.type_expr is not None else None
			b = self._declare(stmt.name, scope, p + 1, shape=shape, mutable=stmt.mutable, loc=stmt.loc)
			self.tree.let_binding[id(stmt)] = b.id
		elif isinstance(stmt, I.Assign):
			self._walk_expr(stmt.value)
			self._walk_expr(stmt.target)
		elif isinstance(stmt, I.ExprStmt):
			self._walk_expr(stmt.expr)
		elif isinstance(stmt, I.Return):
			if stmt.value is not None:
				self._walk_expr(stmt.value)
		elif isinstance(stmt, I.If):
			self._walk_expr(stmt.cond)
			self._walk_block(stmt.then_block, ScopeKind.ARM, scope, if_point=p, arm=0)
			if stmt.else_block is not None:
				self._walk_block(stmt.else_block, ScopeKind.ARM, scope, if_point=p, arm=1)
		elif isinstance(stmt, I.While):
			self._walk_expr(stmt.cond)
			body = self._walk_block(stmt.body, ScopeKind.LOOP, scope)
			self.tree.loops.append(LoopInfo(start=p, end=body.end, scope=body.id))
		else:
			raise AssertionError(f"unhandled statement {type(stmt).__name__} (scope builder bug)")

	def _walk_expr(self, expr: Optional[I.Expr]) -> None:
		if expr is None:
			return
		if isinstance(expr, I.Var):
			self._resolve(expr, expr.name)
		elif isinstance(expr, (I.Field, I.Index, I.Deref, I.Borrow, I.Move)):
			self._walk_expr(expr.subject)
			if isinstance(expr, I.Index):
				self._walk_expr(expr.index)
		elif isinstance(expr, I.Call):
			# Calling a local binding (a closure) uses it; otherwise `fn` names a function.
			bid = self._lookup(expr.fn)
			if bid is not None:
				self.tree.var_binding[id(expr)] = bid
			for arg in expr.args:
				self._walk_expr(arg)
		elif isinstance(expr, I.MethodCall):
			self._walk_expr(expr.receiver)
			for arg in expr.args:
				self._walk_expr(arg)
		elif isinstance(expr, I.StructLit):
			for init in expr.fields:
				self._walk_expr(init.value)
		elif isinstance(expr, I.TupleLit):
			for item in expr.items:
				self._walk_expr(item)
		elif isinstance(expr, I.Binary):
			self._walk_expr(expr.left)
			self._walk_expr(expr.right)
		elif isinstance(expr, I.Closure):
			for cap in expr.captures:
				bid = self._lookup(cap.name)
				if bid is None:
					self._resolve(I.Var(cap.name, loc=cap.loc), cap.name)
				else:
					self.tree.capture_binding[(id(expr), cap.name)] = bid
		# Literals need no resolution.


def build_scopes(fn: I.FnDef, structs: StructTable) -> ScopeTree:
	"""Run the scope builder for one function."""
	return ScopeBuilder(fn, structs).build()


__all__ = [
	"BindingId",
	"ScopeId",
	"Extent",
	"ScopeKind",
	"Ownership",
	"Scope",
	"Binding",
	"LoopInfo",
	"ScopeTree",
	"ScopeBuilder",
	"build_scopes",
]
