# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Function-level intermediate representation consumed by the verifier.

This is the shape the upstream front end hands over: binding declarations
with their ownership kind, optional explicit region annotations on reference
types, and capture-mode tags on closures. Type checking has already happened
upstream; the verifier only looks at structure.

Guiding rules:
- Nodes are purely syntactic; scope/binding resolution happens in
  `regionck.scopes`.
- Places (lvalues) are `Var`, `Field`, `Index` and `Deref` chains.
- Methods are flattened into `Program.functions` with `impl_target` set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from regionck.closures import Capture
from regionck.core.span import Span

STATIC_REGION = "'static"


# Type expressions

class TypeExpr:
	"""Base class for type expressions."""
	loc: Span


@dataclass
class RefTypeExpr(TypeExpr):
	"""`&'r T` / `&mut T` (region is None when elided)."""
	inner: TypeExpr
	region: Optional[str] = None
	mutable: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class NamedTypeExpr(TypeExpr):
	"""`Name<'a, T>`: region arguments and type arguments kept apart."""
	name: str
	regions: List[str] = field(default_factory=list)
	args: List[TypeExpr] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class TupleTypeExpr(TypeExpr):
	items: List[TypeExpr] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


# Expressions

class Expr:
	"""Base class for expressions."""
	loc: Span


@dataclass
class Var(Expr):
	name: str
	loc: Span = field(default_factory=Span)


@dataclass
class Field(Expr):
	subject: Expr
	name: str
	loc: Span = field(default_factory=Span)


@dataclass
class Index(Expr):
	subject: Expr
	index: Expr
	loc: Span = field(default_factory=Span)


@dataclass
class Deref(Expr):
	subject: Expr
	loc: Span = field(default_factory=Span)


@dataclass
class Borrow(Expr):
	subject: Expr
	mutable: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class Move(Expr):
	"""Explicit ownership transfer out of a place (`move x`)."""
	subject: Expr
	loc: Span = field(default_factory=Span)


@dataclass
class Call(Expr):
	fn: str
	args: List[Expr] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class MethodCall(Expr):
	receiver: Expr
	name: str
	args: List[Expr] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class StructLit(Expr):
	name: str
	fields: List["FieldInit"] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class FieldInit:
	name: str
	value: Expr
	loc: Span = field(default_factory=Span)


@dataclass
class TupleLit(Expr):
	items: List[Expr] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


class LiteralKind(Enum):
	INT = "int"
	BOOL = "bool"
	STR = "str"


@dataclass
class Literal(Expr):
	value: object
	kind: LiteralKind = LiteralKind.INT
	loc: Span = field(default_factory=Span)


@dataclass
class Binary(Expr):
	op: str
	left: Expr
	right: Expr
	loc: Span = field(default_factory=Span)


@dataclass
class Closure(Expr):
	"""
	Closure-like unit. `captures` are the front end's capture tags; the body
	is kept for completeness but is analysed as part of the closure, not of
	the enclosing function.
	"""
	params: List[str] = field(default_factory=list)
	captures: List[Capture] = field(default_factory=list)
	body: Optional["Block"] = None
	loc: Span = field(default_factory=Span)


# Statements

class Stmt:
	"""Base class for statements."""
	loc: Span


@dataclass
class Block(Stmt):
	statements: List[Stmt] = field(default_factory=list)
	loc: Span = field(default_factory=Span)
	end_loc: Span = field(default_factory=Span)


@dataclass
class Let(Stmt):
	name: str
	value: Optional[Expr] = None
	type_expr: Optional[TypeExpr] = None
	mutable: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class Assign(Stmt):
	target: Expr
	value: Expr
	loc: Span = field(default_factory=Span)


@dataclass
class ExprStmt(Stmt):
	expr: Expr
	loc: Span = field(default_factory=Span)


@dataclass
class Return(Stmt):
	value: Optional[Expr] = None
	loc: Span = field(default_factory=Span)


@dataclass
class If(Stmt):
	cond: Expr
	then_block: Block
	else_block: Optional[Block] = None
	loc: Span = field(default_factory=Span)


@dataclass
class While(Stmt):
	cond: Expr
	body: Block
	loc: Span = field(default_factory=Span)


# Items

@dataclass
class RegionParam:
	"""Declared region parameter, optionally bounded: `'a: 'b` (a outlives b)."""
	name: str
	bounds: List[str] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class Param:
	name: str
	type_expr: TypeExpr
	is_receiver: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class FnDef:
	name: str
	params: List[Param]
	ret: Optional[TypeExpr]
	body: Block
	region_params: List[RegionParam] = field(default_factory=list)
	impl_target: Optional[str] = None
	loc: Span = field(default_factory=Span)

	@property
	def qualified_name(self) -> str:
		return f"{self.impl_target}.{self.name}" if self.impl_target else self.name

	@property
	def receiver(self) -> Optional[Param]:
		if self.params and self.params[0].is_receiver:
			return self.params[0]
		return None


@dataclass
class StructField:
	name: str
	type_expr: TypeExpr
	loc: Span = field(default_factory=Span)


@dataclass
class StructDef:
	name: str
	fields: List[StructField] = field(default_factory=list)
	region_params: List[RegionParam] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class Program:
	structs: List[StructDef] = field(default_factory=list)
	functions: List[FnDef] = field(default_factory=list)
	file: Optional[str] = None


def is_place_expr(expr: Expr) -> bool:
	"""Places are variables and field/index/deref projections of places."""
	if isinstance(expr, Var):
		return True
	if isinstance(expr, (Field, Index, Deref)):
		return is_place_expr(expr.subject)
	return False


__all__ = [
	"STATIC_REGION",
	"TypeExpr", "RefTypeExpr", "NamedTypeExpr", "TupleTypeExpr",
	"Expr", "Var", "Field", "Index", "Deref", "Borrow", "Move", "Call", "MethodCall",
	"StructLit", "FieldInit", "TupleLit", "LiteralKind", "Literal", "Binary", "Closure",
	"Stmt", "Block", "Let", "Assign", "ExprStmt", "Return", "If", "While",
	"RegionParam", "Param", "FnDef", "StructField", "StructDef", "Program",
	"is_place_expr",
]
