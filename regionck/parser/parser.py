# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lark front end for the function-level IR.

`parse_program` turns source text into an `ir.Program`. Syntax errors are
reported as `ParseError` (a `ValueError` subclass carrying a Span) so the
driver can turn them into structured diagnostics instead of crashing.
"""

from __future__ import annotations

import codecs
from pathlib import Path
from typing import List, Optional

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import UnexpectedInput, VisitError

from regionck import ir as I
from regionck.closures import Capture, CaptureMode
from regionck.core.span import Span

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
)


class ParseError(ValueError):
	"""
	Error raised while parsing IR source.

	Carries a best-effort `span` so callers can convert it into a structured
	diagnostic.
	"""

	def __init__(self, message: str, *, span: Span) -> None:
		super().__init__(message)
		self.span = span


def _decode_string_token(tok: Token) -> str:
	content = tok.value[1:-1]  # strip quotes
	return codecs.decode(content, "unicode_escape")


def _tokens(children: list, kind: str) -> List[Token]:
	return [c for c in children if isinstance(c, Token) and c.type == kind]


def _first(children: list, kind: str) -> Optional[Token]:
	toks = _tokens(children, kind)
	return toks[0] if toks else None


def _nodes(children: list, cls) -> list:
	return [c for c in children if isinstance(c, cls)]


@v_args(meta=True)
class _Builder(Transformer):
	"""Bottom-up tree → IR conversion; every node gets a Span from lark's meta."""

	def __init__(self, filename: Optional[str]) -> None:
		super().__init__()
		self._file = filename

	def _span(self, meta) -> Span:
		return Span.from_meta(meta, file=self._file)

	# Items

	def start(self, meta, children):
		program = I.Program(file=self._file)
		for child in children:
			if isinstance(child, I.StructDef):
				program.structs.append(child)
			elif isinstance(child, I.FnDef):
				program.functions.append(child)
			elif isinstance(child, list):  # impl block
				program.functions.extend(child)
		return program

	def struct_def(self, meta, children):
		name = children[0]
		params = next((c for c in children if isinstance(c, _RegionParams)), None)
		return I.StructDef(
			name=str(name),
			fields=_nodes(children, I.StructField),
			region_params=list(params.items) if params else [],
			loc=self._span(meta),
		)

	def struct_field(self, meta, children):
		return I.StructField(name=str(children[0]), type_expr=children[1], loc=self._span(meta))

	def region_params(self, meta, children):
		return _RegionParams(list(children))

	def region_param(self, meta, children):
		regions = [str(t) for t in _tokens(children, "REGION")]
		return I.RegionParam(name=regions[0], bounds=regions[1:], loc=self._span(meta))

	def impl_def(self, meta, children):
		target = str(children[0])
		fns = _nodes(children, I.FnDef)
		for fn in fns:
			fn.impl_target = target
			recv = fn.receiver
			if recv is not None:
				_bind_receiver_type(recv, target)
		return fns

	def fn_def(self, meta, children):
		name = str(children[0])
		params = next((c for c in children if isinstance(c, _RegionParams)), None)
		ret = next((c for c in children if isinstance(c, _RetType)), None)
		fn_params = _nodes(children, I.Param)
		for idx, p in enumerate(fn_params):
			if p.is_receiver and idx != 0:
				raise ParseError(f"'self' must be the first parameter of '{name}'", span=p.loc)
		return I.FnDef(
			name=name,
			params=fn_params,
			ret=ret.type_expr if ret else None,
			body=children[-1],
			region_params=list(params.items) if params else [],
			loc=self._span(meta),
		)

	def ret_type(self, meta, children):
		return _RetType(children[0])

	def ref_receiver(self, meta, children):
		region = _first(children, "REGION")
		inner = I.NamedTypeExpr(name="Self", loc=self._span(meta))
		texpr = I.RefTypeExpr(
			inner=inner,
			region=str(region) if region else None,
			mutable=_first(children, "MUT") is not None,
			loc=self._span(meta),
		)
		return I.Param(name="self", type_expr=texpr, is_receiver=True, loc=self._span(meta))

	def value_receiver(self, meta, children):
		texpr = I.NamedTypeExpr(name="Self", loc=self._span(meta))
		return I.Param(name="self", type_expr=texpr, is_receiver=True, loc=self._span(meta))

	def typed_param(self, meta, children):
		return I.Param(name=str(children[0]), type_expr=children[1], loc=self._span(meta))

	# Types

	def ref_type(self, meta, children):
		region = _first(children, "REGION")
		return I.RefTypeExpr(
			inner=children[-1],
			region=str(region) if region else None,
			mutable=_first(children, "MUT") is not None,
			loc=self._span(meta),
		)

	def tuple_type(self, meta, children):
		return I.TupleTypeExpr(items=list(children), loc=self._span(meta))

	def named_type(self, meta, children):
		texpr = I.NamedTypeExpr(name=str(children[0]), loc=self._span(meta))
		if len(children) > 1:
			for arg in children[1]:
				if isinstance(arg, _RegionArg):
					texpr.regions.append(arg.name)
				else:
					texpr.args.append(arg)
		return texpr

	def type_args(self, meta, children):
		return list(children)

	def region_arg(self, meta, children):
		return _RegionArg(str(children[0]))

	# Statements

	def block(self, meta, children):
		span = self._span(meta)
		end = span
		if span.end_line is not None:
			end = Span(file=span.file, line=span.end_line, column=max((span.end_column or 1) - 1, 1))
		return I.Block(statements=list(children), loc=span, end_loc=end)

	def let_stmt(self, meta, children):
		name = _first(children, "NAME")
		rest = [c for c in children if not isinstance(c, Token)]
		type_expr = next((c for c in rest if isinstance(c, I.TypeExpr)), None)
		value = next((c for c in rest if isinstance(c, I.Expr)), None)
		return I.Let(
			name=str(name),
			value=value,
			type_expr=type_expr,
			mutable=_first(children, "MUT") is not None,
			loc=self._span(meta),
		)

	def assign_stmt(self, meta, children):
		target, value = children
		if not I.is_place_expr(target):
			raise ParseError("assignment target is not a place", span=self._span(meta))
		return I.Assign(target=target, value=value, loc=self._span(meta))

	def return_stmt(self, meta, children):
		return I.Return(value=children[0] if children else None, loc=self._span(meta))

	def if_stmt(self, meta, children):
		cond, then_block = children[0], children[1]
		else_block = children[2] if len(children) > 2 else None
		if isinstance(else_block, I.If):
			else_block = I.Block(statements=[else_block], loc=else_block.loc, end_loc=else_block.loc)
		return I.If(cond=cond, then_block=then_block, else_block=else_block, loc=self._span(meta))

	def while_stmt(self, meta, children):
		return I.While(cond=children[0], body=children[1], loc=self._span(meta))

	def expr_stmt(self, meta, children):
		return I.ExprStmt(expr=children[0], loc=self._span(meta))

	# Expressions

	def closure(self, meta, children):
		caps = next(c for c in children if isinstance(c, _Captures))
		body = next((c for c in children if isinstance(c, I.Block)), None)
		params = [str(t) for t in _tokens(children, "NAME")]
		captures = list(caps.items)
		if _first(children, "MOVE") is not None:
			# `move |..| [...]` transfers ownership of every captured binding.
			captures = [Capture(CaptureMode.MOVE, c.name, c.loc) for c in captures]
		return I.Closure(params=params, captures=captures, body=body, loc=self._span(meta))

	def captures(self, meta, children):
		return _Captures(list(children))

	def shared_capture(self, meta, children):
		return Capture(CaptureMode.SHARED, str(children[-1]), self._span(meta))

	def exclusive_capture(self, meta, children):
		return Capture(CaptureMode.EXCLUSIVE, str(children[-1]), self._span(meta))

	def move_capture(self, meta, children):
		return Capture(CaptureMode.MOVE, str(children[-1]), self._span(meta))

	def binary(self, meta, children):
		left, op, right = children
		return I.Binary(op=str(op), left=left, right=right, loc=self._span(meta))

	def borrow(self, meta, children):
		return I.Borrow(
			subject=children[-1],
			mutable=_first(children, "MUT") is not None,
			loc=self._span(meta),
		)

	def deref(self, meta, children):
		return I.Deref(subject=children[0], loc=self._span(meta))

	def move(self, meta, children):
		return I.Move(subject=children[-1], loc=self._span(meta))

	def field(self, meta, children):
		return I.Field(subject=children[0], name=str(children[1]), loc=self._span(meta))

	def method_call(self, meta, children):
		args = children[2] if len(children) > 2 else []
		return I.MethodCall(receiver=children[0], name=str(children[1]), args=args, loc=self._span(meta))

	def index(self, meta, children):
		return I.Index(subject=children[0], index=children[1], loc=self._span(meta))

	def var(self, meta, children):
		return I.Var(name=str(children[0]), loc=self._span(meta))

	def call(self, meta, children):
		args = children[1] if len(children) > 1 else []
		return I.Call(fn=str(children[0]), args=args, loc=self._span(meta))

	def args(self, meta, children):
		return list(children)

	def struct_lit(self, meta, children):
		return I.StructLit(name=str(children[0]), fields=list(children[1:]), loc=self._span(meta))

	def field_init(self, meta, children):
		return I.FieldInit(name=str(children[0]), value=children[1], loc=self._span(meta))

	def tuple_lit(self, meta, children):
		return I.TupleLit(items=list(children), loc=self._span(meta))

	def int_lit(self, meta, children):
		return I.Literal(value=int(children[0]), kind=I.LiteralKind.INT, loc=self._span(meta))

	def str_lit(self, meta, children):
		return I.Literal(value=_decode_string_token(children[0]), kind=I.LiteralKind.STR, loc=self._span(meta))

	def true_lit(self, meta, children):
		return I.Literal(value=True, kind=I.LiteralKind.BOOL, loc=self._span(meta))

	def false_lit(self, meta, children):
		return I.Literal(value=False, kind=I.LiteralKind.BOOL, loc=self._span(meta))


class _RegionParams:
	def __init__(self, items: list) -> None:
		self.items = items


class _RetType:
	def __init__(self, type_expr: I.TypeExpr) -> None:
		self.type_expr = type_expr


class _RegionArg:
	def __init__(self, name: str) -> None:
		self.name = name


class _Captures:
	def __init__(self, items: list) -> None:
		self.items = items


def _bind_receiver_type(recv: I.Param, target: str) -> None:
	"""Replace the `Self` placeholder in a receiver's type with the impl target."""
	texpr = recv.type_expr
	if isinstance(texpr, I.RefTypeExpr) and isinstance(texpr.inner, I.NamedTypeExpr):
		texpr.inner.name = target
	elif isinstance(texpr, I.NamedTypeExpr):
		texpr.name = target


def parse_program(source: str, filename: Optional[str] = None) -> I.Program:
	"""
	Parse IR source into a Program.

	Raises ParseError (with a span) on syntax errors and on the few semantic
	shape errors the grammar cannot express (misplaced receiver, assignment to
	a non-place).
	"""
	try:
		tree = _PARSER.parse(source)
	except UnexpectedInput as err:
		span = Span(file=filename, line=getattr(err, "line", None), column=getattr(err, "column", None))
		context = err.get_context(source).rstrip() if getattr(err, "pos_in_stream", None) is not None else ""
		msg = f"unexpected input at line {span.line}, column {span.column}"
		if context:
			msg += f"\n{context}"
		raise ParseError(msg, span=span) from err
	try:
		return _Builder(filename).transform(tree)
	except VisitError as err:
		if isinstance(err.orig_exc, ParseError):
			raise err.orig_exc from None
		raise


def parse_file(path: Path) -> I.Program:
	"""Parse an IR file from disk."""
	return parse_program(path.read_text(), filename=str(path))


__all__ = ["ParseError", "parse_program", "parse_file"]
