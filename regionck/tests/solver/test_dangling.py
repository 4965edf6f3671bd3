#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Outlives solving: references that would outlive what they borrow."""

from regionck.core.diagnostics import Diagnostic, DiagnosticKind
from regionck.core.shapes import StructTable
from regionck.parser import parse_program
from regionck.ref_graph import build_ref_graph
from regionck.regions import infer_regions
from regionck.scopes import Extent, build_scopes
from regionck.signatures import SignatureTable
from regionck.solver import Requirement, Solution, solve
from regionck.verifier import verify_program


def _diags(src: str) -> list[Diagnostic]:
	return verify_program(parse_program(src)).diagnostics


def _messages(src: str) -> list[str]:
	return [d.message for d in _diags(src)]


def _solution(src: str, name: str = "f") -> Solution:
	prog = parse_program(src)
	structs = StructTable(prog.structs)
	signatures = SignatureTable(prog.functions, structs)
	fn = next(f for f in prog.functions if f.qualified_name == name)
	graph = build_ref_graph(build_scopes(fn, structs), structs, signatures)
	return solve(infer_regions(graph, signatures))


def test_requirement_join():
	a = Requirement(extent=Extent(2, 4))
	b = Requirement(extent=Extent(3, 9), universals=frozenset(["'a"]))
	joined = a.join(b)
	assert joined.extent == Extent(2, 9)
	assert joined.universals == {"'a"}
	assert joined.escapes
	assert not a.escapes
	assert str(joined) == "[2, 9] + 'a"
	assert str(Requirement(static=True)) == "'static"


def test_borrow_escaping_inner_block():
	src = """
	fn f() {
		let r;
		{
			let x = 5;
			r = &x;
		}
		use(r);
	}
	"""
	(diag,) = _diags(src)
	assert diag.kind is DiagnosticKind.DANGLING_REFERENCE
	assert diag.message == "'x' does not live long enough"
	assert diag.names == ("x",)
	assert diag.span.line == 6
	assert any("dropped here while still borrowed" in n for n in diag.notes)


def test_borrow_within_scope_is_accepted():
	src = """
	fn f() {
		let x = 5;
		let r = &x;
		use(r);
	}
	"""
	assert _diags(src) == []


def test_struct_holding_borrow_outlives_target():
	src = """
	struct Holder<'a> { part: &'a Str }
	fn f() {
		let h;
		{
			let s = make();
			h = Holder { part: &s };
		}
		use(h);
	}
	"""
	assert _messages(src) == ["'s' does not live long enough"]


def test_call_result_keeps_argument_borrowed():
	src = """
	fn first(s: &Str) -> &Str { return s; }
	fn f() {
		let r;
		{
			let text = make();
			r = first(&text);
		}
		use(r);
	}
	"""
	assert _messages(src) == ["'text' does not live long enough"]


def test_call_result_within_scope_is_accepted():
	src = """
	fn first(s: &Str) -> &Str { return s; }
	fn f() {
		let text = make();
		let r = first(&text);
		use(r);
	}
	"""
	assert _diags(src) == []


def test_returning_borrow_of_local_through_signature_region():
	src = "fn bad<'a>(x: &'a Str) -> &'a Str { let s = make(); return &s; }"
	(diag,) = _diags(src)
	assert diag.kind is DiagnosticKind.DANGLING_REFERENCE
	assert diag.message == "'s' does not live long enough: the reference must outlive 'a"
	assert diag.function == "bad"


def test_returning_borrow_through_type_without_regions():
	src = "fn f() -> Int { let s = make(); return &s; }"
	assert _messages(src) == ["'s' does not live long enough: the reference escapes to the caller"]


def test_returning_parameter_through_type_without_regions():
	src = "fn f(x: &Str) -> Int { return x; }"
	(diag,) = _diags(src)
	assert diag.kind is DiagnosticKind.DANGLING_REFERENCE
	assert diag.message == "parameter 'x' (region 'a (elided)) escapes through a return type without regions"


def test_elided_parameter_does_not_outlive_explicit_return_region():
	src = """
	fn search<'a>(query: &Str, contents: &'a Str) -> &'a Str {
		return query;
	}
	"""
	(diag,) = _diags(src)
	assert diag.kind is DiagnosticKind.DANGLING_REFERENCE
	assert diag.message == "parameter 'query' (region 'b (elided)) does not outlive 'a"
	assert diag.names == ("query", "'b", "'a")
	assert diag.span.line == 3


def test_returning_the_right_parameter_is_accepted():
	src = """
	fn search<'a>(query: &Str, contents: &'a Str) -> &'a Str {
		return contents;
	}
	"""
	assert _diags(src) == []


def test_declared_bound_satisfies_return():
	src = "fn pick<'a, 'b: 'a>(x: &'a Str, y: &'b Str) -> &'a Str { return y; }"
	assert _diags(src) == []


def test_implied_bound_of_nested_region():
	src = """
	struct View<'v> { text: &'v Str }
	impl View {
		fn get(&self) -> &Str { return self.text; }
	}
	"""
	assert _diags(src) == []


def test_static_field_accepts_literal():
	src = """
	struct Config { name: &'static Str }
	fn make_config() -> Config {
		return Config { name: "app" };
	}
	"""
	assert _diags(src) == []


def test_static_field_rejects_local_borrow():
	src = """
	struct Config { name: &'static Str }
	fn make_config() -> Config {
		let text = read_line();
		return Config { name: &text };
	}
	"""
	assert _messages(src) == ["'text' does not live long enough: the reference must be valid for 'static"]


def test_static_annotation_on_let():
	ok = 'fn f() { let s: &\'static Str = "hi"; use(s); }'
	bad = "fn f() { let local = make(); let s: &'static Str = &local; use(s); }"
	assert _diags(ok) == []
	assert _messages(bad) == ["'local' does not live long enough: the reference must be valid for 'static"]


def test_reborrow_through_receiver_is_accepted():
	src = """
	struct Store { name: Str }
	impl Store {
		fn first(&self, other: &Str) -> &Str { return &self.name; }
	}
	"""
	assert _diags(src) == []


def test_region_of_reports_names_and_extents():
	sol = _solution("fn f(s: &Str) { let x = 1; let r = &x; use(r); }")
	refs = sol.inference.graph.references
	param = refs[0]
	loan = next(r for r in refs if r.is_loan)
	assert sol.region_of(param.id) == "'a"
	assert sol.region_of(loan.id).startswith("[")
	assert sol.requirement_of(loan.id).extent.hi == sol.inference.graph.tree.end_point
	assert sol.diagnostics == []


def test_field_without_region_only_accepts_static_data():
	src = """
	struct Bad { name: &Str }
	fn f() {
		let b;
		{
			let x = make();
			b = Bad { name: &x };
		}
		let y = b.name;
	}
	fn g() {
		let b = Bad { name: "fixed" };
		let y = b.name;
	}
	"""
	res = verify_program(parse_program(src))
	assert [(d.function, d.kind) for d in res.diagnostics] == [
		(None, DiagnosticKind.UNRESOLVED_FIELD_REGION),
		("f", DiagnosticKind.DANGLING_REFERENCE),
	]
	assert res.diagnostics[1].message == "'x' does not live long enough: the reference must be valid for 'static"
	assert res.function("f").annotated is None
	assert res.function("g").ok
