#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Region elision over function signatures."""

from regionck.core.diagnostics import DiagnosticKind
from regionck.core.shapes import StructTable
from regionck.parser import parse_program
from regionck.signatures import ElidedSignature, ElisionRule, SignatureTable, elide, suggest_annotation


def _sig(src: str, name: str) -> ElidedSignature:
	prog = parse_program(src)
	structs = StructTable(prog.structs)
	fn = next(f for f in prog.functions if f.qualified_name == name)
	return elide(fn, structs)


def test_distinct_input_regions():
	"""Every elided input slot gets its own fresh region."""
	sig = _sig("fn f(a: &Str, b: &mut Int, n: Int) { }", "f")
	assert sig.region_names == ["'a", "'b"]
	assert sig.generated == {"'a", "'b"}
	assert sig.rule is ElisionRule.NO_RETURN_REGIONS
	assert sig.render() == "fn f<'a, 'b>(a: &'a Str, b: &'b mut Int, n: Int)"


def test_fresh_names_skip_declared_ones():
	sig = _sig("fn f<'a>(x: &'a Str, y: &Str, z: &Str) { }", "f")
	assert sig.region_names == ["'a", "'b", "'c"]
	assert sig.generated == {"'b", "'c"}


def test_single_input_propagates_to_return():
	sig = _sig("fn first(s: &Str, n: Int) -> &Str { return s; }", "first")
	assert sig.rule is ElisionRule.SINGLE_INPUT
	assert [s.region for s in sig.ret_slots] == ["'a"]
	assert sig.diagnostics == []
	assert sig.render() == "fn first<'a>(s: &'a Str, n: Int) -> &'a Str"


def test_single_input_fills_every_tuple_return_slot():
	sig = _sig("fn parse_config(args: &Args) -> (&Str, &Str) { }", "parse_config")
	assert sig.rule is ElisionRule.SINGLE_INPUT
	assert sig.render() == "fn parse_config<'a>(args: &'a Args) -> (&'a Str, &'a Str)"


def test_receiver_rule():
	src = """
	struct Store { name: Str }
	impl Store {
		fn first(&self, other: &Str) -> &Str { return &self.name; }
	}
	"""
	sig = _sig(src, "Store.first")
	assert sig.rule is ElisionRule.RECEIVER
	assert sig.receiver is not None
	assert sig.render() == "fn first<'a, 'b>(&'a self, other: &'b Str) -> &'a Str"
	assert sig.diagnostics == []


def test_explicit_return_region_is_kept():
	sig = _sig("fn search<'a>(query: &Str, contents: &'a Str) -> &'a Str { return contents; }", "search")
	assert sig.rule is ElisionRule.EXPLICIT
	assert sig.region_names == ["'a", "'b"]
	assert sig.params[0].slots[0].region == "'b"
	assert sig.diagnostics == []


def test_ambiguous_return_with_two_inputs():
	src = "fn longest(a: &Str, b: &Str) -> &Str { return a; }"
	sig = _sig(src, "longest")
	assert sig.rule is ElisionRule.AMBIGUOUS
	assert [s.region for s in sig.ret_slots] == [None]
	(diag,) = sig.diagnostics
	assert diag.kind is DiagnosticKind.AMBIGUOUS_REGION
	assert diag.names == ("longest", "a", "b")
	assert diag.suggestion == "<'r>(a: &'r Str, b: &'r Str) -> &'r Str"
	assert sig.suggestion == diag.suggestion


def test_ambiguous_return_without_inputs_suggests_static():
	sig = _sig("fn make() -> &Str { }", "make")
	(diag,) = sig.diagnostics
	assert diag.kind is DiagnosticKind.AMBIGUOUS_REGION
	assert "no reference parameters" in diag.message
	assert diag.suggestion == "() -> &'static Str"


def test_suggestion_reuses_explicit_input_region():
	prog = parse_program("fn f<'x, 'y>(a: &'x Str, b: &'y Str) -> (&'x Str, &Str) { }")
	fn = prog.functions[0]
	assert suggest_annotation(fn, StructTable([])) == "<'x, 'y>(a: &'x Str, b: &'y Str) -> (&'x Str, &'x Str)"


def test_suggestion_avoids_taken_name():
	prog = parse_program("fn f<'r>(a: &'r Str, b: &Str, c: &Str) -> &Str { }")
	fn = prog.functions[0]
	assert suggest_annotation(fn, StructTable([])) == "<'r, 'r1>(a: &'r Str, b: &'r1 Str, c: &'r1 Str) -> &'r1 Str"


def test_one_diagnostic_per_unresolved_return_slot():
	sig = _sig("fn pair(a: &Str, b: &Str) -> (&Str, &Str) { }", "pair")
	kinds = [d.kind for d in sig.diagnostics]
	assert kinds == [DiagnosticKind.AMBIGUOUS_REGION, DiagnosticKind.AMBIGUOUS_REGION]


def test_struct_region_params_are_elided_too():
	src = """
	struct Holder<'a> { part: &'a Str }
	fn peek(h: Holder) -> &Str { }
	"""
	sig = _sig(src, "peek")
	assert sig.rule is ElisionRule.SINGLE_INPUT
	assert sig.render() == "fn peek<'a>(h: Holder<'a>) -> &'a Str"


def test_implied_bounds_from_nested_regions():
	"""In `&'a View<'b>`, 'b outlives 'a without being declared."""
	src = """
	struct View<'v> { text: &'v Str }
	fn show(v: &View) { }
	"""
	sig = _sig(src, "show")
	assert sig.render() == "fn show<'a, 'b>(v: &'a View<'b>)"
	assert sig.outlives("'b", "'a")
	assert not sig.outlives("'a", "'b")


def test_declared_bounds_are_transitive():
	sig = _sig("fn f<'a, 'b: 'a, 'c: 'b>(x: &'c Str) { }", "f")
	assert sig.outlives("'c", "'a")
	assert sig.outlives("'static", "'a")
	assert not sig.outlives("'a", "'c")
	assert sig.render() == "fn f<'a, 'b: 'a, 'c: 'b>(x: &'c Str)"


def test_undeclared_region_in_signature():
	sig = _sig("fn f(x: &'q Str, y: &'q Str) -> &'q Str { }", "f")
	(diag,) = sig.diagnostics
	assert diag.kind is DiagnosticKind.UNKNOWN_REGION
	assert diag.names == ("'q",)


def test_static_needs_no_declaration():
	sig = _sig("fn f(x: &'static Str) -> &'static Str { return x; }", "f")
	assert sig.diagnostics == []
	assert sig.region_names == []


def test_signature_table_lookup():
	prog = parse_program(
		"""
		struct Counter { n: Int }
		impl Counter { fn get(&self) -> Int { return self.n; } }
		fn free(x: &Str) { }
		"""
	)
	table = SignatureTable(prog.functions, StructTable(prog.structs))
	assert table.get("free") is not None
	assert table.method("Counter", "get").qualified_name == "Counter.get"
	assert table.method(None, "get") is None
	assert sorted(s.qualified_name for s in table) == ["Counter.get", "free"]
