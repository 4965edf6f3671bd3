#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Region variable arena and region inference."""

from regionck.core.diagnostics import DiagnosticKind
from regionck.core.shapes import StructTable
from regionck.parser import parse_program
from regionck.ref_graph import RefOrigin, build_ref_graph
from regionck.regions import CALLER_REGION, RegionInference, RegionKind, RegionTable, infer_regions
from regionck.scopes import build_scopes
from regionck.signatures import SignatureTable


def _infer(src: str, name: str = "f") -> RegionInference:
	prog = parse_program(src)
	structs = StructTable(prog.structs)
	signatures = SignatureTable(prog.functions, structs)
	fn = next(f for f in prog.functions if f.qualified_name == name)
	graph = build_ref_graph(build_scopes(fn, structs), structs, signatures)
	return infer_regions(graph, signatures)


def test_table_starts_with_static():
	table = RegionTable()
	assert len(table) == 1
	assert table.var(table.static).kind is RegionKind.STATIC


def test_union_find_with_path_compression():
	table = RegionTable()
	a = table.new(RegionKind.LOCAL)
	b = table.new(RegionKind.LOCAL)
	c = table.new(RegionKind.LOCAL)
	table.union(a, b)
	table.union(b, c)
	assert table.find(a) == table.find(b) == table.find(c)
	assert len(table.roots()) == 2


def test_lead_prefers_static_then_universal():
	table = RegionTable()
	local = table.new(RegionKind.LOCAL)
	univ = table.new(RegionKind.UNIVERSAL, "'a")
	table.union(local, univ)
	assert table.lead(local).name == "'a"
	table.union(table.static, local)
	assert table.lead(univ).kind is RegionKind.STATIC


def test_params_unify_with_signature_universals():
	inf = _infer("fn f(s: &Str, t: &Str) { }")
	refs = inf.graph.references
	params = [r for r in refs if r.origin is RefOrigin.PARAM]
	assert len(params) == 2
	leads = [inf.table.lead(inf.ref_var[r.id]).name for r in params]
	assert leads == ["'a", "'b"]
	assert set(inf.universals) == {"'a", "'b"}
	assert inf.table.lead(inf.caller).name == CALLER_REGION


def test_string_literal_is_static():
	inf = _infer('fn f() { let s = "hi"; }')
	lit = next(r for r in inf.graph.references if r.origin is RefOrigin.LITERAL)
	assert inf.table.lead(inf.ref_var[lit.id]).kind is RegionKind.STATIC


def test_let_flow_becomes_constraint():
	inf = _infer("fn f() { let x = 1; let r = &x; }")
	loan = next(r for r in inf.graph.references if r.is_loan)
	holder = next(r for r in inf.graph.references if r.origin is RefOrigin.HOLDER)
	pairs = [(c.longer, c.shorter) for c in inf.constraints]
	assert (inf.ref_var[loan.id], inf.ref_var[holder.id]) in pairs


def test_call_instantiates_fresh_variables():
	src = """
	fn first(s: &Str) -> &Str { return s; }
	fn f() {
		let x = "a";
		let r = first(x);
		let q = first(x);
	}
	"""
	inf = _infer(src)
	inst = [c for c in inf.constraints if c.reason == "result of 'first'"]
	assert len(inst) == 2
	# each call site has its own variable for the callee's 'a
	assert inst[0].longer != inst[1].longer
	assert inf.table.var(inst[0].longer).kind is RegionKind.LOCAL


def test_callee_bounds_become_constraints():
	src = """
	fn tie<'a, 'b: 'a>(x: &'a Str, y: &'b Str) { }
	fn f() { let s = "a"; tie(s, s); }
	"""
	inf = _infer(src)
	assert any(c.reason == "bound 'b: 'a of 'tie'" for c in inf.constraints)


def test_return_without_region_slots_targets_caller():
	inf = _infer("fn f(x: &Str) -> Int { return x; }")
	ret = [c for c in inf.constraints if c.reason == "returned value"]
	assert [c.shorter for c in ret] == [inf.caller]


def test_unknown_region_in_body_annotation():
	inf = _infer('fn f() { let r: &\'z Str = "a"; let q: &\'z Str = "b"; }')
	kinds = [d.kind for d in inf.diagnostics]
	assert kinds == [DiagnosticKind.UNKNOWN_REGION]
	assert inf.diagnostics[0].names == ("'z",)
	assert inf.diagnostics[0].function == "f"


def test_signature_diagnostics_are_copied_not_mutated():
	src = "fn longest(a: &Str, b: &Str) -> &Str { return a; }"
	prog = parse_program(src)
	structs = StructTable(prog.structs)
	signatures = SignatureTable(prog.functions, structs)
	fn = prog.functions[0]
	inf = infer_regions(build_ref_graph(build_scopes(fn, structs), structs, signatures), signatures)
	assert inf.diagnostics[0].function == "longest"
	assert signatures.get("longest").diagnostics[0].function is None
