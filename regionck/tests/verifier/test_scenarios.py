#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""End-to-end verification of whole programs."""

import pytest

from regionck.core.diagnostics import Diagnostic, DiagnosticKind
from regionck.parser import parse_program
from regionck.ref_graph import LivenessMode
from regionck.verifier import CheckerOptions, DiagnosticCollector, ProgramResult, verify_program


def _verify(src: str, **options) -> ProgramResult:
	return verify_program(parse_program(src), CheckerOptions(**options))


def _kinds(res: ProgramResult) -> list[DiagnosticKind]:
	return [d.kind for d in res.diagnostics]


# A mixed program touching every diagnostic family; used for ordering checks.
_MIXED = """
struct Bad { part: &Str }
struct Holder<'a> { part: &'a Str }

fn longest(a: &Str, b: &Str) -> &Str { return a; }

fn dangling() {
	let r;
	{
		let x = 5;
		r = &x;
	}
	use(r);
}

fn conflict() {
	let mut x = 0;
	let r = &x;
	let m = &mut x;
	use(r);
}

fn moved() {
	let data = make();
	let c = || [move data];
	use(data);
}

fn fine(s: &Str) -> &Str {
	let t = s;
	return t;
}

fn search<'a>(query: &Str, contents: &'a Str) -> &'a Str {
	return query;
}

fn unknown() {
	use(ghost);
}
"""


def test_ambiguous_return_region():
	res = _verify("fn longest(a: &Str, b: &Str) -> &Str { return a; }")
	(diag,) = res.diagnostics
	assert diag.kind is DiagnosticKind.AMBIGUOUS_REGION
	assert diag.suggestion == "<'r>(a: &'r Str, b: &'r Str) -> &'r Str"
	assert diag.function == "longest"
	assert res.function("longest").annotated is None


def test_receiver_elision_program_is_accepted():
	src = """
	struct Store { name: Str }
	impl Store {
		fn first(&self, other: &Str) -> &Str { return &self.name; }
	}
	"""
	res = _verify(src)
	assert res.ok
	annotated = res.function("Store.first").annotated
	assert annotated.signature == "fn first<'a, 'b>(&'a self, other: &'b Str) -> &'a Str"


def test_tuple_return_regions():
	src = """
	fn parse_config(args: &Args) -> (&Str, &Str) {
		let query = &args[1];
		let file_path = &args[2];
		return (query, file_path);
	}
	"""
	res = _verify(src)
	assert res.ok
	annotated = res.function("parse_config").annotated
	assert annotated.signature == "fn parse_config<'a>(args: &'a Args) -> (&'a Str, &'a Str)"


def test_struct_with_unresolved_field_region_used_twice():
	src = """
	struct Bad { part: &Str }
	fn a(b: &Bad) { }
	fn c(b: &Bad) { }
	"""
	assert _kinds(_verify(src)) == [DiagnosticKind.UNRESOLVED_FIELD_REGION]


def test_move_closure_then_use():
	src = """
	fn f() {
		let data = make();
		let c = move || [ref data] { };
		use(data);
	}
	"""
	res = _verify(src)
	assert [d.message for d in res.diagnostics] == ["use after move of 'data'"]


def test_unknown_binding():
	res = _verify("fn f() { let r = &ghost; }")
	(diag,) = res.diagnostics
	assert diag.kind is DiagnosticKind.UNKNOWN_BINDING
	assert diag.function == "f"


def test_accepted_program_has_annotations():
	res = _verify("fn first(s: &Str, n: Int) -> &Str { let t = s; return t; }")
	assert res.ok
	fn = res.function("first")
	assert fn.ok
	annotated = fn.annotated
	assert annotated.signature == "fn first<'a>(s: &'a Str, n: Int) -> &'a Str"
	assert [name for name, _live in annotated.bindings] == ["s", "n", "t"]
	param = annotated.references[0]
	assert param.origin == "param" and param.region == "'a"
	text = annotated.render()
	assert text.splitlines()[0] == "fn first<'a>(s: &'a Str, n: Int) -> &'a Str {"
	assert text.splitlines()[-1] == "}"


def test_annotating_the_elided_signature_changes_nothing():
	"""Writing out what elision inferred yields the same analysis."""
	body = " { let t = s; let u = &n; use(u); return t; }"
	elided = _verify("fn first(s: &Str, n: Int) -> &Str" + body)
	sig = elided.function("first").annotated.signature
	explicit = _verify(sig + body)
	assert explicit.ok
	a = elided.function("first").annotated
	b = explicit.function("first").annotated
	assert b.signature == a.signature
	assert b.bindings == a.bindings
	assert b.references == a.references


def test_diagnostics_follow_declaration_order():
	res = _verify(_MIXED)
	assert [d.function for d in res.diagnostics] == [
		None,
		"longest",
		"dangling",
		"conflict",
		"moved",
		"search",
		"unknown",
	]
	assert _kinds(res) == [
		DiagnosticKind.UNRESOLVED_FIELD_REGION,
		DiagnosticKind.AMBIGUOUS_REGION,
		DiagnosticKind.DANGLING_REFERENCE,
		DiagnosticKind.BORROW_CONFLICT,
		DiagnosticKind.USE_AFTER_MOVE,
		DiagnosticKind.DANGLING_REFERENCE,
		DiagnosticKind.UNKNOWN_BINDING,
	]
	assert res.function("fine").ok


@pytest.mark.parametrize("jobs", [2, 4, 8])
def test_parallel_run_is_deterministic(jobs):
	serial = _verify(_MIXED, jobs=1)
	parallel = _verify(_MIXED, jobs=jobs)
	assert [d.to_json() for d in parallel.diagnostics] == [d.to_json() for d in serial.diagnostics]
	assert [f.name for f in parallel.functions] == [f.name for f in serial.functions]
	assert parallel.function("fine").annotated == serial.function("fine").annotated


def test_fail_fast_stops_after_first_failing_stage():
	src = """
	fn f() {
		use(ghost);
		let r;
		{
			let x = 5;
			r = &x;
		}
		use(r);
	}
	"""
	assert _kinds(_verify(src)) == [DiagnosticKind.UNKNOWN_BINDING, DiagnosticKind.DANGLING_REFERENCE]
	assert _kinds(_verify(src, fail_fast=True)) == [DiagnosticKind.UNKNOWN_BINDING]


def test_liveness_option_reaches_the_graph():
	src = """
	fn f() {
		let mut x = 1;
		let r = &x;
		use(r);
		let m = &mut x;
		bump(m);
	}
	"""
	assert not _verify(src).ok
	assert _verify(src, liveness=LivenessMode.LAST_USE).ok


def test_collector_orders_by_function_index():
	collector = DiagnosticCollector()
	collector.extend(2, [Diagnostic(message="c1"), Diagnostic(message="c2")])
	collector.extend(0, [Diagnostic(message="a")])
	collector.extend(-1, [Diagnostic(message="struct")])
	collector.extend(1, [])
	assert len(collector) == 4
	assert [d.message for d in collector.snapshot()] == ["struct", "a", "c1", "c2"]
