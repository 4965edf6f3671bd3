#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Scope tree, program points and binding extents."""

from regionck.core.diagnostics import DiagnosticKind
from regionck.core.shapes import RefShape, StructTable
from regionck.parser import parse_program
from regionck.scopes import Extent, Ownership, ScopeKind, ScopeTree, build_scopes


def _tree(src: str, name: str = "f") -> ScopeTree:
	prog = parse_program(src)
	structs = StructTable(prog.structs)
	fn = next(f for f in prog.functions if f.qualified_name == name)
	return build_scopes(fn, structs)


def _binding(tree: ScopeTree, name: str):
	return next(b for b in tree.bindings if b.name == name)


def test_points_and_extents_of_nested_blocks():
	tree = _tree(
		"""
		fn f(a: Int) {
			let x = 1;
			{
				let y = 2;
			}
		}
		"""
	)
	# root open 0, `let x` 1/2, block open 3, `let y` 4/5, block close 6, root close 7
	assert tree.root.extent == Extent(0, 7)
	assert tree.end_point == 7
	assert _binding(tree, "a").live == Extent(0, 7)
	assert _binding(tree, "x").live == Extent(2, 7)
	assert _binding(tree, "y").live == Extent(5, 6)
	inner = tree.scope(_binding(tree, "y").scope)
	assert inner.kind is ScopeKind.BLOCK
	assert inner.parent == tree.root.id
	assert inner.points == [4]


def test_params_are_declared_at_function_start():
	tree = _tree("fn f(r: &Str, n: Int) { }")
	r = _binding(tree, "r")
	n = _binding(tree, "n")
	assert r.is_param and n.is_param
	assert r.ownership is Ownership.PARAM_REF
	assert n.ownership is Ownership.OWNED
	assert isinstance(r.shape, RefShape)
	assert r.decl_point == n.decl_point == 0


def test_if_arms_are_sibling_scopes():
	tree = _tree(
		"""
		fn f(c: Bool) {
			if (c) { let a = 1; } else { let b = 2; }
		}
		"""
	)
	arms = [sc for sc in tree.scopes if sc.kind is ScopeKind.ARM]
	assert [sc.arm for sc in arms] == [0, 1]
	assert arms[0].if_point == arms[1].if_point == 1
	assert not arms[0].extent.overlaps(arms[1].extent)
	assert _binding(tree, "a").live.hi == arms[0].end


def test_while_loop_info():
	tree = _tree(
		"""
		fn f(c: Bool) {
			while (c) {
				let z = 1;
			}
		}
		"""
	)
	(loop,) = tree.loops
	# condition at 1, body opens at 3, `let z` 4/5, body closes at 6
	assert loop.start == 1
	assert loop.end == 6
	assert tree.scope(loop.scope).kind is ScopeKind.LOOP
	assert tree.loops_containing(4) == [loop]
	assert tree.loops_containing(7) == []


def test_innermost_scope_at_point():
	tree = _tree("fn f() { { let y = 1; } }")
	y = _binding(tree, "y")
	assert tree.innermost_scope_at(y.decl_point).id == y.scope
	assert tree.innermost_scope_at(0).id == tree.root.id


def test_shadowing_resolves_to_innermost_binding():
	tree = _tree(
		"""
		fn f() {
			let x = 1;
			{
				let x = 2;
				use(x);
			}
			use(x);
		}
		"""
	)
	outer, inner = [b for b in tree.bindings if b.name == "x"]
	resolved = sorted(set(tree.var_binding.values()))
	assert resolved == [outer.id, inner.id]


def test_unknown_binding_reported_once_per_name():
	tree = _tree("fn f() { use(ghost); use(ghost); let k = || [ref phantom]; }")
	kinds = [d.kind for d in tree.diagnostics]
	assert kinds == [DiagnosticKind.UNKNOWN_BINDING, DiagnosticKind.UNKNOWN_BINDING]
	assert [d.names for d in tree.diagnostics] == [("ghost",), ("phantom",)]
	assert tree.diagnostics[0].message == "unknown binding 'ghost'"


def test_call_of_local_closure_resolves_to_binding():
	tree = _tree("fn f() { let k = || [ ]; k(); }")
	k = _binding(tree, "k")
	assert k.id in tree.var_binding.values()
	assert tree.diagnostics == []
