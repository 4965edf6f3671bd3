# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Program-level driver for the four per-function stages.

Program-wide tables (structs, elided signatures) are built once, up front,
and are only read afterwards. Each function is then an independent unit:

	scopes -> reference graph -> region inference -> solver

Functions may be verified on a thread pool. Every task reports into a
`DiagnosticCollector` (append only, lock protected); results are ordered by
function declaration order regardless of completion order, so a run is
deterministic for any worker count.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from regionck import ir as I
from regionck.core.diagnostics import Diagnostic
from regionck.core.shapes import StructTable
from regionck.ref_graph import LivenessMode, RefGraph, RefKind, build_ref_graph
from regionck.regions import infer_regions
from regionck.scopes import build_scopes
from regionck.signatures import ElidedSignature, SignatureTable
from regionck.solver import Solution, solve


@dataclass
class CheckerOptions:
	"""Knobs for one verification run (populated from CLI flags by the driver)."""

	liveness: LivenessMode = LivenessMode.SCOPE
	jobs: int = 1
	fail_fast: bool = False
	# Loans of disjoint fields of one binding may coexist.
	field_sensitive: bool = False


@dataclass(frozen=True)
class AnnotatedRef:
	"""One reference with its solved region."""

	id: int
	description: str
	kind: str
	origin: str
	created: int
	region: str
	holder: Optional[str] = None
	target: Optional[str] = None


@dataclass
class AnnotatedFn:
	"""A function whose every region is resolved: explicit signature plus solved extents."""

	name: str
	signature: str
	bindings: List[Tuple[str, str]] = field(default_factory=list)
	references: List[AnnotatedRef] = field(default_factory=list)

	def render(self) -> str:
		lines = [self.signature + " {"]
		for name, live in self.bindings:
			lines.append(f"  let {name} live {live}")
		for ref in self.references:
			where = f" in {ref.holder}" if ref.holder else ""
			lines.append(f"  #{ref.id} {ref.description}: {ref.kind} {ref.origin}{where} @{ref.created} region {ref.region}")
		lines.append("}")
		return "\n".join(lines)


@dataclass
class FunctionResult:
	name: str
	index: int
	diagnostics: List[Diagnostic] = field(default_factory=list)
	annotated: Optional[AnnotatedFn] = None

	@property
	def ok(self) -> bool:
		return not self.diagnostics


@dataclass
class ProgramResult:
	functions: List[FunctionResult] = field(default_factory=list)
	diagnostics: List[Diagnostic] = field(default_factory=list)

	@property
	def ok(self) -> bool:
		return not self.diagnostics

	def function(self, name: str) -> Optional[FunctionResult]:
		return next((f for f in self.functions if f.name == name), None)


class DiagnosticCollector:
	"""Thread-safe, append-only sink; `snapshot()` orders by (function index, arrival)."""

	def __init__(self) -> None:
		self._lock = threading.Lock()
		self._items: List[Tuple[int, int, Diagnostic]] = []

	def extend(self, order: int, diags: List[Diagnostic]) -> None:
		with self._lock:
			for diag in diags:
				self._items.append((order, len(self._items), diag))

	def __len__(self) -> int:
		with self._lock:
			return len(self._items)

	def snapshot(self) -> List[Diagnostic]:
		with self._lock:
			items = list(self._items)
		# Arrival order differs between runs; per-function emission order does not.
		by_fn: dict = {}
		for order, _seq, diag in items:
			by_fn.setdefault(order, []).append(diag)
		return [d for order in sorted(by_fn) for d in by_fn[order]]


def annotate(fn: I.FnDef, sig: Optional[ElidedSignature], graph: RefGraph, solution: Solution) -> AnnotatedFn:
	"""Build the region-annotated view of an accepted function."""
	tree = graph.tree
	out = AnnotatedFn(
		name=fn.qualified_name,
		signature=sig.render() if sig is not None else f"fn {fn.name}(...)",
	)
	for b in tree.bindings:
		out.bindings.append((b.name, str(b.live)))
	for ref in graph.references:
		out.references.append(
			AnnotatedRef(
				id=ref.id,
				description=ref.place.render() if ref.place is not None else ref.origin.name.lower(),
				kind="exclusive" if ref.kind is RefKind.EXCLUSIVE else "shared",
				origin=ref.origin.name.lower(),
				created=ref.created,
				region=solution.region_of(ref.id),
				holder=tree.binding(ref.holder).name if ref.holder is not None else None,
				target=tree.binding(ref.target).name if ref.target is not None else None,
			)
		)
	return out


def verify_function(
	fn: I.FnDef,
	index: int,
	structs: StructTable,
	signatures: SignatureTable,
	options: CheckerOptions,
) -> FunctionResult:
	"""Run the four stages on one function."""
	result = FunctionResult(name=fn.qualified_name, index=index)
	diags = result.diagnostics

	def _stop() -> bool:
		return options.fail_fast and bool(diags)

	tree = build_scopes(fn, structs)
	diags.extend(tree.diagnostics)
	if _stop():
		return result
	graph = build_ref_graph(tree, structs, signatures, liveness=options.liveness)
	diags.extend(graph.diagnostics)
	if _stop():
		return result
	inference = infer_regions(graph, signatures)
	diags.extend(inference.diagnostics)
	if _stop():
		return result
	solution = solve(inference, field_sensitive=options.field_sensitive)
	diags.extend(solution.diagnostics)
	if not diags:
		result.annotated = annotate(fn, inference.signature, graph, solution)
	return result


def verify_program(program: I.Program, options: Optional[CheckerOptions] = None) -> ProgramResult:
	"""
	Verify every function of `program`.

	Struct diagnostics come first (they are reported once per struct, not per
	use), followed by each function's diagnostics in declaration order.
	"""
	options = options or CheckerOptions()
	structs = StructTable(program.structs)
	collector = DiagnosticCollector()
	collector.extend(-1, structs.validate())
	signatures = SignatureTable(program.functions, structs)

	def _task(index: int, fn: I.FnDef) -> FunctionResult:
		res = verify_function(fn, index, structs, signatures, options)
		collector.extend(index, res.diagnostics)
		return res

	fns = list(enumerate(program.functions))
	if options.jobs > 1 and len(fns) > 1:
		with ThreadPoolExecutor(max_workers=options.jobs) as pool:
			futures = [pool.submit(_task, idx, fn) for idx, fn in fns]
			results = [f.result() for f in futures]
	else:
		results = [_task(idx, fn) for idx, fn in fns]
	return ProgramResult(functions=results, diagnostics=collector.snapshot())


__all__ = [
	"CheckerOptions",
	"AnnotatedRef",
	"AnnotatedFn",
	"FunctionResult",
	"ProgramResult",
	"DiagnosticCollector",
	"annotate",
	"verify_function",
	"verify_program",
]
