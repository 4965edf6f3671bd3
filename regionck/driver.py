# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Command-line driver: `python -m regionck FILE...`.

Parses each file, verifies every function and reports. Exit codes:
0 accepted, 1 verification diagnostics, 2 parse errors (or unreadable input).

With --json, prints one payload `{"exit_code": n, "diagnostics": [...]}` to
stdout; otherwise prints human-readable diagnostics to stderr.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List

from regionck.core.diagnostics import Diagnostic, DiagnosticKind
from regionck.core.span import Span
from regionck.parser import ParseError, parse_file
from regionck.ref_graph import LivenessMode
from regionck.verifier import CheckerOptions, ProgramResult, verify_program


def _parse_diag(message: str, span: Span) -> Diagnostic:
	return Diagnostic(message=message, kind=DiagnosticKind.PARSE_ERROR, phase="parser", span=span)


def _emit(args: argparse.Namespace, exit_code: int, diags: List[Diagnostic], results: List[ProgramResult]) -> None:
	if args.json:
		payload = {
			"exit_code": exit_code,
			"diagnostics": [d.to_json() for d in diags],
		}
		if args.emit_regions:
			payload["functions"] = [
				asdict(f.annotated) for res in results for f in res.functions if f.annotated is not None
			]
		print(json.dumps(payload))
		return
	if args.emit_regions:
		for res in results:
			for f in res.functions:
				if f.annotated is not None:
					print(f.annotated.render())
	for d in diags:
		print(d.render(), file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
	"""
	Verify IR source files.

	Every file is an independent program; diagnostics are reported in file
	order, then function declaration order.
	"""
	parser = argparse.ArgumentParser(description="regionck: static lifetime and borrow verifier")
	parser.add_argument("source", type=Path, nargs="+", help="Path(s) to IR source file(s)")
	parser.add_argument("--json", action="store_true", help="Emit diagnostics as JSON")
	parser.add_argument(
		"--emit-regions",
		action="store_true",
		help="Print the region-annotated form of every accepted function",
	)
	parser.add_argument(
		"--liveness",
		choices=[m.value for m in LivenessMode],
		default=LivenessMode.SCOPE.value,
		help="When a reference held by a binding stops being live (default: scope)",
	)
	parser.add_argument("--jobs", "-j", type=int, default=1, help="Verify functions on N worker threads")
	parser.add_argument(
		"--fail-fast",
		action="store_true",
		help="Stop analysing a function after the first stage that reports a diagnostic",
	)
	parser.add_argument(
		"--field-sensitive",
		action="store_true",
		help="Let borrows of disjoint fields of one binding coexist",
	)
	args = parser.parse_args(argv)
	if args.jobs < 1:
		parser.error("--jobs must be at least 1")

	options = CheckerOptions(
		liveness=LivenessMode(args.liveness),
		jobs=args.jobs,
		fail_fast=args.fail_fast,
		field_sensitive=args.field_sensitive,
	)

	programs = []
	parse_diags: List[Diagnostic] = []
	for path in args.source:
		try:
			programs.append(parse_file(path))
		except ParseError as err:
			span = err.span if err.span.file is not None else Span(file=str(path), line=err.span.line, column=err.span.column)
			parse_diags.append(_parse_diag(str(err), span))
		except OSError as err:
			parse_diags.append(_parse_diag(f"cannot read '{path}': {err.strerror}", Span(file=str(path))))
	if parse_diags:
		_emit(args, 2, parse_diags, [])
		return 2

	results = [verify_program(program, options) for program in programs]
	diags = [d for res in results for d in res.diagnostics]
	exit_code = 1 if diags else 0
	_emit(args, exit_code, diags, results)
	return exit_code


if __name__ == "__main__":
	sys.exit(main())
