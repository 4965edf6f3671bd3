# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
regionck: a static lifetime-and-borrow verifier.

Per function, four stages run in order:

  scopes      binding & scope builder
  ref_graph   reference graph builder (borrow events)
  regions     region inference (with `signatures` for elision)
  solver      outlives solving, dangling and conflict checks

`regionck.verifier.verify_program` runs them over a whole program; the CLI
entrypoint is `regionck.driver:main` (`python -m regionck`).
"""

__all__ = []
