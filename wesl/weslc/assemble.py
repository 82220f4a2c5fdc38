# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Emit the linked output.

The output is the main module's directives followed by every module's
declarations in topological order (main last). Declarations are copied
from their original source text with two kinds of edits spliced in: the
declaration's own name becomes its mangled name, and every bound reference
(bare or `ns::item`) becomes the mangled name of its target. Unbound
references (builtins) are left alone. Import statements are never emitted.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Set, Tuple

from wesl.weslc.core.mangle import mangle
from wesl.weslc.core.module_id import ModuleId
from wesl.weslc.graph import ModuleGraph
from wesl.weslc.parser.ast import Declaration, DeclKind, Module

from .resolve import ResolvedModule, Symbol

logger = logging.getLogger(__name__)

# (module id, index into module.declarations)
DeclKey = Tuple[ModuleId, int]


def assemble(
	graph: ModuleGraph,
	resolved: Mapping[ModuleId, ResolvedModule],
	*,
	eliminate_dead_code: bool = False,
) -> str:
	live = live_declarations(graph, resolved) if eliminate_dead_code else None
	chunks: List[str] = []
	if graph.main.directives.text:
		chunks.append("\n".join(graph.main.directives.text))
	emitted = 0
	for module in graph:
		res = resolved[module.module_id]
		for idx, decl in enumerate(module.declarations):
			if live is not None and (module.module_id, idx) not in live:
				continue
			chunks.append(rewrite_declaration(module, decl, res))
			emitted += 1
	logger.info("assembled %d declaration(s) from %d module(s)", emitted, len(graph))
	return "\n\n".join(chunks) + "\n"


def rewrite_declaration(module: Module, decl: Declaration, res: ResolvedModule) -> str:
	"""Source text of `decl` with its name and bound references mangled."""
	edits: List[Tuple[int, int, str]] = []
	if decl.name is not None and decl.name_start is not None and decl.name_end is not None:
		edits.append((decl.name_start, decl.name_end, mangle(module.module_id, decl.name)))
	for ref in decl.references:
		sym = res.bindings.get(ref.start)
		if sym is not None:
			edits.append((ref.start, ref.end, sym.mangled()))
	edits.sort()

	out: List[str] = []
	pos = decl.start
	for start, end, text in edits:
		out.append(module.source[pos:start])
		out.append(text)
		pos = end
	out.append(module.source[pos : decl.end])
	return "".join(out)


def live_declarations(graph: ModuleGraph, resolved: Mapping[ModuleId, ResolvedModule]) -> Set[DeclKey]:
	"""
	Declarations reachable from the main module's entry points and overrides
	(or from every main declaration when it has neither). A `const_assert`
	is kept whenever anything else from its module is kept.
	"""
	index: Dict[Symbol, DeclKey] = {}
	for module in graph:
		for idx, decl in enumerate(module.declarations):
			if decl.name is not None:
				index[Symbol(module.module_id, decl.name)] = (module.module_id, idx)

	main = graph.main
	roots = [(main.module_id, i) for i, d in enumerate(main.declarations) if d.preserved]
	if not roots:
		roots = [(main.module_id, i) for i in range(len(main.declarations))]

	live: Set[DeclKey] = set()
	work: List[DeclKey] = list(roots)
	while True:
		while work:
			key = work.pop()
			if key in live:
				continue
			live.add(key)
			module_id, idx = key
			for sym in resolved[module_id].dependencies[idx]:
				target: Optional[DeclKey] = index.get(sym)
				if target is not None and target not in live:
					work.append(target)
		kept_modules = {module_id for module_id, _ in live}
		for module_id in kept_modules:
			for idx, decl in enumerate(graph.module(module_id).declarations):
				if decl.kind is DeclKind.CONST_ASSERT and (module_id, idx) not in live:
					work.append((module_id, idx))
		if not work:
			break
	logger.debug("dead code elimination kept %d declaration(s)", len(live))
	return live


__all__ = ["DeclKey", "assemble", "live_declarations", "rewrite_declaration"]
