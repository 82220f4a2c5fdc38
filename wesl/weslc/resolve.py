# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Identifier resolution over a frozen module graph.

Modules are processed in topological order, so every import target is
already resolved when its importer is visited. Per module this computes:

- `visible`: local name -> Symbol for explicitly imported items;
- `namespaces`: namespace name -> ModuleId for whole-module imports
  (every importable declaration of the target is usable as `ns::item`);
- `shadow`: declarations pulled in transitively by visible ones and not
  visible themselves (usable inside re-emitted bodies, never nameable);
- `bindings`: reference start offset -> Symbol for every reference that
  names a module-scope declaration. Unbound references are builtins.

Directive reconciliation is a separate check: the main module's directive
set is the only source of truth and is compared, never merged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from wesl.weslc.core.diagnostics import Diagnostic, has_errors
from wesl.weslc.core.error_codes import ErrorCode
from wesl.weslc.core.mangle import mangle
from wesl.weslc.core.module_id import ModuleId
from wesl.weslc.core.span import Span
from wesl.weslc.graph import ModuleGraph
from wesl.weslc.parser.ast import Declaration, DeclKind, Directives, Located, Module, Reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class Symbol:
	"""A top-level declaration, identified by its owning module and local name."""

	module_id: ModuleId
	name: str

	def mangled(self) -> str:
		return mangle(self.module_id, self.name)

	def display(self) -> str:
		return f"{self.module_id.display()}::{self.name}"


@dataclass
class ResolvedModule:
	module: Module
	visible: Dict[str, Symbol] = field(default_factory=dict)
	namespaces: Dict[str, ModuleId] = field(default_factory=dict)
	shadow: FrozenSet[Symbol] = frozenset()
	bindings: Dict[int, Symbol] = field(default_factory=dict)
	# Per declaration (same order as module.declarations): symbols its body uses.
	dependencies: List[FrozenSet[Symbol]] = field(default_factory=list)

	@property
	def module_id(self) -> ModuleId:
		return self.module.module_id

	def dependencies_of(self, name: str) -> FrozenSet[Symbol]:
		for decl, deps in zip(self.module.declarations, self.dependencies):
			if decl.name == name:
				return deps
		return frozenset()

	def visible_symbols(self, graph: ModuleGraph) -> Set[Symbol]:
		"""Explicit items plus every importable declaration reachable as `ns::item`."""
		symbols = set(self.visible.values())
		for target in self.namespaces.values():
			for decl in graph.module(target).declarations:
				if decl.name is not None and decl.importable:
					symbols.add(Symbol(target, decl.name))
		return symbols


@dataclass
class Resolution:
	modules: Dict[ModuleId, ResolvedModule]
	diagnostics: List[Diagnostic]

	@property
	def ok(self) -> bool:
		return not has_errors(self.diagnostics)


class IdentifierResolver:
	def __init__(self, graph: ModuleGraph) -> None:
		self.graph = graph
		self.resolved: Dict[ModuleId, ResolvedModule] = {}
		self.diagnostics: List[Diagnostic] = []

	def resolve(self) -> Resolution:
		for module in self.graph:
			self.resolved[module.module_id] = self._resolve_module(module)
		errors = sum(1 for d in self.diagnostics if d.severity == "error")
		logger.info("identifier resolution: %d module(s), %d error(s)", len(self.resolved), errors)
		return Resolution(modules=dict(self.resolved), diagnostics=list(self.diagnostics))

	# ------------------------------------------------------------ per module

	def _resolve_module(self, module: Module) -> ResolvedModule:
		res = ResolvedModule(module=module)
		origins: Dict[str, Located] = {}
		self._bind_imports(module, res, origins)

		for decl in module.declarations:
			deps: Set[Symbol] = set()
			for ref in decl.references:
				sym = self._bind_reference(module, res, ref)
				if sym is not None:
					res.bindings[ref.start] = sym
					deps.add(sym)
			res.dependencies.append(frozenset(deps))

		visible = res.visible_symbols(self.graph)
		res.shadow = frozenset(self._closure(visible) - visible)
		self._check_shadow_references(module, res)
		logger.debug(
			"resolved %s: %d visible, %d namespace(s), %d shadow",
			module.module_id.display(),
			len(res.visible),
			len(res.namespaces),
			len(res.shadow),
		)
		return res

	def _bind_imports(self, module: Module, res: ResolvedModule, origins: Dict[str, Located]) -> None:
		edges = self.graph.imports_of(module.module_id)
		for edge in edges:
			request = edge.request
			target = self.graph.module(edge.target)
			if request.whole_module:
				ns = request.namespace
				prev = res.namespaces.get(ns)
				if prev is not None and prev != edge.target:
					self._conflict(module, ns, request.loc, origins[ns], f"namespace '{ns}' is bound to both {prev.display()} and {edge.target.display()}")
					continue
				if module.lookup(ns) is not None or ns in res.visible:
					self._conflict(module, ns, request.loc, origins.get(ns) or module.lookup(ns).loc, f"namespace '{ns}' clashes with another name in this module")
					continue
				res.namespaces[ns] = edge.target
				origins.setdefault(ns, request.loc)
				continue

			for item in request.items or []:
				decl = target.lookup(item.name)
				if decl is None or not decl.importable:
					self._unknown_item(module, item.loc, item.name, target, decl)
					continue
				sym = Symbol(target.module_id, decl.name)
				local = item.local_name
				prev_sym = res.visible.get(local)
				if prev_sym is not None:
					if prev_sym != sym:
						self._conflict(
							module,
							local,
							item.loc,
							origins[local],
							f"'{local}' is imported as both {prev_sym.display()} and {sym.display()}",
						)
					continue
				own = module.lookup(local)
				if own is not None:
					self._conflict(module, local, item.loc, own.loc, f"imported name '{local}' clashes with a declaration of this module")
					continue
				if local in res.namespaces:
					self._conflict(module, local, item.loc, origins[local], f"imported name '{local}' clashes with a namespace of this module")
					continue
				res.visible[local] = sym
				origins[local] = item.loc
				if decl.kind is DeclKind.VAR:
					self.diagnostics.append(
						Diagnostic(
							message=f"imported module-scope var '{sym.display()}': binding indices of imported vars do not compose",
							code=ErrorCode.IMPORTED_VAR,
							severity="note",
							span=_span(module, item.loc),
							modules=[str(module.module_id), str(target.module_id)],
						)
					)

	def _bind_reference(self, module: Module, res: ResolvedModule, ref: Reference) -> Optional[Symbol]:
		if ref.qualified:
			return self._bind_qualified(module, res, ref)
		name = ref.path[0]
		if module.lookup(name) is not None:
			return Symbol(module.module_id, name)
		return res.visible.get(name)

	def _bind_qualified(self, module: Module, res: ResolvedModule, ref: Reference) -> Optional[Symbol]:
		ns = ref.path[0]
		target_id = res.namespaces.get(ns)
		if target_id is None:
			self._error(
				ErrorCode.UNKNOWN_IMPORTED_ITEM,
				module,
				ref.loc,
				f"'{ref.display()}': '{ns}' is not an imported module namespace",
				modules=[str(module.module_id)],
			)
			return None
		target = self.graph.module(target_id)
		if len(ref.path) != 2:
			self._error(
				ErrorCode.UNKNOWN_IMPORTED_ITEM,
				module,
				ref.loc,
				f"'{ref.display()}': qualified references take the form namespace::item",
				modules=[str(module.module_id), str(target_id)],
			)
			return None
		decl = target.lookup(ref.path[1])
		if decl is None or not decl.importable:
			self._unknown_item(module, ref.loc, ref.path[1], target, decl)
			return None
		return Symbol(target_id, decl.name)

	def _closure(self, roots: Iterable[Symbol]) -> Set[Symbol]:
		"""Fixed point of the declaration dependency edges starting at `roots`."""
		seen: Set[Symbol] = set()
		work = list(roots)
		while work:
			sym = work.pop()
			if sym in seen:
				continue
			seen.add(sym)
			owner = self.resolved.get(sym.module_id)
			if owner is None:
				continue
			work.extend(owner.dependencies_of(sym.name) - seen)
		return seen

	def _check_shadow_references(self, module: Module, res: ResolvedModule) -> None:
		if not res.shadow:
			return
		by_name: Dict[str, List[Symbol]] = {}
		for sym in sorted(res.shadow):
			by_name.setdefault(sym.name, []).append(sym)
		for decl in module.declarations:
			for ref in decl.references:
				if ref.qualified or ref.start in res.bindings:
					continue
				hits = by_name.get(ref.path[0])
				if not hits:
					continue
				via = _importers_of(hits[0], res, self.resolved, self.graph)
				notes = [f"'{ref.path[0]}' is an implicit dependency of {', '.join(via)}" if via else f"'{ref.path[0]}' is an implicit dependency of an imported declaration"]
				notes.append(f"import it explicitly: import {_import_hint(hits[0])};")
				self._error(
					ErrorCode.REFERENCE_TO_UNIMPORTED_DEPENDENCY,
					module,
					ref.loc,
					f"'{ref.path[0]}' refers to {hits[0].display()}, which is not imported by this module",
					notes=notes,
					modules=[str(module.module_id), str(hits[0].module_id)],
				)

	# ------------------------------------------------------------ diagnostics

	def _unknown_item(self, module: Module, loc: Located, name: str, target: Module, decl: Optional[Declaration]) -> None:
		if decl is None:
			message = f"module {target.module_id.display()} has no declaration named '{name}'"
		else:
			message = f"'{name}' in module {target.module_id.display()} is a {decl.kind.value} declaration and cannot be imported"
		self._error(
			ErrorCode.UNKNOWN_IMPORTED_ITEM,
			module,
			loc,
			message,
			modules=[str(module.module_id), str(target.module_id)],
		)

	def _conflict(self, module: Module, name: str, loc: Located, first: Located, message: str) -> None:
		self._error(
			ErrorCode.DUPLICATE_IMPORT_ALIAS,
			module,
			loc,
			message,
			notes=[f"first bound here: {_span(module, first).format_short()}"],
			modules=[str(module.module_id)],
		)

	def _error(
		self,
		code: ErrorCode,
		module: Module,
		loc: Located,
		message: str,
		*,
		notes: Optional[List[str]] = None,
		modules: Optional[List[str]] = None,
	) -> None:
		self.diagnostics.append(
			Diagnostic(
				message=message,
				code=code,
				span=_span(module, loc),
				notes=list(notes or []),
				modules=list(modules or [str(module.module_id)]),
			)
		)


def resolve_identifiers(graph: ModuleGraph) -> Resolution:
	return IdentifierResolver(graph).resolve()


def check_directives(graph: ModuleGraph, main_directives: Optional[Directives] = None) -> List[Diagnostic]:
	"""
	Compare each imported module's directives against the main module's set.

	`main_directives` defaults to the main module's own header. Diagnostics
	point at the main module's import that (transitively) reaches the
	offending module, and name both modules.
	"""
	main = graph.main
	declared = main_directives if main_directives is not None else main.directives
	via = _main_import_sites(graph)
	diagnostics: List[Diagnostic] = []
	for module in graph:
		if module.module_id == graph.main_id:
			continue
		site = via.get(module.module_id)
		span = _span(main, site) if site is not None else Span(file=main.file)
		modules = [str(main.module_id), str(module.module_id)]
		missing: List[Tuple[ErrorCode, str, str, Located]] = []
		for name, loc in module.directives.extensions.items():
			if name not in declared.extensions:
				missing.append((ErrorCode.EXTENSION_MISMATCH, f"enable {name};", f"extension '{name}'", loc))
		for name, loc in module.directives.requires.items():
			if name not in declared.requires:
				missing.append((ErrorCode.EXTENSION_MISMATCH, f"requires {name};", f"language feature '{name}'", loc))
		for filt, loc in module.directives.diagnostics.items():
			if filt not in declared.diagnostics:
				missing.append(
					(
						ErrorCode.DIAGNOSTIC_MISMATCH,
						f"diagnostic({filt.severity}, {filt.rule});",
						f"diagnostic filter ({filt.severity}, {filt.rule})",
						loc,
					)
				)
		for code, directive, what, loc in missing:
			diagnostics.append(
				Diagnostic(
					message=f"{module.module_id.display()} requires {what}, which {main.module_id.display()} does not declare",
					code=code,
					span=span,
					notes=[
						f"declared at {_span(module, loc).format_short()}",
						f"add `{directive}` to {main.file or main.module_id.display()}",
					],
					modules=modules,
				)
			)
	if diagnostics:
		logger.info("directive check: %d mismatch(es)", len(diagnostics))
	return diagnostics


# ---------------------------------------------------------------- helpers


def _span(module: Module, loc: Optional[Located]) -> Span:
	if loc is None:
		return Span(file=module.file)
	return Span(file=module.file, line=loc.line, column=loc.column)


def _main_import_sites(graph: ModuleGraph) -> Dict[ModuleId, Located]:
	"""For every module, the location of the first main-module import reaching it."""
	sites: Dict[ModuleId, Located] = {}
	for edge in graph.imports_of(graph.main_id):
		for module_id in graph.reachable_from(edge.target):
			sites.setdefault(module_id, edge.request.loc)
	return sites


def _importers_of(
	sym: Symbol,
	res: ResolvedModule,
	resolved: Mapping[ModuleId, ResolvedModule],
	graph: ModuleGraph,
) -> List[str]:
	"""Names of visible declarations whose dependency closure contains `sym`."""
	found: List[str] = []
	for vis in sorted(res.visible_symbols(graph)):
		owner = resolved.get(vis.module_id)
		if owner is None:
			continue
		seen: Set[Symbol] = set()
		work = list(owner.dependencies_of(vis.name))
		while work:
			cur = work.pop()
			if cur in seen:
				continue
			seen.add(cur)
			if cur == sym:
				found.append(vis.name)
				break
			cur_owner = resolved.get(cur.module_id)
			if cur_owner is not None:
				work.extend(cur_owner.dependencies_of(cur.name))
	return found


def _import_hint(sym: Symbol) -> str:
	return "::".join(sym.module_id.segments) + "::{" + sym.name + "}"


__all__ = [
	"IdentifierResolver",
	"Resolution",
	"ResolvedModule",
	"Symbol",
	"check_directives",
	"resolve_identifiers",
]
