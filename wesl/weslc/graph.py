# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Module graph construction.

Starting from the main file, every import is resolved to a canonical module
id and loaded at most once. Traversal is depth-first and sequential; only the
loading/parsing of a module's direct imports is handed to a thread pool
(`jobs > 1`) so diagnostics and ordering never depend on scheduling.

The resulting graph is frozen: modules keyed by ModuleId, per-module import
edges in source order, and a topological order (imports before importers,
first-discovery tie-break, main last).
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from wesl.weslc.core.diagnostics import LinkError
from wesl.weslc.core.error_codes import ErrorCode
from wesl.weslc.core.module_id import ModuleId
from wesl.weslc.core.span import Span
from wesl.weslc.packages.resolver import PathResolver
from wesl.weslc.parser import load_module_file
from wesl.weslc.parser.ast import ImportRequest, Module

logger = logging.getLogger(__name__)

ModuleLoader = Callable[[Path, ModuleId], Module]


class CyclicImportError(LinkError):
	code = ErrorCode.CYCLIC_IMPORT


@dataclass(frozen=True)
class ImportEdge:
	request: ImportRequest
	target: ModuleId


@dataclass(frozen=True)
class ModuleGraph:
	main_id: ModuleId
	modules: Mapping[ModuleId, Module]
	edges: Mapping[ModuleId, Tuple[ImportEdge, ...]]
	order: Tuple[ModuleId, ...]

	@property
	def main(self) -> Module:
		return self.modules[self.main_id]

	def module(self, module_id: ModuleId) -> Module:
		return self.modules[module_id]

	def imports_of(self, module_id: ModuleId) -> Tuple[ImportEdge, ...]:
		return self.edges.get(module_id, ())

	def reachable_from(self, module_id: ModuleId) -> Set[ModuleId]:
		"""All modules imported (directly or transitively) by `module_id`, itself included."""
		seen: Set[ModuleId] = set()
		work = [module_id]
		while work:
			cur = work.pop()
			if cur in seen:
				continue
			seen.add(cur)
			work.extend(edge.target for edge in self.imports_of(cur))
		return seen

	def __iter__(self) -> Iterator[Module]:
		for module_id in self.order:
			yield self.modules[module_id]

	def __len__(self) -> int:
		return len(self.order)


class ModuleCache:
	"""
	Single-flight module cache keyed by ModuleId.

	The first `submit` for an id creates the Future and runs the load (inline,
	or on the executor when one is given); every later request for the same id
	gets that same Future and blocks on it. Load failures are stored in the
	Future and re-raised to every waiter.
	"""

	def __init__(self, loader: ModuleLoader, executor: Optional[ThreadPoolExecutor] = None) -> None:
		self._loader = loader
		self._executor = executor
		self._lock = threading.Lock()
		self._entries: Dict[ModuleId, Future] = {}

	def submit(self, module_id: ModuleId, path: Path) -> Future:
		with self._lock:
			future = self._entries.get(module_id)
			if future is not None:
				return future
			future = Future()
			self._entries[module_id] = future
		if self._executor is None:
			self._run(future, module_id, path)
		else:
			self._executor.submit(self._run, future, module_id, path)
		return future

	def get(self, module_id: ModuleId, path: Path) -> Module:
		return self.submit(module_id, path).result()

	def __contains__(self, module_id: ModuleId) -> bool:
		with self._lock:
			return module_id in self._entries

	def __len__(self) -> int:
		with self._lock:
			return len(self._entries)

	def _run(self, future: Future, module_id: ModuleId, path: Path) -> None:
		if not future.set_running_or_notify_cancel():
			return
		logger.debug("loading %s from %s", module_id.display(), path)
		try:
			module = self._loader(path, module_id)
		except Exception as err:
			future.set_exception(err)
		else:
			future.set_result(module)


class ModuleGraphBuilder:
	def __init__(self, resolver: PathResolver, *, loader: ModuleLoader = load_module_file, jobs: int = 1) -> None:
		if jobs < 1:
			raise ValueError(f"jobs must be >= 1, got {jobs}")
		self.resolver = resolver
		self.loader = loader
		self.jobs = jobs

	def build(self, main_path: Path) -> ModuleGraph:
		main_path = main_path.resolve()
		main_id = self.resolver.module_id_for_file(main_path)
		executor: Optional[ThreadPoolExecutor] = None
		if self.jobs > 1:
			executor = ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="weslc-load")
		try:
			cache = ModuleCache(self.loader, executor)
			graph = _Traversal(self.resolver, cache).run(main_id, main_path)
		finally:
			if executor is not None:
				executor.shutdown(wait=True)
		logger.info("module graph: %d module(s), main %s", len(graph), main_id.display())
		return graph


class _Traversal:
	"""One depth-first walk; owns the recursion stack and the output order."""

	def __init__(self, resolver: PathResolver, cache: ModuleCache) -> None:
		self.resolver = resolver
		self.cache = cache
		self.modules: Dict[ModuleId, Module] = {}
		self.edges: Dict[ModuleId, Tuple[ImportEdge, ...]] = {}
		self.order: List[ModuleId] = []
		self.done: Set[ModuleId] = set()
		self.stack: List[ModuleId] = []

	def run(self, main_id: ModuleId, main_path: Path) -> ModuleGraph:
		self._visit(main_id, main_path)
		return ModuleGraph(
			main_id=main_id,
			modules=MappingProxyType(dict(self.modules)),
			edges=MappingProxyType(dict(self.edges)),
			order=tuple(self.order),
		)

	def _visit(self, module_id: ModuleId, path: Path) -> None:
		module = self.cache.get(module_id, path)
		self.modules[module_id] = module
		self.stack.append(module_id)

		resolved = [(req, self.resolver.resolve(req, module_id, file=module.file)) for req in module.imports]
		self.edges[module_id] = tuple(ImportEdge(request=req, target=r.module_id) for req, r in resolved)

		# Start sibling loads before descending into the first one.
		for _req, r in resolved:
			if r.module_id not in self.done:
				self.cache.submit(r.module_id, r.path)

		for req, r in resolved:
			target = r.module_id
			if target in self.done:
				continue
			if target in self.stack:
				raise self._cycle_error(module, req, target)
			self._visit(target, r.path)

		self.stack.pop()
		self.done.add(module_id)
		self.order.append(module_id)

	def _cycle_error(self, module: Module, request: ImportRequest, target: ModuleId) -> CyclicImportError:
		cycle = self.stack[self.stack.index(target) :] + [target]
		notes: List[str] = []
		for a, b in zip(cycle, cycle[1:]):
			for edge in self.edges.get(a, ()):
				if edge.target == b:
					where = self.modules[a].file or a.display()
					notes.append(f"{a.display()} imports {b.display()} ({where}:{edge.request.loc.line})")
					break
		involved = [module.module_id] + [m for m in cycle[:-1] if m != module.module_id]
		return CyclicImportError(
			f"import cycle detected: {' -> '.join(m.display() for m in cycle)}",
			span=Span(file=module.file, line=request.loc.line, column=request.loc.column),
			notes=notes,
			modules=[str(m) for m in involved],
		)


__all__ = [
	"CyclicImportError",
	"ImportEdge",
	"ModuleCache",
	"ModuleGraph",
	"ModuleGraphBuilder",
	"ModuleLoader",
]
