# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from wesl.weslc.core.error_codes import ErrorCode
from wesl.weslc.core.module_id import ModuleId
from wesl.weslc.graph import CyclicImportError, ModuleCache, ModuleGraphBuilder
from wesl.weslc.packages.manifest_v0 import implicit_manifest
from wesl.weslc.packages.resolver import ModuleFileNotFoundError, PathResolver
from wesl.weslc.parser import MalformedImportError, load_module_file


def _write_module(root: Path, rel: str, src: str) -> Path:
	path = root / rel
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(src, encoding="utf-8")
	return path


class _CountingLoader:
	def __init__(self) -> None:
		self.counts: Counter = Counter()
		self._lock = threading.Lock()

	def __call__(self, path: Path, module_id: ModuleId):
		with self._lock:
			self.counts[module_id] += 1
		return load_module_file(path, module_id)


def _builder(root: Path, **kwargs) -> ModuleGraphBuilder:
	return ModuleGraphBuilder(PathResolver(implicit_manifest(root, name="my")), **kwargs)


def _diamond(root: Path) -> Path:
	_write_module(root, "c.wesl", "struct C { x: f32 }\n")
	_write_module(root, "b.wesl", "import package::c::{C};\nstruct B { c: C }\n")
	_write_module(root, "a.wesl", "import package::b::{B};\nimport package::c::{C};\nstruct A { b: B, c: C }\n")
	return _write_module(
		root,
		"main.wesl",
		"import package::a::{A};\nimport package::b::{B};\nfn f(a: A, b: B) {}\n",
	)


def _ids(*names: str) -> list:
	return [ModuleId.of("my", n) for n in names]


def test_diamond_import_loads_each_module_once(tmp_path: Path) -> None:
	main = _diamond(tmp_path)
	loader = _CountingLoader()
	graph = _builder(tmp_path, loader=loader).build(main)

	assert set(loader.counts.values()) == {1}
	assert len(graph) == 4
	assert graph.main_id == ModuleId.of("my", "main")
	# Imports first, first-discovery tie-break, main last.
	assert list(graph.order) == _ids("c", "b", "a", "main")
	assert [e.target for e in graph.imports_of(ModuleId.of("my", "a"))] == _ids("b", "c")
	assert graph.reachable_from(ModuleId.of("my", "b")) == set(_ids("b", "c"))


def test_parallel_loading_matches_sequential(tmp_path: Path) -> None:
	main = _diamond(tmp_path)
	sequential = _builder(tmp_path).build(main)
	loader = _CountingLoader()
	parallel = _builder(tmp_path, loader=loader, jobs=4).build(main)

	assert parallel.order == sequential.order
	assert set(loader.counts.values()) == {1}
	for module_id in sequential.order:
		assert parallel.module(module_id).source == sequential.module(module_id).source


def test_cycle_is_rejected_with_full_path(tmp_path: Path) -> None:
	_write_module(tmp_path, "a.wesl", "import package::b::{B};\nstruct A { x: f32 }\n")
	_write_module(tmp_path, "b.wesl", "import package::a::{A};\nstruct B { x: f32 }\n")
	main = _write_module(tmp_path, "main.wesl", "import package::a::{A};\nfn f() {}\n")

	with pytest.raises(CyclicImportError) as exc:
		_builder(tmp_path).build(main)
	diag = exc.value.diagnostic
	assert diag.code is ErrorCode.CYCLIC_IMPORT
	assert "my::a -> my::b -> my::a" in diag.message
	assert diag.span.file == str(tmp_path.resolve() / "b.wesl")
	assert diag.span.line == 1
	assert diag.modules[0] == "my_b"
	assert len(diag.notes) == 2


def test_self_import_is_a_cycle(tmp_path: Path) -> None:
	main = _write_module(tmp_path, "main.wesl", "import package::main::{f};\nfn f() {}\n")
	with pytest.raises(CyclicImportError):
		_builder(tmp_path).build(main)


def test_missing_import_reports_requesting_module(tmp_path: Path) -> None:
	main = _write_module(tmp_path, "main.wesl", "\nimport package::ghost::{X};\nfn f() {}\n")
	with pytest.raises(ModuleFileNotFoundError) as exc:
		_builder(tmp_path).build(main)
	diag = exc.value.diagnostic
	assert diag.span.file == str(tmp_path.resolve() / "main.wesl")
	assert diag.span.line == 2
	assert diag.modules[0] == "my_main"


def test_parse_error_in_imported_module_surfaces(tmp_path: Path) -> None:
	_write_module(tmp_path, "bad.wesl", "import package::;\n")
	main = _write_module(tmp_path, "main.wesl", "import package::bad::{X};\n")
	with pytest.raises(MalformedImportError):
		_builder(tmp_path, jobs=2).build(main)


def test_jobs_must_be_positive(tmp_path: Path) -> None:
	with pytest.raises(ValueError):
		_builder(tmp_path, jobs=0)


def test_module_cache_is_single_flight(tmp_path: Path) -> None:
	path = _write_module(tmp_path, "slow.wesl", "struct S { x: f32 }\n")
	calls = Counter()
	started = threading.Event()

	def slow_loader(p: Path, module_id: ModuleId):
		calls[module_id] += 1
		started.set()
		time.sleep(0.05)
		return load_module_file(p, module_id)

	mid = ModuleId.of("my", "slow")
	with ThreadPoolExecutor(max_workers=4) as executor:
		cache = ModuleCache(slow_loader, executor)
		futures = [cache.submit(mid, path) for _ in range(8)]
		results = [f.result() for f in futures]

	assert calls[mid] == 1
	assert started.is_set()
	assert all(r is results[0] for r in results)
	assert mid in cache
	assert len(cache) == 1


@pytest.mark.parametrize("workers", [0, 4])
def test_module_cache_concurrent_requesters_share_one_load(tmp_path: Path, workers: int) -> None:
	path = _write_module(tmp_path, "shared.wesl", "struct S { x: f32 }\n")
	mid = ModuleId.of("my", "shared")
	loads = []
	loads_lock = threading.Lock()

	def slow_loader(p: Path, module_id: ModuleId):
		with loads_lock:
			loads.append(threading.get_ident())
		time.sleep(0.05)
		return load_module_file(p, module_id)

	executor = ThreadPoolExecutor(max_workers=workers) if workers else None
	cache = ModuleCache(slow_loader, executor)
	n = 8
	barrier = threading.Barrier(n)
	results = [None] * n
	errors = []

	def request(slot: int) -> None:
		barrier.wait()
		try:
			results[slot] = cache.get(mid, path)
		except Exception as err:
			errors.append(err)

	threads = [threading.Thread(target=request, args=(slot,)) for slot in range(n)]
	for t in threads:
		t.start()
	for t in threads:
		t.join(timeout=10)
	if executor is not None:
		executor.shutdown(wait=True)

	assert errors == []
	assert len(loads) == 1
	assert results[0] is not None
	assert all(r is results[0] for r in results)


def test_module_cache_shares_failures(tmp_path: Path) -> None:
	def failing_loader(p: Path, module_id: ModuleId):
		raise RuntimeError("boom")

	cache = ModuleCache(failing_loader)
	mid = ModuleId.of("my", "x")
	first = cache.submit(mid, tmp_path / "x.wesl")
	second = cache.submit(mid, tmp_path / "x.wesl")
	assert first is second
	with pytest.raises(RuntimeError):
		second.result()
