# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import pytest

from wesl.weslc.core.error_codes import ErrorCode
from wesl.weslc.core.module_id import ModuleId
from wesl.weslc.packages.manifest_v0 import ManifestError, load_manifest
from wesl.weslc.packages.resolver import (
	InvalidModuleNameError,
	ModuleFileNotFoundError,
	PathEscapesRootError,
	PathResolver,
	SearchPathLocator,
	UnknownPackageError,
)
from wesl.weslc.parser.ast import ImportRequest, Located


def _write_file(path: Path, text: str = "") -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(text, encoding="utf-8")


def _request(*segments: str) -> ImportRequest:
	return ImportRequest(path=list(segments), items=None, loc=Located(line=1, column=1))


def _resolver(root: Path, manifest: dict, **kwargs) -> PathResolver:
	_write_file(root / "wesl.json", json.dumps(manifest))
	return PathResolver(load_manifest(root / "wesl.json"), **kwargs)


def test_package_alias_and_own_name(tmp_path: Path) -> None:
	_write_file(tmp_path / "lighting.wesl")
	_write_file(tmp_path / "shapes" / "circle.wgsl")
	resolver = _resolver(tmp_path, {"name": "my"})
	main = ModuleId.of("my", "main")

	by_name = resolver.resolve(_request("my", "lighting"), main)
	by_package = resolver.resolve(_request("package", "lighting"), main)
	assert by_name.module_id == by_package.module_id == ModuleId.of("my", "lighting")
	assert by_name.path == tmp_path.resolve() / "lighting.wesl"

	nested = resolver.resolve(_request("package", "shapes", "circle"), main)
	assert nested.module_id == ModuleId.of("my", "shapes", "circle")
	assert nested.path.suffix == ".wgsl"


def test_wesl_extension_wins_over_wgsl(tmp_path: Path) -> None:
	_write_file(tmp_path / "util.wesl")
	_write_file(tmp_path / "util.wgsl")
	resolver = _resolver(tmp_path, {"name": "my"})
	assert resolver.resolve(_request("my", "util"), ModuleId.of("my", "main")).path.suffix == ".wesl"


def test_super_walks_up_module_levels(tmp_path: Path) -> None:
	_write_file(tmp_path / "a" / "sibling.wesl")
	_write_file(tmp_path / "top.wesl")
	resolver = _resolver(tmp_path, {"name": "my"})
	requester = ModuleId.of("my", "a", "b")

	one = resolver.resolve(_request("super", "sibling"), requester)
	assert one.module_id == ModuleId.of("my", "a", "sibling")
	two = resolver.resolve(_request("super", "super", "top"), requester)
	assert two.module_id == ModuleId.of("my", "top")


def test_super_cannot_leave_the_package(tmp_path: Path) -> None:
	resolver = _resolver(tmp_path, {"name": "my"})
	with pytest.raises(PathEscapesRootError) as exc:
		resolver.resolve(_request("super", "super", "x"), ModuleId.of("my", "main"), file="main.wesl")
	diag = exc.value.diagnostic
	assert diag.code is ErrorCode.PATH_ESCAPES_ROOT
	assert diag.span.file == "main.wesl"
	assert diag.modules == ["my_main"]


def test_super_item_list_names_the_parent_module(tmp_path: Path) -> None:
	_write_file(tmp_path / "a.wesl")
	resolver = _resolver(tmp_path, {"name": "my"})
	request = ImportRequest(path=["super"], items=[], loc=Located(line=1, column=1))
	resolved = resolver.resolve(request, ModuleId.of("my", "a", "b"))
	assert resolved.module_id == ModuleId.of("my", "a")
	assert resolved.path == tmp_path.resolve() / "a.wesl"
	with pytest.raises(PathEscapesRootError):
		resolver.resolve(request, ModuleId.of("my", "main"))


def test_unknown_package(tmp_path: Path) -> None:
	resolver = _resolver(tmp_path, {"name": "my"})
	with pytest.raises(UnknownPackageError) as exc:
		resolver.resolve(_request("nope", "x"), ModuleId.of("my", "main"))
	assert exc.value.diagnostic.code is ErrorCode.UNKNOWN_PACKAGE


def test_missing_file(tmp_path: Path) -> None:
	resolver = _resolver(tmp_path, {"name": "my"})
	with pytest.raises(ModuleFileNotFoundError) as exc:
		resolver.resolve(_request("my", "ghost"), ModuleId.of("my", "main"))
	diag = exc.value.diagnostic
	assert diag.code is ErrorCode.FILE_NOT_FOUND
	assert len(diag.notes) == 2
	assert "my_ghost" in diag.modules


def test_path_dependency_uses_its_own_manifest_name(tmp_path: Path) -> None:
	app = tmp_path / "app"
	lib = tmp_path / "lib"
	_write_file(lib / "wesl.json", json.dumps({"name": "mathlib"}))
	_write_file(lib / "vec.wesl")
	resolver = _resolver(app, {"name": "app", "dependencies": {"m": "../lib"}})

	resolved = resolver.resolve(_request("m", "vec"), ModuleId.of("app", "main"))
	assert resolved.module_id == ModuleId.of("mathlib", "vec")
	assert "mathlib" in resolver.packages

	# Imports inside the dependency resolve against its own package.
	inner = resolver.resolve(_request("package", "vec"), resolved.module_id)
	assert inner.module_id == resolved.module_id


def test_dependency_without_manifest_is_named_by_alias(tmp_path: Path) -> None:
	app = tmp_path / "app"
	_write_file(tmp_path / "shared" / "noise.wesl")
	resolver = _resolver(app, {"name": "app", "dependencies": {"shared": {"path": "../shared"}}})
	resolved = resolver.resolve(_request("shared", "noise"), ModuleId.of("app", "main"))
	assert resolved.module_id == ModuleId.of("shared", "noise")


def test_dependency_directory_missing(tmp_path: Path) -> None:
	resolver = _resolver(tmp_path / "app", {"name": "app", "dependencies": {"gone": "../gone"}})
	with pytest.raises(ModuleFileNotFoundError):
		resolver.resolve(_request("gone", "x"), ModuleId.of("app", "main"))


def test_package_reference_found_on_search_path(tmp_path: Path) -> None:
	store = tmp_path / "store"
	_write_file(store / "wesl_noise" / "wesl.json", json.dumps({"name": "noise"}))
	_write_file(store / "wesl_noise" / "perlin.wesl")
	resolver = _resolver(
		tmp_path / "app",
		{"name": "app", "dependencies": {"n": {"package": "wesl-noise"}}},
		locator=SearchPathLocator(roots=[store]),
	)
	resolved = resolver.resolve(_request("n", "perlin"), ModuleId.of("app", "main"))
	assert resolved.module_id == ModuleId.of("noise", "perlin")


class _RecordingLocator:
	def __init__(self, answer: Optional[Path]) -> None:
		self.answer = answer
		self.calls: List[tuple] = []

	def locate(self, package: str, version: Optional[str]) -> Optional[Path]:
		self.calls.append((package, version))
		return self.answer


def test_custom_locator_is_consulted_once(tmp_path: Path) -> None:
	pkg = tmp_path / "elsewhere"
	_write_file(pkg / "a.wesl")
	_write_file(pkg / "b.wesl")
	locator = _RecordingLocator(pkg)
	resolver = _resolver(
		tmp_path / "app",
		{"name": "app", "dependencies": {"ext": {"package": "ext-pkg", "version": "2"}}},
		locator=locator,
	)
	main = ModuleId.of("app", "main")
	resolver.resolve(_request("ext", "a"), main)
	resolver.resolve(_request("ext", "b"), main)
	assert locator.calls == [("ext-pkg", "2")]


def test_two_packages_with_the_same_name(tmp_path: Path) -> None:
	_write_file(tmp_path / "one" / "wesl.json", json.dumps({"name": "dup"}))
	_write_file(tmp_path / "one" / "x.wesl")
	_write_file(tmp_path / "two" / "wesl.json", json.dumps({"name": "dup"}))
	_write_file(tmp_path / "two" / "x.wesl")
	resolver = _resolver(tmp_path / "app", {"name": "app", "dependencies": {"a": "../one", "b": "../two"}})
	main = ModuleId.of("app", "main")
	resolver.resolve(_request("a", "x"), main)
	with pytest.raises(ManifestError):
		resolver.resolve(_request("b", "x"), main)


def test_module_id_for_entry_file(tmp_path: Path) -> None:
	_write_file(tmp_path / "shaders" / "main.wesl")
	resolver = _resolver(tmp_path, {"name": "my"})
	assert resolver.module_id_for_file(tmp_path / "shaders" / "main.wesl") == ModuleId.of("my", "shaders", "main")

	_write_file(tmp_path / "bad-name.wesl")
	with pytest.raises(InvalidModuleNameError):
		resolver.module_id_for_file(tmp_path / "bad-name.wesl")


def test_entry_file_outside_source_root(tmp_path: Path) -> None:
	_write_file(tmp_path / "main.wesl")
	resolver = _resolver(tmp_path, {"name": "my", "root": "src"})
	with pytest.raises(PathEscapesRootError):
		resolver.module_id_for_file(tmp_path / "main.wesl")
