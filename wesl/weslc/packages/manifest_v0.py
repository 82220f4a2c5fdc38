# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
WESL package manifest (v0).

The manifest is a small JSON object next to the package sources:

    {
      "name": "my",
      "root": ".",
      "dependencies": {
        "util": {"path": "../util"},
        "noise": {"package": "wesl-noise", "version": "1.2"},
        "short": "../short"
      }
    }

- `name`: the package alias used as the first segment of every module id.
- `root`: source directory relative to the manifest (default `.`).
- `dependencies`: alias -> explicit path (string or `{"path": ...}`) or a
  native-ecosystem reference (`{"package": ..., "version": ...}`).

Loaded once per package, immutable afterwards.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

from wesl.weslc.core.diagnostics import LinkError
from wesl.weslc.core.error_codes import ErrorCode
from wesl.weslc.core.span import Span

MANIFEST_FILENAME = "wesl.json"

# Name of the implicit package when no manifest is found.
IMPLICIT_PACKAGE_NAME = "package"

_IDENT_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_RESERVED_NAMES = {"super", "package"}


class ManifestError(LinkError):
	code = ErrorCode.INVALID_MANIFEST


@dataclass(frozen=True)
class DependencySpec:
	alias: str
	path: Optional[str] = None
	package: Optional[str] = None
	version: Optional[str] = None

	@property
	def is_path(self) -> bool:
		return self.path is not None


@dataclass(frozen=True)
class PackageManifest:
	name: str
	directory: Path
	root: str = "."
	dependencies: Mapping[str, DependencySpec] = field(default_factory=lambda: MappingProxyType({}))
	manifest_path: Optional[Path] = None

	@property
	def source_root(self) -> Path:
		return (self.directory / self.root).resolve()

	def dependency(self, alias: str) -> Optional[DependencySpec]:
		return self.dependencies.get(alias)


def _check_ident(value: Any, what: str, *, span: Span, allow_reserved: bool = False) -> str:
	if not isinstance(value, str) or not _IDENT_RE.match(value):
		raise ManifestError(
			f"manifest {what} {value!r} must be an identifier starting with a letter",
			span=span,
		)
	if not allow_reserved and value in _RESERVED_NAMES:
		raise ManifestError(f"manifest {what} '{value}' is reserved", span=span)
	return value


def _parse_dependency(alias: str, raw: Any, *, span: Span) -> DependencySpec:
	if isinstance(raw, str):
		return DependencySpec(alias=alias, path=raw)
	if not isinstance(raw, dict):
		raise ManifestError(f"dependency '{alias}' must be a path string or an object", span=span)
	unknown = sorted(set(raw.keys()) - {"path", "package", "version"})
	if unknown:
		raise ManifestError(f"dependency '{alias}' has unknown fields: {', '.join(unknown)}", span=span)
	path = raw.get("path")
	package = raw.get("package")
	if (path is None) == (package is None):
		raise ManifestError(f"dependency '{alias}' must set exactly one of 'path' or 'package'", span=span)
	for key in ("path", "package", "version"):
		val = raw.get(key)
		if val is not None and not isinstance(val, str):
			raise ManifestError(f"dependency '{alias}' field '{key}' must be a string", span=span)
	return DependencySpec(alias=alias, path=path, package=package, version=raw.get("version"))


def parse_manifest(data: Any, *, directory: Path, manifest_path: Optional[Path] = None) -> PackageManifest:
	"""Validate a decoded manifest object."""
	span = Span(file=str(manifest_path) if manifest_path is not None else None)
	if not isinstance(data, dict):
		raise ManifestError("manifest must be a JSON object", span=span)
	allowed_top = {"name", "root", "dependencies"}
	unknown_top = sorted(set(data.keys()) - allowed_top)
	if unknown_top:
		raise ManifestError(f"manifest has unknown top-level fields: {', '.join(unknown_top)}", span=span)
	name = _check_ident(data.get("name"), "name", span=span)
	root = data.get("root", ".")
	if not isinstance(root, str) or not root:
		raise ManifestError("manifest 'root' must be a non-empty string", span=span)
	raw_deps = data.get("dependencies", {})
	if not isinstance(raw_deps, dict):
		raise ManifestError("manifest 'dependencies' must be an object", span=span)
	deps: dict[str, DependencySpec] = {}
	for alias, raw in raw_deps.items():
		_check_ident(alias, "dependency alias", span=span)
		if alias == name:
			raise ManifestError(f"dependency alias '{alias}' shadows the package's own name", span=span)
		deps[alias] = _parse_dependency(alias, raw, span=span)
	return PackageManifest(
		name=name,
		directory=directory,
		root=root,
		dependencies=MappingProxyType(deps),
		manifest_path=manifest_path,
	)


def load_manifest(path: Path) -> PackageManifest:
	"""Load and validate `wesl.json` at `path`."""
	try:
		text = path.read_text(encoding="utf-8")
	except UnicodeDecodeError as err:
		raise ManifestError(f"manifest is not valid UTF-8 (byte {err.start})", span=Span(file=str(path))) from err
	except OSError as err:
		raise ManifestError(f"cannot read manifest: {err.strerror or err}", span=Span(file=str(path))) from err
	try:
		data = json.loads(text)
	except json.JSONDecodeError as err:
		raise ManifestError(
			f"manifest is not valid JSON: {err.msg}",
			span=Span(file=str(path), line=err.lineno, column=err.colno),
		) from err
	return parse_manifest(data, directory=path.parent.resolve(), manifest_path=path)


def find_manifest(start: Path) -> Optional[Path]:
	"""Walk up from `start` (a directory) to the nearest `wesl.json`."""
	cur = start.resolve()
	while True:
		candidate = cur / MANIFEST_FILENAME
		if candidate.is_file():
			return candidate
		if cur.parent == cur:
			return None
		cur = cur.parent


def implicit_manifest(directory: Path, *, name: str = IMPLICIT_PACKAGE_NAME) -> PackageManifest:
	"""Manifest for a package directory that ships no `wesl.json`."""
	return PackageManifest(name=name, directory=directory.resolve())


__all__ = [
	"DependencySpec",
	"IMPLICIT_PACKAGE_NAME",
	"MANIFEST_FILENAME",
	"ManifestError",
	"PackageManifest",
	"find_manifest",
	"implicit_manifest",
	"load_manifest",
	"parse_manifest",
]
