# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Import path resolution.

Turns an ImportRequest (as written in the requesting module) into the
canonical ModuleId of its target plus the file that holds it.

Roots:
- `super` (repeatable): each marker walks one module level up from the
  requester (`super::x` in `pkg::a::b` is `pkg::a::x`);
- `package` or the package's own manifest name: the requester's package;
- any other leading segment: a dependency alias from the requester's
  package manifest.

Dependency packages are registered lazily the first time one of their
modules is requested. A dependency's canonical name (the first ModuleId
segment) is the `name` from its own manifest when it has one, so the same
package reached through different aliases is still one set of modules.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from wesl.weslc.core.diagnostics import LinkError
from wesl.weslc.core.error_codes import ErrorCode
from wesl.weslc.core.module_id import ModuleId
from wesl.weslc.core.span import Span
from wesl.weslc.parser import PACKAGE, SUPER
from wesl.weslc.parser.ast import ImportRequest

from .manifest_v0 import (
	MANIFEST_FILENAME,
	DependencySpec,
	ManifestError,
	PackageManifest,
	implicit_manifest,
	load_manifest,
)

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS: Tuple[str, ...] = (".wesl", ".wgsl")


class UnknownPackageError(LinkError):
	code = ErrorCode.UNKNOWN_PACKAGE


class PathEscapesRootError(LinkError):
	code = ErrorCode.PATH_ESCAPES_ROOT


class ModuleFileNotFoundError(LinkError):
	code = ErrorCode.FILE_NOT_FOUND


class InvalidModuleNameError(LinkError):
	code = ErrorCode.INVALID_IDENTIFIER


# Every module id segment ends up inside mangled identifiers.
_SEGMENT_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


def _check_segments(module_id: ModuleId, *, span: Span, modules: List[str]) -> None:
	for seg in module_id.segments:
		if not _SEGMENT_RE.match(seg):
			raise InvalidModuleNameError(
				f"module path segment '{seg}' of '{module_id.display()}' is not a linkable identifier",
				span=span,
				notes=["segments must start with a letter and contain only letters, digits and '_'"],
				modules=modules,
			)


class PackageLocator(Protocol):
	"""Maps a native-ecosystem package reference to a directory."""

	def locate(self, package: str, version: Optional[str]) -> Optional[Path]:
		...


@dataclass
class SearchPathLocator:
	"""
	Default locator: look for `<root>/<package>` under each configured root,
	in order. Package names with dashes also match the underscored spelling.
	"""

	roots: List[Path]

	def locate(self, package: str, version: Optional[str]) -> Optional[Path]:
		names = [package]
		if "-" in package:
			names.append(package.replace("-", "_"))
		for root in self.roots:
			for name in names:
				candidate = root / name
				if candidate.is_dir():
					return candidate
		return None


@dataclass(frozen=True)
class PackageRoot:
	"""A registered package: canonical name, source root and its manifest."""

	name: str
	location: Path
	manifest: PackageManifest

	@property
	def source_root(self) -> Path:
		return self.manifest.source_root


@dataclass(frozen=True)
class ResolvedPath:
	module_id: ModuleId
	path: Path


class PathResolver:
	def __init__(
		self,
		manifest: PackageManifest,
		*,
		locator: Optional[PackageLocator] = None,
		extensions: Sequence[str] = DEFAULT_EXTENSIONS,
	) -> None:
		self.main_package = PackageRoot(name=manifest.name, location=manifest.directory, manifest=manifest)
		self.locator: PackageLocator = locator or SearchPathLocator(roots=[])
		self.extensions = tuple(extensions)
		self._packages: Dict[str, PackageRoot] = {manifest.name: self.main_package}
		self._by_location: Dict[Path, PackageRoot] = {manifest.directory: self.main_package}

	@property
	def packages(self) -> Dict[str, PackageRoot]:
		return dict(self._packages)

	def module_id_for_file(self, path: Path) -> ModuleId:
		"""Module id of a file inside the main package (used for the entry file)."""
		root = self.main_package.source_root
		abs_path = path.resolve()
		try:
			rel = abs_path.relative_to(root)
		except ValueError as err:
			raise PathEscapesRootError(
				f"file '{path}' is outside the package source root '{root}'",
				span=Span(file=str(path)),
			) from err
		parts = list(rel.parent.parts) + [rel.stem]
		module_id = ModuleId.from_parts([self.main_package.name] + parts)
		_check_segments(module_id, span=Span(file=str(path)), modules=[])
		return module_id

	def resolve(self, request: ImportRequest, requester: ModuleId, *, file: Optional[str] = None) -> ResolvedPath:
		span = Span(file=file, line=request.loc.line, column=request.loc.column)
		modules = [str(requester)]
		owner = self._packages[requester.package]
		path = request.path

		if path[0] == SUPER:
			ups = 0
			while ups < len(path) and path[ups] == SUPER:
				ups += 1
			if ups > len(requester.segments) - 1:
				raise PathEscapesRootError(
					f"import '{request.display()}' walks {ups} level(s) up from '{requester.display()}' and leaves package '{owner.name}'",
					span=span,
					modules=modules,
				)
			package = owner
			segments = list(requester.segments[:-ups]) + list(path[ups:])
			if len(segments) < 2:
				raise PathEscapesRootError(
					f"import '{request.display()}' in '{requester.display()}' names the root of package '{owner.name}', which is not a module",
					span=span,
					modules=modules,
				)
		else:
			alias = path[0]
			if alias == PACKAGE or alias == owner.manifest.name:
				package = owner
			else:
				spec = owner.manifest.dependency(alias)
				if spec is None:
					known = sorted([owner.manifest.name] + list(owner.manifest.dependencies.keys()))
					raise UnknownPackageError(
						f"unknown package '{alias}' in import '{request.display()}'",
						span=span,
						notes=[f"known packages: {', '.join(known)}"],
						modules=modules,
					)
				package = self._dependency_root(owner, spec, span=span, modules=modules)
			segments = [package.name] + list(path[1:])

		module_id = ModuleId.from_parts(segments)
		_check_segments(module_id, span=span, modules=modules)
		file_path = self._locate_file(package, module_id, span=span, modules=modules)
		logger.debug("resolved import '%s' in %s -> %s (%s)", request.display(), requester.display(), module_id.display(), file_path)
		return ResolvedPath(module_id=module_id, path=file_path)

	def _locate_file(self, package: PackageRoot, module_id: ModuleId, *, span: Span, modules: List[str]) -> Path:
		rel = module_id.path
		base = package.source_root.joinpath(*rel[:-1]) if len(rel) > 1 else package.source_root
		tried: List[str] = []
		for ext in self.extensions:
			candidate = base / f"{rel[-1]}{ext}"
			if candidate.is_file():
				return candidate
			tried.append(str(candidate))
		raise ModuleFileNotFoundError(
			f"module '{module_id.display()}' not found",
			span=span,
			notes=[f"tried: {t}" for t in tried],
			modules=modules + [str(module_id)],
		)

	def _dependency_root(self, owner: PackageRoot, spec: DependencySpec, *, span: Span, modules: List[str]) -> PackageRoot:
		if spec.path is not None:
			location: Optional[Path] = (owner.manifest.directory / spec.path).resolve()
		else:
			assert spec.package is not None
			found = self.locator.locate(spec.package, spec.version)
			location = found.resolve() if found is not None else None
		if location is None or not location.is_dir():
			what = spec.path if spec.path is not None else f"package '{spec.package}'"
			raise ModuleFileNotFoundError(
				f"dependency '{spec.alias}' of package '{owner.name}' not found ({what})",
				span=span,
				modules=modules,
			)

		cached = self._by_location.get(location)
		if cached is not None:
			return cached

		manifest_file = location / MANIFEST_FILENAME
		if manifest_file.is_file():
			manifest = load_manifest(manifest_file)
		else:
			manifest = implicit_manifest(location, name=spec.alias)
		existing = self._packages.get(manifest.name)
		if existing is not None:
			raise ManifestError(
				f"package name '{manifest.name}' is provided by both '{existing.location}' and '{location}'",
				span=span,
				modules=modules,
			)
		root = PackageRoot(name=manifest.name, location=location, manifest=manifest)
		self._packages[root.name] = root
		self._by_location[location] = root
		logger.info("registered package '%s' at %s", root.name, location)
		return root


__all__ = [
	"DEFAULT_EXTENSIONS",
	"InvalidModuleNameError",
	"ModuleFileNotFoundError",
	"PackageLocator",
	"PackageRoot",
	"PathEscapesRootError",
	"PathResolver",
	"ResolvedPath",
	"SearchPathLocator",
	"UnknownPackageError",
]
