# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
weslc driver: link a main WESL file and its imports into one WGSL unit.

Pipeline: manifest -> module graph (parse + path resolution) -> identifier
resolution -> directive check -> assembly. Every phase either succeeds or
leaves diagnostics; the first phase with an error stops the run and no
output is produced.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from wesl.weslc.assemble import assemble
from wesl.weslc.core.diagnostics import Diagnostic, LinkError, has_errors
from wesl.weslc.core.error_codes import ErrorCode
from wesl.weslc.core.mangle import ManglingError, unmangle
from wesl.weslc.core.module_id import ModuleId
from wesl.weslc.core.span import Span
from wesl.weslc.graph import ModuleGraphBuilder
from wesl.weslc.packages.manifest_v0 import PackageManifest, find_manifest, implicit_manifest, load_manifest
from wesl.weslc.packages.resolver import DEFAULT_EXTENSIONS, PackageLocator, PathResolver, SearchPathLocator
from wesl.weslc.resolve import check_directives, resolve_identifiers

logger = logging.getLogger(__name__)


@dataclass
class LinkOptions:
	jobs: int = 1
	eliminate_dead_code: bool = False
	# Roots searched for native package references (`{"package": ...}` deps).
	package_paths: List[Path] = field(default_factory=list)
	# Explicit manifest; default is the nearest `wesl.json` above the main file.
	manifest_path: Optional[Path] = None
	extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
	locator: Optional[PackageLocator] = None


@dataclass
class LinkResult:
	output: Optional[str]
	diagnostics: List[Diagnostic]
	module_order: List[ModuleId] = field(default_factory=list)

	@property
	def ok(self) -> bool:
		return self.output is not None and not has_errors(self.diagnostics)


def _root_manifest(main_path: Path, options: LinkOptions) -> PackageManifest:
	if options.manifest_path is not None:
		return load_manifest(options.manifest_path)
	found = find_manifest(main_path.parent)
	if found is not None:
		return load_manifest(found)
	logger.debug("no manifest above %s; using implicit package", main_path)
	return implicit_manifest(main_path.parent)


def link_shader(main_path: Path, options: Optional[LinkOptions] = None) -> LinkResult:
	"""Run the whole pipeline for one main module."""
	options = options or LinkOptions()
	main_path = Path(main_path)
	if not main_path.is_file():
		diag = Diagnostic(
			message=f"main module '{main_path}' not found",
			code=ErrorCode.FILE_NOT_FOUND,
			span=Span(file=str(main_path)),
		)
		return LinkResult(output=None, diagnostics=[diag])

	try:
		manifest = _root_manifest(main_path, options)
		locator = options.locator or SearchPathLocator(roots=list(options.package_paths))
		resolver = PathResolver(manifest, locator=locator, extensions=options.extensions)
		graph = ModuleGraphBuilder(resolver, jobs=options.jobs).build(main_path)
	except LinkError as err:
		return LinkResult(output=None, diagnostics=[err.diagnostic])

	order = list(graph.order)
	resolution = resolve_identifiers(graph)
	diagnostics = list(resolution.diagnostics)
	if has_errors(diagnostics):
		return LinkResult(output=None, diagnostics=diagnostics, module_order=order)

	diagnostics.extend(check_directives(graph))
	if has_errors(diagnostics):
		return LinkResult(output=None, diagnostics=diagnostics, module_order=order)

	output = assemble(graph, resolution.modules, eliminate_dead_code=options.eliminate_dead_code)
	return LinkResult(output=output, diagnostics=diagnostics, module_order=order)


def unmangle_name(mangled: str) -> Tuple[ModuleId, str]:
	"""Decode a linked name back to (module id, local name)."""
	return unmangle(mangled)


def _diag_to_json(diag: Diagnostic, source: Optional[Path]) -> dict:
	"""Render a Diagnostic to a structured JSON-friendly dict."""
	payload = diag.to_json()
	if payload["file"] is None and source is not None:
		payload["file"] = str(source)
	return payload


def main(argv: Optional[Sequence[str]] = None) -> int:
	"""
	Link MAIN and write the flattened WGSL to stdout (or -o).

	With --json, prints `{"exit_code", "diagnostics": [...]}` (plus `output`
	when no -o was given); otherwise diagnostics go to stderr.
	"""
	parser = argparse.ArgumentParser(prog="weslc", description="Link WESL modules into a single WGSL file")
	parser.add_argument("main", type=Path, nargs="?", help="Path to the main .wesl/.wgsl file")
	parser.add_argument("-o", "--output", type=Path, help="Write linked WGSL to this path")
	parser.add_argument("--manifest", type=Path, help="Package manifest (default: nearest wesl.json above MAIN)")
	parser.add_argument(
		"--package-path",
		dest="package_paths",
		action="append",
		type=Path,
		default=[],
		help="Directory searched for package dependencies (repeatable)",
	)
	parser.add_argument("--dce", action="store_true", help="Drop declarations unreachable from entry points")
	parser.add_argument("-j", "--jobs", type=int, default=1, help="Parallel module loads (default: 1)")
	parser.add_argument(
		"--json",
		action="store_true",
		help="Emit diagnostics as JSON (phase/code/message/severity/file/line/column)",
	)
	parser.add_argument("-v", "--verbose", action="count", default=0, help="Log pipeline progress to stderr")
	parser.add_argument("--unmangle", metavar="NAME", help="Print the module path and local name of a linked name")
	args = parser.parse_args(argv)

	if args.verbose:
		logging.basicConfig(
			level=logging.DEBUG if args.verbose > 1 else logging.INFO,
			format="%(levelname)s %(name)s: %(message)s",
		)

	if args.unmangle is not None:
		try:
			module_id, name = unmangle_name(args.unmangle)
		except ManglingError as err:
			print(f"error: {err}", file=sys.stderr)
			return 1
		print(f"{module_id.display()}::{name}")
		return 0

	if args.main is None:
		parser.error("MAIN is required unless --unmangle is given")
	if args.jobs < 1:
		parser.error("--jobs must be >= 1")

	options = LinkOptions(
		jobs=args.jobs,
		eliminate_dead_code=args.dce,
		package_paths=list(args.package_paths),
		manifest_path=args.manifest,
	)
	result = link_shader(args.main, options)
	exit_code = 0 if result.ok else 1

	if result.ok and args.output is not None:
		args.output.write_text(result.output, encoding="utf-8")

	if args.json:
		payload = {
			"exit_code": exit_code,
			"diagnostics": [_diag_to_json(d, args.main) for d in result.diagnostics],
		}
		if result.ok and args.output is None:
			payload["output"] = result.output
		print(json.dumps(payload))
		return exit_code

	for diag in result.diagnostics:
		print(diag.format_human(), file=sys.stderr)
	if result.ok and args.output is None:
		sys.stdout.write(result.output)
	return exit_code


if __name__ == "__main__":  # pragma: no cover
	sys.exit(main())
