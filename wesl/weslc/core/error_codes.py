# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Stable diagnostic codes for the linker.

Codes are part of the tooling contract (language servers match on them), so
values never change once published. Each code belongs to exactly one phase.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
	# parser
	MALFORMED_IMPORT = "MalformedImport"
	IMPORT_NOT_AT_TOP = "ImportNotAtTop"
	DUPLICATE_IMPORT_ALIAS = "DuplicateImportAlias"
	MALFORMED_DIRECTIVE = "MalformedDirective"
	MALFORMED_DECLARATION = "MalformedDeclaration"
	DUPLICATE_DECLARATION = "DuplicateDeclaration"
	INVALID_IDENTIFIER = "InvalidIdentifier"
	# path resolution
	UNKNOWN_PACKAGE = "UnknownPackage"
	PATH_ESCAPES_ROOT = "PathEscapesRoot"
	FILE_NOT_FOUND = "FileNotFound"
	INVALID_MANIFEST = "InvalidManifest"
	# graph
	CYCLIC_IMPORT = "CyclicImport"
	# identifier resolution
	UNKNOWN_IMPORTED_ITEM = "UnknownImportedItem"
	REFERENCE_TO_UNIMPORTED_DEPENDENCY = "ReferenceToUnimportedDependency"
	EXTENSION_MISMATCH = "ExtensionMismatch"
	DIAGNOSTIC_MISMATCH = "DiagnosticMismatch"
	IMPORTED_VAR = "ImportedVar"

	def __str__(self) -> str:
		return self.value


PHASE_BY_CODE: dict[ErrorCode, str] = {
	ErrorCode.MALFORMED_IMPORT: "parser",
	ErrorCode.IMPORT_NOT_AT_TOP: "parser",
	ErrorCode.DUPLICATE_IMPORT_ALIAS: "parser",
	ErrorCode.MALFORMED_DIRECTIVE: "parser",
	ErrorCode.MALFORMED_DECLARATION: "parser",
	ErrorCode.DUPLICATE_DECLARATION: "parser",
	ErrorCode.INVALID_IDENTIFIER: "parser",
	ErrorCode.UNKNOWN_PACKAGE: "resolve-path",
	ErrorCode.PATH_ESCAPES_ROOT: "resolve-path",
	ErrorCode.FILE_NOT_FOUND: "resolve-path",
	ErrorCode.INVALID_MANIFEST: "resolve-path",
	ErrorCode.CYCLIC_IMPORT: "graph",
	ErrorCode.UNKNOWN_IMPORTED_ITEM: "resolve",
	ErrorCode.REFERENCE_TO_UNIMPORTED_DEPENDENCY: "resolve",
	ErrorCode.EXTENSION_MISMATCH: "resolve",
	ErrorCode.DIAGNOSTIC_MISMATCH: "resolve",
	ErrorCode.IMPORTED_VAR: "resolve",
}


def phase_of(code: ErrorCode) -> str:
	"""Return the pipeline phase that emits `code`."""
	return PHASE_BY_CODE[code]


__all__ = ["ErrorCode", "PHASE_BY_CODE", "phase_of"]
