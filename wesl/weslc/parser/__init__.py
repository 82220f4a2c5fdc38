"""
WESL source parser.

`parse_header` reads the import statements and directives at the top of a
file; `parse_module` additionally splits the rest of the file into top-level
declarations with precomputed references. `load_module_file` is the loader
the module graph builder uses.
"""

from __future__ import annotations

from pathlib import Path

from wesl.weslc.core.diagnostics import LinkError
from wesl.weslc.core.error_codes import ErrorCode
from wesl.weslc.core.module_id import ModuleId
from wesl.weslc.core.span import Span

from . import ast as parser_ast
from .parser import (
    PACKAGE,
    SUPER,
    DuplicateDeclarationError,
    DuplicateImportAliasError,
    ImportNotAtTopError,
    InvalidIdentifierError,
    MalformedDirectiveError,
    MalformedImportError,
    ModuleHeader,
    ParseError,
    parse_header,
    parse_module,
)


def load_module_file(path: Path, module_id: ModuleId) -> parser_ast.Module:
    """Read and parse one source file as `module_id`."""
    try:
        source = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as err:
        raise ParseError(
            f"source file is not valid UTF-8 (byte {err.start})",
            span=Span(file=str(path)),
            modules=[str(module_id)],
        ) from err
    except OSError as err:
        raise LinkError(
            f"cannot read source file: {err.strerror or err}",
            code=ErrorCode.FILE_NOT_FOUND,
            span=Span(file=str(path)),
            modules=[str(module_id)],
        ) from err
    return parse_module(source, module_id=module_id, path=path)


__all__ = [
    "PACKAGE",
    "SUPER",
    "DuplicateDeclarationError",
    "DuplicateImportAliasError",
    "ImportNotAtTopError",
    "InvalidIdentifierError",
    "MalformedDirectiveError",
    "MalformedImportError",
    "ModuleHeader",
    "ParseError",
    "load_module_file",
    "parse_header",
    "parse_module",
    "parser_ast",
]
