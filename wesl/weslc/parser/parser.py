from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Set, Tuple

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedCharacters, UnexpectedInput

from wesl.weslc.core.diagnostics import LinkError
from wesl.weslc.core.error_codes import ErrorCode
from wesl.weslc.core.module_id import ModuleId
from wesl.weslc.core.span import Span

from .ast import (
    ENTRY_POINT_ATTRIBUTES,
    Declaration,
    DeclKind,
    DiagnosticFilter,
    Directives,
    ImportItem,
    ImportRequest,
    Located,
    Module,
    Reference,
)

logger = logging.getLogger(__name__)

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
    _GRAMMAR_SRC,
    parser="lalr",
    lexer="basic",
    start=["header", "module_body"],
    propagate_positions=True,
    maybe_placeholders=False,
)

# Token types that open a header statement (terminated by `;`).
_HEADER_KEYWORDS = {"IMPORT", "ENABLE", "REQUIRES", "DIAGNOSTIC"}

# Relative root marker: each occurrence walks one level up.
SUPER = "super"
# Root alias for the requesting module's own package.
PACKAGE = "package"

_DIAGNOSTIC_SEVERITIES = {"error", "warning", "info", "off"}

# Attributes whose arguments are enumerants, never module-scope names.
_ENUMERANT_ATTRIBUTES = {"builtin", "interpolate", "diagnostic"}

# WGSL keywords that the lexer reports as NAME.
_BODY_KEYWORDS = {
    "let",
    "return",
    "if",
    "else",
    "loop",
    "for",
    "while",
    "switch",
    "case",
    "default",
    "break",
    "continue",
    "continuing",
    "discard",
    "true",
    "false",
}

_DECL_KINDS = {
    "struct_decl": DeclKind.STRUCT,
    "fn_decl": DeclKind.FUNCTION,
    "alias_decl": DeclKind.TYPE_ALIAS,
    "const_decl": DeclKind.CONST,
    "override_decl": DeclKind.OVERRIDE,
    "var_decl": DeclKind.VAR,
    "const_assert_decl": DeclKind.CONST_ASSERT,
}


class ParseError(LinkError):
    """Syntax error outside the import header (coarse declaration grammar)."""

    code = ErrorCode.MALFORMED_DECLARATION


class MalformedImportError(ParseError):
    code = ErrorCode.MALFORMED_IMPORT


class ImportNotAtTopError(ParseError):
    code = ErrorCode.IMPORT_NOT_AT_TOP


class DuplicateImportAliasError(ParseError):
    code = ErrorCode.DUPLICATE_IMPORT_ALIAS


class MalformedDirectiveError(ParseError):
    code = ErrorCode.MALFORMED_DIRECTIVE


class DuplicateDeclarationError(ParseError):
    code = ErrorCode.DUPLICATE_DECLARATION


class InvalidIdentifierError(ParseError):
    code = ErrorCode.INVALID_IDENTIFIER


@dataclass
class ModuleHeader:
    imports: List[ImportRequest]
    directives: Directives
    # Offset of the first token that is not part of an import or directive.
    body_offset: int


class _Ctx:
    """Per-file parse context: where errors are reported."""

    def __init__(self, source: str, module_id: Optional[ModuleId], file: Optional[str]) -> None:
        self.source = source
        self.module_id = module_id
        self.file = file

    def span(self, loc: Located | Token | None) -> Span:
        if loc is None:
            return Span(file=self.file)
        return Span(file=self.file, line=loc.line, column=loc.column)

    def modules(self) -> List[str]:
        return [str(self.module_id)] if self.module_id is not None else []

    def error(self, cls: type, message: str, loc: Located | Token | None, notes: Optional[List[str]] = None) -> ParseError:
        return cls(message, span=self.span(loc), notes=notes, modules=self.modules())


def parse_header(source: str, *, module_id: Optional[ModuleId] = None, file: Optional[str] = None) -> ModuleHeader:
    """
    Parse the leading import statements and directives of a module.

    Returns the import requests, the directives, and the offset where
    declarations begin. An `import` after that offset is `ImportNotAtTop`.
    """
    ctx = _Ctx(source, module_id, file)
    tokens = _lex(ctx)
    header, _ = _parse_header_tokens(ctx, tokens)
    return header


def parse_module(source: str, *, module_id: ModuleId, path: Optional[Path] = None) -> Module:
    """Parse a whole module: header, then coarse top-level declarations."""
    ctx = _Ctx(source, module_id, str(path) if path is not None else None)
    tokens = _lex(ctx)
    header, body_index = _parse_header_tokens(ctx, tokens)
    body_tokens = tokens[body_index:]
    _reject_late_header_statements(ctx, body_tokens)

    # Blank out the header so the body parse keeps absolute line/column info.
    body_src = re.sub(r"[^\n]", " ", source[: header.body_offset]) + source[header.body_offset :]
    try:
        tree = _PARSER.parse(body_src, start="module_body")
    except UnexpectedInput as err:
        raise ctx.error(ParseError, f"syntax error in declaration: {_describe(err)}", _err_loc(err)) from err

    declarations = _build_declarations(ctx, tree, body_tokens)
    logger.debug(
        "parsed module %s: %d import(s), %d declaration(s)",
        module_id.display(),
        len(header.imports),
        len(declarations),
    )
    return Module(
        module_id=module_id,
        path=path,
        source=source,
        declarations=declarations,
        imports=header.imports,
        directives=header.directives,
        body_offset=header.body_offset,
    )


# ---------------------------------------------------------------- lexing


def _lex(ctx: _Ctx) -> List[Token]:
    tokens: List[Token] = []
    try:
        for tok in _PARSER.lex(ctx.source):
            tokens.append(tok)
    except UnexpectedCharacters as err:
        kind = _open_header_statement(tokens)
        cls = _header_error_class(kind) if kind is not None else ParseError
        raise ctx.error(cls, f"unexpected character {ctx.source[err.pos_in_stream]!r}", _err_loc(err)) from err
    return tokens


def _open_header_statement(tokens: Sequence[Token]) -> Optional[str]:
    """Return the keyword type of a header statement still missing its `;`."""
    for tok in reversed(tokens):
        if tok.type == "SEMI":
            return None
        if tok.type in _HEADER_KEYWORDS:
            return tok.type
    return None


def _header_error_class(kind: str) -> type:
    return MalformedImportError if kind == "IMPORT" else MalformedDirectiveError


# ---------------------------------------------------------------- header


def _parse_header_tokens(ctx: _Ctx, tokens: List[Token]) -> Tuple[ModuleHeader, int]:
    # Statement boundaries: (keyword type, index of first token, index of `;`).
    stmts: List[Tuple[str, int, int]] = []
    i = 0
    while i < len(tokens) and tokens[i].type in _HEADER_KEYWORDS:
        j = i
        while j < len(tokens) and tokens[j].type != "SEMI":
            j += 1
        if j == len(tokens):
            raise ctx.error(
                _header_error_class(tokens[i].type),
                f"unterminated `{tokens[i].value}` statement (missing ';')",
                tokens[i],
            )
        stmts.append((tokens[i].type, i, j))
        i = j + 1
    body_offset = tokens[i].start_pos if i < len(tokens) else len(ctx.source)

    imports: List[ImportRequest] = []
    directives = Directives()
    if stmts:
        try:
            tree = _PARSER.parse(ctx.source[:body_offset], start="header")
        except UnexpectedInput as err:
            offset = _err_offset(err, body_offset)
            kind = stmts[0][0]
            for stmt_kind, first, _last in stmts:
                if tokens[first].start_pos <= offset:
                    kind = stmt_kind
            raise ctx.error(
                _header_error_class(kind),
                f"malformed `{kind.lower()}` statement: {_describe(err)}",
                _err_loc(err) or tokens[0],
            ) from err
        for child in tree.children:
            if not isinstance(child, Tree):
                continue
            kind = _name(child)
            if kind == "import_stmt":
                imports.append(_build_import_stmt(ctx, child))
            elif kind == "enable_directive":
                for tok in _name_tokens(child):
                    directives.extensions.setdefault(tok.value, _loc_from_token(tok))
                directives.text.append(_slice(ctx, child))
            elif kind == "requires_directive":
                for tok in _name_tokens(child):
                    directives.requires.setdefault(tok.value, _loc_from_token(tok))
                directives.text.append(_slice(ctx, child))
            elif kind == "diagnostic_directive":
                filt = _build_diagnostic_filter(ctx, child)
                directives.diagnostics.setdefault(filt, _loc(child))
                directives.text.append(_slice(ctx, child))
    return ModuleHeader(imports=imports, directives=directives, body_offset=body_offset), i


def _build_import_stmt(ctx: _Ctx, tree: Tree) -> ImportRequest:
    """
    Build an ImportRequest.

    Grammar:
      import_stmt: IMPORT NAME (COLONCOLON (NAME | import_items))* SEMI

    The grammar accepts braces anywhere along the path; only a trailing item
    list is meaningful, and `super` may only lead the path.
    """
    loc = _loc(tree)
    path: List[str] = []
    items: Optional[List[ImportItem]] = None
    for child in tree.children:
        if isinstance(child, Token):
            if child.type != "NAME":
                continue
            if items is not None:
                raise ctx.error(MalformedImportError, "an import item list must end the import path", child)
            if child.value == SUPER and any(seg != SUPER for seg in path):
                raise ctx.error(MalformedImportError, "`super` may only appear at the start of an import path", child)
            if child.value == PACKAGE and path:
                raise ctx.error(MalformedImportError, "`package` may only appear at the start of an import path", child)
            path.append(child.value)
        elif isinstance(child, Tree) and _name(child) == "import_items":
            if items is not None:
                raise ctx.error(MalformedImportError, "an import may have only one item list", _loc(child))
            items = _build_import_items(ctx, child)

    root_len = 0
    while root_len < len(path) and path[root_len] == SUPER:
        root_len += 1
    if root_len == 0:
        root_len = 1
    elif items is not None and len(path) == root_len:
        # `super::{S}` imports from the ancestor module itself.
        return ImportRequest(path=path, items=items, loc=loc, origin=ctx.module_id)
    if len(path) <= root_len:
        raise ctx.error(
            MalformedImportError,
            f"import path '{'::'.join(path)}' names no module after its root",
            loc,
        )
    return ImportRequest(path=path, items=items, loc=loc, origin=ctx.module_id)


def _build_import_items(ctx: _Ctx, tree: Tree) -> List[ImportItem]:
    items: List[ImportItem] = []
    seen: dict[str, ImportItem] = {}
    for child in tree.children:
        if not (isinstance(child, Tree) and _name(child) == "import_item"):
            continue
        names = _name_tokens(child)
        item = ImportItem(
            name=names[0].value,
            alias=names[1].value if len(names) > 1 else None,
            loc=_loc(child),
        )
        prev = seen.get(item.local_name)
        if prev is not None:
            raise ctx.error(
                DuplicateImportAliasError,
                f"duplicate import alias '{item.local_name}' in item list",
                item.loc,
                notes=[f"first bound here: {ctx.span(prev.loc).format_short()}"],
            )
        seen[item.local_name] = item
        items.append(item)
    return items


def _build_diagnostic_filter(ctx: _Ctx, tree: Tree) -> DiagnosticFilter:
    severity_tok = _name_tokens(tree)[0]
    if severity_tok.value not in _DIAGNOSTIC_SEVERITIES:
        raise ctx.error(
            MalformedDirectiveError,
            f"unknown diagnostic severity '{severity_tok.value}' (expected one of {', '.join(sorted(_DIAGNOSTIC_SEVERITIES))})",
            severity_tok,
        )
    rule_node = next(c for c in tree.children if isinstance(c, Tree) and _name(c) == "diagnostic_rule")
    parts: List[str] = []
    for tok in rule_node.children:
        if tok.type == "OP":
            if tok.value != ".":
                raise ctx.error(MalformedDirectiveError, f"unexpected '{tok.value}' in diagnostic rule name", tok)
            continue
        parts.append(tok.value)
    return DiagnosticFilter(severity=severity_tok.value, rule=".".join(parts))


def _reject_late_header_statements(ctx: _Ctx, body_tokens: Sequence[Token]) -> None:
    prev: Optional[Token] = None
    for tok in body_tokens:
        if tok.type == "IMPORT":
            raise ctx.error(ImportNotAtTopError, "imports must precede all declarations", tok)
        if tok.type in ("ENABLE", "REQUIRES") or (
            tok.type == "DIAGNOSTIC" and (prev is None or prev.type != "AT")
        ):
            raise ctx.error(MalformedDirectiveError, f"`{tok.value}` directives must precede all declarations", tok)
        prev = tok


# ---------------------------------------------------------------- declarations


def _build_declarations(ctx: _Ctx, tree: Tree, tokens: List[Token]) -> List[Declaration]:
    starts = [t.start_pos for t in tokens]
    decls: List[Declaration] = []
    seen: dict[str, Declaration] = {}
    for child in tree.children:
        if not (isinstance(child, Tree) and _name(child) == "decl"):
            continue
        lo = bisect.bisect_left(starts, child.meta.start_pos)
        hi = bisect.bisect_left(starts, child.meta.end_pos)
        decl = _build_decl(ctx, child, tokens[lo:hi])
        if decl.name is not None:
            prev = seen.get(decl.name)
            if prev is not None:
                raise ctx.error(
                    DuplicateDeclarationError,
                    f"duplicate declaration of '{decl.name}'",
                    decl.loc,
                    notes=[f"previous declaration: {ctx.span(prev.loc).format_short()}"],
                )
            seen[decl.name] = decl
        decls.append(decl)
    return decls


def _build_decl(ctx: _Ctx, tree: Tree, tokens: List[Token]) -> Declaration:
    attributes = [_attribute_name(a) for a in tree.children if isinstance(a, Tree) and _name(a) == "attribute"]
    core = next(c for c in tree.children if isinstance(c, Tree) and _name(c) in _DECL_KINDS)
    kind = _DECL_KINDS[_name(core)]
    if kind is DeclKind.FUNCTION and ENTRY_POINT_ATTRIBUTES.intersection(attributes):
        kind = DeclKind.ENTRY_POINT

    name_index = _decl_name_index(kind, core, tokens)
    name_tok = tokens[name_index] if name_index is not None else None
    if name_tok is not None and name_tok.value.startswith("_"):
        raise ctx.error(
            InvalidIdentifierError,
            f"top-level name '{name_tok.value}' must not start with '_' (it cannot be linked unambiguously)",
            name_tok,
        )
    return Declaration(
        kind=kind,
        name=name_tok.value if name_tok is not None else None,
        start=tree.meta.start_pos,
        end=tree.meta.end_pos,
        loc=_loc(tree),
        name_start=name_tok.start_pos if name_tok is not None else None,
        name_end=name_tok.end_pos if name_tok is not None else None,
        attributes=attributes,
        references=_scan_references(kind, tokens, name_index),
    )


def _attribute_name(tree: Tree) -> str:
    tok = next(c for c in tree.children if isinstance(c, Token) and c.type in ("NAME", "CONST", "DIAGNOSTIC"))
    return tok.value


def _decl_name_index(kind: DeclKind, core: Tree, tokens: List[Token]) -> Optional[int]:
    if kind is DeclKind.CONST_ASSERT:
        return None
    keyword = next(c for c in core.children if isinstance(c, Token))
    i = next(idx for idx, t in enumerate(tokens) if t.start_pos == keyword.start_pos) + 1
    if kind is DeclKind.VAR and i < len(tokens) and tokens[i].value == "<":
        i = _skip_template(tokens, i)
    if i >= len(tokens) or tokens[i].type != "NAME":
        return None
    return i


def _scan_references(kind: DeclKind, tokens: List[Token], name_index: Optional[int]) -> List[Reference]:
    """
    Collect free identifiers of one declaration.

    Binding sites (`name:` members/params, `let`/`var`/`const` locals) are
    not references. Inside functions a local shadows module names from the
    end of its declaration to the end of the enclosing `{ ... }` block; a
    `for (...)` header belongs to the loop body's block. Member accesses
    (`.name`) and enumerant attribute arguments are skipped. `a::b` is one
    qualified reference.
    """
    refs: List[Reference] = []
    scoped = kind in (DeclKind.FUNCTION, DeclKind.ENTRY_POINT)
    # scopes[0] holds parameters; one more per open brace.
    scopes: List[Set[str]] = [set()]
    pending_local: Optional[str] = None
    for_header = False
    in_case = False
    n = len(tokens)
    i = 0
    while i < n:
        tok = tokens[i]
        ttype = tok.type
        if ttype == "AT":
            if i + 1 < n and tokens[i + 1].type in ("NAME", "CONST", "DIAGNOSTIC"):
                attr = tokens[i + 1].value
                i += 2
                if attr in _ENUMERANT_ATTRIBUTES and i < n and tokens[i].type == "LPAR":
                    i = _skip_group(tokens, i)
                continue
            i += 1
            continue
        if ttype in ("VAR", "CONST") or (ttype == "NAME" and tok.value == "let"):
            i += 1
            if ttype == "VAR" and i < n and tokens[i].value == "<":
                i = _skip_template(tokens, i)
            if i < n and tokens[i].type == "NAME" and i != name_index:
                if scoped:
                    pending_local = tokens[i].value
                i += 1
            continue
        if ttype == "SEMI":
            if pending_local is not None:
                scopes[-1].add(pending_local)
                pending_local = None
            i += 1
            continue
        if ttype == "LBRACE":
            in_case = False
            if for_header:
                for_header = False
            else:
                scopes.append(set())
            i += 1
            continue
        if ttype == "RBRACE":
            if len(scopes) > 1:
                scopes.pop()
            i += 1
            continue
        if ttype == "NAME":
            if tok.value == "case":
                in_case = True
                i += 1
                continue
            if tok.value == "for" and scoped:
                scopes.append(set())
                for_header = True
                i += 1
                continue
            if i == name_index or tok.value in _BODY_KEYWORDS:
                i += 1
                continue
            if i > 0 and tokens[i - 1].type == "OP" and tokens[i - 1].value == ".":
                i += 1
                continue
            j = i
            path = [tok.value]
            while j + 2 < n and tokens[j + 1].type == "COLONCOLON" and tokens[j + 2].type == "NAME":
                path.append(tokens[j + 2].value)
                j += 2
            if len(path) == 1:
                nxt = tokens[j + 1] if j + 1 < n else None
                if nxt is not None and nxt.type == "OP" and nxt.value == ":" and not in_case:
                    if scoped:
                        scopes[-1].add(tok.value)
                    i = j + 1
                    continue
                if any(tok.value in scope for scope in scopes):
                    i = j + 1
                    continue
            refs.append(
                Reference(
                    path=tuple(path),
                    start=tok.start_pos,
                    end=tokens[j].end_pos,
                    loc=_loc_from_token(tok),
                )
            )
            i = j + 1
            continue
        if ttype == "OP" and tok.value == ":":
            in_case = False
        i += 1
    return refs


def _skip_group(tokens: Sequence[Token], i: int) -> int:
    """`tokens[i]` is `(`; return the index just past its matching `)`."""
    depth = 0
    while i < len(tokens):
        if tokens[i].type == "LPAR":
            depth += 1
        elif tokens[i].type == "RPAR":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return i


def _skip_template(tokens: Sequence[Token], i: int) -> int:
    """`tokens[i]` is `<`; return the index just past its matching `>`."""
    depth = 0
    while i < len(tokens):
        if tokens[i].value == "<":
            depth += 1
        elif tokens[i].value == ">":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return i


# ---------------------------------------------------------------- helpers


def _name_tokens(tree: Tree) -> List[Token]:
    return [c for c in tree.children if isinstance(c, Token) and c.type == "NAME"]


def _slice(ctx: _Ctx, tree: Tree) -> str:
    return ctx.source[tree.meta.start_pos : tree.meta.end_pos]


def _describe(err: UnexpectedInput) -> str:
    tok = getattr(err, "token", None)
    if tok is not None:
        if tok.type == "$END":
            return "unexpected end of input"
        return f"unexpected {tok.value!r}"
    return err.__class__.__name__


def _err_offset(err: UnexpectedInput, default: int) -> int:
    tok = getattr(err, "token", None)
    if tok is not None and getattr(tok, "start_pos", None) is not None:
        return tok.start_pos
    pos = getattr(err, "pos_in_stream", None)
    return pos if pos is not None else default


def _err_loc(err: UnexpectedInput) -> Optional[Located]:
    line = getattr(err, "line", None)
    column = getattr(err, "column", None)
    if not isinstance(line, int) or line < 1:
        return None
    return Located(line=line, column=column if isinstance(column, int) else 1)


def _loc(tree: Tree) -> Located:
    meta = tree.meta
    return Located(line=meta.line, column=meta.column)


def _loc_from_token(token: Token) -> Located:
    return Located(line=token.line, column=token.column)


def _name(node: Tree | Token) -> str:
    if isinstance(node, Tree):
        data = node.data
        if isinstance(data, Token):
            return data.value
        return data
    if isinstance(node, Token):
        return node.type
    return str(node)
