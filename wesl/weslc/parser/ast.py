from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from wesl.weslc.core.module_id import ModuleId


@dataclass(frozen=True)
class Located:
    line: int
    column: int


class DeclKind(str, Enum):
    STRUCT = "struct"
    FUNCTION = "fn"
    TYPE_ALIAS = "alias"
    CONST = "const"
    OVERRIDE = "override"
    VAR = "var"
    ENTRY_POINT = "entry_point"
    CONST_ASSERT = "const_assert"


# Declarations user code may name in an import item list.
IMPORTABLE_KINDS = frozenset(
    {DeclKind.STRUCT, DeclKind.FUNCTION, DeclKind.TYPE_ALIAS, DeclKind.CONST, DeclKind.VAR}
)
# Never imported, but renamed and kept verbatim in the output.
PRESERVED_KINDS = frozenset({DeclKind.ENTRY_POINT, DeclKind.OVERRIDE})

ENTRY_POINT_ATTRIBUTES = frozenset({"vertex", "fragment", "compute"})


@dataclass(frozen=True)
class ImportItem:
    name: str
    alias: Optional[str]
    loc: Located

    @property
    def local_name(self) -> str:
        return self.alias or self.name


@dataclass
class ImportRequest:
    """
    One `import` statement.

    `path` holds the raw segments as written, including leading `super`
    markers or the package alias. `items is None` means the whole module was
    requested and is bound to `path[-1]` as a namespace.
    """

    path: List[str]
    items: Optional[List[ImportItem]]
    loc: Located
    origin: Optional[ModuleId] = None

    @property
    def whole_module(self) -> bool:
        return self.items is None

    @property
    def namespace(self) -> str:
        return self.path[-1]

    def display(self) -> str:
        text = "::".join(self.path)
        if self.items is not None:
            inner = ", ".join(
                f"{it.name} as {it.alias}" if it.alias else it.name for it in self.items
            )
            text += "::{" + inner + "}"
        return text


@dataclass(frozen=True)
class DiagnosticFilter:
    severity: str
    rule: str


@dataclass
class Directives:
    """
    File-scope WGSL directives. Locations are kept per entry so mismatch
    diagnostics can point at the imported module's declaration.
    """

    extensions: Dict[str, Located] = field(default_factory=dict)
    requires: Dict[str, Located] = field(default_factory=dict)
    diagnostics: Dict[DiagnosticFilter, Located] = field(default_factory=dict)
    # Directive statements in source order, used verbatim in linked output.
    text: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Reference:
    """
    A free identifier inside a declaration: `Light` or `lighting::Light`.

    `start`/`end` are absolute offsets into the module source covering the
    whole (possibly qualified) reference.
    """

    path: Tuple[str, ...]
    start: int
    end: int
    loc: Located

    @property
    def qualified(self) -> bool:
        return len(self.path) > 1

    def display(self) -> str:
        return "::".join(self.path)


@dataclass
class Declaration:
    kind: DeclKind
    name: Optional[str]
    start: int
    end: int
    loc: Located
    # Offsets of the declaration's own name token (None for const_assert).
    name_start: Optional[int] = None
    name_end: Optional[int] = None
    attributes: List[str] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)

    @property
    def importable(self) -> bool:
        return self.kind in IMPORTABLE_KINDS

    @property
    def preserved(self) -> bool:
        return self.kind in PRESERVED_KINDS


@dataclass
class Module:
    module_id: ModuleId
    path: Optional[Path]
    source: str
    declarations: List[Declaration]
    imports: List[ImportRequest]
    directives: Directives
    body_offset: int = 0

    def __post_init__(self) -> None:
        self._by_name: Dict[str, Declaration] = {
            d.name: d for d in self.declarations if d.name is not None
        }

    @property
    def file(self) -> Optional[str]:
        return str(self.path) if self.path is not None else None

    def lookup(self, name: str) -> Optional[Declaration]:
        return self._by_name.get(name)

    def names(self) -> List[str]:
        return [d.name for d in self.declarations if d.name is not None]
