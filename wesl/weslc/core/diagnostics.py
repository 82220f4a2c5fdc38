"""
Common diagnostic structure for linker passes.

A diagnostic is a message plus a stable code, the source span of the
*requesting* module, and the canonical module ids involved. Passes that can
only fail fast raise `LinkError`; the driver turns it back into a Diagnostic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .error_codes import ErrorCode, phase_of
from .span import Span


@dataclass
class Diagnostic:
	"""Represents a linker diagnostic (error/warning/note)."""

	message: str
	code: ErrorCode | None = None
	# Optional phase label; derived from `code` when omitted.
	phase: str | None = None
	severity: str = "error"
	span: Span = field(default_factory=Span)  # Source location (Span() denotes unknown).
	notes: list[str] = field(default_factory=list)
	# Rendered canonical module ids involved (requesting module first).
	modules: list[str] = field(default_factory=list)

	def __post_init__(self) -> None:
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()
		if self.phase is None and self.code is not None:
			self.phase = phase_of(self.code)

	def format_human(self) -> str:
		code = f"[{self.code}] " if self.code is not None else ""
		head = f"{self.span.format_short()}: {self.severity}: {code}{self.message}"
		lines = [head]
		for note in self.notes:
			lines.append(f"  note: {note}")
		return "\n".join(lines)

	def to_json(self) -> dict[str, Any]:
		"""Render to a structured JSON-friendly dict."""
		return {
			"phase": self.phase,
			"code": str(self.code) if self.code is not None else None,
			"message": self.message,
			"severity": self.severity,
			"file": self.span.file,
			"line": self.span.line,
			"column": self.span.column,
			"modules": list(self.modules),
			"notes": list(self.notes),
		}


class LinkError(Exception):
	"""
	User-facing linker failure carrying one pinned Diagnostic.

	Not for linker bugs; those surface as ordinary Python exceptions.
	"""

	code: ErrorCode

	def __init__(
		self,
		message: str,
		*,
		span: Span | None = None,
		notes: list[str] | None = None,
		modules: list[str] | None = None,
		code: ErrorCode | None = None,
	) -> None:
		super().__init__(message)
		if code is not None:
			self.code = code
		self.diagnostic = Diagnostic(
			message=message,
			code=self.code,
			span=span or Span(),
			notes=list(notes or []),
			modules=list(modules or []),
		)

	@property
	def message(self) -> str:
		return self.diagnostic.message


def has_errors(diagnostics: list[Diagnostic]) -> bool:
	return any(d.severity == "error" for d in diagnostics)


__all__ = ["Diagnostic", "LinkError", "has_errors"]
