# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Canonical module identifiers.

A module id is the path of a source file relative to its package's source
root, prefixed by the package's canonical name:

    <pkg>/lighting/lights.wesl  ->  ("pkg", "lighting", "lights")

Two files denote the same module iff their ids are equal, regardless of the
import path (`super::...`, `package::...`, a dependency alias) used to reach
them. The rendered form (`str(mid)`) applies per-segment underscore escaping
and is the prefix used for every mangled name in the module.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple


def escape_segment(segment: str) -> str:
	"""Double every literal underscore in one path segment or local name."""
	return segment.replace("_", "__")


@dataclass(frozen=True, order=True)
class ModuleId:
	segments: Tuple[str, ...]

	def __post_init__(self) -> None:
		if not self.segments:
			raise ValueError("module id must have at least one segment (the package name)")

	@classmethod
	def of(cls, *segments: str) -> "ModuleId":
		return cls(tuple(segments))

	@classmethod
	def from_parts(cls, segments: Iterable[str]) -> "ModuleId":
		return cls(tuple(segments))

	@property
	def package(self) -> str:
		return self.segments[0]

	@property
	def name(self) -> str:
		"""Last segment (the file stem, or the package name for a root module)."""
		return self.segments[-1]

	@property
	def path(self) -> Tuple[str, ...]:
		"""Segments below the package root."""
		return self.segments[1:]

	def parent(self) -> "ModuleId | None":
		if len(self.segments) <= 1:
			return None
		return ModuleId(self.segments[:-1])

	def child(self, *segments: str) -> "ModuleId":
		return ModuleId(self.segments + tuple(segments))

	def display(self) -> str:
		"""Human form used in messages, e.g. `my::lighting`."""
		return "::".join(self.segments)

	def __str__(self) -> str:
		return "_".join(escape_segment(s) for s in self.segments)


__all__ = ["ModuleId", "escape_segment"]
