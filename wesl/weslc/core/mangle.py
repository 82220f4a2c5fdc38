# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Reversible name mangling for linked declarations.

Rule: inside every module path segment and the local name each literal `_`
is doubled, then the parts are joined with a single `_`:

    mangle(("my", "lighting"), "Light")        == "my_lighting_Light"
    mangle(("my", "light_util"), "max_lights") == "my_light__util_max__lights"

Unmangling scans left to right with one accumulator:
- `__` appends a literal `_` to the current part,
- a lone `_` closes the current part,
- anything else is appended.

The last part is the local name, everything before it is the module path.

Valid domain: non-empty parts that do not start with `_`. A leading
underscore directly after a separator would produce `___`, which the scanner
reads as "literal underscore, then separator", so such inputs are rejected.
"""

from __future__ import annotations

from typing import List, Tuple

from .module_id import ModuleId, escape_segment


class ManglingError(ValueError):
	"""Input outside the domain where mangling is reversible."""


def _check_part(part: str, what: str) -> None:
	if not part:
		raise ManglingError(f"cannot mangle empty {what}")
	if part.startswith("_"):
		raise ManglingError(f"cannot mangle {what} '{part}': leading underscore is ambiguous")


def mangle(module_id: ModuleId, name: str) -> str:
	"""Return the globally unique external name for `name` declared in `module_id`."""
	for seg in module_id.segments:
		_check_part(seg, "module path segment")
	_check_part(name, "local name")
	return f"{module_id}_{escape_segment(name)}"


def unmangle(mangled: str) -> Tuple[ModuleId, str]:
	"""Inverse of `mangle`."""
	parts: List[str] = []
	current: List[str] = []
	i = 0
	n = len(mangled)
	while i < n:
		ch = mangled[i]
		if ch == "_":
			if i + 1 < n and mangled[i + 1] == "_":
				current.append("_")
				i += 2
				continue
			parts.append("".join(current))
			current = []
			i += 1
			continue
		current.append(ch)
		i += 1
	parts.append("".join(current))
	if len(parts) < 2 or any(not p for p in parts):
		raise ManglingError(f"'{mangled}' is not a mangled name")
	return ModuleId(tuple(parts[:-1])), parts[-1]


__all__ = ["ManglingError", "mangle", "unmangle"]
