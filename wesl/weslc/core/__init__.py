"""
wesl.weslc.core: shared core types used across linker stages.

Modules:
  - span: source locations for diagnostics
  - diagnostics: Diagnostic record + LinkError
  - error_codes: stable diagnostic codes
  - module_id: canonical module identifiers
  - mangle: reversible name mangling
"""

__all__ = [
    "span",
    "diagnostics",
    "error_codes",
    "module_id",
    "mangle",
]
