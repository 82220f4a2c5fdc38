# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
wesl package: module linker for WGSL shaders extended with `import`.

Stages:
  parser:   header (imports/directives) + coarse top-level declarations
  packages: manifests and import path resolution
  graph:    module loading, dedup, cycle detection, ordering
  resolve:  visibility/shadow sets and directive reconciliation
  assemble: mangled single-file output
"""

__all__ = ["weslc"]
