# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Package manifests and import path resolution.

Pinned model:
- a package is a directory with an optional `wesl.json` manifest;
- the manifest maps dependency aliases to a filesystem path or to a
  package reference that a `PackageLocator` turns into a directory;
- the linker never performs network I/O and never scans directories.
"""

from __future__ import annotations

__all__ = [
	"manifest_v0",
	"resolver",
]
