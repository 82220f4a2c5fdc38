# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
wesl linker package (`weslc`).

Linker modules live under this package. The CLI entrypoint is
`wesl.weslc.weslc:main`.
"""

__all__ = []
