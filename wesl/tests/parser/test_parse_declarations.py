# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from pathlib import Path

import pytest

from wesl.weslc.core.diagnostics import LinkError
from wesl.weslc.core.error_codes import ErrorCode
from wesl.weslc.core.module_id import ModuleId
from wesl.weslc.parser import (
	DuplicateDeclarationError,
	InvalidIdentifierError,
	ParseError,
	load_module_file,
	parse_module,
)
from wesl.weslc.parser.ast import DeclKind

MID = ModuleId.of("my", "shapes")


def _refs(module, name: str) -> list[str]:
	decl = module.lookup(name)
	assert decl is not None
	return [r.display() for r in decl.references]


def test_declaration_kinds_and_names() -> None:
	source = """
import my::util::{helper};
enable f16;

struct Circle { radius: f32 }
alias Radius = f32;
const PI: f32 = 3.14159;
override blockSize: u32 = 64u;
var<private> counter: i32;
@group(0) @binding(1) var<storage, read> data: array<f32>;
const_assert PI > 3.0;
fn area(c: Circle) -> f32 { return PI * c.radius * c.radius; }
@compute @workgroup_size(blockSize) fn main() {}
"""
	module = parse_module(source, module_id=MID)
	kinds = [(d.kind, d.name) for d in module.declarations]
	assert kinds == [
		(DeclKind.STRUCT, "Circle"),
		(DeclKind.TYPE_ALIAS, "Radius"),
		(DeclKind.CONST, "PI"),
		(DeclKind.OVERRIDE, "blockSize"),
		(DeclKind.VAR, "counter"),
		(DeclKind.VAR, "data"),
		(DeclKind.CONST_ASSERT, None),
		(DeclKind.FUNCTION, "area"),
		(DeclKind.ENTRY_POINT, "main"),
	]
	assert module.names() == ["Circle", "Radius", "PI", "blockSize", "counter", "data", "area", "main"]
	assert module.lookup("main").preserved
	assert not module.lookup("main").importable
	assert module.lookup("blockSize").preserved
	assert module.lookup("counter").importable
	assert len(module.imports) == 1
	assert "f16" in module.directives.extensions


def test_declaration_extent_and_name_offsets() -> None:
	source = "import my::a::{X};\n\n@group(0) @binding(0) var<uniform> u: X;\n"
	module = parse_module(source, module_id=MID)
	decl = module.declarations[0]
	assert source[decl.start : decl.end] == "@group(0) @binding(0) var<uniform> u: X;"
	assert source[decl.name_start : decl.name_end] == "u"
	assert decl.attributes == ["group", "binding"]
	assert decl.loc.line == 3


def test_references_skip_members_bindings_and_locals() -> None:
	source = """
struct Light { color: vec3<f32>, Light2: f32 }
fn shade(light: Light, n: vec3<f32>) -> vec3<f32> {
	let k = max(dot(n, light.color), 0.0);
	var acc: Light;
	const c = k;
	return light.color * c + acc.color * helper(k);
}
"""
	module = parse_module(source, module_id=MID)
	assert _refs(module, "Light") == ["vec3", "f32", "f32"]
	assert _refs(module, "shade") == ["Light", "vec3", "f32", "vec3", "f32", "max", "dot", "Light", "helper"]


def test_block_locals_end_with_their_block() -> None:
	source = """
const scale: f32 = 2.0;
fn f(c: bool) -> f32 {
	if c { let scale = 1.0; return scale; }
	return scale;
}
"""
	module = parse_module(source, module_id=MID)
	decl = module.lookup("f")
	refs = [source[r.start : r.end] for r in decl.references]
	assert refs == ["bool", "f32", "scale"]
	assert decl.references[-1].start == source.rindex("scale")


def test_local_initializer_and_for_header_scoping() -> None:
	source = """
const n: i32 = 4;
fn f() -> i32 {
	let n = n + 1;
	var acc = 0;
	for (var i = 0; i < n; i++) { acc += i; }
	return acc + i;
}
"""
	module = parse_module(source, module_id=MID)
	decl = module.lookup("f")
	# The initializer reads the module-scope `n`; `i` is gone after the loop.
	assert [(r.display(), r.start) for r in decl.references] == [
		("i32", source.index("i32 {")),
		("n", source.index("n + 1")),
		("i", source.rindex("i;")),
	]


def test_qualified_references() -> None:
	source = """
import my::lighting;
fn f(s: lighting::LightSources) -> u32 { return lighting::count(s); }
"""
	module = parse_module(source, module_id=MID)
	decl = module.lookup("f")
	qualified = [r for r in decl.references if r.qualified]
	assert [r.path for r in qualified] == [("lighting", "LightSources"), ("lighting", "count")]
	first = qualified[0]
	assert source[first.start : first.end] == "lighting::LightSources"


def test_enumerant_attribute_arguments_are_not_references() -> None:
	source = """
struct VOut { @builtin(position) pos: vec4<f32>, @location(0) @interpolate(flat) id: u32 }
@fragment fn fs(@builtin(front_facing) ff: bool) -> @location(0) vec4<f32> { return vec4<f32>(1.0); }
"""
	module = parse_module(source, module_id=MID)
	assert "position" not in _refs(module, "VOut")
	assert "flat" not in _refs(module, "VOut")
	assert "front_facing" not in _refs(module, "fs")
	assert module.lookup("fs").kind is DeclKind.ENTRY_POINT


def test_switch_case_labels_are_references() -> None:
	source = """
const A: i32 = 1;
fn f(x: i32) -> i32 {
	switch x {
		case A: { return 1; }
		default: { return 0; }
	}
}
"""
	module = parse_module(source, module_id=MID)
	assert "A" in _refs(module, "f")


def test_var_template_is_not_a_reference() -> None:
	module = parse_module("var<workgroup> tile: array<f32, 64>;\n", module_id=MID)
	assert _refs(module, "tile") == ["array", "f32"]


def test_duplicate_declaration() -> None:
	with pytest.raises(DuplicateDeclarationError) as exc:
		parse_module("struct A { x: f32 }\nfn A() {}\n", module_id=MID)
	assert exc.value.diagnostic.code is ErrorCode.DUPLICATE_DECLARATION
	assert exc.value.diagnostic.span.line == 2


def test_leading_underscore_names_are_rejected() -> None:
	with pytest.raises(InvalidIdentifierError):
		parse_module("fn _private() {}\n", module_id=MID)


def test_malformed_declaration() -> None:
	with pytest.raises(ParseError) as exc:
		parse_module("fn f( {}\n", module_id=MID)
	assert exc.value.diagnostic.code is ErrorCode.MALFORMED_DECLARATION


def test_statement_outside_declaration() -> None:
	with pytest.raises(ParseError):
		parse_module("let x = 1;\n", module_id=MID)


def test_unicode_identifiers() -> None:
	source = "const länge: f32 = 1.0;\nfn größe() -> f32 { return länge * 2.0; }\n"
	module = parse_module(source, module_id=MID)
	assert [d.name for d in module.declarations] == ["länge", "größe"]
	assert _refs(module, "größe") == ["f32", "länge"]


def test_unreadable_source_file(tmp_path: Path) -> None:
	with pytest.raises(LinkError) as exc:
		load_module_file(tmp_path, MID)
	assert exc.value.diagnostic.code is ErrorCode.FILE_NOT_FOUND
	assert exc.value.diagnostic.span.file == str(tmp_path)


def test_source_file_must_be_utf8(tmp_path: Path) -> None:
	path = tmp_path / "shapes.wesl"
	path.write_bytes(b"fn f() {}\n\xff\n")
	with pytest.raises(ParseError) as exc:
		load_module_file(path, MID)
	assert "UTF-8" in exc.value.diagnostic.message
