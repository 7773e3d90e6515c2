"""Tests for the JSON syntax tree format."""

from __future__ import annotations

import json

import pytest

from effinfer.ast_json import AstDecodeError, decode_module, dumps, load_module, loads
from effinfer.ast_nodes import (
    Call,
    FieldTypeExpr,
    FunctionDef,
    Literal,
    MemberAccess,
    NamedTypeExpr,
    RecordTypeExpr,
    Variable,
)
from effinfer.errors import CompileError
from effinfer.source import NO_SPAN, Span
from tests.helpers import PRELUDE, module


def _doc(*decls, **extra) -> str:
    return json.dumps({"file": "demo.src", "declarations": list(decls), **extra})


GREETING = {
    "kind": "FunctionDef",
    "name": "greeting",
    "params": [],
    "body": {
        "kind": "Call",
        "function": {"kind": "Variable", "name": "concat", "span": [2, 5, 2, 10]},
        "args": [
            {"kind": "Literal", "literal_kind": "string", "value": "hi"},
        ],
    },
    "span": [1, 1, 3, 1],
}


class TestDecode:
    def test_function(self):
        fn = decode_module(json.loads(_doc(GREETING))).declarations[0]
        assert isinstance(fn, FunctionDef)
        assert fn.name == "greeting"
        assert fn.params == ()
        assert fn.span == Span("demo.src", 1, 1, 3, 1)
        assert isinstance(fn.body, Call)
        assert fn.body.function == Variable("concat", Span("demo.src", 2, 5, 2, 10))
        assert fn.body.args == (Literal("string", "hi"),)

    def test_missing_span_is_no_span(self):
        mod = loads(_doc({"kind": "ExternDef", "name": "x", "type_expr": {"kind": "NamedTypeExpr", "name": "Int"}}))
        assert mod.declarations[0].span == NO_SPAN

    def test_filename_from_document(self, tmp_path):
        path = tmp_path / "prog.json"
        path.write_text(json.dumps({"declarations": [
            {"kind": "ExternDef", "name": "x", "type_expr": {"kind": "NamedTypeExpr", "name": "Int"},
             "span": [1, 1, 1, 4]},
        ]}))
        mod = load_module(path)
        assert mod.declarations[0].span.file == str(path)

    def test_record_nodes(self):
        getter = {
            "kind": "FunctionDef",
            "name": "get_x",
            "params": [{"kind": "BindingPattern", "name": "p"}],
            "body": {"kind": "MemberAccess", "target": {"kind": "Variable", "name": "p"}, "field": "x"},
            "signature": {
                "kind": "Signature",
                "type_expr": {
                    "kind": "FunctionTypeExpr",
                    "params": [{
                        "kind": "RecordTypeExpr",
                        "fields": [{"kind": "FieldTypeExpr", "name": "x", "type_expr": {"kind": "NamedTypeExpr", "name": "Int"}}],
                        "extension": "r",
                    }],
                    "return_type": {"kind": "NamedTypeExpr", "name": "Int"},
                },
            },
        }
        fn = decode_module(json.loads(_doc(getter))).declarations[0]
        assert fn.body == MemberAccess(Variable("p"), "x")
        assert fn.signature.type_expr.params[0] == RecordTypeExpr(
            (FieldTypeExpr("x", NamedTypeExpr("Int")),), "r",
        )

    def test_record_literal_fields_checked(self):
        with pytest.raises(AstDecodeError) as info:
            decode_module({"declarations": [
                {"kind": "FunctionDef", "name": "origin", "params": [],
                 "body": {"kind": "RecordExpr", "fields": [{"kind": "Variable", "name": "x"}]}},
            ]})
        assert "RecordExpr.fields" in info.value.message

    def test_roundtrip(self):
        original = module(*PRELUDE)
        assert loads(dumps(original, "prelude.src")) == original


class TestDecodeErrors:
    def test_invalid_json(self):
        with pytest.raises(CompileError) as info:
            loads("{not json", "broken.json")
        (diag,) = info.value.diagnostics
        assert diag.code == "E001"
        assert diag.message.startswith("invalid JSON")
        assert diag.labels[0].span.file == "broken.json"

    def test_unknown_kind(self):
        with pytest.raises(CompileError) as info:
            loads(_doc({"kind": "WhileLoop"}))
        (diag,) = info.value.diagnostics
        assert diag.code == "E001"
        assert "unknown node kind 'WhileLoop'" in diag.message
        assert "$.declarations[0]" in diag.message

    def test_missing_field(self):
        with pytest.raises(CompileError) as info:
            loads(_doc({"kind": "ExternDef", "name": "x"}))
        assert "ExternDef is missing field 'type_expr'" in info.value.diagnostics[0].message

    def test_unknown_field(self):
        with pytest.raises(CompileError) as info:
            loads(_doc({"kind": "Variable", "name": "x", "colour": "red"}))
        assert "unknown field(s) colour" in info.value.diagnostics[0].message

    def test_bad_span(self):
        with pytest.raises(AstDecodeError) as info:
            decode_module({"declarations": [{"kind": "Variable", "name": "x", "span": [1, 2]}]})
        assert info.value.where == "$.declarations[0].span"

    def test_declarations_required(self):
        with pytest.raises(AstDecodeError):
            decode_module({"file": "x"})

    def test_field_must_be_expression(self):
        with pytest.raises(CompileError) as info:
            loads(_doc({"kind": "FunctionDef", "name": "f", "params": [], "body": "oops"}))
        (diag,) = info.value.diagnostics
        assert diag.code == "E001"
        assert "FunctionDef.body must be Expr, got str" in diag.message
        assert "$.declarations[0].body" in diag.message

    def test_field_of_wrong_node_family(self):
        pattern_as_body = {"kind": "BindingPattern", "name": "x"}
        with pytest.raises(AstDecodeError) as info:
            decode_module({"declarations": [
                {"kind": "FunctionDef", "name": "f", "params": [], "body": pattern_as_body},
            ]})
        assert "got 'BindingPattern'" in info.value.message

    def test_tuple_field_must_be_list(self):
        with pytest.raises(AstDecodeError) as info:
            decode_module({"declarations": [
                {"kind": "FunctionDef", "name": "f", "params": {"kind": "BindingPattern", "name": "x"},
                 "body": {"kind": "Variable", "name": "x"}},
            ]})
        assert info.value.where == "$.declarations[0].params"

    def test_tuple_items_checked(self):
        with pytest.raises(AstDecodeError) as info:
            decode_module({"declarations": [
                {"kind": "TypeDef", "name": "Pair", "params": ["a", 2], "variants": []},
            ]})
        assert "TypeDef.params" in info.value.message

    def test_kind_must_be_string(self):
        with pytest.raises(AstDecodeError) as info:
            decode_module({"declarations": [{"kind": ["Variable"]}]})
        assert "unknown node kind" in info.value.message

    def test_expression_is_not_a_declaration(self):
        with pytest.raises(AstDecodeError) as info:
            decode_module({"declarations": [{"kind": "Variable", "name": "x"}]})
        assert "Variable is not a top-level declaration" in info.value.message

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "binary.json"
        path.write_bytes(b'{"declarations": []}\xff')
        with pytest.raises(CompileError) as info:
            load_module(path)
        (diag,) = info.value.diagnostics
        assert diag.code == "E001"
        assert diag.message.startswith(f"cannot read {path}")

    def test_missing_file(self, tmp_path):
        with pytest.raises(CompileError) as info:
            load_module(tmp_path / "absent.json")
        assert info.value.diagnostics[0].code == "E001"
