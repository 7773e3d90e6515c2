"""Decoding of JSON-serialized syntax trees.

A document looks like ``{"file": "maybe.src", "declarations": [...]}``.
Every node is an object whose ``"kind"`` names an ``ast_nodes`` class; its
remaining keys are the class fields. Spans are ``[line, col, end_line,
end_col]`` and refer to ``file``.
"""

from __future__ import annotations

import dataclasses
import functools
import json
import types
import typing
from pathlib import Path
from typing import Any, Union

from effinfer.ast_nodes import NODE_TYPES, Declaration, Module
from effinfer.errors import CompileError, Diagnostic, DiagnosticLabel, Severity
from effinfer.source import NO_SPAN, Span

_MAX_KINDS_IN_ERROR = 10


class AstDecodeError(Exception):
    """The document does not describe a valid tree."""

    def __init__(self, message: str, where: str = "$") -> None:
        super().__init__(f"{where}: {message}")
        self.message = message
        self.where = where


@functools.cache
def _field_types(cls: type) -> dict[str, Any]:
    return typing.get_type_hints(cls)


def _conforms(value: Any, hint: Any) -> bool:
    """Does a decoded value have the shape of a field annotation?"""
    if hint is object or hint is Any:
        return True
    if hint is type(None):
        return value is None
    origin = typing.get_origin(hint)
    if origin is Union or origin is types.UnionType:
        return any(_conforms(value, h) for h in typing.get_args(hint))
    if origin is tuple:
        (item, _) = typing.get_args(hint)
        return isinstance(value, tuple) and all(_conforms(v, item) for v in value)
    return isinstance(value, hint)


def _shape(raw: Any) -> str:
    if isinstance(raw, dict):
        return repr(raw.get("kind", "object"))
    if isinstance(raw, list):
        return "list"
    return type(raw).__name__


class _Decoder:
    def __init__(self, filename: str) -> None:
        self.filename = filename

    def span(self, raw: Any, where: str) -> Span:
        if raw is None:
            return NO_SPAN
        if (
            not isinstance(raw, list)
            or len(raw) != 4
            or not all(isinstance(n, int) for n in raw)
        ):
            raise AstDecodeError("span must be [line, col, end_line, end_col]", where)
        return Span(self.filename, *raw)

    def value(self, raw: Any, where: str) -> Any:
        if isinstance(raw, dict):
            return self.node(raw, where)
        if isinstance(raw, list):
            return tuple(self.value(item, f"{where}[{i}]") for i, item in enumerate(raw))
        return raw

    def node(self, data: dict[str, Any], where: str) -> Any:
        if "kind" not in data:
            raise AstDecodeError("missing required 'kind' field", where)
        kind = data["kind"]
        cls = NODE_TYPES.get(kind) if isinstance(kind, str) else None
        if cls is None:
            available = list(NODE_TYPES)[:_MAX_KINDS_IN_ERROR]
            raise AstDecodeError(f"unknown node kind '{kind}' (expected one of {available}, ...)", where)

        hints = _field_types(cls)
        kwargs: dict[str, Any] = {}
        known = set()
        for f in dataclasses.fields(cls):
            known.add(f.name)
            path = f"{where}.{f.name}"
            if f.name == "span":
                kwargs["span"] = self.span(data.get("span"), path)
                continue
            if f.name not in data:
                if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                    raise AstDecodeError(f"{kind} is missing field '{f.name}'", where)
                continue
            value = self.value(data[f.name], path)
            if not _conforms(value, hints[f.name]):
                raise AstDecodeError(f"{kind}.{f.name} must be {f.type}, got {_shape(data[f.name])}", path)
            kwargs[f.name] = value

        extra = sorted(set(data) - known - {"kind"})
        if extra:
            raise AstDecodeError(f"{kind} has unknown field(s) {', '.join(extra)}", where)
        return cls(**kwargs)


def decode_module(data: Any, filename: str = "<json>") -> Module:
    """Build a Module from an already-parsed JSON document."""
    if not isinstance(data, dict):
        raise AstDecodeError("document must be an object")
    filename = data.get("file", filename)
    decls = data.get("declarations")
    if not isinstance(decls, list):
        raise AstDecodeError("'declarations' must be a list")
    decoder = _Decoder(filename)
    declarations = []
    for i, decl in enumerate(decls):
        where = f"$.declarations[{i}]"
        if not isinstance(decl, dict):
            raise AstDecodeError("declaration must be an object", where)
        node = decoder.node(decl, where)
        if not _conforms(node, Declaration):
            raise AstDecodeError(f"{type(node).__name__} is not a top-level declaration", where)
        declarations.append(node)
    return Module(tuple(declarations), decoder.span(data.get("span"), "$.span"))


def loads(text: str, filename: str = "<json>") -> Module:
    """Decode a JSON document. Raises CompileError with an E001 diagnostic."""
    try:
        return decode_module(json.loads(text), filename)
    except json.JSONDecodeError as e:
        raise _compile_error(f"invalid JSON: {e.msg}", Span(filename, e.lineno, e.colno, e.lineno, e.colno)) from None
    except AstDecodeError as e:
        raise _compile_error(str(e), Span(filename, 0, 0, 0, 0)) from None


def load_module(path: Path) -> Module:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise _compile_error(f"cannot read {path}: {e}", Span(str(path), 0, 0, 0, 0)) from None
    return loads(text, str(path))


def _compile_error(message: str, span: Span) -> CompileError:
    return CompileError([Diagnostic(
        severity=Severity.ERROR,
        code="E001",
        message=message,
        labels=[DiagnosticLabel(span=span, message="")],
    )])


def encode(node: Any) -> Any:
    """JSON-ready form of a node; the inverse of decoding."""
    if dataclasses.is_dataclass(node) and not isinstance(node, type):
        data: dict[str, Any] = {"kind": type(node).__name__}
        for f in dataclasses.fields(node):
            value = getattr(node, f.name)
            if f.name == "span":
                if value != NO_SPAN:
                    data["span"] = [value.start_line, value.start_col, value.end_line, value.end_col]
                continue
            data[f.name] = encode(value)
        return data
    if isinstance(node, (tuple, list)):
        return [encode(item) for item in node]
    return node


def dumps(module: Module, filename: str | None = None) -> str:
    """Serialize *module* as a document accepted by ``loads``."""
    data = encode(module)
    del data["kind"]
    if filename is not None:
        data = {"file": filename, **data}
    return json.dumps(data, indent=2)
