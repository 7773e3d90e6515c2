"""AST node definitions consumed by the inference engine.

The tree is produced by an external parser; the engine only walks it.
Every node carries a ``span`` for diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from effinfer.source import NO_SPAN, Span

# ── Type expressions ─────────────────────────────────────────────


@dataclass(frozen=True)
class TypeVarExpr:
    name: str
    span: Span = NO_SPAN


@dataclass(frozen=True)
class NamedTypeExpr:
    name: str
    span: Span = NO_SPAN


@dataclass(frozen=True)
class TypeAppExpr:
    constructor: TypeExpr
    args: tuple[TypeExpr, ...]
    span: Span = NO_SPAN


@dataclass(frozen=True)
class EffectsExpr:
    """An explicit effect clause. ``EffectsExpr(())`` is ``pure``."""

    names: tuple[str, ...] = ()
    extension: str | None = None  # effect variable name, e.g. the ``e`` in ``can IO, e``
    span: Span = NO_SPAN


@dataclass(frozen=True)
class FunctionTypeExpr:
    params: tuple[TypeExpr, ...]
    return_type: TypeExpr
    effects: EffectsExpr | None = None  # None: implicit, shared per signature
    span: Span = NO_SPAN


@dataclass(frozen=True)
class FieldTypeExpr:
    name: str
    type_expr: TypeExpr
    span: Span = NO_SPAN


@dataclass(frozen=True)
class RecordTypeExpr:
    """``{x: Int, y: a}``, or ``{x: Int, ..r}`` when open to more fields."""

    fields: tuple[FieldTypeExpr, ...] = ()
    extension: str | None = None  # row variable name
    span: Span = NO_SPAN


TypeExpr = Union[TypeVarExpr, NamedTypeExpr, TypeAppExpr, FunctionTypeExpr, RecordTypeExpr]


@dataclass(frozen=True)
class GivenExpr:
    trait: str
    type_expr: TypeExpr
    span: Span = NO_SPAN


@dataclass(frozen=True)
class Signature:
    type_expr: TypeExpr
    givens: tuple[GivenExpr, ...] = ()
    span: Span = NO_SPAN


# ── Expressions ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Literal:
    literal_kind: str  # int, float, string, char, bool, unit
    value: object = None
    span: Span = NO_SPAN


@dataclass(frozen=True)
class Variable:
    name: str
    span: Span = NO_SPAN


@dataclass(frozen=True)
class Call:
    function: Expr
    args: tuple[Expr, ...]
    span: Span = NO_SPAN


@dataclass(frozen=True)
class Lambda:
    params: tuple[Pattern, ...]
    body: Expr
    span: Span = NO_SPAN


@dataclass(frozen=True)
class MatchArm:
    pattern: Pattern
    body: Expr
    span: Span = NO_SPAN


@dataclass(frozen=True)
class Match:
    scrutinee: Expr
    arms: tuple[MatchArm, ...]
    span: Span = NO_SPAN


@dataclass(frozen=True)
class Let:
    pattern: Pattern
    value: Expr
    body: Expr
    span: Span = NO_SPAN


@dataclass(frozen=True)
class If:
    condition: Expr
    then: Expr
    otherwise: Expr
    span: Span = NO_SPAN


@dataclass(frozen=True)
class Sequence:
    expressions: tuple[Expr, ...]
    span: Span = NO_SPAN


@dataclass(frozen=True)
class Annotated:
    expr: Expr
    type_expr: TypeExpr
    span: Span = NO_SPAN


@dataclass(frozen=True)
class FieldInit:
    name: str
    value: Expr
    span: Span = NO_SPAN


@dataclass(frozen=True)
class RecordExpr:
    fields: tuple[FieldInit, ...] = ()
    span: Span = NO_SPAN


@dataclass(frozen=True)
class MemberAccess:
    target: Expr
    field: str
    span: Span = NO_SPAN


Expr = Union[
    Literal, Variable, Call, Lambda, Match, Let, If, Sequence, Annotated, RecordExpr, MemberAccess,
]


# ── Patterns ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class VariantPattern:
    constructor: str
    fields: tuple[Pattern, ...] = ()
    span: Span = NO_SPAN


@dataclass(frozen=True)
class BindingPattern:
    name: str
    span: Span = NO_SPAN


@dataclass(frozen=True)
class WildcardPattern:
    span: Span = NO_SPAN


@dataclass(frozen=True)
class LiteralPattern:
    literal: Literal
    span: Span = NO_SPAN


Pattern = Union[VariantPattern, BindingPattern, WildcardPattern, LiteralPattern]


# ── Top-level declarations ───────────────────────────────────────


@dataclass(frozen=True)
class VariantDef:
    name: str
    fields: tuple[TypeExpr, ...] = ()
    span: Span = NO_SPAN


@dataclass(frozen=True)
class TypeDef:
    name: str
    params: tuple[str, ...]
    variants: tuple[VariantDef, ...]
    span: Span = NO_SPAN


@dataclass(frozen=True)
class MethodSig:
    name: str
    type_expr: TypeExpr
    span: Span = NO_SPAN


@dataclass(frozen=True)
class TraitDef:
    name: str
    param: str
    methods: tuple[MethodSig, ...]
    span: Span = NO_SPAN


@dataclass(frozen=True)
class FunctionDef:
    name: str
    params: tuple[Pattern, ...]
    body: Expr
    signature: Signature | None = None
    span: Span = NO_SPAN


@dataclass(frozen=True)
class ImplDef:
    trait: str
    target: TypeExpr
    definitions: tuple[FunctionDef, ...]
    givens: tuple[GivenExpr, ...] = ()
    span: Span = NO_SPAN


@dataclass(frozen=True)
class EffectDef:
    name: str
    operations: tuple[MethodSig, ...]
    span: Span = NO_SPAN


@dataclass(frozen=True)
class ExternDef:
    name: str
    type_expr: TypeExpr
    span: Span = NO_SPAN


Declaration = Union[TypeDef, TraitDef, ImplDef, FunctionDef, EffectDef, ExternDef]


@dataclass(frozen=True)
class Module:
    declarations: tuple[Declaration, ...]
    span: Span = NO_SPAN


# Every concrete node class, keyed by name; used by the JSON decoder.
NODE_TYPES: dict[str, type] = {
    cls.__name__: cls
    for cls in (
        TypeVarExpr, NamedTypeExpr, TypeAppExpr, EffectsExpr, FunctionTypeExpr,
        FieldTypeExpr, RecordTypeExpr, GivenExpr, Signature,
        Literal, Variable, Call, Lambda, MatchArm, Match, Let, If, Sequence, Annotated,
        FieldInit, RecordExpr, MemberAccess,
        VariantPattern, BindingPattern, WildcardPattern, LiteralPattern,
        VariantDef, TypeDef, MethodSig, TraitDef, FunctionDef, ImplDef,
        EffectDef, ExternDef, Module,
    )
}
