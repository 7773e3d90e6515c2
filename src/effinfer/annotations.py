"""Conversion of syntactic type expressions into resolved types."""

from __future__ import annotations

from collections.abc import Container, Iterable

from effinfer.ast_nodes import (
    EffectsExpr,
    FunctionTypeExpr,
    GivenExpr,
    NamedTypeExpr,
    RecordTypeExpr,
    TypeAppExpr,
    TypeExpr,
    TypeVarExpr,
)
from effinfer.errors import ArityMismatch, DuplicateField, UnknownTrait, UnknownType
from effinfer.schemes import Scheme
from effinfer.symbols import SymbolTable
from effinfer.types import (
    BUILTINS,
    EffectRow,
    EffectVariable,
    FunctionType,
    TraitConstraint,
    Type,
    TypeConstructor,
    TypeVariable,
    VariableSupply,
    apply_type,
    close_lone_effects,
    effect_row,
    free_variables,
    record_type,
)


class TypeResolver:
    """Resolves the type expressions of one signature.

    Named type variables are allocated on first appearance. Every arrow
    without an effect clause shares one implicit effect variable; call
    ``begin_signature`` before walking so that variable is allocated first.
    """

    def __init__(
        self,
        symbols: SymbolTable,
        supply: VariableSupply,
        *,
        variables: dict[str, TypeVariable] | None = None,
        traits: Container[str] = (),
        effects: Container[str] = (),
        allow_new_variables: bool = True,
    ) -> None:
        self.symbols = symbols
        self.supply = supply
        self.variables: dict[str, TypeVariable] = dict(variables or {})
        self.effect_variables: dict[str, EffectVariable] = {}
        self.row_variables: dict[str, TypeVariable] = {}
        self.traits = traits
        self.effects = effects
        self.allow_new_variables = allow_new_variables
        self._implicit: EffectVariable | None = None

    def begin_signature(self) -> None:
        self._implicit = self.supply.fresh_effect()

    @property
    def implicit_effects(self) -> list[EffectVariable]:
        return [self._implicit] if self._implicit is not None else []

    # ── Types ───────────────────────────────────────────────────

    def resolve(self, expr: TypeExpr) -> Type:
        if isinstance(expr, TypeVarExpr):
            return self._variable(expr)
        if isinstance(expr, NamedTypeExpr):
            return self._named(expr)
        if isinstance(expr, TypeAppExpr):
            constructor = self.resolve(expr.constructor)
            args = [self.resolve(a) for a in expr.args]
            self._check_arity(constructor, len(args), expr)
            return apply_type(constructor, args)
        if isinstance(expr, FunctionTypeExpr):
            params = tuple(self.resolve(p) for p in expr.params)
            ret = self.resolve(expr.return_type)
            return FunctionType(params, ret, self.resolve_effects(expr.effects))
        if isinstance(expr, RecordTypeExpr):
            return self._record(expr)
        raise TypeError(f"not a type expression: {expr!r}")

    def _variable(self, expr: TypeVarExpr) -> TypeVariable:
        var = self.variables.get(expr.name)
        if var is not None:
            return var
        if not self.allow_new_variables:
            raise UnknownType(f"type variable '{expr.name}' is not in scope", expr.span)
        var = self.supply.fresh_type(expr.name)
        self.variables[expr.name] = var
        return var

    def _record(self, expr: RecordTypeExpr) -> Type:
        fields: dict[str, Type] = {}
        for f in expr.fields:
            if f.name in fields:
                raise DuplicateField(f"field '{f.name}' appears more than once", f.span)
            fields[f.name] = self.resolve(f.type_expr)
        if expr.extension is None:
            return record_type(fields)
        # Row variables live apart from type variables; they only extend records.
        row = self.row_variables.get(expr.extension)
        if row is None:
            if not self.allow_new_variables:
                raise UnknownType(f"row variable '{expr.extension}' is not in scope", expr.span)
            row = self.supply.fresh_type(expr.extension)
            self.row_variables[expr.extension] = row
        return record_type(fields, row)

    def _named(self, expr: NamedTypeExpr) -> Type:
        if expr.name in BUILTINS:
            return BUILTINS[expr.name]
        if self.symbols.resolve_type(expr.name) is not None:
            return TypeConstructor(expr.name)
        raise UnknownType(f"undefined type '{expr.name}'", expr.span)

    def _check_arity(self, constructor: Type, count: int, expr: TypeAppExpr) -> None:
        if not isinstance(constructor, TypeConstructor):
            return
        info = self.symbols.resolve_type(constructor.name)
        expected = len(info.params) if info is not None else 0
        if count > expected:
            raise ArityMismatch(
                f"type '{constructor.name}' expects {expected} argument(s), got {count}",
                expr.span,
                expected=expected,
                actual=count,
            )

    # ── Effects ─────────────────────────────────────────────────

    def resolve_effects(self, expr: EffectsExpr | None) -> EffectRow:
        if expr is None:
            if self._implicit is None:
                self._implicit = self.supply.fresh_effect()
            return EffectRow((), self._implicit)
        for name in expr.names:
            if name not in self.effects:
                raise UnknownTrait(f"undefined effect '{name}'", expr.span)
        extension = None
        if expr.extension is not None:
            extension = self.effect_variables.get(expr.extension)
            if extension is None:
                extension = self.supply.fresh_effect(expr.extension)
                self.effect_variables[expr.extension] = extension
        return effect_row(expr.names, extension)

    # ── Givens ──────────────────────────────────────────────────

    def resolve_given(self, given: GivenExpr) -> TraitConstraint:
        if given.trait not in self.traits:
            raise UnknownTrait(f"undefined trait '{given.trait}'", given.span)
        return TraitConstraint(given.trait, self.resolve(given.type_expr), given.span)


def declared_scheme(
    resolver: TypeResolver,
    type_expr: TypeExpr,
    givens: Iterable[GivenExpr] = (),
    extra_givens: Iterable[TraitConstraint] = (),
    closed_effect: str | None = None,
) -> Scheme:
    """Scheme of a declared signature, quantified over all its variables.

    *closed_effect* marks an effect operation: its outermost arrow performs
    exactly that effect.
    """
    resolver.begin_signature()
    ty = resolver.resolve(type_expr)
    if closed_effect is not None and isinstance(ty, FunctionType) and isinstance(type_expr, FunctionTypeExpr):
        if type_expr.effects is None:
            ty = FunctionType(ty.params, ty.return_type, effect_row([closed_effect]))
    ty = close_lone_effects(ty, resolver.implicit_effects)
    constraints = list(extra_givens) + [resolver.resolve_given(g) for g in givens]
    variables = list(free_variables(ty))
    for constraint in constraints:
        variables.extend(v for v in free_variables(constraint.type) if v not in variables)
    return Scheme(tuple(sorted(variables, key=lambda v: v.id)), ty, tuple(constraints))
