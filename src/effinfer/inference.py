"""Constraint generation over expressions.

The Inferer walks one top-level binding, threading a Substitution through
every unification step and collecting trait obligations for the solver.
Effects are tracked per lambda: every call records the row of the arrow it
goes through, and the rows are merged when the lambda is closed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from effinfer.annotations import TypeResolver
from effinfer.ast_nodes import (
    Annotated,
    BindingPattern,
    Call,
    Expr,
    FunctionDef,
    If,
    Lambda,
    Let,
    Literal,
    LiteralPattern,
    Match,
    MemberAccess,
    Pattern,
    RecordExpr,
    Sequence,
    Variable,
    VariantPattern,
    WildcardPattern,
)
from effinfer.errors import (
    ArityMismatch,
    DuplicateField,
    InferenceError,
    MissingField,
    PatternArmMismatch,
    TypeMismatch,
    UnboundVariable,
    UnknownType,
)
from effinfer.printer import describe
from effinfer.schemes import Scheme, generalize
from effinfer.source import Span
from effinfer.substitution import Substitution
from effinfer.symbols import Scope, Symbol, SymbolKind, SymbolTable
from effinfer.traits import ImplRegistry
from effinfer.types import (
    BOOL,
    LITERAL_TYPES,
    PURE,
    UNIT,
    EffectRow,
    FunctionType,
    TraitConstraint,
    Type,
    TypeVariable,
    VariableSupply,
    effect_row,
    free_variables,
    record_type,
)
from effinfer.unifier import Unifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceResult:
    """Outcome of inferring one binding, before solving and generalization."""

    type: Type
    effects: EffectRow
    obligations: tuple[TraitConstraint, ...]
    subst: Substitution


class Inferer:
    """Infers types for the expressions of one top-level binding."""

    def __init__(
        self,
        symbols: SymbolTable,
        registry: ImplRegistry,
        supply: VariableSupply,
        *,
        binding: str | None = None,
        effects: frozenset[str] = frozenset(),
    ) -> None:
        self.symbols = symbols
        self.registry = registry
        self.supply = supply
        self.binding = binding
        self.effects = effects
        self.subst = Substitution.empty()
        self.obligations: list[TraitConstraint] = []
        self._unifier = Unifier(supply)
        self._frames: list[list[EffectRow]] = []

    # ── Helpers ─────────────────────────────────────────────────

    def unify(self, expected: Type, actual: Type, span: Span) -> None:
        try:
            self.subst = self._unifier.unify(expected, actual, self.subst)
        except InferenceError as err:
            raise err.at(span, self.binding) from None

    def resolve(self, ty: Type) -> Type:
        return self.subst.apply(ty)

    def _fail(self, err: InferenceError, span: Span) -> InferenceError:
        return err.at(span, self.binding)

    # ── Effect frames ───────────────────────────────────────────

    def push_frame(self) -> None:
        self._frames.append([])

    def record_effects(self, row: EffectRow) -> None:
        if self._frames and not row.is_pure:
            self._frames[-1].append(row)

    def pop_frame(self, *, open_tail: bool = True) -> EffectRow:
        """Merge the rows recorded since the matching ``push_frame``.

        Labels are unioned and every tail is unified into the first one.
        With *open_tail*, a frame without any tail gets a fresh one so the
        resulting arrow stays compatible with effectful callers.
        """
        rows = self._frames.pop()
        labels: set[str] = set()
        tail = None
        for row in rows:
            row = self.subst.apply_effects(row)
            labels.update(row.labels)
            if row.extension is None or row.extension == tail:
                continue
            if tail is None:
                tail = row.extension
                continue
            self.subst = self._unifier.unify_effects(
                EffectRow((), tail), EffectRow((), row.extension), self.subst,
            )
            merged = self.subst.apply_effects(EffectRow((), tail))
            labels.update(merged.labels)
            tail = merged.extension
        if tail is None and open_tail:
            tail = self.supply.fresh_effect()
        return effect_row(sorted(labels), tail)

    # ── Bindings ────────────────────────────────────────────────

    def infer_function(self, defn: FunctionDef, scope: Scope) -> tuple[Type, EffectRow]:
        """Type of a function definition and the effects of evaluating it.

        A definition without parameters is a value: its type is the body's
        and its effects are those the body performs.
        """
        if not defn.params:
            self.push_frame()
            ty = self.infer(defn.body, scope)
            return ty, self.pop_frame(open_tail=False)
        return self._infer_lambda(defn.params, defn.body, scope), PURE

    # ── Expressions ─────────────────────────────────────────────

    def infer(self, expr: Expr, scope: Scope) -> Type:
        if isinstance(expr, Literal):
            return self._infer_literal(expr)
        if isinstance(expr, Variable):
            return self._infer_variable(expr, scope)
        if isinstance(expr, Call):
            return self._infer_call(expr, scope)
        if isinstance(expr, Lambda):
            return self._infer_lambda(expr.params, expr.body, scope)
        if isinstance(expr, Match):
            return self._infer_match(expr, scope)
        if isinstance(expr, Let):
            return self._infer_let(expr, scope)
        if isinstance(expr, If):
            return self._infer_if(expr, scope)
        if isinstance(expr, Sequence):
            result: Type = UNIT
            for sub in expr.expressions:
                result = self.infer(sub, scope)
            return result
        if isinstance(expr, Annotated):
            return self._infer_annotated(expr, scope)
        if isinstance(expr, RecordExpr):
            return self._infer_record(expr, scope)
        if isinstance(expr, MemberAccess):
            return self._infer_member(expr, scope)
        raise TypeError(f"not an expression: {expr!r}")

    def _infer_literal(self, expr: Literal) -> Type:
        ty = LITERAL_TYPES.get(expr.literal_kind)
        if ty is None:
            raise self._fail(UnknownType(f"unknown literal kind '{expr.literal_kind}'"), expr.span)
        return ty

    def _infer_variable(self, expr: Variable, scope: Scope) -> Type:
        sym = scope.lookup(expr.name)
        if sym is None:
            raise self._fail(UnboundVariable(expr.name), expr.span)
        ty, givens = sym.scheme.instantiate(self.supply, expr.span)
        if givens:
            logger.debug("%s: '%s' adds obligations %s", self.binding, expr.name, givens)
            self.obligations.extend(givens)
        return ty

    def _infer_call(self, expr: Call, scope: Scope) -> Type:
        fn_type = self.resolve(self.infer(expr.function, scope))
        arg_types = [self.infer(arg, scope) for arg in expr.args]

        if isinstance(fn_type, FunctionType):
            if len(fn_type.params) != len(arg_types):
                name = expr.function.name if isinstance(expr.function, Variable) else "function"
                raise self._fail(ArityMismatch(
                    f"'{name}' expects {len(fn_type.params)} argument(s), got {len(arg_types)}",
                    expected=len(fn_type.params),
                    actual=len(arg_types),
                ), expr.span)
            for param, arg, node in zip(fn_type.params, arg_types, expr.args):
                self.unify(param, arg, node.span)
            self.record_effects(fn_type.effects)
            return fn_type.return_type

        result = self.supply.fresh_type()
        row = EffectRow((), self.supply.fresh_effect())
        expected = FunctionType(tuple(arg_types), result, row)
        if not isinstance(fn_type, TypeVariable):
            (shown,) = describe(fn_type)
            raise self._fail(TypeMismatch(
                f"'{shown}' is not a function and cannot be called",
                types=(fn_type,),
            ), expr.function.span)
        self.unify(fn_type, expected, expr.span)
        self.record_effects(row)
        return result

    def _infer_lambda(self, params: tuple[Pattern, ...], body: Expr, scope: Scope) -> Type:
        inner = Scope(scope, name="lambda")
        param_types = tuple(self.infer_pattern(p, inner) for p in params)
        self.push_frame()
        body_type = self.infer(body, inner)
        row = self.pop_frame()
        return FunctionType(param_types, body_type, row)

    def _infer_match(self, expr: Match, scope: Scope) -> Type:
        scrutinee = self.infer(expr.scrutinee, scope)
        first: tuple[Type, Span] | None = None
        for arm in expr.arms:
            inner = Scope(scope, name="arm")
            pattern_type = self.infer_pattern(arm.pattern, inner)
            self.unify(scrutinee, pattern_type, arm.pattern.span)
            body_type = self.infer(arm.body, inner)
            if first is None:
                first = (body_type, arm.body.span)
                continue
            try:
                self.subst = self._unifier.unify(first[0], body_type, self.subst)
            except TypeMismatch as err:
                expected, actual = describe(self.resolve(first[0]), self.resolve(body_type))
                mismatch = PatternArmMismatch(
                    f"match arms have incompatible types: '{expected}' and '{actual}'",
                    (first[1], arm.body.span),
                    binding=self.binding,
                    types=err.types,
                )
                mismatch.notes.extend(err.notes)
                raise mismatch from None
            except InferenceError as err:
                raise err.at(arm.body.span, self.binding) from None
        if first is None:
            return self.supply.fresh_type()
        return first[0]

    def _infer_let(self, expr: Let, scope: Scope) -> Type:
        inner = Scope(scope, name="let")
        if isinstance(expr.pattern, BindingPattern) and isinstance(expr.value, (Lambda, Variable)):
            scheme = self._infer_generalized(expr.value, scope)
            inner.define(Symbol(expr.pattern.name, SymbolKind.VARIABLE, scheme, expr.pattern.span))
        else:
            value_type = self.infer(expr.value, scope)
            pattern_type = self.infer_pattern(expr.pattern, inner)
            self.unify(pattern_type, value_type, expr.value.span)
        return self.infer(expr.body, inner)

    def _infer_generalized(self, value: Expr, scope: Scope) -> Scheme:
        start = len(self.obligations)
        ty = self.resolve(self.infer(value, scope))
        env_free = scope.free_variables(self.subst, stop=self.symbols.globals)
        own = [TraitConstraint(o.trait, self.resolve(o.type), o.span) for o in self.obligations[start:]]
        quantifiable = {v for v in free_variables(ty) if v not in env_free}

        moved: list[TraitConstraint] = []
        kept: list[TraitConstraint] = []
        for obligation in own:
            vars_ = free_variables(obligation.type)
            if vars_ and all(v in quantifiable for v in vars_):
                moved.append(obligation)
            else:
                kept.append(obligation)
        del self.obligations[start:]
        self.obligations.extend(kept)
        scheme = generalize(ty, moved, env_free)
        logger.debug("%s: let-generalized %s", self.binding, scheme)
        return scheme

    def _infer_if(self, expr: If, scope: Scope) -> Type:
        condition = self.infer(expr.condition, scope)
        self.unify(BOOL, condition, expr.condition.span)
        then_type = self.infer(expr.then, scope)
        else_type = self.infer(expr.otherwise, scope)
        self.unify(then_type, else_type, expr.otherwise.span)
        return then_type

    def _infer_record(self, expr: RecordExpr, scope: Scope) -> Type:
        fields: dict[str, Type] = {}
        for init in expr.fields:
            if init.name in fields:
                raise self._fail(DuplicateField(f"field '{init.name}' is given more than once"), init.span)
            fields[init.name] = self.infer(init.value, scope)
        return record_type(fields)

    def _infer_member(self, expr: MemberAccess, scope: Scope) -> Type:
        """``target.field``: the target is any record with at least that field."""
        target = self.infer(expr.target, scope)
        field_type = self.supply.fresh_type()
        wanted = record_type({expr.field: field_type}, self.supply.fresh_type())
        try:
            self.subst = self._unifier.unify(wanted, target, self.subst)
        except TypeMismatch as err:
            (shown,) = describe(self.resolve(target))
            missing = MissingField(
                f"type '{shown}' has no field '{expr.field}'",
                expr.span,
                field=expr.field,
                binding=self.binding,
                types=err.types,
            )
            raise missing from None
        except InferenceError as err:
            raise err.at(expr.span, self.binding) from None
        return field_type

    def _infer_annotated(self, expr: Annotated, scope: Scope) -> Type:
        ty = self.infer(expr.expr, scope)
        resolver = TypeResolver(
            self.symbols,
            self.supply,
            traits=set(t.name for t in self.registry.traits()),
            effects=self.effects,
        )
        try:
            declared = resolver.resolve(expr.type_expr)
        except InferenceError as err:
            raise err.at(expr.type_expr.span, self.binding) from None
        self.unify(declared, ty, expr.span)
        return declared

    # ── Patterns ────────────────────────────────────────────────

    def infer_pattern(self, pattern: Pattern, scope: Scope) -> Type:
        """Type of *pattern*, defining the names it binds in *scope*."""
        if isinstance(pattern, BindingPattern):
            var = self.supply.fresh_type()
            scope.replace(Symbol(pattern.name, SymbolKind.PARAMETER, Scheme.mono(var), pattern.span))
            return var
        if isinstance(pattern, WildcardPattern):
            return self.supply.fresh_type()
        if isinstance(pattern, LiteralPattern):
            return self._infer_literal(pattern.literal)
        if isinstance(pattern, VariantPattern):
            return self._infer_variant_pattern(pattern, scope)
        raise TypeError(f"not a pattern: {pattern!r}")

    def _infer_variant_pattern(self, pattern: VariantPattern, scope: Scope) -> Type:
        ctor = self.symbols.resolve_constructor(pattern.constructor)
        if ctor is None:
            raise self._fail(UnboundVariable(pattern.constructor), pattern.span)
        if ctor.arity != len(pattern.fields):
            raise self._fail(ArityMismatch(
                f"constructor '{ctor.name}' has {ctor.arity} field(s), pattern gives {len(pattern.fields)}",
                expected=ctor.arity,
                actual=len(pattern.fields),
            ), pattern.span)
        instance, _ = ctor.scheme.instantiate(self.supply, pattern.span)
        if not isinstance(instance, FunctionType):
            return instance
        for field_pattern, field_type in zip(pattern.fields, instance.params):
            sub = self.infer_pattern(field_pattern, scope)
            self.unify(field_type, sub, field_pattern.span)
        return instance.return_type


def infer_binding(
    defn: FunctionDef,
    symbols: SymbolTable,
    registry: ImplRegistry,
    supply: VariableSupply,
    *,
    scope: Scope | None = None,
    effects: frozenset[str] = frozenset(),
) -> InferenceResult:
    """Infer one function definition: its type, effects and trait obligations.

    Nothing is solved or generalized here.
    """
    inferer = Inferer(symbols, registry, supply, binding=defn.name, effects=effects)
    ty, row = inferer.infer_function(defn, scope or symbols.globals)
    return InferenceResult(
        inferer.resolve(ty),
        inferer.subst.apply_effects(row),
        tuple(inferer.obligations),
        inferer.subst,
    )
