"""Shared test helpers for the effinfer test suite."""

from __future__ import annotations

from effinfer.ast_nodes import (
    BindingPattern,
    Call,
    EffectDef,
    EffectsExpr,
    ExternDef,
    FieldInit,
    FieldTypeExpr,
    FunctionDef,
    FunctionTypeExpr,
    GivenExpr,
    ImplDef,
    Lambda,
    Literal,
    Match,
    MatchArm,
    MemberAccess,
    MethodSig,
    Module,
    NamedTypeExpr,
    RecordExpr,
    RecordTypeExpr,
    Signature,
    TraitDef,
    TypeAppExpr,
    TypeDef,
    TypeVarExpr,
    Variable,
    VariantDef,
    VariantPattern,
    WildcardPattern,
)
from effinfer.checker import Checker, CheckResult
from effinfer.source import NO_SPAN, Span


def at(line: int, col: int = 1, end_col: int | None = None) -> Span:
    return Span("<test>", line, col, line, end_col if end_col is not None else col)


# ── Type expressions ────────────────────────────────────────────


def tv(name: str) -> TypeVarExpr:
    return TypeVarExpr(name)


def ty(name: str) -> NamedTypeExpr:
    return NamedTypeExpr(name)


def tapp(head: str, *args):
    constructor = ty(head) if head[0].isupper() else tv(head)
    return TypeAppExpr(constructor, tuple(args))


def arrow(params: list, ret, effects: EffectsExpr | None = None) -> FunctionTypeExpr:
    return FunctionTypeExpr(tuple(params), ret, effects)


def can(*names: str, ext: str | None = None) -> EffectsExpr:
    return EffectsExpr(tuple(names), ext)


def trec(fields: dict, ext: str | None = None) -> RecordTypeExpr:
    return RecordTypeExpr(tuple(FieldTypeExpr(n, t) for n, t in fields.items()), ext)


PURE_EXPR = EffectsExpr()


def sig(type_expr, *givens: tuple[str, str]) -> Signature:
    return Signature(type_expr, tuple(GivenExpr(t, tv(x)) for t, x in givens))


# ── Expressions and patterns ────────────────────────────────────


def v(name: str, span: Span = NO_SPAN) -> Variable:
    return Variable(name, span)


def lit(value, span: Span = NO_SPAN) -> Literal:
    if isinstance(value, bool):
        kind = "bool"
    elif isinstance(value, int):
        kind = "int"
    elif isinstance(value, float):
        kind = "float"
    elif isinstance(value, str):
        kind = "string"
    else:
        kind = "unit"
    return Literal(kind, value, span)


def call(fn, *args, span: Span = NO_SPAN) -> Call:
    if isinstance(fn, str):
        fn = v(fn)
    return Call(fn, tuple(args), span)


def lam(params: list[str], body) -> Lambda:
    return Lambda(tuple(pv(p) for p in params), body)


def pv(name: str):
    if name == "_":
        return WildcardPattern()
    return BindingPattern(name)


def pcon(name: str, *fields) -> VariantPattern:
    return VariantPattern(name, tuple(pv(f) if isinstance(f, str) else f for f in fields))


def case(pattern, body, span: Span = NO_SPAN) -> MatchArm:
    return MatchArm(pattern, body, span)


def match(scrutinee, *arms) -> Match:
    if isinstance(scrutinee, str):
        scrutinee = v(scrutinee)
    return Match(scrutinee, tuple(arms))


def rec(**fields) -> RecordExpr:
    return RecordExpr(tuple(FieldInit(n, e) for n, e in fields.items()))


def dot(target, field_name: str, span: Span = NO_SPAN) -> MemberAccess:
    if isinstance(target, str):
        target = v(target)
    return MemberAccess(target, field_name, span)


def fun(name: str, params: list[str], body, signature: Signature | None = None, span: Span = NO_SPAN) -> FunctionDef:
    return FunctionDef(name, tuple(pv(p) for p in params), body, signature, span)


# ── Fixture declarations ────────────────────────────────────────

MAYBE = TypeDef("Maybe", ("a",), (
    VariantDef("Some", (tv("a"),)),
    VariantDef("None"),
))

BOX = TypeDef("Box", ("a",), (VariantDef("Box", (tv("a"),)),))

FUNCTOR = TraitDef("Functor", "f", (
    MethodSig("map", arrow([tapp("f", tv("a")), arrow([tv("a")], tv("b"))], tapp("f", tv("b")))),
))

MONAD = TraitDef("Monad", "m", (
    MethodSig("wrap", arrow([tv("a")], tapp("m", tv("a")))),
    MethodSig("bind", arrow(
        [tapp("m", tv("a")), arrow([tv("a")], tapp("m", tv("b")))],
        tapp("m", tv("b")),
    )),
))

FUNCTOR_MAYBE = ImplDef("Functor", ty("Maybe"), (
    fun("map", ["m", "f"], match(
        "m",
        case(pcon("Some", "x"), call("Some", call("f", v("x")))),
        case(pcon("None"), v("None")),
    )),
))

MONAD_MAYBE = ImplDef("Monad", ty("Maybe"), (
    fun("wrap", ["a"], call("Some", v("a"))),
    fun("bind", ["m", "f"], match(
        "m",
        case(pcon("Some", "x"), call("f", v("x"))),
        case(pcon("None"), v("None")),
    )),
))

IO = EffectDef("IO", (MethodSig("print", arrow([ty("String")], ty("Unit"))),))

SHOW = TraitDef("Show", "s", (MethodSig("show", arrow([tv("s")], ty("String"))),))

SHOW_INT = ImplDef("Show", ty("Int"), (fun("show", ["n"], lit("<int>")),))

SHOW_MAYBE = ImplDef(
    "Show",
    tapp("Maybe", tv("a")),
    (fun("show", ["m"], match(
        "m",
        case(pcon("Some", "x"), call("show", v("x"))),
        case(pcon("None"), lit("None")),
    )),),
    givens=(GivenExpr("Show", tv("a")),),
)

PRELUDE = (MAYBE, FUNCTOR, MONAD, FUNCTOR_MAYBE, MONAD_MAYBE)

EXPECTED_PRELUDE_REPORT = (
    "bind : forall m c a b. (m a - (a -> m b can c) -> m b can c)\n"
    "  given Monad m\n"
    "map : forall f c a b. (f a - (a -> b can c) -> f b can c)\n"
    "  given Functor f\n"
    "wrap : forall m a. (a -> m a pure)\n"
    "  given Monad m"
)


def module(*decls) -> Module:
    return Module(tuple(decls))


def extern(name: str, type_expr) -> ExternDef:
    return ExternDef(name, type_expr)


# ── Checking ────────────────────────────────────────────────────


def check(*decls, workers: int = 1) -> CheckResult:
    """Check declarations, asserting no errors. Returns the result."""
    checker = Checker(workers=workers)
    result = checker.check(module(*decls))
    errors = [d for d in checker.diagnostics if d.severity.value == "error"]
    assert not errors, f"Unexpected errors: {[f'{d.code}: {d.message}' for d in errors]}"
    return result


def check_fails(decls, error_code: str) -> list:
    """Check declarations, asserting the given error code appears."""
    checker = Checker()
    checker.check(module(*decls))
    matching = [d for d in checker.diagnostics if d.code == error_code]
    assert matching, (
        f"Expected error {error_code} but got: "
        f"{[f'{d.code}: {d.message}' for d in checker.diagnostics] or 'no diagnostics'}"
    )
    return matching


def signature_of(result: CheckResult, name: str) -> str:
    return result.signatures[name].render()
