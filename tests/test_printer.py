"""Tests for signature rendering."""

from __future__ import annotations

from effinfer.printer import (
    assign_names,
    describe,
    order_givens,
    render_constraint,
    render_effects,
    render_report,
    render_type,
)
from effinfer.schemes import InferredSignature
from effinfer.types import (
    BOOL,
    INT,
    PURE,
    STRING,
    EffectRow,
    EffectVariable,
    FunctionType,
    TraitConstraint,
    TypeConstructor,
    TypeVariable,
    apply_type,
    effect_row,
    record_type,
)

MAYBE = TypeConstructor("Maybe")


class TestNames:
    def test_declared_names_kept(self):
        x, a = TypeVariable(0), TypeVariable(1, "a")
        names = assign_names([x, a])
        assert names == {x: "b", a: "a"}

    def test_duplicate_declared_name_renamed(self):
        first, second = TypeVariable(0, "a"), TypeVariable(1, "a")
        names = assign_names([first, second])
        assert names[first] == "a"
        assert names[second] == "b"

    def test_stream_continues_with_suffix(self):
        variables = [TypeVariable(i) for i in range(28)]
        names = assign_names(variables)
        assert names[variables[25]] == "z"
        assert names[variables[26]] == "a1"
        assert names[variables[27]] == "b1"


class TestRender:
    def test_nested_application_parenthesized(self):
        a = TypeVariable(0)
        assert render_type(apply_type(MAYBE, [apply_type(MAYBE, [a])])) == "Maybe (Maybe a)"

    def test_higher_order_function(self):
        f, c, a, b = TypeVariable(0, "f"), EffectVariable(1), TypeVariable(2, "a"), TypeVariable(3, "b")
        row = EffectRow((), c)
        ty = FunctionType(
            (apply_type(f, [a]), FunctionType((a,), b, row)),
            apply_type(f, [b]),
            row,
        )
        names = assign_names([f, c, a, b])
        assert render_type(ty, names) == "f a - (a -> b can c) -> f b can c"

    def test_nullary_function(self):
        assert render_type(FunctionType((), INT, PURE)) == "() -> Int pure"

    def test_effects(self):
        e = EffectVariable(4)
        assert render_effects(PURE) == "pure"
        assert render_effects(effect_row(["State", "IO"])) == "can IO, State"
        assert render_effects(effect_row(["IO"], e), {e: "c"}) == "can IO, c"

    def test_constraint(self):
        a = TypeVariable(0, "a")
        assert render_constraint(TraitConstraint("Show", a)) == "Show a"
        assert render_constraint(TraitConstraint("Show", apply_type(MAYBE, [a]))) == "Show (Maybe a)"

    def test_describe_shares_names(self):
        a, b = TypeVariable(0), TypeVariable(1)
        assert describe(a, apply_type(MAYBE, [b]), b) == ["a", "Maybe b", "b"]


class TestSignatures:
    def test_givens_grouped_by_trait(self):
        a, b = TypeVariable(0, "a"), TypeVariable(1, "b")
        givens = [
            TraitConstraint("Show", a),
            TraitConstraint("Eq", b),
            TraitConstraint("Show", b),
            TraitConstraint("Show", a),
        ]
        assert order_givens(givens) == [
            TraitConstraint("Show", a),
            TraitConstraint("Show", b),
            TraitConstraint("Eq", b),
        ]

    def test_monomorphic(self):
        sig = InferredSignature("use_id", (), FunctionType((BOOL,), INT, PURE))
        assert sig.render() == "use_id : Bool -> Int pure"

    def test_polymorphic_with_givens(self):
        a = TypeVariable(0, "a")
        sig = InferredSignature(
            "describe", (a,), FunctionType((a,), STRING, PURE), (TraitConstraint("Show", a),),
        )
        assert sig.render() == "describe : forall a. (a -> String pure)\n  given Show a"

    def test_report_sorted_by_name(self):
        sigs = [
            InferredSignature("zeta", (), INT),
            InferredSignature("alpha", (), BOOL),
        ]
        assert render_report(sigs) == "alpha : Bool\nzeta : Int"

    def test_names_follow_first_appearance(self):
        a, b, c, d = TypeVariable(0), TypeVariable(1), EffectVariable(2), TypeVariable(3)
        row = EffectRow((), c)
        ty = FunctionType(
            (FunctionType((b,), d, row), FunctionType((a,), b, row), a),
            d,
            row,
        )
        sig = InferredSignature("compose", (a, b, c, d), ty)
        assert sig.render() == (
            "compose : forall d a c b. ((a -> b can c) - (d -> a can c) - d -> b can c)"
        )

    def test_given_only_variable_named_last(self):
        a, b = TypeVariable(0), TypeVariable(1)
        sig = InferredSignature("weird", (a, b), b, (TraitConstraint("Show", a),))
        assert sig.render() == "weird : forall b a. (a)\n  given Show b"

    def test_value_effects_rendered(self):
        sig = InferredSignature("greeting", (), INT, effects=effect_row(["IO"]))
        assert sig.render() == "greeting : Int can IO"

    def test_value_effects_drop_row_variable(self):
        a = TypeVariable(0)
        sig = InferredSignature(
            "thunk", (a,), FunctionType((a,), a, PURE), effects=effect_row(["IO"], EffectVariable(1)),
        )
        assert sig.render() == "thunk : forall a. ((a -> a pure) can IO)"


class TestRecords:
    def test_closed_record(self):
        assert render_type(record_type({"y": BOOL, "x": INT})) == "{x: Int, y: Bool}"

    def test_open_record(self):
        a, rest = TypeVariable(0), TypeVariable(1, "r")
        assert render_type(record_type({"x": a}, rest)) == "{x: a, ..r}"

    def test_function_field_parenthesized(self):
        callback = FunctionType((INT,), INT, PURE)
        assert render_type(record_type({"on_tick": callback})) == "{on_tick: (Int -> Int pure)}"

    def test_empty_record(self):
        assert render_type(record_type()) == "{}"
