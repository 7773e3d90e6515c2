"""Structural unification over types and effect rows.

Unification never mutates a type: each step returns a new Substitution.
"""

from __future__ import annotations

import logging

from effinfer.errors import OccursCheckFailure, TypeMismatch
from effinfer.printer import describe, render_effects
from effinfer.substitution import Substitution
from effinfer.types import (
    EffectRow,
    FunctionType,
    RecordType,
    Type,
    TypeApplication,
    TypeConstructor,
    TypeVariable,
    VariableSupply,
    effect_row,
    occurs,
    record_type,
)

logger = logging.getLogger(__name__)


class _Conflict(Exception):
    """Innermost pair of terms that could not be unified."""

    def __init__(self, left: Type | EffectRow, right: Type | EffectRow) -> None:
        super().__init__()
        self.left = left
        self.right = right


class Unifier:
    """Unifies types under a substitution.

    The supply is only consulted when two open rows (effects or record
    fields) need a fresh common tail.
    """

    def __init__(self, supply: VariableSupply | None = None) -> None:
        self.supply = supply if supply is not None else VariableSupply()

    # ── Public API ──────────────────────────────────────────────

    def unify(self, left: Type, right: Type, subst: Substitution | None = None) -> Substitution:
        """Return *subst* extended so that *left* and *right* become equal.

        Raises TypeMismatch or OccursCheckFailure. Both report the outer
        types as given, resolved through *subst*.
        """
        subst = subst if subst is not None else Substitution.empty()
        try:
            return self._unify(left, right, subst)
        except _Conflict as conflict:
            outer_l, outer_r = subst.apply(left), subst.apply(right)
            shown_l, shown_r = describe(outer_l, outer_r)
            error = TypeMismatch(
                f"type mismatch: expected '{shown_l}', found '{shown_r}'",
                types=(outer_l, outer_r),
            )
            inner = _describe_pair(conflict.left, conflict.right)
            if inner != (shown_l, shown_r):
                error.notes.append(f"'{inner[0]}' is not compatible with '{inner[1]}'")
            raise error from None

    def unify_effects(self, left: EffectRow, right: EffectRow, subst: Substitution | None = None) -> Substitution:
        subst = subst if subst is not None else Substitution.empty()
        try:
            return self._unify_effects(left, right, subst)
        except _Conflict as conflict:
            shown = _describe_pair(conflict.left, conflict.right)
            raise TypeMismatch(
                f"effect mismatch: expected '{shown[0]}', found '{shown[1]}'"
            ) from None

    # ── Types ───────────────────────────────────────────────────

    def _unify(self, a: Type, b: Type, s: Substitution) -> Substitution:
        a = s.apply(a)
        b = s.apply(b)
        if a == b:
            return s

        if isinstance(a, TypeVariable) and isinstance(b, TypeVariable):
            # Keep the older variable so quantifier order follows creation order.
            older, newer = (a, b) if a.id < b.id else (b, a)
            return s.extend(newer, older)
        if isinstance(a, TypeVariable):
            return self._bind(a, b, s)
        if isinstance(b, TypeVariable):
            return self._bind(b, a, s)

        if isinstance(a, TypeConstructor) and isinstance(b, TypeConstructor):
            raise _Conflict(a, b)

        if isinstance(a, TypeApplication) and isinstance(b, TypeApplication):
            if len(a.args) != len(b.args):
                raise _Conflict(a, b)
            s = self._unify(a.constructor, b.constructor, s)
            for x, y in zip(a.args, b.args):
                s = self._unify(x, y, s)
            return s

        if isinstance(a, FunctionType) and isinstance(b, FunctionType):
            if len(a.params) != len(b.params):
                raise _Conflict(a, b)
            for x, y in zip(a.params, b.params):
                s = self._unify(x, y, s)
            s = self._unify(a.return_type, b.return_type, s)
            return self._unify_effects(a.effects, b.effects, s)

        if isinstance(a, RecordType) and isinstance(b, RecordType):
            return self._unify_records(a, b, s)

        raise _Conflict(a, b)

    def _bind(self, var: TypeVariable, ty: Type, s: Substitution) -> Substitution:
        if occurs(var, ty):
            shown_var, shown_ty = describe(var, ty)
            raise OccursCheckFailure(
                f"infinite type: '{shown_var}' occurs in '{shown_ty}'",
                types=(var, ty),
            )
        return s.extend(var, ty)

    # ── Record rows ─────────────────────────────────────────────

    def _unify_records(self, r1: RecordType, r2: RecordType, s: Substitution) -> Substitution:
        f1, f2 = r1.field_map(), r2.field_map()
        for name in sorted(f1.keys() & f2.keys()):
            s = self._unify(f1[name], f2[name], s)

        e1, e2 = r1.extension, r2.extension
        if (e1 is not None and e1 in s) or (e2 is not None and e2 in s):
            # A field binding reached one of the rows; start over on the result.
            return self._unify(r1, r2, s)
        only1 = {n: s.apply(t) for n, t in f1.items() if n not in f2}
        only2 = {n: s.apply(t) for n, t in f2.items() if n not in f1}
        if (only2 and e1 is None) or (only1 and e2 is None):
            raise _Conflict(r1, r2)
        if e1 is None and e2 is None:
            return s
        if e1 is None:
            assert e2 is not None
            return self._bind(e2, record_type(only1), s)
        if e2 is None:
            return self._bind(e1, record_type(only2), s)

        if e1 == e2:
            if only1 or only2:
                raise _Conflict(r1, r2)
            return s
        if not only1 and not only2:
            older, newer = (e1, e2) if e1.id < e2.id else (e2, e1)
            return s.extend(newer, older)
        if not only1:
            return self._bind(e1, record_type(only2, e2), s)
        if not only2:
            return self._bind(e2, record_type(only1, e1), s)

        tail = self.supply.fresh_type()
        logger.debug("merging records %s and %s through fresh row t%d", r1, r2, tail.id)
        s = self._bind(e1, record_type(only2, tail), s)
        return self._bind(e2, record_type(only1, tail), s)

    # ── Effect rows ─────────────────────────────────────────────

    def _unify_effects(self, r1: EffectRow, r2: EffectRow, s: Substitution) -> Substitution:
        r1 = s.apply_effects(r1)
        r2 = s.apply_effects(r2)
        if r1 == r2:
            return s
        if r1.extension is None and r2.extension is None:
            raise _Conflict(r1, r2)
        if r1.extension is None:
            r1, r2 = r2, r1

        l1, l2 = set(r1.labels), set(r2.labels)
        e1, e2 = r1.extension, r2.extension
        assert e1 is not None

        if e2 is None:
            # Open row against a closed one: the closed row must cover our labels.
            if not l1 <= l2:
                raise _Conflict(r1, r2)
            return s.extend(e1, effect_row(l2 - l1))

        if e1 == e2:
            raise _Conflict(r1, r2)
        if l1 == l2:
            older, newer = (e1, e2) if e1.id < e2.id else (e2, e1)
            return s.extend(newer, EffectRow((), older))
        if l1 <= l2:
            return s.extend(e1, effect_row(l2 - l1, e2))
        if l2 <= l1:
            return s.extend(e2, effect_row(l1 - l2, e1))

        tail = self.supply.fresh_effect()
        logger.debug("merging rows %s and %s through fresh tail e%d", r1, r2, tail.id)
        s = s.extend(e1, effect_row(l2 - l1, tail))
        return s.extend(e2, effect_row(l1 - l2, tail))


def _describe_pair(left: Type | EffectRow, right: Type | EffectRow) -> tuple[str, str]:
    if isinstance(left, EffectRow) or isinstance(right, EffectRow):
        return render_effects(left), render_effects(right)  # type: ignore[arg-type]
    shown = describe(left, right)
    return shown[0], shown[1]


def unify(
    left: Type,
    right: Type,
    subst: Substitution | None = None,
    supply: VariableSupply | None = None,
) -> Substitution:
    """Convenience wrapper: ``Unifier(supply).unify(left, right, subst)``."""
    return Unifier(supply).unify(left, right, subst)
