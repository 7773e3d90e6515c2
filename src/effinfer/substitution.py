"""Persistent substitutions from type/effect variables to types/effect rows.

A Substitution is never updated in place: ``extend`` and ``compose``
return new values. Every binding is stored fully applied, so applying a
substitution once reaches its fixed point.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from effinfer.types import (
    EffectRow,
    EffectVariable,
    FunctionType,
    RecordType,
    Type,
    TypeApplication,
    TypeVariable,
    Var,
    apply_type,
    effect_row,
    record_type,
)


class Substitution:
    """An idempotent mapping ``variable -> Type | EffectRow``."""

    __slots__ = ("_types", "_effects")

    def __init__(
        self,
        types: Mapping[TypeVariable, Type] | None = None,
        effects: Mapping[EffectVariable, EffectRow] | None = None,
    ) -> None:
        self._types: Mapping[TypeVariable, Type] = MappingProxyType(dict(types or {}))
        self._effects: Mapping[EffectVariable, EffectRow] = MappingProxyType(dict(effects or {}))

    @classmethod
    def empty(cls) -> Substitution:
        return cls()

    # ── Queries ────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._types) + len(self._effects)

    def __contains__(self, var: object) -> bool:
        return var in self._types or var in self._effects

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Substitution):
            return NotImplemented
        return dict(self._types) == dict(other._types) and dict(self._effects) == dict(other._effects)

    def __hash__(self) -> int:
        return hash((frozenset(self._types.items()), frozenset(self._effects.items())))

    def __repr__(self) -> str:
        return f"Substitution(types={dict(self._types)!r}, effects={dict(self._effects)!r})"

    @property
    def types(self) -> Mapping[TypeVariable, Type]:
        return self._types

    @property
    def effects(self) -> Mapping[EffectVariable, EffectRow]:
        return self._effects

    def lookup(self, var: Var) -> Type | EffectRow | None:
        if isinstance(var, TypeVariable):
            return self._types.get(var)
        return self._effects.get(var)

    # ── Application ────────────────────────────────────────────

    def apply(self, ty: Type) -> Type:
        if not self._types and not self._effects:
            return ty
        if isinstance(ty, TypeVariable):
            return self._types.get(ty, ty)
        if isinstance(ty, TypeApplication):
            return apply_type(self.apply(ty.constructor), tuple(self.apply(a) for a in ty.args))
        if isinstance(ty, FunctionType):
            return FunctionType(
                tuple(self.apply(p) for p in ty.params),
                self.apply(ty.return_type),
                self.apply_effects(ty.effects),
            )
        if isinstance(ty, RecordType):
            return self.apply_record(ty)
        return ty

    def apply_record(self, record: RecordType) -> RecordType:
        fields = {name: self.apply(t) for name, t in record.fields}
        if record.extension is None:
            return record_type(fields)
        bound = self._types.get(record.extension)
        if bound is None:
            return record_type(fields, record.extension)
        if isinstance(bound, TypeVariable):
            return record_type(fields, bound)
        if not isinstance(bound, RecordType):
            raise TypeError(f"row variable bound to a non-record type: {bound!r}")
        # Bindings are stored applied, so the bound row is already flat.
        return record_type({**bound.field_map(), **fields}, bound.extension)

    def apply_effects(self, row: EffectRow) -> EffectRow:
        if row.extension is None:
            return row
        bound = self._effects.get(row.extension)
        if bound is None:
            return row
        return effect_row(row.labels + bound.labels, bound.extension)

    # ── Construction ───────────────────────────────────────────

    def extend(self, var: Var, value: Type | EffectRow) -> Substitution:
        """Return a new substitution that additionally binds *var* to *value*."""
        if isinstance(var, TypeVariable):
            if isinstance(value, EffectRow):
                raise TypeError("type variable bound to an effect row")
            single = Substitution({var: self.apply(value)})
        else:
            if not isinstance(value, EffectRow):
                raise TypeError("effect variable bound to a type")
            single = Substitution(effects={var: self.apply_effects(value)})
        return self.compose(single)

    def compose(self, other: Substitution) -> Substitution:
        """Substitution equivalent to applying *self* first, then *other*."""
        types = {v: other.apply(t) for v, t in self._types.items()}
        effects = {v: other.apply_effects(r) for v, r in self._effects.items()}
        for v, t in other._types.items():
            types.setdefault(v, t)
        for v, r in other._effects.items():
            effects.setdefault(v, r)
        # Drop trivial self-bindings introduced by row merging.
        types = {v: t for v, t in types.items() if t != v}
        effects = {v: r for v, r in effects.items() if r != EffectRow((), v)}
        return Substitution(types, effects)

    def restrict(self, keep: set[Var]) -> Substitution:
        """Only the bindings for variables in *keep*."""
        return Substitution(
            {v: t for v, t in self._types.items() if v in keep},
            {v: r for v, r in self._effects.items() if v in keep},
        )
