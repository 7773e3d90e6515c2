"""Resolved type representations for the inference engine.

These are distinct from AST TypeExpr nodes (which are syntactic).
Resolved types are produced during registration and inference and are
never mutated once built; bindings live in a Substitution instead.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from effinfer.source import NO_SPAN, Span

if TYPE_CHECKING:
    from effinfer.substitution import Substitution

# ── Variables ───────────────────────────────────────────────────


@dataclass(frozen=True)
class TypeVariable:
    id: int
    name: str | None = field(default=None, compare=False)  # display hint only


@dataclass(frozen=True)
class EffectVariable:
    id: int
    name: str | None = field(default=None, compare=False)


Var = TypeVariable | EffectVariable


# ── Resolved types ──────────────────────────────────────────────


@dataclass(frozen=True)
class TypeConstructor:
    name: str


@dataclass(frozen=True)
class TypeApplication:
    constructor: Type
    args: tuple[Type, ...]


@dataclass(frozen=True)
class EffectRow:
    """A set of effect labels, optionally extended by an effect variable.

    ``EffectRow()`` is ``pure``; ``EffectRow((), e)`` is the bare variable ``e``.
    Labels are kept sorted and unique; build rows through ``effect_row``.
    """

    labels: tuple[str, ...] = ()
    extension: EffectVariable | None = None

    @property
    def is_pure(self) -> bool:
        return not self.labels and self.extension is None

    @property
    def is_closed(self) -> bool:
        return self.extension is None


PURE = EffectRow()


def effect_row(labels: tuple[str, ...] | list[str] = (), extension: EffectVariable | None = None) -> EffectRow:
    return EffectRow(tuple(sorted(set(labels))), extension)


@dataclass(frozen=True)
class FunctionType:
    params: tuple[Type, ...]
    return_type: Type
    effects: EffectRow = PURE


@dataclass(frozen=True)
class RecordType:
    """Named fields, optionally extended by a row variable.

    ``RecordType((("x", INT),), r)`` is any record with at least an ``Int``
    field ``x``; without the extension it has exactly that field. Fields
    are kept sorted by name; build records through ``record_type``.
    """

    fields: tuple[tuple[str, Type], ...] = ()
    extension: TypeVariable | None = None

    def field_map(self) -> dict[str, Type]:
        return dict(self.fields)


def record_type(fields: Mapping[str, Type] | None = None, extension: TypeVariable | None = None) -> RecordType:
    return RecordType(tuple(sorted((fields or {}).items())), extension)


Type = TypeVariable | TypeConstructor | TypeApplication | FunctionType | RecordType


@dataclass(frozen=True)
class TraitConstraint:
    """The obligation "``type`` must implement ``trait``"."""

    trait: str
    type: Type
    span: Span = field(default=NO_SPAN, compare=False)


# ── Built-in type constants ─────────────────────────────────────

INT = TypeConstructor("Int")
FLOAT = TypeConstructor("Float")
STRING = TypeConstructor("String")
CHAR = TypeConstructor("Char")
BOOL = TypeConstructor("Bool")
UNIT = TypeConstructor("Unit")

BUILTINS: dict[str, Type] = {
    "Int": INT,
    "Float": FLOAT,
    "String": STRING,
    "Char": CHAR,
    "Bool": BOOL,
    "Unit": UNIT,
}

LITERAL_TYPES: dict[str, Type] = {
    "int": INT,
    "float": FLOAT,
    "string": STRING,
    "char": CHAR,
    "bool": BOOL,
    "unit": UNIT,
}

# Head symbols used for function and record types when looking up implementations.
FUNCTION_HEAD = "->"
RECORD_HEAD = "{}"


# ── Fresh variables ─────────────────────────────────────────────


class VariableSupply:
    """Source of fresh type and effect variables for one checking pass.

    The counter is shared by every binding of a pass and is safe to use
    from several worker threads.
    """

    def __init__(self, start: int = 0) -> None:
        self._next = start
        self._lock = threading.Lock()

    def _take(self) -> int:
        with self._lock:
            n = self._next
            self._next += 1
            return n

    def fresh_type(self, name: str | None = None) -> TypeVariable:
        return TypeVariable(self._take(), name)

    def fresh_effect(self, name: str | None = None) -> EffectVariable:
        return EffectVariable(self._take(), name)


# ── Type utilities ──────────────────────────────────────────────


def apply_type(constructor: Type, args: tuple[Type, ...] | list[Type]) -> Type:
    """Build ``constructor args``, flattening nested applications."""
    args = tuple(args)
    if not args:
        return constructor
    if isinstance(constructor, TypeApplication):
        return TypeApplication(constructor.constructor, constructor.args + args)
    return TypeApplication(constructor, args)


def head_of(ty: Type) -> str | None:
    """Name of the outermost constructor, or None while it is a variable."""
    if isinstance(ty, TypeConstructor):
        return ty.name
    if isinstance(ty, TypeApplication):
        return head_of(ty.constructor)
    if isinstance(ty, FunctionType):
        return FUNCTION_HEAD
    if isinstance(ty, RecordType):
        return RECORD_HEAD
    return None


def free_variables(ty: Type, subst: Substitution | None = None) -> list[Var]:
    """Unbound type and effect variables of *ty*, in order of first appearance."""
    if subst is not None:
        ty = subst.apply(ty)
    found: list[Var] = []
    _collect(ty, found)
    return found


def effect_variables(row: EffectRow) -> list[Var]:
    return [row.extension] if row.extension is not None else []


def _collect(ty: Type, found: list[Var]) -> None:
    if isinstance(ty, TypeVariable):
        if ty not in found:
            found.append(ty)
    elif isinstance(ty, TypeApplication):
        _collect(ty.constructor, found)
        for arg in ty.args:
            _collect(arg, found)
    elif isinstance(ty, FunctionType):
        for param in ty.params:
            _collect(param, found)
        _collect(ty.return_type, found)
        if ty.effects.extension is not None and ty.effects.extension not in found:
            found.append(ty.effects.extension)
    elif isinstance(ty, RecordType):
        for _, field_type in ty.fields:
            _collect(field_type, found)
        if ty.extension is not None and ty.extension not in found:
            found.append(ty.extension)


def occurs(var: Var, ty: Type, subst: Substitution | None = None) -> bool:
    """Does *var* appear free in *ty*, following *subst*?"""
    return var in free_variables(ty, subst)


def count_occurrences(var: Var, ty: Type) -> int:
    """Number of times *var* appears in *ty* (no substitution applied)."""
    if isinstance(ty, TypeVariable):
        return 1 if ty == var else 0
    if isinstance(ty, TypeApplication):
        return count_occurrences(var, ty.constructor) + sum(
            count_occurrences(var, a) for a in ty.args
        )
    if isinstance(ty, FunctionType):
        n = sum(count_occurrences(var, p) for p in ty.params)
        n += count_occurrences(var, ty.return_type)
        if ty.effects.extension == var:
            n += 1
        return n
    if isinstance(ty, RecordType):
        n = sum(count_occurrences(var, t) for _, t in ty.fields)
        return n + (1 if ty.extension == var else 0)
    return 0


def close_lone_effects(ty: Type, candidates: list[EffectVariable] | None = None) -> Type:
    """Drop effect variables that occur exactly once in *ty*.

    A tail variable mentioned nowhere else cannot be constrained by a
    caller, so the row it extends is closed. Only variables listed in
    *candidates* are considered when it is given.
    """
    lone = {
        v for v in free_variables(ty)
        if isinstance(v, EffectVariable)
        and (candidates is None or v in candidates)
        and count_occurrences(v, ty) == 1
    }
    if not lone:
        return ty
    return _drop_tails(ty, lone)


def _drop_tails(ty: Type, lone: set[Var]) -> Type:
    if isinstance(ty, TypeApplication):
        return TypeApplication(
            _drop_tails(ty.constructor, lone),
            tuple(_drop_tails(a, lone) for a in ty.args),
        )
    if isinstance(ty, FunctionType):
        effects = ty.effects
        if effects.extension in lone:
            effects = EffectRow(effects.labels, None)
        return FunctionType(
            tuple(_drop_tails(p, lone) for p in ty.params),
            _drop_tails(ty.return_type, lone),
            effects,
        )
    if isinstance(ty, RecordType):
        return RecordType(tuple((n, _drop_tails(t, lone)) for n, t in ty.fields), ty.extension)
    return ty


def type_name(ty: Type) -> str:
    """Raw name for debug output; user-facing text goes through the printer."""
    if isinstance(ty, TypeVariable):
        return ty.name or f"t{ty.id}"
    if isinstance(ty, TypeConstructor):
        return ty.name
    if isinstance(ty, TypeApplication):
        args = " ".join(type_name(a) for a in ty.args)
        return f"({type_name(ty.constructor)} {args})"
    if isinstance(ty, FunctionType):
        params = " - ".join(type_name(p) for p in ty.params)
        return f"({params} -> {type_name(ty.return_type)} {row_name(ty.effects)})"
    if isinstance(ty, RecordType):
        parts = [f"{n}: {type_name(t)}" for n, t in ty.fields]
        if ty.extension is not None:
            parts.append(".." + type_name(ty.extension))
        return "{" + ", ".join(parts) + "}"
    return str(ty)


def row_name(row: EffectRow) -> str:
    if row.is_pure:
        return "pure"
    parts = list(row.labels)
    if row.extension is not None:
        parts.append(row.extension.name or f"e{row.extension.id}")
    return "can " + ", ".join(parts)
