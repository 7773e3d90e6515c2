"""Deterministic rendering of types, constraints and inferred signatures."""

from __future__ import annotations

from collections.abc import Iterable
from itertools import count
from typing import TYPE_CHECKING

from effinfer.types import (
    EffectRow,
    FunctionType,
    RecordType,
    TraitConstraint,
    Type,
    TypeApplication,
    TypeConstructor,
    TypeVariable,
    Var,
    free_variables,
)

if TYPE_CHECKING:
    from effinfer.schemes import InferredSignature

_LETTERS = "abcdefghijklmnopqrstuvwxyz"


def _name_stream():
    for n in count():
        suffix = str(n) if n else ""
        for letter in _LETTERS:
            yield letter + suffix


def assign_names(variables: Iterable[Var]) -> dict[Var, str]:
    """Give each variable a display name, in the order given.

    Declared names are kept when no earlier variable took them; everything
    else draws the first unused name from ``a, b, ..., z, a1, ...``.
    """
    ordered = list(dict.fromkeys(variables))
    names: dict[Var, str] = {}
    taken: set[str] = set()
    for var in ordered:
        if var.name and var.name not in taken:
            names[var] = var.name
            taken.add(var.name)
    stream = _name_stream()
    for var in ordered:
        if var in names:
            continue
        candidate = next(stream)
        while candidate in taken:
            candidate = next(stream)
        names[var] = candidate
        taken.add(candidate)
    return names


def render_type(ty: Type, names: dict[Var, str] | None = None) -> str:
    if names is None:
        names = assign_names(sorted(free_variables(ty), key=lambda v: v.id))
    if isinstance(ty, TypeVariable):
        return names.get(ty, f"t{ty.id}")
    if isinstance(ty, TypeConstructor):
        return ty.name
    if isinstance(ty, TypeApplication):
        head = _wrap(ty.constructor, names, wrap_applications=False)
        args = " ".join(_wrap(a, names, wrap_applications=True) for a in ty.args)
        return f"{head} {args}"
    if isinstance(ty, FunctionType):
        if ty.params:
            params = " - ".join(
                _wrap(p, names, wrap_applications=False) for p in ty.params
            )
        else:
            params = "()"
        ret = _wrap(ty.return_type, names, wrap_applications=False)
        return f"{params} -> {ret} {render_effects(ty.effects, names)}"
    if isinstance(ty, RecordType):
        parts = [f"{name}: {_wrap(t, names, wrap_applications=False)}" for name, t in ty.fields]
        if ty.extension is not None:
            parts.append(".." + render_type(ty.extension, names))
        return "{" + ", ".join(parts) + "}"
    return str(ty)


def _wrap(ty: Type, names: dict[Var, str], *, wrap_applications: bool) -> str:
    text = render_type(ty, names)
    if isinstance(ty, FunctionType) or (wrap_applications and isinstance(ty, TypeApplication)):
        return f"({text})"
    return text


def render_effects(row: EffectRow, names: dict[Var, str] | None = None) -> str:
    if row.is_pure:
        return "pure"
    parts = list(row.labels)
    if row.extension is not None:
        ext = row.extension
        parts.append((names or {}).get(ext) or ext.name or f"e{ext.id}")
    return "can " + ", ".join(parts)


def render_constraint(constraint: TraitConstraint, names: dict[Var, str] | None = None) -> str:
    target = render_type(constraint.type, names)
    if isinstance(constraint.type, (TypeApplication, FunctionType)):
        target = f"({target})"
    return f"{constraint.trait} {target}"


def order_givens(givens: Iterable[TraitConstraint]) -> list[TraitConstraint]:
    """Deduplicate, then group by trait in first-use order."""
    unique = list(dict.fromkeys(givens))
    traits = list(dict.fromkeys(g.trait for g in unique))
    return [g for trait in traits for g in unique if g.trait == trait]


def render_signature(sig: InferredSignature) -> str:
    """``name : forall vs. (type)`` plus an indented ``given`` line.

    Quantifiers keep creation order; display names are handed out in order
    of first appearance in the type, then in the givens.
    """
    givens = order_givens(sig.givens)
    appearance = free_variables(sig.type)
    for given in givens:
        appearance.extend(free_variables(given.type))
    names = assign_names([*appearance, *sig.variables])
    body = render_type(sig.type, names)
    if sig.effects.labels:
        # A value's own effects; its row variable is never constrained by a caller.
        if isinstance(sig.type, FunctionType):
            body = f"({body})"
        body += " " + render_effects(EffectRow(sig.effects.labels))
    if sig.variables:
        quantified = " ".join(names[v] for v in sig.variables)
        line = f"{sig.name} : forall {quantified}. ({body})"
    else:
        line = f"{sig.name} : {body}"
    if givens:
        clauses = ", ".join(render_constraint(g, names) for g in givens)
        line += f"\n  given {clauses}"
    return line


def render_report(signatures: Iterable[InferredSignature]) -> str:
    """All signatures, one entry per binding, sorted by binding name."""
    return "\n".join(
        render_signature(sig) for sig in sorted(signatures, key=lambda s: s.name)
    )


def describe(*types: Type) -> list[str]:
    """Render several types with one shared naming, for diagnostics."""
    variables: list[Var] = []
    for ty in types:
        variables.extend(free_variables(ty))
    names = assign_names(sorted(dict.fromkeys(variables), key=lambda v: v.id))
    return [render_type(ty, names) for ty in types]
