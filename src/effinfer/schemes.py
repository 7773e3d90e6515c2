"""Type schemes: generalization, instantiation and inferred signatures."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from effinfer.printer import render_signature
from effinfer.source import NO_SPAN, Span
from effinfer.substitution import Substitution
from effinfer.types import (
    PURE,
    EffectRow,
    EffectVariable,
    TraitConstraint,
    Type,
    TypeVariable,
    Var,
    VariableSupply,
    close_lone_effects,
    free_variables,
)


@dataclass(frozen=True)
class Scheme:
    """``forall variables. type given givens``."""

    variables: tuple[Var, ...]
    type: Type
    givens: tuple[TraitConstraint, ...] = ()

    @classmethod
    def mono(cls, ty: Type) -> Scheme:
        return cls((), ty)

    def renaming(self, supply: VariableSupply, fixed: dict[TypeVariable, Type] | None = None) -> Substitution:
        """Map each quantified variable to a fresh one, or to its entry in *fixed*."""
        fixed = fixed or {}
        types: dict[TypeVariable, Type] = {}
        effects: dict[EffectVariable, EffectRow] = {}
        for var in self.variables:
            if isinstance(var, TypeVariable):
                types[var] = fixed[var] if var in fixed else supply.fresh_type(var.name)
            else:
                effects[var] = EffectRow((), supply.fresh_effect(var.name))
        return Substitution(types, effects)

    def instantiate(self, supply: VariableSupply, span: Span = NO_SPAN) -> tuple[Type, list[TraitConstraint]]:
        """Replace each quantified variable by a fresh one.

        Fresh variables are drawn in quantifier order, so the instance keeps
        the relative order of the scheme. Givens are copied onto the fresh
        variables and tagged with *span* (the use site).
        """
        if not self.variables:
            return self.type, [TraitConstraint(g.trait, g.type, span) for g in self.givens]
        mapping = self.renaming(supply)
        instance = mapping.apply(self.type)
        givens = [TraitConstraint(g.trait, mapping.apply(g.type), span) for g in self.givens]
        return instance, givens

    def free_variables(self) -> list[Var]:
        found = free_variables(self.type)
        for given in self.givens:
            found.extend(v for v in free_variables(given.type) if v not in found)
        return [v for v in found if v not in self.variables]

    def apply(self, subst: Substitution) -> Scheme:
        """Apply *subst* to the free (non-quantified) part of the scheme."""
        if not len(subst):
            return self
        outer = subst.restrict(set(self.free_variables()))
        return Scheme(
            self.variables,
            outer.apply(self.type),
            tuple(TraitConstraint(g.trait, outer.apply(g.type), g.span) for g in self.givens),
        )


def generalize(
    ty: Type,
    givens: Iterable[TraitConstraint] = (),
    env_free: Iterable[Var] = (),
) -> Scheme:
    """Quantify every variable of *ty* that is not free in the environment.

    Effect variables occurring only once are closed first. Quantifiers are
    ordered by creation (variable id).
    """
    env = set(env_free)
    candidates = [v for v in free_variables(ty) if isinstance(v, EffectVariable) and v not in env]
    ty = close_lone_effects(ty, candidates)
    quantified = sorted((v for v in free_variables(ty) if v not in env), key=lambda v: v.id)
    return Scheme(tuple(quantified), ty, tuple(dict.fromkeys(givens)))


@dataclass(frozen=True)
class InferredSignature:
    """The final, fully substituted result for one top-level binding."""

    name: str
    variables: tuple[Var, ...]
    type: Type
    givens: tuple[TraitConstraint, ...] = ()
    effects: EffectRow = PURE  # effects of evaluating the binding itself

    @classmethod
    def from_scheme(cls, name: str, scheme: Scheme, effects: EffectRow = PURE) -> InferredSignature:
        return cls(name, scheme.variables, scheme.type, scheme.givens, effects)

    @property
    def effect_variables(self) -> tuple[EffectVariable, ...]:
        return tuple(v for v in self.variables if isinstance(v, EffectVariable))

    def to_scheme(self) -> Scheme:
        return Scheme(self.variables, self.type, self.givens)

    def render(self) -> str:
        return render_signature(self)
