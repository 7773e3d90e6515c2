"""Trait constraint solving.

Obligations whose head is a concrete constructor are discharged against
the implementation registry; obligations still headed by a type variable
are kept as ``given`` clauses.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field

from effinfer.errors import InferenceError, UnresolvedTrait
from effinfer.printer import describe
from effinfer.substitution import Substitution
from effinfer.traits import ImplInfo, ImplRegistry
from effinfer.types import RECORD_HEAD, TraitConstraint, Type, VariableSupply, free_variables, head_of
from effinfer.unifier import Unifier

logger = logging.getLogger(__name__)

# Arbitrary bound on nested instance resolution (impl givens requiring
# further impls). Expected never to be hit by well-formed programs.
RESOLUTION_DEPTH_LIMIT = 100


@dataclass(frozen=True)
class ResolvedTrait:
    """An obligation discharged by a concrete implementation."""

    constraint: TraitConstraint
    impl: ImplInfo


@dataclass
class SolveResult:
    resolved: list[ResolvedTrait] = field(default_factory=list)
    givens: list[TraitConstraint] = field(default_factory=list)


class ConstraintSolver:
    """Resolves trait obligations against a frozen ImplRegistry."""

    def __init__(self, registry: ImplRegistry, supply: VariableSupply) -> None:
        self.registry = registry
        self.supply = supply
        self._unifier = Unifier(supply)

    def solve(self, obligations: Iterable[TraitConstraint], subst: Substitution) -> SolveResult:
        """Split *obligations* into resolved implementations and residual givens.

        Raises UnresolvedTrait when a concrete head has no implementation.
        """
        result = SolveResult()
        seen: set[TraitConstraint] = set()
        work: deque[tuple[TraitConstraint, int]] = deque(
            (TraitConstraint(o.trait, subst.apply(o.type), o.span), 0) for o in obligations
        )

        while work:
            constraint, depth = work.popleft()
            if constraint in seen:
                continue
            seen.add(constraint)

            head = head_of(constraint.type)
            if head is None:
                logger.debug("keeping %s %s as given", constraint.trait, constraint.type)
                result.givens.append(constraint)
                continue

            if depth >= RESOLUTION_DEPTH_LIMIT:
                raise UnresolvedTrait(
                    f"instance resolution for {constraint.trait} exceeded depth {RESOLUTION_DEPTH_LIMIT}",
                    constraint.span,
                    trait=constraint.trait,
                    target="",
                )

            impl = self.registry.lookup(constraint.trait, head)
            if impl is None:
                raise _no_instance(constraint)

            requirements = self._match(impl, constraint)
            logger.debug("resolved %s %s with %s", constraint.trait, head, impl.describe())
            result.resolved.append(ResolvedTrait(constraint, impl))
            work.extend((req, depth + 1) for req in requirements)

        return result

    def _match(self, impl: ImplInfo, constraint: TraitConstraint) -> list[TraitConstraint]:
        """Match *constraint* against *impl*, returning the impl's own requirements.

        Matching is one-way: it may bind the impl's variables but never the
        obligation's.
        """
        target, givens = impl.instantiate(self.supply, constraint.span)
        try:
            local = self._unifier.unify(target, constraint.type)
        except InferenceError:
            raise _no_instance(constraint) from None
        obligation_vars = set(free_variables(constraint.type))
        if any(var in local for var in obligation_vars):
            raise _no_instance(constraint)
        return [TraitConstraint(g.trait, local.apply(g.type), constraint.span) for g in givens]


def _no_instance(constraint: TraitConstraint) -> UnresolvedTrait:
    (shown,) = describe(constraint.type)
    target = _head_text(constraint.type, shown)
    return UnresolvedTrait(
        f"no implementation of {constraint.trait} for '{shown}'",
        constraint.span,
        trait=constraint.trait,
        target=target,
        types=(constraint.type,),
    )


def _head_text(ty: Type, shown: str) -> str:
    head = head_of(ty)
    if head == RECORD_HEAD:
        return ""
    return head if head is not None else shown
