"""Traits, implementations, and the registry used to resolve them.

The registry is populated from every trait and impl declaration before
any binding is inferred, then frozen; inference only reads it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from effinfer.ast_nodes import FunctionDef
from effinfer.schemes import Scheme
from effinfer.source import NO_SPAN, Span
from effinfer.types import TraitConstraint, Type, TypeVariable, VariableSupply


@dataclass(frozen=True)
class TraitInfo:
    name: str
    param: TypeVariable
    methods: dict[str, Scheme] = field(default_factory=dict)
    span: Span = NO_SPAN


@dataclass(frozen=True)
class ImplInfo:
    trait: str
    head: str
    target: Type
    variables: tuple[TypeVariable, ...] = ()
    givens: tuple[TraitConstraint, ...] = ()
    definitions: dict[str, FunctionDef] = field(default_factory=dict)
    span: Span = NO_SPAN

    def instantiate(self, supply: VariableSupply, span: Span = NO_SPAN) -> tuple[Type, list[TraitConstraint]]:
        """Fresh copy of the target type and the givens it requires."""
        return Scheme(self.variables, self.target, self.givens).instantiate(supply, span)

    def describe(self) -> str:
        return f"impl {self.trait} {self.head}"


class ImplRegistry:
    """Lookup table keyed by (trait name, head constructor name)."""

    def __init__(self) -> None:
        self._traits: dict[str, TraitInfo] = {}
        self._impls: dict[tuple[str, str], ImplInfo] = {}
        self._frozen = False

    # ── Registration ───────────────────────────────────────────

    def _check_open(self) -> None:
        if self._frozen:
            raise RuntimeError("implementation registry is frozen")

    def register_trait(self, info: TraitInfo) -> TraitInfo | None:
        """Register a trait. Returns the existing trait if the name is taken."""
        self._check_open()
        existing = self._traits.get(info.name)
        if existing is not None:
            return existing
        self._traits[info.name] = info
        return None

    def register_impl(self, impl: ImplInfo) -> ImplInfo | None:
        """Register an impl. Returns the conflicting impl if one exists."""
        self._check_open()
        key = (impl.trait, impl.head)
        existing = self._impls.get(key)
        if existing is not None:
            return existing
        self._impls[key] = impl
        return None

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ── Queries ────────────────────────────────────────────────

    def trait(self, name: str) -> TraitInfo | None:
        return self._traits.get(name)

    def traits(self) -> list[TraitInfo]:
        return list(self._traits.values())

    def lookup(self, trait: str, head: str) -> ImplInfo | None:
        return self._impls.get((trait, head))

    def impls(self) -> list[ImplInfo]:
        return list(self._impls.values())
