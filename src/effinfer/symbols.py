"""Symbol table with lexical scoping for the inference engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto

from effinfer.schemes import Scheme
from effinfer.source import NO_SPAN, Span
from effinfer.substitution import Substitution
from effinfer.types import TypeVariable, Var


class SymbolKind(Enum):
    FUNCTION = auto()
    CONSTRUCTOR = auto()
    TRAIT_METHOD = auto()
    EFFECT_OPERATION = auto()
    EXTERN = auto()
    VARIABLE = auto()
    PARAMETER = auto()


# Kinds whose declared signature is part of the report.
REPORTED_KINDS = frozenset({
    SymbolKind.FUNCTION, SymbolKind.TRAIT_METHOD,
    SymbolKind.EFFECT_OPERATION, SymbolKind.EXTERN,
})


@dataclass
class Symbol:
    name: str
    kind: SymbolKind
    scheme: Scheme
    span: Span = NO_SPAN
    owner: str | None = None  # trait or effect declaring this name


@dataclass(frozen=True)
class ConstructorInfo:
    name: str
    type_name: str
    arity: int
    scheme: Scheme
    span: Span = NO_SPAN


@dataclass(frozen=True)
class DataTypeInfo:
    name: str
    params: tuple[TypeVariable, ...]
    constructors: dict[str, ConstructorInfo] = field(default_factory=dict)
    span: Span = NO_SPAN


class Scope:
    """A single lexical scope level."""

    def __init__(self, parent: Scope | None = None, name: str = "") -> None:
        self.parent = parent
        self.name = name
        self._symbols: dict[str, Symbol] = {}

    def define(self, symbol: Symbol) -> Symbol | None:
        """Define a symbol in this scope. Returns existing symbol if duplicate."""
        existing = self._symbols.get(symbol.name)
        if existing is not None:
            return existing
        self._symbols[symbol.name] = symbol
        return None

    def replace(self, symbol: Symbol) -> None:
        self._symbols[symbol.name] = symbol

    def lookup(self, name: str) -> Symbol | None:
        """Look up a name in this scope and all parent scopes."""
        sym = self._symbols.get(name)
        if sym is not None:
            return sym
        if self.parent is not None:
            return self.parent.lookup(name)
        return None

    def all_symbols(self) -> list[Symbol]:
        """Return all symbols defined in this scope."""
        return list(self._symbols.values())

    def free_variables(self, subst: Substitution, stop: Scope | None = None) -> set[Var]:
        """Free variables of every scheme from this scope up to *stop* (exclusive)."""
        found: set[Var] = set()
        scope: Scope | None = self
        while scope is not None and scope is not stop:
            for sym in scope._symbols.values():
                found.update(sym.scheme.apply(subst).free_variables())
            scope = scope.parent
        return found


class SymbolTable:
    """Module-level names plus the data type registry."""

    def __init__(self) -> None:
        self.globals = Scope(name="module")
        self._types: dict[str, DataTypeInfo] = {}
        self._constructors: dict[str, ConstructorInfo] = {}

    def define(self, symbol: Symbol) -> Symbol | None:
        return self.globals.define(symbol)

    def lookup(self, name: str) -> Symbol | None:
        return self.globals.lookup(name)

    def define_type(self, info: DataTypeInfo) -> DataTypeInfo | None:
        """Register a data type. Returns the existing one if the name is taken."""
        existing = self._types.get(info.name)
        if existing is not None:
            return existing
        self._types[info.name] = info
        for ctor in info.constructors.values():
            self._constructors[ctor.name] = ctor
        return None

    def define_constructor(self, ctor: ConstructorInfo) -> ConstructorInfo | None:
        """Attach a constructor to its (already defined) data type."""
        existing = self._constructors.get(ctor.name)
        if existing is not None:
            return existing
        self._constructors[ctor.name] = ctor
        owner = self._types.get(ctor.type_name)
        if owner is not None:
            owner.constructors[ctor.name] = ctor
        return None

    def resolve_type(self, name: str) -> DataTypeInfo | None:
        return self._types.get(name)

    def resolve_constructor(self, name: str) -> ConstructorInfo | None:
        return self._constructors.get(name)

    def reported(self) -> list[Symbol]:
        return [s for s in self.globals.all_symbols() if s.kind in REPORTED_KINDS]
