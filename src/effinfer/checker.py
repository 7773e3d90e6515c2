"""Two-pass checker for a module of declarations.

Pass 1: Register data types, effects, traits, externs, implementations and
function names, then freeze the implementation registry.
Pass 2: Infer every binding in dependency order, solve its trait
obligations, and generalize (or check it against its declared type).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from effinfer.annotations import TypeResolver, declared_scheme
from effinfer.ast_nodes import (
    Annotated,
    BindingPattern,
    Call,
    EffectDef,
    Expr,
    ExternDef,
    FunctionDef,
    If,
    ImplDef,
    Lambda,
    Let,
    Match,
    MemberAccess,
    Module,
    Pattern,
    RecordExpr,
    Sequence,
    TraitDef,
    TypeDef,
    Variable,
    VariantPattern,
)
from effinfer.errors import (
    ArityMismatch,
    Diagnostic,
    DiagnosticLabel,
    InferenceError,
    Severity,
    TypeMismatch,
    UnresolvedTrait,
)
from effinfer.inference import Inferer
from effinfer.printer import describe, render_constraint, render_report
from effinfer.schemes import InferredSignature, Scheme, generalize
from effinfer.solver import ConstraintSolver, ResolvedTrait
from effinfer.source import Span
from effinfer.symbols import (
    ConstructorInfo,
    DataTypeInfo,
    Scope,
    Symbol,
    SymbolKind,
    SymbolTable,
)
from effinfer.traits import ImplInfo, ImplRegistry, TraitInfo
from effinfer.types import (
    RECORD_HEAD,
    EffectRow,
    FunctionType,
    TraitConstraint,
    Type,
    TypeConstructor,
    TypeVariable,
    VariableSupply,
    apply_type,
    free_variables,
    head_of,
)

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Signatures of every binding that checked, plus the names that failed."""

    signatures: dict[str, InferredSignature] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    trait_bindings: dict[str, list[ResolvedTrait]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def report(self) -> str:
        return render_report(self.signatures.values())


@dataclass
class _Binding:
    """One unit of pass 2: a top-level function or an impl method."""

    key: str
    name: str
    defn: FunctionDef
    declared: Scheme | None = None
    impl: ImplInfo | None = None


@dataclass
class _Outcome:
    signatures: dict[str, InferredSignature] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    resolved: dict[str, list[ResolvedTrait]] = field(default_factory=dict)


class Checker:
    """Type and effect checker for a single module."""

    def __init__(self, *, workers: int = 1, supply: VariableSupply | None = None) -> None:
        self.symbols = SymbolTable()
        self.registry = ImplRegistry()
        self.supply = supply if supply is not None else VariableSupply()
        self.workers = max(1, workers)
        self.diagnostics: list[Diagnostic] = []
        self._effects: set[str] = set()
        self._bindings: dict[str, _Binding] = {}
        self._failed: set[str] = set()
        self._result = CheckResult()

    # ── Public API ──────────────────────────────────────────────

    def check(self, module: Module) -> CheckResult:
        """Run both passes on a module. Raises nothing; check self.diagnostics."""
        decls = module.declarations

        # Pass 1: registration. Order matters: types and effects are
        # referenced by every signature, traits by impls and givens.
        for decl in decls:
            if isinstance(decl, EffectDef):
                self._register_effect_name(decl)
            elif isinstance(decl, TypeDef):
                self._register_type_name(decl)
        for decl in decls:
            if isinstance(decl, TypeDef):
                self._register_constructors(decl)
        for decl in decls:
            if isinstance(decl, TraitDef):
                self._register_trait(decl)
        for decl in decls:
            if isinstance(decl, EffectDef):
                self._register_effect_operations(decl)
            elif isinstance(decl, ExternDef):
                self._register_extern(decl)
        for decl in decls:
            if isinstance(decl, ImplDef):
                self._register_impl(decl)
            elif isinstance(decl, FunctionDef):
                self._register_function(decl)
        self.registry.freeze()
        logger.debug(
            "registered %d trait(s), %d impl(s), %d binding(s)",
            len(self.registry.traits()), len(self.registry.impls()), len(self._bindings),
        )

        # Pass 2: inference, one dependency wave at a time.
        for wave in self._waves():
            self._run_wave(wave)

        for sym in self.symbols.reported():
            if sym.kind == SymbolKind.FUNCTION:
                continue
            self._result.signatures[sym.name] = InferredSignature.from_scheme(sym.name, sym.scheme)
        self._result.failed = sorted(self._failed)
        return self._result

    def has_errors(self) -> bool:
        return any(d.severity == Severity.ERROR for d in self.diagnostics)

    # ── Error helpers ───────────────────────────────────────────

    def _error(self, code: str, message: str, span: Span, binding: str | None = None) -> None:
        self.diagnostics.append(Diagnostic(
            severity=Severity.ERROR,
            code=code,
            message=message,
            labels=[DiagnosticLabel(span=span, message="")],
        ))
        if binding is not None:
            self._failed.add(binding)

    def _report(self, err: InferenceError, span: Span, binding: str | None = None) -> None:
        self.diagnostics.append(err.at(span, binding).to_diagnostic())
        if binding is not None:
            self._failed.add(binding)

    def _resolver(self, **kwargs) -> TypeResolver:
        return TypeResolver(
            self.symbols,
            self.supply,
            traits={t.name for t in self.registry.traits()},
            effects=self._effects,
            **kwargs,
        )

    def _define(self, symbol: Symbol) -> bool:
        existing = self.symbols.define(symbol)
        if existing is not None:
            self._error("E301", f"duplicate definition of '{symbol.name}'", symbol.span)
            return False
        return True

    # ── Pass 1: Registration ────────────────────────────────────

    def _register_type_name(self, decl: TypeDef) -> None:
        params = tuple(self.supply.fresh_type(p) for p in decl.params)
        info = DataTypeInfo(decl.name, params, {}, decl.span)
        if self.symbols.define_type(info) is not None:
            self._error("E301", f"duplicate definition of type '{decl.name}'", decl.span)

    def _register_constructors(self, decl: TypeDef) -> None:
        info = self.symbols.resolve_type(decl.name)
        if info is None or info.span != decl.span:
            return
        result = apply_type(TypeConstructor(decl.name), info.params)
        variables = {v.name: v for v in info.params if v.name}
        for variant in decl.variants:
            resolver = self._resolver(variables=variables, allow_new_variables=False)
            try:
                fields = tuple(resolver.resolve(f) for f in variant.fields)
            except InferenceError as err:
                self._report(err, variant.span)
                continue
            ty: Type = FunctionType(fields, result) if fields else result
            scheme = Scheme(info.params, ty)
            ctor = ConstructorInfo(variant.name, decl.name, len(fields), scheme, variant.span)
            if self.symbols.define_constructor(ctor) is not None:
                self._error("E301", f"duplicate constructor '{variant.name}'", variant.span)
                continue
            self._define(Symbol(variant.name, SymbolKind.CONSTRUCTOR, scheme, variant.span, decl.name))

    def _register_effect_name(self, decl: EffectDef) -> None:
        if decl.name in self._effects:
            self._error("E301", f"duplicate definition of effect '{decl.name}'", decl.span)
            return
        self._effects.add(decl.name)

    def _register_effect_operations(self, decl: EffectDef) -> None:
        for op in decl.operations:
            try:
                scheme = declared_scheme(self._resolver(), op.type_expr, closed_effect=decl.name)
            except InferenceError as err:
                self._report(err, op.span)
                continue
            self._define(Symbol(op.name, SymbolKind.EFFECT_OPERATION, scheme, op.span, decl.name))

    def _register_trait(self, decl: TraitDef) -> None:
        if self.registry.trait(decl.name) is not None:
            self._error("E301", f"duplicate definition of trait '{decl.name}'", decl.span)
            return
        param = self.supply.fresh_type(decl.param)
        # The trait itself must be resolvable inside its own method signatures.
        known = {t.name for t in self.registry.traits()} | {decl.name}
        methods: dict[str, Scheme] = {}
        for method in decl.methods:
            resolver = TypeResolver(
                self.symbols, self.supply,
                variables={decl.param: param}, traits=known, effects=self._effects,
            )
            given = TraitConstraint(decl.name, param, method.span)
            try:
                scheme = declared_scheme(resolver, method.type_expr, extra_givens=[given])
            except InferenceError as err:
                self._report(err, method.span)
                continue
            if self._define(Symbol(method.name, SymbolKind.TRAIT_METHOD, scheme, method.span, decl.name)):
                methods[method.name] = scheme
        self.registry.register_trait(TraitInfo(decl.name, param, methods, decl.span))
        logger.debug("registered trait %s %s with %s", decl.name, decl.param, sorted(methods))

    def _register_extern(self, decl: ExternDef) -> None:
        try:
            scheme = declared_scheme(self._resolver(), decl.type_expr)
        except InferenceError as err:
            self._report(err, decl.span)
            return
        self._define(Symbol(decl.name, SymbolKind.EXTERN, scheme, decl.span))

    def _register_impl(self, decl: ImplDef) -> None:
        trait = self.registry.trait(decl.trait)
        if trait is None:
            self._error("E422", f"undefined trait '{decl.trait}'", decl.span)
            return
        resolver = self._resolver()
        try:
            target = resolver.resolve(decl.target)
            givens = tuple(resolver.resolve_given(g) for g in decl.givens)
        except InferenceError as err:
            self._report(err, decl.span)
            return
        head = head_of(target)
        if head is None:
            self._error("E423", f"implementation of {decl.trait} needs a concrete type, not a variable", decl.span)
            return
        if head == RECORD_HEAD:
            self._error("E423", f"implementation of {decl.trait} needs a named type, not a record", decl.span)
            return

        variables = list(free_variables(target))
        for given in givens:
            variables.extend(v for v in free_variables(given.type) if v not in variables)
        definitions = {d.name: d for d in decl.definitions}
        impl = ImplInfo(
            decl.trait, head, target,
            tuple(v for v in variables if isinstance(v, TypeVariable)),
            givens, definitions, decl.span,
        )

        existing = self.registry.register_impl(impl)
        if existing is not None:
            self._error("E421", f"conflicting implementations of {decl.trait} for '{head}'", decl.span)
            return

        for name in trait.methods:
            if name not in definitions:
                self._error("E423", f"{impl.describe()} is missing method '{name}'", decl.span)
        for defn in decl.definitions:
            if defn.name not in trait.methods:
                self._error("E423", f"'{defn.name}' is not a method of trait {decl.trait}", defn.span)
                continue
            key = f"{impl.describe()}.{defn.name}"
            self._bindings[key] = _Binding(key, defn.name, defn, impl=impl)

    def _register_function(self, decl: FunctionDef) -> None:
        declared: Scheme | None = None
        if decl.signature is not None:
            try:
                declared = declared_scheme(self._resolver(), decl.signature.type_expr, decl.signature.givens)
            except InferenceError as err:
                self._report(err, decl.span, decl.name)
                return
        placeholder = declared or Scheme.mono(self.supply.fresh_type())
        if not self._define(Symbol(decl.name, SymbolKind.FUNCTION, placeholder, decl.span)):
            return
        self._bindings[decl.name] = _Binding(decl.name, decl.name, decl, declared=declared)

    # ── Pass 2: Ordering ────────────────────────────────────────

    def _dependencies(self, binding: _Binding) -> set[str]:
        """Top-level functions referenced by *binding*, including ones that failed to register."""
        names = _references(binding.defn.body, frozenset(_pattern_names(binding.defn.params)))
        return {n for n in names if n in self._bindings or n in self._failed}

    def _waves(self) -> list[list[list[str]]]:
        """Strongly connected components grouped into dependency levels."""
        edges = {
            key: {d for d in self._dependencies(b) if d in self._bindings}
            for key, b in self._bindings.items()
        }
        components = _strongly_connected(list(self._bindings), edges)
        level: dict[str, int] = {}
        waves: list[list[list[str]]] = []
        for comp in components:
            members = set(comp)
            deps = {d for k in comp for d in edges[k] if d not in members}
            n = max((level[d] + 1 for d in deps), default=0)
            for key in comp:
                level[key] = n
            while len(waves) <= n:
                waves.append([])
            waves[n].append(comp)
        return waves

    def _run_wave(self, wave: list[list[str]]) -> None:
        if self.workers > 1 and len(wave) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                outcomes = list(pool.map(self._check_component, wave))
        else:
            outcomes = [self._check_component(comp) for comp in wave]
        for outcome in outcomes:
            self._apply(outcome)

    def _apply(self, outcome: _Outcome) -> None:
        self.diagnostics.extend(outcome.diagnostics)
        self._failed.update(outcome.failed)
        self._result.trait_bindings.update(outcome.resolved)
        for key, sig in outcome.signatures.items():
            binding = self._bindings[key]
            if binding.impl is not None:
                continue
            if binding.declared is None:
                sym = self.symbols.lookup(binding.name)
                assert sym is not None
                self.symbols.globals.replace(
                    Symbol(binding.name, SymbolKind.FUNCTION, sig.to_scheme(), sym.span)
                )
            self._result.signatures[binding.name] = sig

    # ── Pass 2: Inference ───────────────────────────────────────

    def _check_component(self, keys: list[str]) -> _Outcome:
        outcome = _Outcome()
        bindings = [self._bindings[k] for k in keys]
        members = set(keys)

        for binding in bindings:
            broken = sorted(d for d in self._dependencies(binding) if d in self._failed and d not in members)
            if broken:
                self._dependent_failure(outcome, bindings, broken[0])
                return outcome

        group = [b for b in bindings if b.declared is None and b.impl is None]
        declared = [b for b in bindings if b.declared is not None or b.impl is not None]
        if group:
            try:
                self._infer_group(group, outcome)
            except InferenceError as err:
                failed = err.binding or group[0].name
                outcome.diagnostics.append(err.at(group[0].defn.span, failed).to_diagnostic())
                outcome.failed.append(failed)
                self._dependent_failure(outcome, [b for b in bindings if b.name != failed], failed)
                return outcome

        # Declared members see the group's generalized schemes, not the placeholders.
        scope = Scope(self.symbols.globals, name="component")
        for b in group:
            scheme = outcome.signatures[b.key].to_scheme()
            scope.replace(Symbol(b.name, SymbolKind.FUNCTION, scheme, b.defn.span))

        for binding in declared:
            try:
                self._check_declared(binding, outcome, scope)
            except InferenceError as err:
                outcome.diagnostics.append(err.at(binding.defn.span, binding.name).to_diagnostic())
                outcome.failed.append(binding.key)
        return outcome

    def _dependent_failure(self, outcome: _Outcome, bindings: list[_Binding], dependency: str) -> None:
        for binding in bindings:
            outcome.diagnostics.append(Diagnostic(
                severity=Severity.ERROR,
                code="E402",
                message=f"in '{binding.name}': depends on '{dependency}', which failed to type-check",
                labels=[DiagnosticLabel(span=binding.defn.span, message="")],
            ))
            outcome.failed.append(binding.key)

    def _infer_group(self, group: list[_Binding], outcome: _Outcome) -> None:
        """Infer mutually recursive bindings together, then generalize each."""
        inferer = Inferer(self.symbols, self.registry, self.supply, effects=frozenset(self._effects))
        scope = Scope(self.symbols.globals, name="component")
        mono: dict[str, TypeVariable] = {}
        for b in group:
            mono[b.key] = self.supply.fresh_type()
            scope.replace(Symbol(b.name, SymbolKind.FUNCTION, Scheme.mono(mono[b.key]), b.defn.span))

        effects: dict[str, EffectRow] = {}
        owned: dict[str, list[TraitConstraint]] = {}
        for b in group:
            logger.debug("inferring %s", b.name)
            inferer.binding = b.name
            start = len(inferer.obligations)
            ty, row = inferer.infer_function(b.defn, scope)
            inferer.unify(mono[b.key], ty, b.defn.span)
            effects[b.key] = row
            owned[b.key] = inferer.obligations[start:]

        solver = ConstraintSolver(self.registry, self.supply)
        residual: list[tuple[str, TraitConstraint]] = []
        for b in group:
            try:
                result = solver.solve(owned[b.key], inferer.subst)
            except InferenceError as err:
                raise err.at(b.defn.span, b.name) from None
            outcome.resolved[b.key] = result.resolved
            residual.extend((b.name, g) for g in result.givens)

        types = {b.key: inferer.resolve(mono[b.key]) for b in group}
        for name, given in residual:
            needed = free_variables(given.type)
            if not any(all(v in free_variables(t) for v in needed) for t in types.values()):
                raise UnresolvedTrait(
                    f"ambiguous obligation {render_constraint(given)}: "
                    "its type does not appear in the binding's type",
                    given.span,
                    trait=given.trait,
                    target="",
                    binding=name,
                )

        for b in group:
            ty = types[b.key]
            present = set(free_variables(ty))
            givens = [g for _, g in residual if all(v in present for v in free_variables(g.type))]
            scheme = generalize(ty, givens)
            sig = InferredSignature.from_scheme(b.name, scheme, inferer.subst.apply_effects(effects[b.key]))
            logger.debug("inferred %s", sig.render())
            outcome.signatures[b.key] = sig

    def _expected(self, binding: _Binding) -> tuple[Type, list[TraitConstraint], list[TypeVariable]]:
        """Instance of the declared type, the givens it may rely on, and its rigid variables."""
        if binding.declared is not None:
            renaming = binding.declared.renaming(self.supply)
            givens = [TraitConstraint(g.trait, renaming.apply(g.type), g.span) for g in binding.declared.givens]
            rigid = [v for v in renaming.types.values() if isinstance(v, TypeVariable)]
            return renaming.apply(binding.declared.type), givens, rigid

        impl = binding.impl
        assert impl is not None
        trait = self.registry.trait(impl.trait)
        assert trait is not None
        method = trait.methods[binding.name]
        impl_scheme = Scheme(impl.variables, impl.target, impl.givens)
        impl_renaming = impl_scheme.renaming(self.supply)
        target = impl_renaming.apply(impl.target)
        renaming = method.renaming(self.supply, fixed={trait.param: target})
        givens = [TraitConstraint(g.trait, impl_renaming.apply(g.type), g.span) for g in impl.givens]
        for g in method.givens:
            instance = renaming.apply(g.type)
            if head_of(instance) is None:
                givens.append(TraitConstraint(g.trait, instance, g.span))
        rigid = [v for v in impl_renaming.types.values() if isinstance(v, TypeVariable)]
        rigid += [
            v for k, v in renaming.types.items()
            if k != trait.param and isinstance(v, TypeVariable)
        ]
        return renaming.apply(method.type), givens, rigid

    def _check_declared(self, binding: _Binding, outcome: _Outcome, scope: Scope) -> None:
        """Check a definition against its declared (or trait-given) type."""
        logger.debug("checking %s against its declared type", binding.key)
        expected, givens, rigid = self._expected(binding)
        defn = binding.defn
        if isinstance(expected, FunctionType) and defn.params and len(defn.params) != len(expected.params):
            raise ArityMismatch(
                f"'{binding.name}' is declared with {len(expected.params)} parameter(s), "
                f"defined with {len(defn.params)}",
                defn.span,
                expected=len(expected.params),
                actual=len(defn.params),
                binding=binding.name,
            )

        inferer = Inferer(
            self.symbols, self.registry, self.supply,
            binding=binding.name, effects=frozenset(self._effects),
        )
        ty, row = inferer.infer_function(defn, scope)
        inferer.unify(expected, ty, defn.span)

        seen: set[TypeVariable] = set()
        for var in rigid:
            actual = inferer.resolve(var)
            if not isinstance(actual, TypeVariable) or actual in seen:
                (shown,) = describe(expected)
                raise TypeMismatch(
                    f"definition is less general than its declared type '{shown}'",
                    defn.span,
                    binding=binding.name,
                    types=(inferer.resolve(expected), inferer.resolve(ty)),
                )
            seen.add(actual)

        result = ConstraintSolver(self.registry, self.supply).solve(inferer.obligations, inferer.subst)
        available = {TraitConstraint(g.trait, inferer.resolve(g.type)) for g in givens}
        for residual in result.givens:
            if residual not in available:
                raise UnresolvedTrait(
                    f"obligation {render_constraint(residual)} is not implied by the declared givens",
                    residual.span,
                    trait=residual.trait,
                    target="",
                    binding=binding.name,
                )
        outcome.resolved[binding.key] = result.resolved
        if binding.declared is not None:
            outcome.signatures[binding.key] = InferredSignature.from_scheme(
                binding.name, binding.declared, inferer.subst.apply_effects(row),
            )


# ── Helpers ─────────────────────────────────────────────────────


def _pattern_names(patterns: tuple[Pattern, ...] | list[Pattern]) -> set[str]:
    names: set[str] = set()
    for pattern in patterns:
        if isinstance(pattern, BindingPattern):
            names.add(pattern.name)
        elif isinstance(pattern, VariantPattern):
            names |= _pattern_names(pattern.fields)
    return names


def _references(expr: Expr, bound: frozenset[str]) -> set[str]:
    """Free variable names of *expr*, honoring the binders inside it."""
    if isinstance(expr, Variable):
        return set() if expr.name in bound else {expr.name}
    if isinstance(expr, Call):
        found = _references(expr.function, bound)
        for arg in expr.args:
            found |= _references(arg, bound)
        return found
    if isinstance(expr, Lambda):
        return _references(expr.body, bound | _pattern_names(expr.params))
    if isinstance(expr, Match):
        found = _references(expr.scrutinee, bound)
        for arm in expr.arms:
            found |= _references(arm.body, bound | _pattern_names([arm.pattern]))
        return found
    if isinstance(expr, Let):
        found = _references(expr.value, bound)
        return found | _references(expr.body, bound | _pattern_names([expr.pattern]))
    if isinstance(expr, If):
        return (
            _references(expr.condition, bound)
            | _references(expr.then, bound)
            | _references(expr.otherwise, bound)
        )
    if isinstance(expr, Sequence):
        found: set[str] = set()
        for sub in expr.expressions:
            found |= _references(sub, bound)
        return found
    if isinstance(expr, Annotated):
        return _references(expr.expr, bound)
    if isinstance(expr, RecordExpr):
        found = set()
        for init in expr.fields:
            found |= _references(init.value, bound)
        return found
    if isinstance(expr, MemberAccess):
        return _references(expr.target, bound)
    return set()


def _strongly_connected(nodes: list[str], edges: dict[str, set[str]]) -> list[list[str]]:
    """Tarjan's algorithm. Components come out dependencies-first."""
    index: dict[str, int] = {}
    low: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    components: list[list[str]] = []

    def visit(node: str) -> None:
        index[node] = low[node] = len(index)
        stack.append(node)
        on_stack.add(node)
        for dep in sorted(edges.get(node, ())):
            if dep not in index:
                visit(dep)
                low[node] = min(low[node], low[dep])
            elif dep in on_stack:
                low[node] = min(low[node], index[dep])
        if low[node] == index[node]:
            comp: list[str] = []
            while True:
                top = stack.pop()
                on_stack.discard(top)
                comp.append(top)
                if top == node:
                    break
            components.append([n for n in nodes if n in comp])

    for node in nodes:
        if node not in index:
            visit(node)
    return components
