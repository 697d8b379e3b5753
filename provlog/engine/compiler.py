"""Compilation of rules into join plans and strata.

Each rule becomes an ordered list of steps:

- ScanStep: join a positive relation atom
- ForeignStep: generate facts from a foreign predicate
- AssignStep: bind a variable to an expression (`v == expr`)
- FilterStep: keep bindings satisfying a comparison
- NegationStep: check a negated atom against a lower stratum

Steps are scheduled so that every comparison, assignment and negation runs
as soon as its variables are bound. Rules are then grouped into strata:
strongly connected components of the predicate dependency graph, in
topological order. Negation inside a component is rejected.
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass, field
from typing import Any, Callable, Union

import networkx as nx

from provlog.errors import (
    NegationUnsupportedError,
    StratificationError,
    UnknownForeignError,
    UnsafeRuleError,
)
from provlog.provenance import Provenance

from .ast import Atom, BinOp, Call, Const, Constraint, Expr, Rule, Var
from .foreign import ForeignPredicate, ForeignRegistry
from .store import RelationStore

__all__ = [
    "DerivationDropped",
    "ScanStep",
    "ForeignStep",
    "AssignStep",
    "FilterStep",
    "NegationStep",
    "Step",
    "CompiledRule",
    "Stratum",
    "CompiledProgram",
    "compile_rule",
    "compile_program",
]

logger = logging.getLogger(__name__)

Bindings = dict[str, Any]
ExprFn = Callable[[Bindings], Any]


class DerivationDropped(Exception):
    """Signals that one derivation cannot be completed (failed call, bad arithmetic)."""


# Expressions

def _divide(a: Any, b: Any) -> Any:
    if isinstance(a, int) and isinstance(b, int) and not isinstance(a, bool):
        return a // b
    return a / b


_ARITHMETIC: dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": _divide,
    "%": operator.mod,
}

_COMPARISON: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def compile_expr(expr: Expr, foreign: ForeignRegistry) -> ExprFn:
    """Turn an expression into a function of the current bindings.

    The returned function raises DerivationDropped when the value cannot be
    computed.

    Raises:
        UnknownForeignError: If the expression calls an unregistered function
    """
    if isinstance(expr, Const):
        value = expr.value
        return lambda bindings: value
    if isinstance(expr, Var):
        name = expr.name
        return lambda bindings: bindings[name]
    if isinstance(expr, BinOp):
        fn = _ARITHMETIC[expr.op]
        left = compile_expr(expr.left, foreign)
        right = compile_expr(expr.right, foreign)

        def arithmetic(bindings: Bindings) -> Any:
            try:
                return fn(left(bindings), right(bindings))
            except (ArithmeticError, TypeError, ValueError) as e:
                raise DerivationDropped(str(e)) from e

        return arithmetic
    if isinstance(expr, Call):
        function = foreign.functions.get(expr.function)
        if function is None:
            raise UnknownForeignError(f"Unknown foreign function: ${expr.function}")
        args = [compile_expr(arg, foreign) for arg in expr.args]

        def call(bindings: Bindings) -> Any:
            result = function.call([arg(bindings) for arg in args])
            if result is None:
                raise DerivationDropped(f"${function.name} failed")
            return result

        return call
    raise TypeError(f"Not an expression: {expr!r}")


# Steps

@dataclass
class _Pattern:
    """How the arguments of an atom interact with the bindings.

    Attributes:
        positions: Argument positions whose values are known before the lookup
        key: For each bound position, ("const", value) or ("var", name)
        binds: (position, variable) pairs bound by the lookup
        checks: (position, earlier_position) pairs that must hold equal values
    """

    positions: tuple[int, ...]
    key: tuple[tuple[str, Any], ...]
    binds: tuple[tuple[int, str], ...]
    checks: tuple[tuple[int, int], ...]

    def key_values(self, bindings: Bindings) -> tuple:
        return tuple(value if kind == "const" else bindings[value] for kind, value in self.key)

    def matches(self, bindings: Bindings, tup: tuple) -> bool:
        """Whether a generated tuple agrees with the known positions."""
        return all(tup[p] == v for p, v in zip(self.positions, self.key_values(bindings)))

    def extend(self, bindings: Bindings, tup: tuple) -> Bindings | None:
        for position, earlier in self.checks:
            if tup[position] != tup[earlier]:
                return None
        if not self.binds:
            return bindings
        extended = dict(bindings)
        for position, name in self.binds:
            extended[name] = tup[position]
        return extended


def _pattern(atom: Atom, bound: set[str], start: int = 0) -> _Pattern:
    """Classify atom arguments from position `start` on against the bound variables."""
    positions: list[int] = []
    key: list[tuple[str, Any]] = []
    binds: list[tuple[int, str]] = []
    checks: list[tuple[int, int]] = []
    first_seen: dict[str, int] = {}
    for position, arg in enumerate(atom.args):
        if position < start:
            continue
        if isinstance(arg, Const):
            positions.append(position)
            key.append(("const", arg.value))
        elif isinstance(arg, Var):
            if arg.name in bound:
                positions.append(position)
                key.append(("var", arg.name))
            elif arg.name in first_seen:
                checks.append((position, first_seen[arg.name]))
            else:
                first_seen[arg.name] = position
                binds.append((position, arg.name))
        else:
            raise UnsafeRuleError(f"Body atom {atom} may only use variables and constants")
    return _Pattern(tuple(positions), tuple(key), tuple(binds), tuple(checks))


@dataclass
class ScanStep:
    relation: str
    atom: Atom
    pattern: _Pattern


@dataclass
class ForeignStep:
    predicate: ForeignPredicate
    atom: Atom
    bound: tuple[tuple[str, Any], ...]
    pattern: _Pattern


@dataclass
class AssignStep:
    variable: str
    expr: ExprFn
    constraint: Constraint


@dataclass
class FilterStep:
    op: Callable[[Any, Any], bool]
    left: ExprFn
    right: ExprFn
    constraint: Constraint

    def holds(self, bindings: Bindings) -> bool:
        try:
            return bool(self.op(self.left(bindings), self.right(bindings)))
        except TypeError as e:
            raise DerivationDropped(str(e)) from e


@dataclass
class NegationStep:
    atom: Atom
    args: tuple[ExprFn, ...]
    predicate: ForeignPredicate | None = None

    @property
    def relation(self) -> str:
        return self.atom.relation


Step = Union[ScanStep, ForeignStep, AssignStep, FilterStep, NegationStep]


@dataclass
class CompiledRule:
    """A rule ready for evaluation.

    Attributes:
        rule: Source rule
        head_relation: Relation the rule derives into
        head: Functions computing each head value from the bindings
        steps: Scheduled body steps
        scans: Indices into steps of the relation scans (delta candidates)
    """

    rule: Rule
    head_relation: str
    head: tuple[ExprFn, ...]
    steps: list[Step]
    scans: list[int]

    @property
    def positive_relations(self) -> set[str]:
        return {self.steps[i].relation for i in self.scans}  # type: ignore[union-attr]

    @property
    def negative_relations(self) -> set[str]:
        return {
            step.relation
            for step in self.steps
            if isinstance(step, NegationStep) and step.predicate is None
        }

    def __str__(self) -> str:
        return str(self.rule)


def compile_rule(rule: Rule, foreign: ForeignRegistry) -> CompiledRule:
    """Schedule a rule's body and compile its expressions.

    Raises:
        UnsafeRuleError: If a variable is used without being bound
        UnknownForeignError: If a foreign function is not registered
    """
    bound: set[str] = set()
    steps: list[Step] = []
    scans: list[int] = []
    pending = list(rule.body)

    def flush_ready() -> None:
        progress = True
        while progress:
            progress = False
            for lit in list(pending):
                step = _ready_step(lit, bound, foreign)
                if step is None:
                    continue
                steps.append(step)
                if isinstance(step, AssignStep):
                    bound.add(step.variable)
                pending.remove(lit)
                progress = True

    flush_ready()
    while True:
        generator = _next_generator(pending, bound, foreign)
        if generator is None:
            break
        pending.remove(generator)
        predicate = foreign.predicates.get(generator.relation)
        if predicate is not None:
            bound_args = tuple(
                ("const", arg.value) if isinstance(arg, Const) else ("var", arg.name)
                for arg in generator.args[: predicate.num_bounded]
            )
            steps.append(
                ForeignStep(
                    predicate=predicate,
                    atom=generator,
                    bound=bound_args,
                    pattern=_pattern(generator, bound, start=predicate.num_bounded),
                )
            )
        else:
            scans.append(len(steps))
            steps.append(
                ScanStep(
                    relation=generator.relation,
                    atom=generator,
                    pattern=_pattern(generator, bound),
                )
            )
        bound |= generator.variables()
        flush_ready()

    if pending:
        unbound = set()
        for lit in pending:
            unbound |= lit.variables() - bound
        raise UnsafeRuleError(
            f"Rule '{rule}' cannot bind {sorted(unbound) or 'its body'}: "
            f"{', '.join(str(lit) for lit in pending)}"
        )

    missing = rule.head.variables() - bound
    if missing:
        raise UnsafeRuleError(f"Head variables {sorted(missing)} are not bound in '{rule}'")

    head = tuple(compile_expr(arg, foreign) for arg in rule.head.args)
    return CompiledRule(
        rule=rule,
        head_relation=rule.head.relation,
        head=head,
        steps=steps,
        scans=scans,
    )


def _next_generator(
    pending: list, bound: set[str], foreign: ForeignRegistry
) -> Atom | None:
    """Pick the next positive atom to join, in body order."""
    for lit in pending:
        if not isinstance(lit, Atom) or lit.negated:
            continue
        predicate = foreign.predicates.get(lit.relation)
        if predicate is None:
            return lit
        if _foreign_ready(lit, predicate, bound):
            return lit
    return None


def _foreign_ready(atom: Atom, predicate: ForeignPredicate, bound: set[str]) -> bool:
    if atom.arity != predicate.arity:
        raise UnsafeRuleError(
            f"Foreign predicate {predicate.name} has arity {predicate.arity}, used as {atom}"
        )
    for arg in atom.args[: predicate.num_bounded]:
        if isinstance(arg, Var) and arg.name not in bound:
            return False
        if not isinstance(arg, (Var, Const)):
            raise UnsafeRuleError(f"Foreign atom {atom} may only use variables and constants")
    return True


def _ready_step(lit: Any, bound: set[str], foreign: ForeignRegistry) -> Step | None:
    """Build the step for a non-generating literal once its variables are bound."""
    if isinstance(lit, Atom):
        if not lit.negated or not lit.variables() <= bound:
            return None
        for arg in lit.args:
            if not isinstance(arg, (Var, Const)):
                raise UnsafeRuleError(f"Negated atom {lit} may only use variables and constants")
        predicate = foreign.predicates.get(lit.relation)
        if predicate is not None and lit.arity != predicate.arity:
            raise UnsafeRuleError(
                f"Foreign predicate {predicate.name} has arity {predicate.arity}, used as {lit}"
            )
        return NegationStep(
            atom=lit,
            args=tuple(compile_expr(arg, foreign) for arg in lit.args),
            predicate=predicate,
        )

    left_vars = lit.left.variables()
    right_vars = lit.right.variables()
    if left_vars | right_vars <= bound:
        return FilterStep(
            op=_COMPARISON[lit.op],
            left=compile_expr(lit.left, foreign),
            right=compile_expr(lit.right, foreign),
            constraint=lit,
        )
    if lit.op != "==":
        return None
    if isinstance(lit.left, Var) and lit.left.name not in bound and right_vars <= bound:
        return AssignStep(lit.left.name, compile_expr(lit.right, foreign), lit)
    if isinstance(lit.right, Var) and lit.right.name not in bound and left_vars <= bound:
        return AssignStep(lit.right.name, compile_expr(lit.left, foreign), lit)
    return None


# Stratification

@dataclass
class Stratum:
    """A group of mutually dependent rules evaluated to a joint fixpoint.

    Attributes:
        index: Position in evaluation order
        relations: Relations derived by this stratum's rules
        rules: Compiled rules
        inputs: Relations read positively from lower strata
        negative_inputs: Relations read under negation (always lower strata)
        recursive: Whether some rule reads a relation of this stratum
    """

    index: int
    relations: set[str]
    rules: list[CompiledRule]
    inputs: set[str] = field(default_factory=set)
    negative_inputs: set[str] = field(default_factory=set)
    recursive: bool = False

    @property
    def reads(self) -> set[str]:
        return self.inputs | self.negative_inputs | self.relations

    def __str__(self) -> str:
        return f"stratum {self.index} {sorted(self.relations)} ({len(self.rules)} rules)"


@dataclass
class CompiledProgram:
    """Rules grouped into strata plus the dependency graph used to build them."""

    strata: list[Stratum]
    graph: nx.DiGraph
    has_negation: bool = False


def compile_program(
    rules: list[Rule],
    store: RelationStore,
    foreign: ForeignRegistry,
    provenance: Provenance,
) -> CompiledProgram:
    """Compile rules and stratify them.

    Head arities are registered in the store so later insertions are checked
    against them. Body relations nobody defines are created empty.

    Raises:
        CompileError: On unsafe rules, unknown foreign functions, negation
            through recursion or negation under a provenance without negate
        SchemaError: If a relation is used with inconsistent arities
    """
    compiled = [compile_rule(rule, foreign) for rule in rules]

    graph = nx.DiGraph()
    has_negation = False
    for crule in compiled:
        head = crule.head_relation
        if head in foreign.predicates:
            raise StratificationError(f"Cannot derive into foreign predicate '{head}' in {crule}")
        store.ensure(head, crule.rule.head.arity)
        graph.add_node(head)
        for atom in crule.rule.body_atoms():
            has_negation |= atom.negated
            if atom.relation in foreign.predicates:
                continue
            store.ensure(atom.relation, atom.arity)
            negative = atom.negated
            if graph.has_edge(atom.relation, head):
                graph[atom.relation][head]["negative"] |= negative
            else:
                graph.add_edge(atom.relation, head, negative=negative)

    if has_negation and not provenance.supports_negation():
        raise NegationUnsupportedError(
            f"Provenance '{provenance.name}' does not support negation"
        )

    components = list(nx.strongly_connected_components(graph))
    condensed = nx.condensation(graph, scc=components)
    mapping: dict[str, int] = condensed.graph["mapping"]

    for body, head, data in graph.edges(data=True):
        if data["negative"] and mapping[body] == mapping[head]:
            raise StratificationError(
                f"Negation of '{body}' in the definition of '{head}' crosses a recursive cycle"
            )

    rules_by_component: dict[int, list[CompiledRule]] = {}
    for crule in compiled:
        rules_by_component.setdefault(mapping[crule.head_relation], []).append(crule)

    order = nx.lexicographical_topological_sort(
        condensed, key=lambda node: min(condensed.nodes[node]["members"])
    )
    strata: list[Stratum] = []
    for component in order:
        component_rules = rules_by_component.get(component)
        if not component_rules:
            continue
        members = set(condensed.nodes[component]["members"])
        stratum = Stratum(index=len(strata), relations=members, rules=component_rules)
        for crule in component_rules:
            for relation in crule.positive_relations:
                if relation in members:
                    stratum.recursive = True
                else:
                    stratum.inputs.add(relation)
            stratum.negative_inputs |= crule.negative_relations
        strata.append(stratum)

    logger.debug(
        f"Compiled {len(compiled)} rules into {len(strata)} strata: "
        f"{[len(s.rules) for s in strata]} rules each"
    )
    return CompiledProgram(strata=strata, graph=graph, has_negation=has_negation)
