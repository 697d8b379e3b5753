"""Sessions: declare relations, add rules and facts, run, read results.

A Context owns one RelationStore, one provenance and one fact id counter.
Every run evaluates the compiled strata in order. A non-incremental
context recomputes every stratum from its extensional facts on each run.
An incremental context keeps the previous fixpoint and only revisits
strata reachable from relations that changed since the last run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence

from provlog.config import EngineConfig, create_provenance
from provlog.errors import RelationNotFoundError, SchemaError, TypeCheckError, UnknownProvenanceError
from provlog.provenance import PROVENANCES, Provenance
from provlog.values import ValueType, parse_type

from .ast import ParsedProgram, Rule
from .compiler import CompiledProgram, Stratum, compile_program
from .evaluator import ForeignFactCache, SemiNaiveEvaluator
from .foreign import (
    ForeignFunction,
    ForeignPredicate,
    ForeignRegistry,
    foreign_function,
    foreign_predicate,
)
from .parser import parse_declaration, parse_program, parse_rule
from .store import FactIdAllocator, RelationSchema, RelationStore

__all__ = [
    "Context",
    "RunStatus",
    "RunResult",
    "QueryResult",
]

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """How a run ended."""

    CONVERGED = "converged"
    TRUNCATED = "truncated"


@dataclass
class RunResult:
    """Summary of one run.

    Attributes:
        status: CONVERGED, or TRUNCATED if some stratum hit the iteration limit
        iterations: Total iterations across evaluated strata
        strata: Number of strata in the program
        recomputed_strata: Indices of strata evaluated from their extensional facts
        continued_strata: Indices of strata extended from a previous fixpoint
        skipped_strata: Indices of strata left untouched
    """

    status: RunStatus
    iterations: int = 0
    strata: int = 0
    recomputed_strata: list[int] = field(default_factory=list)
    continued_strata: list[int] = field(default_factory=list)
    skipped_strata: list[int] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.status is RunStatus.CONVERGED


@dataclass
class QueryResult:
    """Result of looking up one tuple.

    Attributes:
        relation: Relation queried
        values: The tuple looked up
        found: Whether the tuple was derived
        tag: Recovered output tag if found
        explanation: Human-readable explanation
    """

    relation: str
    values: tuple
    found: bool
    tag: Any = None
    explanation: str = ""


def _sorted_items(facts: Mapping[tuple, Any]) -> list[tuple[tuple, Any]]:
    try:
        return sorted(facts.items(), key=lambda item: item[0])
    except TypeError:
        # Mixed value kinds in one column do not order; keep insertion order
        return list(facts.items())


class Context:
    """A Datalog session over one provenance.

    Args:
        provenance: Registry name or a Provenance instance
        config: Engine settings (defaults from EngineConfig)
        **overrides: EngineConfig fields overriding `config`

    Example:
        ctx = Context("minmaxprob")
        ctx.add_relation("edge(i32, i32)")
        ctx.add_facts("edge", [(0.5, (0, 1)), (0.8, (1, 2))])
        ctx.add_rule("path(a, b) = edge(a, b)")
        ctx.add_rule("path(a, c) = path(a, b), edge(b, c)")
        ctx.run()
        list(ctx.computed_relation("path"))
    """

    def __init__(
        self,
        provenance: str | Provenance | None = None,
        config: EngineConfig | None = None,
        **overrides: Any,
    ) -> None:
        if isinstance(provenance, str):
            if provenance not in PROVENANCES:
                raise UnknownProvenanceError(provenance, sorted(PROVENANCES))
            overrides["provenance"] = provenance
        if config is None:
            config = EngineConfig(**overrides)
        elif overrides:
            config = EngineConfig(**{**config.model_dump(), **overrides})
        self.config = config
        self.provenance: Provenance = (
            provenance if isinstance(provenance, Provenance) else create_provenance(config)
        )

        self.store = RelationStore(self.provenance)
        self.allocator = FactIdAllocator()
        self.foreign = ForeignRegistry()
        self._foreign_facts = ForeignFactCache(self.provenance, self.allocator)
        self._rules: list[Rule] = []
        self._program: CompiledProgram | None = None
        self._queries: list[str] = []

        self._changed: dict[str, dict[tuple, Any]] = {}
        self._has_run = False
        self._needs_full = True

    @classmethod
    def new_incremental(
        cls,
        provenance: str | Provenance | None = None,
        config: EngineConfig | None = None,
        **overrides: Any,
    ) -> Context:
        """Create a context that keeps fixpoint state across runs."""
        return cls(provenance, config, **{**overrides, "incremental": True})

    @property
    def incremental(self) -> bool:
        return self.config.incremental

    @property
    def rules(self) -> list[Rule]:
        return list(self._rules)

    @property
    def queries(self) -> list[str]:
        return list(self._queries)

    # Declarations and logic

    def add_relation(
        self,
        name: str,
        types: Sequence[ValueType | str] | int | None = None,
    ) -> RelationSchema:
        """Declare a relation.

        Args:
            name: Relation name, or a full declaration like "edge(i32, i32)"
            types: Column types, or an arity for an untyped relation

        Raises:
            SchemaRedeclarationError: If declared before with other types
            ParseError: If a declaration string is malformed
        """
        if types is None:
            decl = parse_declaration(name)
            name, types = decl.relation, decl.types
        if isinstance(types, int):
            return self.store.ensure(name, types).schema
        return self.store.declare(name, [parse_type(t) for t in types]).schema

    def add_rule(self, rule: str | Rule) -> Rule:
        """Add one rule, compiling the whole program to surface errors early.

        Raises:
            CompileError: If the rule cannot be compiled with the others
            SchemaError: If the rule uses a relation with a conflicting arity
        """
        if isinstance(rule, str):
            rule = parse_rule(rule)
        self._add_rules([rule])
        return rule

    def add_program(self, program: str | ParsedProgram) -> ParsedProgram:
        """Add declarations, rules, facts and queries from a program.

        Raises:
            ParseError: If the text is malformed
            CompileError: If a rule cannot be compiled
            TypeCheckError: If facts do not match declared types
        """
        if isinstance(program, str):
            program = parse_program(program)
        for decl in program.declarations:
            self.add_relation(decl.relation, decl.types)
        if program.rules:
            self._add_rules(program.rules)
        for fact_set in program.facts:
            self.add_facts(fact_set.relation, fact_set.facts)
        for name in program.queries:
            self.add_query(name)
        return program

    def add_query(self, name: str) -> None:
        """Mark a relation as a query target; run() then requires it to exist."""
        if name not in self._queries:
            self._queries.append(name)

    def _add_rules(self, rules: list[Rule]) -> None:
        candidate = self._rules + list(rules)
        self._program = compile_program(candidate, self.store, self.foreign, self.provenance)
        self._rules = candidate
        self._needs_full = True
        logger.debug(f"Added {len(rules)} rules ({len(self._rules)} total)")

    def register_foreign_function(
        self,
        function: ForeignFunction | Callable[..., Any],
        name: str | None = None,
        arg_types: Sequence[ValueType | str | None] | None = None,
        return_type: ValueType | str | None = None,
        replace: bool = False,
    ) -> ForeignFunction:
        """Register a foreign function (or a plain callable to wrap as one)."""
        if not isinstance(function, ForeignFunction):
            function = foreign_function(name, arg_types, return_type)(function)
        self.foreign.register_function(function, replace=replace)
        self._invalidate_program()
        return function

    def register_foreign_predicate(
        self,
        predicate: ForeignPredicate | Callable[..., Iterable[tuple[Any, tuple]]],
        name: str | None = None,
        arg_types: Sequence[ValueType | str | None] = (),
        num_bounded: int = 0,
        replace: bool = False,
    ) -> ForeignPredicate:
        """Register a foreign predicate (or a generator function to wrap as one)."""
        if not isinstance(predicate, ForeignPredicate):
            predicate = foreign_predicate(name, arg_types, num_bounded)(predicate)
        self.foreign.register_predicate(predicate, replace=replace)
        self._foreign_facts.clear()
        self._invalidate_program()
        return predicate

    def _invalidate_program(self) -> None:
        self._program = None
        self._needs_full = True

    # Facts

    def add_facts(
        self,
        relation: str,
        facts: Iterable[tuple[Any, Sequence[Any]]],
        type_check: bool | None = None,
    ) -> int:
        """Insert extensional facts.

        Args:
            relation: Relation name
            facts: (input_tag, tuple) pairs; input_tag may be None
            type_check: Check tuples against the schema (default from config)

        Returns:
            Number of facts inserted

        Raises:
            TypeCheckError: If type checking is on and any fact is rejected;
                nothing is inserted in that case
            InputTagError: If an input tag is invalid for the provenance
        """
        check = self.config.type_check if type_check is None else type_check
        rows = [(tag, tuple(values)) for tag, values in facts]
        if not rows:
            return 0

        existing = self.store.relation(relation)
        schema = existing.schema if existing is not None else None

        accepted: list[tuple[Any, tuple]] = []
        offending: list[tuple[int, Any, str]] = []
        for index, (tag, values) in enumerate(rows):
            if schema is None:
                schema = RelationSchema.inferred(relation, values)
            reason = schema.check(values) if check else self._arity_reason(schema, values)
            if reason is None:
                accepted.append((tag, values))
            elif check:
                offending.append((index, values, reason))
            else:
                logger.warning(f"Skipping fact {relation}{values!r}: {reason}")
        if offending:
            raise TypeCheckError(relation, offending)

        tagged = [
            (self.provenance.tagging_fn(tag, self.allocator.allocate()), values)
            for tag, values in accepted
        ]
        changed = self._changed.setdefault(relation, {})
        for tag, values in tagged:
            self.store.insert(relation, tag, values)
            changed[values] = self.store.relation(relation).facts[values]
        logger.debug(f"Added {len(tagged)} facts to {relation}")
        return len(tagged)

    @staticmethod
    def _arity_reason(schema: RelationSchema, values: tuple) -> str | None:
        if len(values) != schema.arity:
            return f"arity mismatch: expected {schema.arity}, got {len(values)}"
        return None

    # Evaluation

    def run(self) -> RunResult:
        """Evaluate all strata to saturation.

        Returns:
            RunResult; status is TRUNCATED when the iteration limit stopped
            some stratum before saturation

        Raises:
            CompileError: If the program cannot be compiled
            RelationNotFoundError: If a query target is not a known relation
        """
        program = self._compiled()
        for name in self._queries:
            if name not in self.store:
                raise RelationNotFoundError(name, "query target is not a known relation")
        full = not self.incremental or self._needs_full or not self._has_run
        evaluator = SemiNaiveEvaluator(
            self.provenance,
            self.store,
            self._foreign_facts,
            early_discard=self.config.early_discard,
            iteration_limit=self.config.iteration_limit,
        )

        result = RunResult(status=RunStatus.CONVERGED, strata=len(program.strata))
        changed = {name: dict(tags) for name, tags in self._changed.items()}
        recomputed: set[str] = set()

        for stratum in program.strata:
            seed = None if full else self._plan(stratum, changed, recomputed)
            if seed is None:
                if not full and not self._touched(stratum, changed, recomputed):
                    result.skipped_strata.append(stratum.index)
                    continue
                for name in stratum.relations:
                    self.store.relation(name).reset_to_edb()
                outcome = evaluator.evaluate_stratum(stratum)
                recomputed |= stratum.relations
                result.recomputed_strata.append(stratum.index)
            else:
                outcome = evaluator.evaluate_stratum(stratum, seed)
                result.continued_strata.append(stratum.index)
                for name, tags in outcome.changed.items():
                    if tags:
                        changed.setdefault(name, {}).update(tags)

            result.iterations += outcome.iterations
            if outcome.truncated:
                result.status = RunStatus.TRUNCATED

        self._changed.clear()
        self._has_run = True
        self._needs_full = result.status is RunStatus.TRUNCATED
        logger.debug(
            f"Run {result.status.value}: {result.iterations} iterations, "
            f"recomputed {result.recomputed_strata}, continued {result.continued_strata}, "
            f"skipped {result.skipped_strata}"
        )
        return result

    def _compiled(self) -> CompiledProgram:
        if self._program is None:
            self._program = compile_program(self._rules, self.store, self.foreign, self.provenance)
        return self._program

    @staticmethod
    def _touched(
        stratum: Stratum,
        changed: dict[str, dict[tuple, Any]],
        recomputed: set[str],
    ) -> bool:
        return any(changed.get(name) for name in stratum.reads) or bool(stratum.reads & recomputed)

    def _plan(
        self,
        stratum: Stratum,
        changed: dict[str, dict[tuple, Any]],
        recomputed: set[str],
    ) -> dict[str, dict[tuple, Any]] | None:
        """Seed for continuing a stratum, or None when it must be recomputed or skipped."""
        if not self._touched(stratum, changed, recomputed):
            return None
        if not self.provenance.incremental_safe:
            return None
        if stratum.reads & recomputed:
            return None
        if any(changed.get(name) for name in stratum.negative_inputs):
            return None
        return {name: changed[name] for name in stratum.reads if changed.get(name)}

    # Results

    def computed_relation(self, name: str) -> Iterator[tuple[Any, tuple]]:
        """Recovered (output_tag, tuple) pairs of a relation, ordered by tuple.

        Raises:
            RelationNotFoundError: If the relation is unknown or run() has not been called
        """
        if not self._has_run:
            raise RelationNotFoundError(name, "run() has not been called")
        relation = self.store.relation(name)
        if relation is None:
            raise RelationNotFoundError(name)
        recover = self.provenance.recover_fn
        return iter([(recover(tag), values) for values, tag in _sorted_items(relation.facts)])

    def query(self, relation: str, values: Sequence[Any]) -> QueryResult:
        """Look up one tuple of a computed relation.

        Raises:
            RelationNotFoundError: If the relation is unknown or run() has not been called
        """
        if not self._has_run:
            raise RelationNotFoundError(relation, "run() has not been called")
        rel = self.store.relation(relation)
        if rel is None:
            raise RelationNotFoundError(relation)
        values = tuple(values)
        tag = rel.facts.get(values)
        if tag is None:
            return QueryResult(
                relation=relation,
                values=values,
                found=False,
                explanation=f"{relation}{values!r} is not derivable",
            )
        recovered = self.provenance.recover_fn(tag)
        explanation = f"{relation}{values!r} holds with tag {recovered!r}"
        explain = getattr(self.provenance, "explain", None)
        if explain is not None:
            explanation += f"; proofs: {explain(tag)}"
        return QueryResult(
            relation=relation,
            values=values,
            found=True,
            tag=recovered,
            explanation=explanation,
        )

    def relation_names(self) -> list[str]:
        return self.store.names()

    def schema(self, name: str) -> RelationSchema:
        """Schema of a relation.

        Raises:
            SchemaError: If the relation is unknown
        """
        relation = self.store.relation(name)
        if relation is None:
            raise SchemaError(f"Unknown relation: {name}")
        return relation.schema

    def snapshot(self) -> Mapping[str, tuple[tuple[Any, tuple], ...]]:
        """Immutable mapping of every relation to its recovered results.

        Raises:
            RelationNotFoundError: If run() has not been called
        """
        if not self._has_run:
            raise RelationNotFoundError("*", "run() has not been called")
        return MappingProxyType(
            {name: tuple(self.computed_relation(name)) for name in self.store.names()}
        )

    def __repr__(self) -> str:
        return (
            f"Context(provenance={self.provenance.name!r}, relations={len(self.store.names())}, "
            f"rules={len(self._rules)}, incremental={self.incremental})"
        )
