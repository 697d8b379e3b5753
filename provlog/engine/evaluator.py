"""Semi-naive fixpoint evaluation of one stratum at a time.

Each iteration runs every rule once per body scan that can read a delta
relation. For the scan at delta position k:

- scans before k read the facts as they were before the delta ("old")
- the scan at k reads the delta
- scans after k read every fact

so each combination of facts involving at least one delta fact is seen
exactly once. Derivations of one tuple within an iteration are combined
with add, merged into the relation with add, and the tuple enters the next
delta when its tag is new or not yet saturated.

For an idempotent algebra the delta carries merged tags. Otherwise it
carries only the increments, and the old view keeps the previous tags of
updated tuples, so that by distributivity each derivation is counted once.

The evaluator is written against the Provenance interface only.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

from provlog.provenance import Provenance

from .compiler import (
    AssignStep,
    CompiledRule,
    DerivationDropped,
    FilterStep,
    ForeignStep,
    NegationStep,
    ScanStep,
    Stratum,
)
from .foreign import ForeignPredicate
from .store import FactIdAllocator, FactView, RelationStore

__all__ = [
    "ForeignFactCache",
    "StratumResult",
    "SemiNaiveEvaluator",
]

logger = logging.getLogger(__name__)

TupleTags = dict[tuple, Any]


class ForeignFactCache:
    """Tagged facts generated by foreign predicates, per bound input.

    Every generated fact receives a session fact id the first time it is
    produced, so its tag is stable across iterations and runs.
    """

    def __init__(self, provenance: Provenance, allocator: FactIdAllocator) -> None:
        self.provenance = provenance
        self.allocator = allocator
        self._facts: dict[tuple[str, tuple], list[tuple[tuple, Any]]] = {}

    def facts(self, predicate: ForeignPredicate, bound: tuple) -> list[tuple[tuple, Any]]:
        """(full_tuple, tag) pairs for one call of a foreign predicate."""
        key = (predicate.name, bound)
        cached = self._facts.get(key)
        if cached is None:
            combined: TupleTags = {}
            for input_tag, full in predicate.generate(bound):
                tag = self.provenance.tagging_fn(input_tag, self.allocator.allocate())
                existing = combined.get(full)
                combined[full] = tag if existing is None else self.provenance.add(existing, tag)
            cached = list(combined.items())
            self._facts[key] = cached
        return cached

    def __len__(self) -> int:
        return len(self._facts)

    def clear(self) -> None:
        self._facts.clear()


@dataclass
class StratumResult:
    """Outcome of evaluating one stratum.

    Attributes:
        iterations: Number of iterations run
        truncated: Whether the iteration limit stopped evaluation early
        changed: Tuples of this stratum's relations that are new or whose
            tag changed, with their current tags
    """

    iterations: int = 0
    truncated: bool = False
    changed: dict[str, TupleTags] = field(default_factory=dict)


class SemiNaiveEvaluator:
    """Runs strata to saturation over a RelationStore.

    Args:
        provenance: Tag algebra
        store: Relation storage, updated in place
        foreign: Cache of foreign predicate facts
        early_discard: Drop derived tuples the provenance discards
        iteration_limit: Maximum iterations per stratum (None = unbounded)
    """

    def __init__(
        self,
        provenance: Provenance,
        store: RelationStore,
        foreign: ForeignFactCache,
        early_discard: bool = True,
        iteration_limit: int | None = None,
    ) -> None:
        self.provenance = provenance
        self.store = store
        self.foreign = foreign
        self.early_discard = early_discard
        self.iteration_limit = iteration_limit

    def evaluate_stratum(
        self,
        stratum: Stratum,
        seed: dict[str, TupleTags] | None = None,
    ) -> StratumResult:
        """Evaluate a stratum to saturation.

        Args:
            stratum: The stratum to evaluate
            seed: Delta to continue from after new facts arrived. None
                evaluates from the current contents, treating every fact
                as new.

        Returns:
            StratumResult describing the run
        """
        from_scratch = seed is None
        if from_scratch:
            delta = {name: dict(self._facts(name)) for name in stratum.reads}
        else:
            delta = {name: dict(tags) for name, tags in seed.items() if name in stratum.reads}

        result = StratumResult()
        changed: dict[str, TupleTags] = defaultdict(dict)
        if from_scratch:
            for name in stratum.relations:
                changed[name].update(self._facts(name))

        previous: dict[str, TupleTags] = {}
        iteration = 0
        while True:
            if iteration > 0 or not from_scratch:
                if not any(delta.values()):
                    break
            if self.iteration_limit is not None and iteration >= self.iteration_limit:
                result.truncated = True
                logger.warning(
                    f"Iteration limit ({self.iteration_limit}) reached in {stratum}"
                )
                break

            pending = self._run_iteration(
                stratum, delta, previous, first=from_scratch and iteration == 0
            )
            delta, previous = self._merge(pending, changed)
            iteration += 1

        result.iterations = iteration
        result.changed = dict(changed)
        logger.debug(
            f"Evaluated {stratum} in {iteration} iterations, "
            f"{sum(self.store.len(name) for name in stratum.relations)} facts"
        )
        return result

    def _facts(self, name: str) -> TupleTags:
        relation = self.store.relation(name)
        return {} if relation is None else relation.facts

    def _run_iteration(
        self,
        stratum: Stratum,
        delta: dict[str, TupleTags],
        previous: dict[str, TupleTags],
        first: bool,
    ) -> dict[str, TupleTags]:
        """Apply every rule once against the current delta.

        The "old" view of a relation holds its facts as they were before the
        delta arrived: new tuples are left out and updated tuples carry their
        previous tag.
        """
        all_views: dict[str, FactView] = {}
        delta_views: dict[str, FactView] = {}
        old_views: dict[str, FactView] = {}

        def view_all(name: str) -> FactView:
            if name not in all_views:
                all_views[name] = FactView(self._facts(name))
            return all_views[name]

        def view_delta(name: str) -> FactView:
            if name not in delta_views:
                delta_views[name] = FactView(delta.get(name, {}))
            return delta_views[name]

        def view_old(name: str) -> FactView:
            if not delta.get(name):
                return view_all(name)
            if name not in old_views:
                recent = delta[name]
                old = {t: g for t, g in self._facts(name).items() if t not in recent}
                old.update(previous.get(name, {}))
                old_views[name] = FactView(old)
            return old_views[name]

        pending: dict[str, TupleTags] = defaultdict(dict)
        for rule in stratum.rules:
            if not rule.scans:
                if first:
                    self._run_rule(rule, {}, view_all, pending)
                continue
            for k, delta_step in enumerate(rule.scans):
                relation = rule.steps[delta_step].relation  # type: ignore[union-attr]
                if not delta.get(relation):
                    continue
                views: dict[int, FactView] = {}
                for j, step_index in enumerate(rule.scans):
                    name = rule.steps[step_index].relation  # type: ignore[union-attr]
                    if j < k:
                        views[step_index] = view_old(name)
                    elif j == k:
                        views[step_index] = view_delta(name)
                    else:
                        views[step_index] = view_all(name)
                self._run_rule(rule, views, view_all, pending)
        return pending

    def _run_rule(
        self,
        rule: CompiledRule,
        views: dict[int, FactView],
        view_all: Callable[[str], FactView],
        pending: dict[str, TupleTags],
    ) -> None:
        out = pending[rule.head_relation]
        provenance = self.provenance

        def emit(bindings: dict[str, Any], tags: list[Any]) -> None:
            try:
                tup = tuple(fn(bindings) for fn in rule.head)
            except DerivationDropped as e:
                logger.debug(f"Dropped derivation of {rule.head_relation}: {e}")
                return
            tag = provenance.mult_all(tags)
            if self.early_discard and provenance.discard(tag):
                return
            existing = out.get(tup)
            out[tup] = tag if existing is None else provenance.add(existing, tag)

        def join(index: int, bindings: dict[str, Any], tags: list[Any]) -> None:
            if index == len(rule.steps):
                emit(bindings, tags)
                return
            step = rule.steps[index]

            if isinstance(step, ScanStep):
                pattern = step.pattern
                for tup, tag in views[index].lookup(pattern.positions, pattern.key_values(bindings)):
                    extended = pattern.extend(bindings, tup)
                    if extended is not None:
                        join(index + 1, extended, tags + [tag])

            elif isinstance(step, ForeignStep):
                bound = tuple(
                    value if kind == "const" else bindings[value] for kind, value in step.bound
                )
                pattern = step.pattern
                for tup, tag in self.foreign.facts(step.predicate, bound):
                    if not pattern.matches(bindings, tup):
                        continue
                    extended = pattern.extend(bindings, tup)
                    if extended is not None:
                        join(index + 1, extended, tags + [tag])

            elif isinstance(step, AssignStep):
                try:
                    value = step.expr(bindings)
                except DerivationDropped as e:
                    logger.debug(f"Dropped derivation at '{step.constraint}': {e}")
                    return
                join(index + 1, {**bindings, step.variable: value}, tags)

            elif isinstance(step, FilterStep):
                try:
                    holds = step.holds(bindings)
                except DerivationDropped as e:
                    logger.debug(f"Dropped derivation at '{step.constraint}': {e}")
                    return
                if holds:
                    join(index + 1, bindings, tags)

            elif isinstance(step, NegationStep):
                tag = self._negated_tag(step, bindings, view_all)
                if tag is not None:
                    join(index + 1, bindings, tags + [tag])

        join(0, {}, [])

    def _negated_tag(
        self,
        step: NegationStep,
        bindings: dict[str, Any],
        view_all: Callable[[str], FactView],
    ) -> Any | None:
        """Tag contributed by a negated atom, or None if the body fails."""
        try:
            tup = tuple(fn(bindings) for fn in step.args)
        except DerivationDropped:
            return None

        if step.predicate is not None:
            bound = tup[: step.predicate.num_bounded]
            matching = [tag for full, tag in self.foreign.facts(step.predicate, bound) if full == tup]
            tag = self.provenance.add_all(matching) if matching else None
        else:
            tag = view_all(step.relation).get(tup)

        if tag is None:
            return self.provenance.one()
        if self.provenance.discrete:
            return None
        negated = self.provenance.negate(tag)
        if negated is None or (self.early_discard and self.provenance.discard(negated)):
            return None
        return negated

    def _merge(
        self,
        pending: dict[str, TupleTags],
        changed: dict[str, TupleTags],
    ) -> tuple[dict[str, TupleTags], dict[str, TupleTags]]:
        """Fold one iteration's derivations into the store.

        Returns:
            The next delta, and the tags that delta tuples held before this
            merge. For an idempotent algebra the delta carries merged tags;
            otherwise it carries only the increments, which later joins
            combine with the previous tags.
        """
        provenance = self.provenance
        delta: dict[str, TupleTags] = {}
        previous: dict[str, TupleTags] = {}
        for name, derived in pending.items():
            if not derived:
                continue
            relation = self.store.relation(name)
            if relation is None:
                relation = self.store.ensure(name, len(next(iter(derived))))
            new_delta: TupleTags = {}
            for tup, tag in derived.items():
                existing = relation.facts.get(tup)
                if existing is None:
                    merged = tag
                    relation.derivation_counts[tup] = 1
                    fresh = True
                else:
                    merged = provenance.add(existing, tag)
                    relation.derivation_counts[tup] = relation.derivation_counts.get(tup, 0) + 1
                    fresh = not provenance.saturated(existing, merged)
                relation.facts[tup] = merged
                if not fresh:
                    continue
                changed[name][tup] = merged
                if provenance.idempotent:
                    new_delta[tup] = merged
                else:
                    new_delta[tup] = tag
                    if existing is not None:
                        previous.setdefault(name, {})[tup] = existing
            if new_delta:
                delta[name] = new_delta
        return delta, previous
