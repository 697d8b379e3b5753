"""Proof-tracking tag algebras with exact probability recovery.

Tags are Proofs values (DNF over base fact literals). Every tagged input
fact becomes a literal whose probability is recorded in the provenance's
ProbabilityTable; recover_fn computes the exact probability that at least
one proof holds via weighted model counting.

- proofs: keeps every proof
- topkproofs: keeps the K most probable proofs after every operation
- topkproofsdebug: top-K with user supplied, 1-based fact ids so proofs can
  be traced back to caller-side records
"""

from __future__ import annotations

import logging
from typing import Any

from provlog.errors import InputTagError
from provlog.wmc import Proofs, ProbabilityTable, weighted_model_count

from .base import Provenance
from .numeric import validate_probability

__all__ = [
    "ProofsProvenance",
    "TopKProofsProvenance",
    "TopKProofsDebugProvenance",
]

logger = logging.getLogger(__name__)


class ProofsProvenance(Provenance[Proofs]):
    """Exact proof tracking without a retention bound."""

    name = "proofs"

    def __init__(self) -> None:
        self.k: int | None = None
        self.table = ProbabilityTable()

    def zero(self) -> Proofs:
        return Proofs.zero()

    def one(self) -> Proofs:
        return Proofs.one()

    def add(self, t1: Proofs, t2: Proofs) -> Proofs:
        return self._prune(t1.union(t2))

    def mult(self, t1: Proofs, t2: Proofs) -> Proofs:
        return self._prune(t1.product(t2))

    def negate(self, tag: Proofs) -> Proofs | None:
        return self._prune(tag.negate())

    def tagging_fn(self, input_tag: Any, fact_id: int) -> Proofs:
        if input_tag is None:
            return Proofs.one()
        self.table.register(fact_id, validate_probability(self.name, input_tag))
        return Proofs.from_fact(fact_id)

    def recover_fn(self, tag: Proofs) -> float:
        return weighted_model_count(tag, self.table)

    def discard(self, tag: Proofs) -> bool:
        return tag.is_zero()

    def saturated(self, old: Proofs, new: Proofs) -> bool:
        return old == new

    def explain(self, tag: Proofs) -> list[list[tuple[int, bool]]]:
        """Proofs as lists of (fact_id, negated) pairs."""
        return [[(lit >> 1, bool(lit & 1)) for lit in conj] for conj in tag]

    def _prune(self, proofs: Proofs) -> Proofs:
        return proofs.top_k(self.k, self.table.conjunction_weight)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class TopKProofsProvenance(ProofsProvenance):
    """Proof tracking that retains only the K most probable proofs.

    Pruning bounds memory at the cost of completeness, so the recovered
    probability is a lower bound of the exact one once more than K proofs
    exist for a tuple.
    """

    name = "topkproofs"
    incremental_safe = False

    def __init__(self, k: int = 3) -> None:
        super().__init__()
        if k < 1:
            raise ValueError(f"k must be positive, got {k}")
        self.k = k

    def __repr__(self) -> str:
        return f"{type(self).__name__}(k={self.k})"


class TopKProofsDebugProvenance(TopKProofsProvenance):
    """Top-K proofs keyed by caller supplied fact ids.

    Input tags are (probability, fact_id) pairs with fact_id >= 1. The
    session-allocated id is ignored so that reported proofs use the
    caller's numbering. recover_fn returns (probability, proofs) where each
    proof is a tuple of ids, negative for negated facts.
    """

    name = "topkproofsdebug"

    def tagging_fn(self, input_tag: Any, fact_id: int) -> Proofs:
        if input_tag is None:
            return Proofs.one()
        if not isinstance(input_tag, tuple) or len(input_tag) != 2:
            raise InputTagError(self.name, input_tag, "expected (probability, fact_id)")
        probability, user_id = input_tag
        probability = validate_probability(self.name, probability)
        if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 1:
            raise InputTagError(self.name, input_tag, "fact ids are 1-based ints")
        if user_id in self.table and self.table.get(user_id) != probability:
            raise InputTagError(
                self.name, input_tag, f"fact id {user_id} already has another probability"
            )
        self.table.register(user_id, probability)
        return Proofs.from_fact(user_id)

    def recover_fn(self, tag: Proofs) -> tuple[float, tuple[tuple[int, ...], ...]]:
        probability = weighted_model_count(tag, self.table)
        proofs = tuple(
            tuple(-(lit >> 1) if lit & 1 else lit >> 1 for lit in conj) for conj in tag
        )
        return probability, proofs
