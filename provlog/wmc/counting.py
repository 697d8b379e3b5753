"""Weighted model counting over compiled proofs.

The probability that at least one proof holds is computed exactly by
compiling the DNF into a BDD and summing path weights bottom-up. Shared
facts between proofs are handled by the diagram itself, so overlapping
proofs are never double counted.
"""

from __future__ import annotations

import logging
from typing import Iterator

from provlog.errors import DanglingFactIdError

from .bdd import FALSE, TRUE, BDDManager, variable_order
from .formula import Conjunction, Proofs

__all__ = [
    "ProbabilityTable",
    "weighted_model_count",
    "evaluate_bdd",
]

logger = logging.getLogger(__name__)


class ProbabilityTable:
    """Literal weights of base facts, indexed by fact id.

    One table is owned by each provenance instance, which in turn belongs
    to a single session.
    """

    def __init__(self) -> None:
        self._probabilities: dict[int, float] = {}

    def register(self, fact_id: int, probability: float) -> None:
        self._probabilities[fact_id] = probability

    def get(self, fact_id: int) -> float:
        """Probability of a fact.

        Raises:
            DanglingFactIdError: If the fact id was never registered
        """
        try:
            return self._probabilities[fact_id]
        except KeyError:
            raise DanglingFactIdError(fact_id) from None

    def __contains__(self, fact_id: int) -> bool:
        return fact_id in self._probabilities

    def __len__(self) -> int:
        return len(self._probabilities)

    def __iter__(self) -> Iterator[int]:
        return iter(self._probabilities)

    def literal_weight(self, lit: int) -> float:
        """Weight of an encoded literal (1 - p for negated literals)."""
        p = self.get(lit >> 1)
        return 1.0 - p if lit & 1 else p

    def conjunction_weight(self, conj: Conjunction) -> float:
        """Estimated weight of a single proof, assuming independent facts."""
        weight = 1.0
        for lit in conj:
            weight *= self.literal_weight(lit)
        return weight


def evaluate_bdd(manager: BDDManager, root: int, table: ProbabilityTable) -> float:
    """Weighted model count of a diagram.

    Args:
        manager: Manager owning the diagram
        root: Root node
        table: Fact probabilities

    Returns:
        Probability that the diagram's formula holds
    """
    if root == FALSE:
        return 0.0
    if root == TRUE:
        return 1.0

    weights: dict[int, float] = {FALSE: 0.0, TRUE: 1.0}
    for node in manager.reachable(root):
        p = table.get(manager.variable(node))
        weights[node] = p * weights[manager.high(node)] + (1.0 - p) * weights[manager.low(node)]
    return weights[root]


def weighted_model_count(proofs: Proofs, table: ProbabilityTable) -> float:
    """Exact probability that at least one proof holds.

    Args:
        proofs: DNF over fact literals
        table: Fact probabilities

    Returns:
        Probability in [0, 1]

    Raises:
        DanglingFactIdError: If a literal references an unregistered fact
    """
    if proofs.is_zero():
        return 0.0
    if proofs.is_one():
        return 1.0

    for fact_id in proofs.fact_ids():
        if fact_id not in table:
            raise DanglingFactIdError(fact_id)

    manager = BDDManager(variable_order(proofs))
    root = manager.compile(proofs)
    probability = evaluate_bdd(manager, root, table)

    # Guard against floating point drift outside the unit interval
    return max(0.0, min(1.0, probability))
