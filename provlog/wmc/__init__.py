"""Proof representation and weighted model counting.

Proofs are DNF formulas over base fact literals. Their exact probability is
obtained by compiling them into a reduced ordered BDD and evaluating the
weighted model count under per-fact probabilities.

Example usage:
    from provlog.wmc import Proofs, ProbabilityTable, literal, weighted_model_count

    table = ProbabilityTable()
    table.register(0, 0.6)
    table.register(1, 0.8)
    table.register(2, 0.9)

    proofs = Proofs.of([[literal(0)], [literal(1), literal(2)]])
    weighted_model_count(proofs, table)  # 0.6 + 0.72 - 0.6 * 0.72
"""

from .formula import (
    Conjunction,
    Proofs,
    literal,
    literal_fact,
    literal_negated,
    make_conjunction,
)
from .bdd import (
    FALSE,
    TRUE,
    BDDManager,
    variable_order,
)
from .counting import (
    ProbabilityTable,
    weighted_model_count,
    evaluate_bdd,
)

__all__ = [
    # Formula
    "Conjunction",
    "Proofs",
    "literal",
    "literal_fact",
    "literal_negated",
    "make_conjunction",
    # Diagrams
    "FALSE",
    "TRUE",
    "BDDManager",
    "variable_order",
    # Counting
    "ProbabilityTable",
    "weighted_model_count",
    "evaluate_bdd",
]
