"""Numeric tag algebras: tropical costs and scalar probabilities.

- tropical: add = min, mult = + (shortest derivation cost)
- minmaxprob: add = max, mult = min (weakest link of the best derivation)
- addmultprob: add = a + b - ab, mult = a * b (independence assumption)
- maxmultprob: add = max, mult = a * b (most probable single derivation)
"""

from __future__ import annotations

import math
from typing import Any

from provlog.errors import InputTagError

from .base import Provenance

__all__ = [
    "TropicalProvenance",
    "MinMaxProbProvenance",
    "AddMultProbProvenance",
    "MaxMultProbProvenance",
    "validate_probability",
]


def validate_probability(provenance: str, input_tag: Any) -> float:
    """Convert an external probability, defaulting untagged facts to 1.0.

    Raises:
        InputTagError: If the tag is not a number in [0, 1]
    """
    if input_tag is None:
        return 1.0
    if isinstance(input_tag, bool) or not isinstance(input_tag, (int, float)):
        raise InputTagError(provenance, input_tag, "expected a probability")
    p = float(input_tag)
    if math.isnan(p) or not 0.0 <= p <= 1.0:
        raise InputTagError(provenance, input_tag, "probability must be in [0, 1]")
    return p


class TropicalProvenance(Provenance[float]):
    """Min-plus algebra over derivation costs.

    An untagged fact costs 0. The recovered value is the cost of the
    cheapest derivation.
    """

    name = "tropical"

    def zero(self) -> float:
        return math.inf

    def one(self) -> float:
        return 0.0

    def add(self, t1: float, t2: float) -> float:
        return min(t1, t2)

    def mult(self, t1: float, t2: float) -> float:
        return t1 + t2

    def tagging_fn(self, input_tag: Any, fact_id: int) -> float:
        if input_tag is None:
            return 0.0
        if isinstance(input_tag, bool) or not isinstance(input_tag, (int, float)):
            raise InputTagError(self.name, input_tag, "expected a numeric cost")
        cost = float(input_tag)
        if math.isnan(cost):
            raise InputTagError(self.name, input_tag, "cost must not be NaN")
        return cost

    def discard(self, tag: float) -> bool:
        return tag == math.inf


class MinMaxProbProvenance(Provenance[float]):
    """Fuzzy probability: add = max, mult = min, negate = 1 - p."""

    name = "minmaxprob"

    def zero(self) -> float:
        return 0.0

    def one(self) -> float:
        return 1.0

    def add(self, t1: float, t2: float) -> float:
        return max(t1, t2)

    def mult(self, t1: float, t2: float) -> float:
        return min(t1, t2)

    def negate(self, tag: float) -> float | None:
        return 1.0 - tag

    def tagging_fn(self, input_tag: Any, fact_id: int) -> float:
        return validate_probability(self.name, input_tag)

    def discard(self, tag: float) -> bool:
        return tag <= 0.0


class AddMultProbProvenance(Provenance[float]):
    """Probabilities combined as if derivations were independent.

    add = a + b - ab is not idempotent, so each iteration passes on only
    the probability mass that newly found derivations add.
    """

    name = "addmultprob"
    idempotent = False
    incremental_safe = False

    def zero(self) -> float:
        return 0.0

    def one(self) -> float:
        return 1.0

    def add(self, t1: float, t2: float) -> float:
        return min(1.0, t1 + t2 - t1 * t2)

    def mult(self, t1: float, t2: float) -> float:
        return t1 * t2

    def negate(self, tag: float) -> float | None:
        return 1.0 - tag

    def tagging_fn(self, input_tag: Any, fact_id: int) -> float:
        return validate_probability(self.name, input_tag)

    def discard(self, tag: float) -> bool:
        return tag <= 0.0


class MaxMultProbProvenance(Provenance[float]):
    """Probability of the most likely single derivation: add = max, mult = *."""

    name = "maxmultprob"

    def zero(self) -> float:
        return 0.0

    def one(self) -> float:
        return 1.0

    def add(self, t1: float, t2: float) -> float:
        return max(t1, t2)

    def mult(self, t1: float, t2: float) -> float:
        return t1 * t2

    def negate(self, tag: float) -> float | None:
        return 1.0 - tag

    def tagging_fn(self, input_tag: Any, fact_id: int) -> float:
        return validate_probability(self.name, input_tag)

    def discard(self, tag: float) -> bool:
        return tag <= 0.0
