"""Discrete tag algebras: unit, boolean and natural-number counting.

These algebras track truth or derivation counts rather than probabilities.
Negated atoms under them follow negation-as-failure: a present tuple makes
the negated atom fail, an absent one contributes one().
"""

from __future__ import annotations

from typing import Any

from provlog.errors import InputTagError

from .base import Provenance

__all__ = [
    "UNIT",
    "UnitProvenance",
    "BooleanProvenance",
    "NaturalProvenance",
]

UNIT: tuple = ()


class UnitProvenance(Provenance[tuple]):
    """Plain Datalog: every tag is the unit marker ()."""

    name = "unit"
    discrete = True

    def zero(self) -> tuple:
        return UNIT

    def one(self) -> tuple:
        return UNIT

    def add(self, t1: tuple, t2: tuple) -> tuple:
        return UNIT

    def mult(self, t1: tuple, t2: tuple) -> tuple:
        return UNIT

    def negate(self, tag: tuple) -> tuple | None:
        return UNIT

    def tagging_fn(self, input_tag: Any, fact_id: int) -> tuple:
        return UNIT

    def saturated(self, old: tuple, new: tuple) -> bool:
        return True


class BooleanProvenance(Provenance[bool]):
    """Boolean truth: add = or, mult = and."""

    name = "boolean"
    discrete = True

    def zero(self) -> bool:
        return False

    def one(self) -> bool:
        return True

    def add(self, t1: bool, t2: bool) -> bool:
        return t1 or t2

    def mult(self, t1: bool, t2: bool) -> bool:
        return t1 and t2

    def negate(self, tag: bool) -> bool | None:
        return not tag

    def tagging_fn(self, input_tag: Any, fact_id: int) -> bool:
        if input_tag is None:
            return True
        if not isinstance(input_tag, bool):
            raise InputTagError(self.name, input_tag, "expected bool")
        return input_tag

    def discard(self, tag: bool) -> bool:
        return not tag


class NaturalProvenance(Provenance[int]):
    """Derivation counting: add = +, mult = *.

    Counting is not idempotent: each iteration passes on only the count
    increments, so every derivation is counted once. Derivations through a
    cycle never run out, so cyclic data needs an iteration limit.
    """

    name = "natural"
    discrete = True
    idempotent = False
    incremental_safe = False

    def zero(self) -> int:
        return 0

    def one(self) -> int:
        return 1

    def add(self, t1: int, t2: int) -> int:
        return t1 + t2

    def mult(self, t1: int, t2: int) -> int:
        return t1 * t2

    def negate(self, tag: int) -> int | None:
        return 0 if tag else 1

    def tagging_fn(self, input_tag: Any, fact_id: int) -> int:
        if input_tag is None:
            return 1
        if isinstance(input_tag, bool) or not isinstance(input_tag, int) or input_tag < 0:
            raise InputTagError(self.name, input_tag, "expected a non-negative int")
        return input_tag

    def discard(self, tag: int) -> bool:
        return tag == 0
