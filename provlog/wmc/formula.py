"""Proofs as disjunctions of conjunctions of fact literals.

A literal references a base fact by id and carries a polarity. Literals are
encoded as plain ints so conjunctions can be kept as sorted tuples:

    positive literal of fact f -> 2 * f
    negative literal of fact f -> 2 * f + 1

A conjunction is a sorted tuple of literals with no duplicates and no
complementary pair. A Proofs value is a tuple of conjunctions where no
conjunction is a superset of another (a superset is implied by its subset,
so keeping it would change nothing in the disjunction).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

__all__ = [
    "Conjunction",
    "Proofs",
    "literal",
    "literal_fact",
    "literal_negated",
    "make_conjunction",
]

Conjunction = tuple[int, ...]


def literal(fact_id: int, negated: bool = False) -> int:
    """Encode a literal for a fact id."""
    return 2 * fact_id + (1 if negated else 0)


def literal_fact(lit: int) -> int:
    """Fact id referenced by a literal."""
    return lit >> 1


def literal_negated(lit: int) -> bool:
    """Whether a literal is negated."""
    return bool(lit & 1)


def make_conjunction(literals: Iterable[int]) -> Conjunction | None:
    """Build a normalised conjunction.

    Returns:
        The sorted, de-duplicated conjunction, or None if it contains
        both a literal and its complement (it can never hold)
    """
    result = tuple(sorted(set(literals)))
    for prev, cur in zip(result, result[1:]):
        if prev >> 1 == cur >> 1:
            return None
    return result


def _is_subset(small: Conjunction, big: Conjunction) -> bool:
    if len(small) > len(big):
        return False
    i = 0
    for lit in big:
        if i < len(small) and small[i] == lit:
            i += 1
    return i == len(small)


def _minimize(conjunctions: Iterable[Conjunction]) -> tuple[Conjunction, ...]:
    """Drop duplicates and conjunctions subsumed by a smaller one."""
    kept: list[Conjunction] = []
    for conj in sorted(set(conjunctions), key=lambda c: (len(c), c)):
        if not any(_is_subset(k, conj) for k in kept):
            kept.append(conj)
    kept.sort()
    return tuple(kept)


@dataclass(frozen=True)
class Proofs:
    """A DNF formula over fact literals.

    Attributes:
        conjunctions: Alternative proofs; each one is a conjunction of
            literals that jointly derive the tuple
    """

    conjunctions: tuple[Conjunction, ...] = ()

    @classmethod
    def of(cls, conjunctions: Iterable[Iterable[int]]) -> "Proofs":
        """Build a normalised Proofs value from raw literal collections."""
        normalised = []
        for conj in conjunctions:
            made = make_conjunction(conj)
            if made is not None:
                normalised.append(made)
        return cls(_minimize(normalised))

    @classmethod
    def zero(cls) -> "Proofs":
        """No proof: the formula False."""
        return cls(())

    @classmethod
    def one(cls) -> "Proofs":
        """The empty proof: the formula True."""
        return cls(((),))

    @classmethod
    def from_fact(cls, fact_id: int) -> "Proofs":
        return cls(((literal(fact_id),),))

    def is_zero(self) -> bool:
        return not self.conjunctions

    def is_one(self) -> bool:
        return self.conjunctions == ((),)

    def __len__(self) -> int:
        return len(self.conjunctions)

    def __iter__(self) -> Iterator[Conjunction]:
        return iter(self.conjunctions)

    def fact_ids(self) -> set[int]:
        """All fact ids referenced by any literal."""
        return {lit >> 1 for conj in self.conjunctions for lit in conj}

    def union(self, other: "Proofs") -> "Proofs":
        """Disjunction of two proof sets."""
        if self.is_zero():
            return other
        if other.is_zero():
            return self
        return Proofs(_minimize(self.conjunctions + other.conjunctions))

    def product(self, other: "Proofs") -> "Proofs":
        """Conjunction of two proof sets, distributed into DNF."""
        if self.is_one():
            return other
        if other.is_one():
            return self
        combined = []
        for left in self.conjunctions:
            for right in other.conjunctions:
                made = make_conjunction(left + right)
                if made is not None:
                    combined.append(made)
        return Proofs(_minimize(combined))

    def negate(self) -> "Proofs":
        """Negation via De Morgan, distributed back into DNF.

        not (c1 or c2 ...) = (not c1) and (not c2) ...
        not (l1 and l2 ...) = (not l1) or (not l2) ...
        """
        result = Proofs.one()
        for conj in self.conjunctions:
            negated = Proofs(tuple((lit ^ 1,) for lit in conj))
            result = result.product(negated)
            if result.is_zero():
                break
        return result

    def top_k(self, k: int | None, weight: Callable[[Conjunction], float]) -> "Proofs":
        """Keep the k conjunctions with the highest estimated weight.

        Ties are broken by literal order so pruning is deterministic.
        """
        if k is None or len(self.conjunctions) <= k:
            return self
        ranked = sorted(self.conjunctions, key=lambda c: (-weight(c), len(c), c))
        return Proofs(tuple(sorted(ranked[:k])))

    def __str__(self) -> str:
        if self.is_zero():
            return "{}"
        parts = []
        for conj in self.conjunctions:
            lits = ", ".join(
                f"{'~' if lit & 1 else ''}{lit >> 1}" for lit in conj
            )
            parts.append("{" + lits + "}")
        return "{" + ", ".join(parts) + "}"
