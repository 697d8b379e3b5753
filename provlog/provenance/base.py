"""Abstract tag algebra used by the evaluator.

A provenance defines how tags attached to tuples combine:

- add: alternative derivations of the same tuple
- mult: atoms jointly required in one rule body
- negate: a negated body atom (None when the algebra cannot negate)

plus the conversion of external tags into internal ones (tagging_fn) and
back into user-facing values (recover_fn).

The evaluator is written once against this interface; it never inspects
tags itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, Iterable, TypeVar

__all__ = [
    "Provenance",
    "Tag",
]

Tag = TypeVar("Tag")


class Provenance(ABC, Generic[Tag]):
    """Abstract base for tag algebras.

    Class attributes:
        name: Registry name of the algebra
        discrete: Negated atoms use negation-as-failure instead of negate()
        idempotent: add(t, t) == t, so a tuple re-derived with an unchanged
            tag adds nothing. Otherwise the evaluator propagates tag
            increments instead of whole tags.
        incremental_safe: add is idempotent and the algebra is a true
            semiring, so a fixpoint may be extended from a previous one
    """

    name: ClassVar[str] = "abstract"
    discrete: ClassVar[bool] = False
    idempotent: ClassVar[bool] = True
    incremental_safe: ClassVar[bool] = True

    @abstractmethod
    def zero(self) -> Tag:
        """Additive identity (no derivation)."""
        pass

    @abstractmethod
    def one(self) -> Tag:
        """Multiplicative identity (derivation with no premises)."""
        pass

    @abstractmethod
    def add(self, t1: Tag, t2: Tag) -> Tag:
        """Combine tags of alternative derivations of one tuple."""
        pass

    @abstractmethod
    def mult(self, t1: Tag, t2: Tag) -> Tag:
        """Combine tags of atoms jointly required by one rule body."""
        pass

    def negate(self, tag: Tag) -> Tag | None:
        """Tag of a negated atom whose tuple carries `tag`.

        Returns:
            The negated tag, or None if this algebra does not support negation
        """
        return None

    def supports_negation(self) -> bool:
        """Whether programs with negated atoms may run under this algebra."""
        return self.discrete or self.negate(self.one()) is not None

    @abstractmethod
    def tagging_fn(self, input_tag: Any, fact_id: int) -> Tag:
        """Convert an external tag into an internal one.

        Args:
            input_tag: User supplied tag (None for an untagged fact)
            fact_id: Session-wide identifier allocated for this fact

        Raises:
            InputTagError: If the input tag is not valid for this algebra
        """
        pass

    def recover_fn(self, tag: Tag) -> Any:
        """Convert a converged tag into the value reported to callers."""
        return tag

    def discard(self, tag: Tag) -> bool:
        """Whether a derived fact with this tag can be dropped early."""
        return False

    def saturated(self, old: Tag, new: Tag) -> bool:
        """Whether a tuple's tag stopped changing between two iterations."""
        return old == new

    def add_all(self, tags: Iterable[Tag]) -> Tag:
        result = self.zero()
        for tag in tags:
            result = self.add(result, tag)
        return result

    def mult_all(self, tags: Iterable[Tag]) -> Tag:
        result = self.one()
        for tag in tags:
            result = self.mult(result, tag)
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
