"""Exception hierarchy for the provenance Datalog engine.

Errors are grouped by when they can happen:

- ConfigurationError: bad setup, raised before any evaluation starts
- TypeCheckError: a fact does not fit its relation
- CompileError: a rule or program cannot be compiled
- EvaluationError: a run-time request cannot be served
- InternalConsistencyError: the engine reached a state it should never reach
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "ProvlogError",
    "ConfigurationError",
    "UnknownProvenanceError",
    "SchemaError",
    "SchemaRedeclarationError",
    "TypeCheckError",
    "InputTagError",
    "CompileError",
    "ParseError",
    "UnsafeRuleError",
    "StratificationError",
    "NegationUnsupportedError",
    "UnknownForeignError",
    "EvaluationError",
    "RelationNotFoundError",
    "InternalConsistencyError",
    "DanglingFactIdError",
]


class ProvlogError(Exception):
    """Base exception for all engine failures."""


class ConfigurationError(ProvlogError):
    """Raised when the engine is configured inconsistently."""


class UnknownProvenanceError(ConfigurationError):
    """Raised when a provenance name is not in the registry."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(f"Unknown provenance: {name}. Valid: {available}")


class SchemaError(ConfigurationError):
    """Raised when a relation schema is invalid or conflicts with its usage."""


class SchemaRedeclarationError(SchemaError):
    """Raised when a relation is declared twice with different types."""


class TypeCheckError(ProvlogError):
    """Raised when facts do not match their relation's schema.

    Attributes:
        relation: Relation the facts were inserted into
        offending: (index, tuple, reason) for every rejected fact
    """

    def __init__(
        self,
        relation: str,
        offending: list[tuple[int, Any, str]],
    ) -> None:
        self.relation = relation
        self.offending = offending
        details = "; ".join(f"#{i} {tup!r}: {reason}" for i, tup, reason in offending)
        super().__init__(
            f"{len(offending)} fact(s) rejected for relation '{relation}': {details}"
        )


class InputTagError(ConfigurationError):
    """Raised when an external tag cannot be converted by the active provenance."""

    def __init__(self, provenance: str, tag: Any, reason: str) -> None:
        self.provenance = provenance
        self.tag = tag
        self.reason = reason
        super().__init__(
            f"Invalid input tag {tag!r} for provenance '{provenance}': {reason}"
        )


class CompileError(ProvlogError):
    """Raised when rules cannot be compiled into an executable program."""


class ParseError(CompileError):
    """Raised when rule or program text is malformed."""

    def __init__(self, message: str, text: str = "", position: int | None = None) -> None:
        self.text = text
        self.position = position
        if position is not None:
            line = text.count("\n", 0, position) + 1
            message = f"{message} (line {line}, offset {position})"
        super().__init__(message)


class UnsafeRuleError(CompileError):
    """Raised when a rule uses a variable that no positive atom binds."""


class StratificationError(CompileError):
    """Raised when negation crosses a recursive cycle."""


class NegationUnsupportedError(CompileError):
    """Raised when a program negates under a provenance that cannot negate."""


class UnknownForeignError(CompileError):
    """Raised when a rule calls an unregistered foreign function or predicate."""


class EvaluationError(ProvlogError):
    """Raised when a run-time request cannot be satisfied."""


class RelationNotFoundError(EvaluationError):
    """Raised when a relation was never computed (as opposed to computed but empty)."""

    def __init__(self, name: str, reason: str = "relation not found") -> None:
        self.name = name
        super().__init__(f"{reason}: '{name}'")


class InternalConsistencyError(ProvlogError):
    """Raised when internal invariants are violated (an engine bug, not user input)."""


class DanglingFactIdError(InternalConsistencyError):
    """Raised when a proof references a fact id with no registered probability."""

    def __init__(self, fact_id: int) -> None:
        self.fact_id = fact_id
        super().__init__(f"Proof references unknown fact id {fact_id}")
