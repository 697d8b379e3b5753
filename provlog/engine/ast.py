"""Rule representation shared by the parser, loader and compiler.

Represents: head(args) :- literal1, literal2, ...

Literals are atoms (possibly negated) and constraints comparing two
expressions. Expressions are variables, constants, arithmetic and foreign
function calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

__all__ = [
    "Var",
    "Const",
    "Call",
    "BinOp",
    "Expr",
    "Atom",
    "Constraint",
    "Literal",
    "Rule",
    "FactSet",
    "TypeDecl",
    "ParsedProgram",
    "COMPARISON_OPS",
    "ARITHMETIC_OPS",
]

COMPARISON_OPS = ("==", "!=", "<", "<=", ">", ">=")
ARITHMETIC_OPS = ("+", "-", "*", "/", "%")


@dataclass(frozen=True)
class Var:
    """A rule variable."""

    name: str

    def variables(self) -> set[str]:
        return {self.name}

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Const:
    """A constant value."""

    value: Any

    def variables(self) -> set[str]:
        return set()

    def __str__(self) -> str:
        if isinstance(self.value, str):
            return f'"{self.value}"'
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


@dataclass(frozen=True)
class Call:
    """A foreign function call: $name(args)."""

    function: str
    args: tuple["Expr", ...]

    def variables(self) -> set[str]:
        result: set[str] = set()
        for arg in self.args:
            result |= arg.variables()
        return result

    def __str__(self) -> str:
        return f"${self.function}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class BinOp:
    """Binary arithmetic on two expressions."""

    op: str
    left: "Expr"
    right: "Expr"

    def variables(self) -> set[str]:
        return self.left.variables() | self.right.variables()

    def __str__(self) -> str:
        return f"({self.left} {self.op} {self.right})"


Expr = Union[Var, Const, Call, BinOp]


@dataclass(frozen=True)
class Atom:
    """A relation applied to argument expressions.

    Attributes:
        relation: Relation (or foreign predicate) name
        args: Argument expressions; body atoms only use variables and constants
        negated: Whether this atom appears negated in a rule body
    """

    relation: str
    args: tuple[Expr, ...]
    negated: bool = False

    @property
    def arity(self) -> int:
        return len(self.args)

    def variables(self) -> set[str]:
        result: set[str] = set()
        for arg in self.args:
            result |= arg.variables()
        return result

    def __str__(self) -> str:
        neg = "~" if self.negated else ""
        return f"{neg}{self.relation}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class Constraint:
    """A comparison between two expressions.

    `v == expr` with `v` not bound by any atom acts as an assignment.
    """

    op: str
    left: Expr
    right: Expr

    def variables(self) -> set[str]:
        return self.left.variables() | self.right.variables()

    def __str__(self) -> str:
        return f"{self.left} {self.op} {self.right}"


Literal = Union[Atom, Constraint]


@dataclass(frozen=True)
class Rule:
    """A Horn rule with an optional name for debugging."""

    head: Atom
    body: tuple[Literal, ...]
    name: str | None = None

    @property
    def has_negation(self) -> bool:
        return any(isinstance(lit, Atom) and lit.negated for lit in self.body)

    def body_atoms(self) -> list[Atom]:
        return [lit for lit in self.body if isinstance(lit, Atom)]

    def variables(self) -> set[str]:
        result = self.head.variables()
        for lit in self.body:
            result |= lit.variables()
        return result

    def __str__(self) -> str:
        if self.body:
            return f"{self.head} :- {', '.join(str(lit) for lit in self.body)}."
        return f"{self.head}."


@dataclass
class FactSet:
    """Facts for one relation, each with an optional input tag."""

    relation: str
    facts: list[tuple[Any, tuple]] = field(default_factory=list)


@dataclass(frozen=True)
class TypeDecl:
    """A relation declaration: name and column type names."""

    relation: str
    types: tuple[str, ...]


@dataclass
class ParsedProgram:
    """Everything a program text declares."""

    declarations: list[TypeDecl] = field(default_factory=list)
    facts: list[FactSet] = field(default_factory=list)
    rules: list[Rule] = field(default_factory=list)
    queries: list[str] = field(default_factory=list)
