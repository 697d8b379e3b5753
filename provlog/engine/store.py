"""Tagged relation storage.

This module holds the deduplicated tuples of every relation together with
their tags. A tuple appears at most once per relation; inserting it again
combines the tags with the provenance's add instead of adding a row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, Iterator, Mapping, TypeVar

from provlog.errors import SchemaError, SchemaRedeclarationError
from provlog.provenance import Provenance
from provlog.values import ValueType, check_tuple, infer_type

__all__ = [
    "RelationSchema",
    "StoredFact",
    "Relation",
    "RelationStore",
    "FactIdAllocator",
    "FactView",
]

logger = logging.getLogger(__name__)

Tag = TypeVar("Tag")


@dataclass(frozen=True)
class RelationSchema:
    """Name and column types of a relation.

    Attributes:
        name: Relation name
        types: Column types; None until declared or inferred
        arity: Number of columns
    """

    name: str
    types: tuple[ValueType, ...] | None
    arity: int

    @classmethod
    def declared(cls, name: str, types: Iterable[ValueType]) -> RelationSchema:
        types = tuple(types)
        return cls(name=name, types=types, arity=len(types))

    @classmethod
    def inferred(cls, name: str, values: tuple) -> RelationSchema:
        return cls.declared(name, (infer_type(v) for v in values))

    def check(self, values: tuple) -> str | None:
        """Check a tuple against this schema, returning a reason on failure."""
        if self.types is None:
            if len(values) != self.arity:
                return f"arity mismatch: expected {self.arity}, got {len(values)}"
            return None
        return check_tuple(self.types, values)

    def __str__(self) -> str:
        if self.types is None:
            return f"{self.name}/{self.arity}"
        return f"{self.name}({', '.join(t.value for t in self.types)})"


@dataclass
class StoredFact(Generic[Tag]):
    """A tuple with its tag and derivation metadata.

    Attributes:
        tuple: The stored values
        tag: Provenance tag
        source: "base" for inserted facts, "derived" for rule output
        derivation_count: Number of times the tuple was inserted or derived
    """

    tuple: tuple
    tag: Tag
    source: str = "base"
    derivation_count: int = 1


class FactIdAllocator:
    """Session-owned counter of base fact identifiers.

    Ids start at 0, increase monotonically and are never reused within one
    session.
    """

    def __init__(self, start: int = 0) -> None:
        self._next = start

    def allocate(self) -> int:
        fact_id = self._next
        self._next += 1
        return fact_id

    @property
    def next_id(self) -> int:
        return self._next


class FactView:
    """Read-only view over tagged tuples with lazily built hash indices.

    The evaluator builds one view per relation and role (all facts, delta,
    non-delta) for each iteration; indices are keyed by the tuple positions
    that are bound when an atom is joined.
    """

    __slots__ = ("_facts", "_indices")

    def __init__(self, facts: Mapping[tuple, Any]) -> None:
        self._facts = facts
        self._indices: dict[tuple[int, ...], dict[tuple, list[tuple[tuple, Any]]]] = {}

    def __len__(self) -> int:
        return len(self._facts)

    def __bool__(self) -> bool:
        return bool(self._facts)

    def items(self) -> Iterable[tuple[tuple, Any]]:
        return self._facts.items()

    def get(self, tup: tuple) -> Any:
        return self._facts.get(tup)

    def __contains__(self, tup: tuple) -> bool:
        return tup in self._facts

    def lookup(self, positions: tuple[int, ...], key: tuple) -> Iterable[tuple[tuple, Any]]:
        """Facts whose values at `positions` equal `key`."""
        if not positions:
            return self._facts.items()
        index = self._indices.get(positions)
        if index is None:
            index = {}
            for tup, tag in self._facts.items():
                index.setdefault(tuple(tup[p] for p in positions), []).append((tup, tag))
            self._indices[positions] = index
        return index.get(key, ())


class Relation(Generic[Tag]):
    """Facts of one relation.

    Keeps extensional (inserted) facts apart from the total contents so a
    stratum can be recomputed from its inputs without losing them.
    """

    def __init__(self, schema: RelationSchema) -> None:
        self.schema = schema
        self.edb: dict[tuple, Tag] = {}
        self.facts: dict[tuple, Tag] = {}
        self.derivation_counts: dict[tuple, int] = {}

    @property
    def name(self) -> str:
        return self.schema.name

    def __len__(self) -> int:
        return len(self.facts)

    def __contains__(self, tup: tuple) -> bool:
        return tup in self.facts

    def reset_to_edb(self) -> None:
        """Drop every derived tuple, keeping only inserted facts."""
        self.facts = dict(self.edb)
        self.derivation_counts = {tup: 1 for tup in self.edb}


class RelationStore:
    """Indexed storage for the relations of one session.

    When a fact is inserted that already exists, tags are combined using
    the provenance's add.
    """

    def __init__(self, provenance: Provenance) -> None:
        self.provenance = provenance
        self._relations: dict[str, Relation] = {}

    def declare(self, name: str, types: Iterable[ValueType]) -> Relation:
        """Declare a relation's column types.

        Raises:
            SchemaRedeclarationError: If declared before with other types
        """
        schema = RelationSchema.declared(name, types)
        existing = self._relations.get(name)
        if existing is None:
            relation = Relation(schema)
            self._relations[name] = relation
            logger.debug(f"Declared relation {schema}")
            return relation
        if existing.schema.types is None and existing.schema.arity == schema.arity:
            existing.schema = schema
            return existing
        if existing.schema != schema:
            raise SchemaRedeclarationError(
                f"Relation '{name}' already declared as {existing.schema}, got {schema}"
            )
        return existing

    def ensure(self, name: str, arity: int) -> Relation:
        """Get a relation, creating an untyped one with the given arity.

        Raises:
            SchemaError: If the relation exists with a different arity
        """
        relation = self._relations.get(name)
        if relation is None:
            relation = Relation(RelationSchema(name=name, types=None, arity=arity))
            self._relations[name] = relation
            return relation
        if relation.schema.arity != arity:
            raise SchemaError(
                f"Relation '{name}' has arity {relation.schema.arity}, used with arity {arity}"
            )
        return relation

    def relation(self, name: str) -> Relation | None:
        return self._relations.get(name)

    def names(self) -> list[str]:
        return sorted(self._relations)

    def __contains__(self, name: str) -> bool:
        return name in self._relations

    def insert(self, relation: str, tag: Any, tup: tuple, *, base: bool = True) -> bool:
        """Insert a tagged tuple, merging with an existing one.

        Args:
            relation: Relation name
            tag: Internal tag of this derivation
            tup: The tuple
            base: Whether this is an extensional fact

        Returns:
            True if the tuple is new to the relation, False if its tag was merged
        """
        rel = self._relations.get(relation)
        if rel is None:
            rel = Relation(RelationSchema.inferred(relation, tup))
            self._relations[relation] = rel
            logger.debug(f"Inferred relation {rel.schema} from first insertion")

        if base:
            existing_edb = rel.edb.get(tup)
            rel.edb[tup] = tag if existing_edb is None else self.provenance.add(existing_edb, tag)

        existing = rel.facts.get(tup)
        if existing is None:
            rel.facts[tup] = tag
            rel.derivation_counts[tup] = 1
            return True
        rel.facts[tup] = self.provenance.add(existing, tag)
        rel.derivation_counts[tup] = rel.derivation_counts.get(tup, 0) + 1
        return False

    def get(self, relation: str) -> Iterator[StoredFact]:
        """Iterate over the facts of a relation.

        Yields:
            StoredFact objects (nothing for an unknown relation)
        """
        rel = self._relations.get(relation)
        if rel is None:
            return
        for tup, tag in rel.facts.items():
            yield StoredFact(
                tuple=tup,
                tag=tag,
                source="base" if tup in rel.edb else "derived",
                derivation_count=rel.derivation_counts.get(tup, 1),
            )

    def len(self, relation: str) -> int:
        """Number of distinct tuples stored for a relation."""
        rel = self._relations.get(relation)
        return 0 if rel is None else len(rel.facts)

    def size(self) -> int:
        """Total number of tuples across relations."""
        return sum(len(rel.facts) for rel in self._relations.values())

    def clear(self) -> None:
        """Remove all relations."""
        self._relations.clear()
