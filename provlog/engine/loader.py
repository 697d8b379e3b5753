"""JSON program loader.

Loads relation declarations, facts, rules and queries from a JSON document
into a Context. Documents are validated with pydantic before anything is
added.

Document format:
    {
      "relations": [{"name": "edge", "types": ["i32", "i32"]}],
      "facts": [{"relation": "edge", "values": [0, 1], "tag": 0.9}],
      "rules": ["path(a, b) = edge(a, b)",
                {"name": "step", "rule": "path(a, c) = path(a, b), edge(b, c)"}],
      "program": "rel extra = {(5, 6)}",
      "queries": ["path"]
    }

Example usage:
    from provlog.engine import Context
    from provlog.engine.loader import ProgramLoader

    ctx = Context("minmaxprob")
    ProgramLoader.load(ctx, "graph.json")
    ctx.run()
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .parser import parse_rule

if TYPE_CHECKING:
    from .context import Context

__all__ = [
    "RelationSpec",
    "FactSpec",
    "RuleSpec",
    "ProgramSpec",
    "ProgramLoader",
]

logger = logging.getLogger(__name__)


def _freeze(value: Any) -> Any:
    """JSON arrays become tuples so values and tags are hashable."""
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


class RelationSpec(BaseModel):
    """A relation declaration: column types or a bare arity."""

    name: str = Field(min_length=1)
    types: list[str] | None = None
    arity: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_shape(self) -> RelationSpec:
        if self.types is None and self.arity is None:
            raise ValueError(f"Relation '{self.name}' needs types or an arity")
        if self.types is not None and self.arity is not None and len(self.types) != self.arity:
            raise ValueError(
                f"Relation '{self.name}': {len(self.types)} types but arity {self.arity}"
            )
        return self


class FactSpec(BaseModel):
    """One fact with an optional input tag."""

    relation: str = Field(min_length=1)
    values: list[Any] = Field(default_factory=list)
    tag: Any = None


class RuleSpec(BaseModel):
    """A rule in text form with an optional name."""

    rule: str = Field(min_length=1)
    name: str | None = None


class ProgramSpec(BaseModel):
    """A complete program document."""

    relations: list[RelationSpec] = Field(default_factory=list)
    facts: list[FactSpec] = Field(default_factory=list)
    rules: list[RuleSpec] = Field(default_factory=list)
    program: str | None = None
    queries: list[str] = Field(default_factory=list)

    @field_validator("rules", mode="before")
    @classmethod
    def wrap_rule_strings(cls, v: Any) -> Any:
        """Accept plain rule strings alongside {"rule": ..., "name": ...} objects."""
        if isinstance(v, list):
            return [{"rule": item} if isinstance(item, str) else item for item in v]
        return v


class ProgramLoader:
    """Loads ProgramSpec documents into a Context."""

    @classmethod
    def load(cls, context: "Context", source: str | Path | dict) -> dict[str, int]:
        """Load a document from a path, a JSON string or an already parsed dict.

        Args:
            context: The session to load into
            source: File path, JSON text or dict

        Returns:
            Counts of loaded relations, rules, facts and queries

        Raises:
            pydantic.ValidationError: If the document does not match ProgramSpec
            FileNotFoundError: If a path does not exist
            ProvlogError: If the content is rejected by the context
        """
        spec = ProgramSpec.model_validate(cls._read(source))
        return cls.load_spec(context, spec)

    @classmethod
    def load_spec(cls, context: "Context", spec: ProgramSpec) -> dict[str, int]:
        """Load a validated document into a context."""
        for relation in spec.relations:
            context.add_relation(
                relation.name,
                relation.types if relation.types is not None else relation.arity,
            )

        rules = [replace(parse_rule(item.rule), name=item.name) for item in spec.rules]
        for rule in rules:
            context.add_rule(rule)

        if spec.program:
            context.add_program(spec.program)

        grouped: dict[str, list[tuple[Any, tuple]]] = {}
        for fact in spec.facts:
            grouped.setdefault(fact.relation, []).append((_freeze(fact.tag), _freeze(fact.values)))
        fact_count = 0
        for relation, facts in grouped.items():
            fact_count += context.add_facts(relation, facts)

        for name in spec.queries:
            context.add_query(name)

        stats = {
            "relations": len(spec.relations),
            "rules": len(rules),
            "facts": fact_count,
            "queries": len(spec.queries),
        }
        logger.debug(f"Loaded program: {stats}")
        return stats

    @classmethod
    def _read(cls, source: str | Path | dict) -> dict:
        if isinstance(source, dict):
            return source
        if isinstance(source, str) and source.lstrip().startswith("{"):
            return json.loads(source)
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Program file not found: {path}")
        with open(path, encoding="utf-8") as f:
            return json.load(f)
