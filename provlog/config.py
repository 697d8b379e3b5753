"""Engine configuration.

The configuration surface consumed from outside the core: which provenance
to use, its top-K bound, the per-stratum iteration limit, early discarding
and default type checking of inserted facts.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from provlog.provenance import PROVENANCES, Provenance, get_provenance

__all__ = [
    "EngineConfig",
    "create_provenance",
]


class EngineConfig(BaseModel):
    """Settings for a Context.

    Example:
        EngineConfig(provenance="topkproofs", k=5, iteration_limit=100)
    """

    model_config = {"frozen": True}

    provenance: str = Field(default="unit", description="Provenance registry name")
    k: int = Field(default=3, ge=1, description="Top-K bound for proof provenances")
    iteration_limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum iterations per stratum (None = until saturation)",
    )
    early_discard: bool = Field(
        default=True, description="Drop derived facts whose tag the provenance discards"
    )
    type_check: bool = Field(
        default=False, description="Type check inserted facts unless overridden per call"
    )
    incremental: bool = Field(
        default=False, description="Keep fixpoint state across runs"
    )

    @field_validator("provenance")
    @classmethod
    def validate_provenance(cls, v: str) -> str:
        """Reject unknown provenance names before any evaluation."""
        if v not in PROVENANCES:
            raise ValueError(f"Unknown provenance: {v}. Valid: {sorted(PROVENANCES)}")
        return v


def create_provenance(config: EngineConfig) -> Provenance:
    """Build the provenance selected by a configuration."""
    return get_provenance(config.provenance, k=config.k)
