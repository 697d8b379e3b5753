"""Pluggable tag algebras (provenances).

Usage:
    from provlog.provenance import get_provenance

    prov = get_provenance("minmaxprob")
    prov.add(0.6, prov.mult(0.9, 0.8))  # 0.8

    # Or with a session:
    ctx = Context("topkproofs", k=3)

Proof-based algebras keep per-session literal tables, so the registry
holds classes and builds a fresh instance on every lookup.
"""

from __future__ import annotations

from provlog.errors import UnknownProvenanceError

from .base import Provenance, Tag
from .discrete import UNIT, BooleanProvenance, NaturalProvenance, UnitProvenance
from .numeric import (
    AddMultProbProvenance,
    MaxMultProbProvenance,
    MinMaxProbProvenance,
    TropicalProvenance,
    validate_probability,
)
from .proofs import ProofsProvenance, TopKProofsDebugProvenance, TopKProofsProvenance

__all__ = [
    "Provenance",
    "Tag",
    "UNIT",
    "UnitProvenance",
    "BooleanProvenance",
    "NaturalProvenance",
    "TropicalProvenance",
    "MinMaxProbProvenance",
    "AddMultProbProvenance",
    "MaxMultProbProvenance",
    "ProofsProvenance",
    "TopKProofsProvenance",
    "TopKProofsDebugProvenance",
    "validate_probability",
    "PROVENANCES",
    "get_provenance",
]

PROVENANCES: dict[str, type[Provenance]] = {
    cls.name: cls
    for cls in (
        UnitProvenance,
        BooleanProvenance,
        NaturalProvenance,
        TropicalProvenance,
        MinMaxProbProvenance,
        AddMultProbProvenance,
        MaxMultProbProvenance,
        ProofsProvenance,
        TopKProofsProvenance,
        TopKProofsDebugProvenance,
    )
}

# Algebras parameterised by a retention bound
_TOP_K = {"topkproofs", "topkproofsdebug"}


def get_provenance(name: str = "unit", k: int = 3) -> Provenance:
    """Build a provenance by registry name.

    Args:
        name: Registry name ("unit", "boolean", "natural", "tropical",
            "minmaxprob", "addmultprob", "maxmultprob", "proofs",
            "topkproofs", "topkproofsdebug")
        k: Retention bound for the top-K proof algebras

    Returns:
        A fresh Provenance instance

    Raises:
        UnknownProvenanceError: If the name is not registered
    """
    if name not in PROVENANCES:
        raise UnknownProvenanceError(name, sorted(PROVENANCES))
    cls = PROVENANCES[name]
    if name in _TOP_K:
        return cls(k=k)
    return cls()
