"""Unit tests for engine configuration."""

import pytest
from pydantic import ValidationError

from provlog.config import EngineConfig, create_provenance
from provlog.engine import Context
from provlog.errors import UnknownProvenanceError
from provlog.provenance import TopKProofsProvenance, UnitProvenance


class TestEngineConfig:
    """Test defaults and validation."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.provenance == "unit"
        assert config.k == 3
        assert config.iteration_limit is None
        assert config.early_discard is True
        assert config.type_check is False
        assert config.incremental is False

    def test_frozen(self):
        config = EngineConfig()
        with pytest.raises(ValidationError):
            config.k = 5

    @pytest.mark.parametrize("field,value", [("k", 0), ("iteration_limit", 0)])
    def test_lower_bounds(self, field, value):
        with pytest.raises(ValidationError):
            EngineConfig(**{field: value})

    def test_unknown_provenance(self):
        with pytest.raises(ValidationError) as exc_info:
            EngineConfig(provenance="fuzzy")
        assert "Unknown provenance" in str(exc_info.value)


class TestCreateProvenance:
    """Test building provenances from a configuration."""

    def test_default(self):
        assert isinstance(create_provenance(EngineConfig()), UnitProvenance)

    def test_k_passthrough(self):
        provenance = create_provenance(EngineConfig(provenance="topkproofs", k=7))
        assert isinstance(provenance, TopKProofsProvenance)
        assert provenance.k == 7


class TestContextConfiguration:
    """Test how a Context combines names, configs and overrides."""

    def test_overrides_on_top_of_config(self):
        base = EngineConfig(provenance="minmaxprob", iteration_limit=10)
        ctx = Context(config=base, iteration_limit=4)
        assert ctx.config.provenance == "minmaxprob"
        assert ctx.config.iteration_limit == 4
        assert base.iteration_limit == 10

    def test_name_and_k(self):
        ctx = Context("topkproofs", k=2)
        assert ctx.provenance.k == 2

    def test_unknown_name(self):
        with pytest.raises(UnknownProvenanceError):
            Context("fuzzy")

    def test_incremental_constructor(self):
        assert Context.new_incremental("unit").incremental is True
        assert Context("unit").incremental is False
