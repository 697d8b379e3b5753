"""Unit tests for relation storage."""

import pytest

from provlog.engine.store import (
    FactIdAllocator,
    FactView,
    RelationSchema,
    RelationStore,
)
from provlog.errors import SchemaError, SchemaRedeclarationError
from provlog.provenance import MinMaxProbProvenance, NaturalProvenance, ProofsProvenance
from provlog.values import ValueType


@pytest.fixture
def store():
    return RelationStore(MinMaxProbProvenance())


class TestDedupInvariant:
    """Inserting a tuple twice keeps one fact with the tags added."""

    def test_minmax_tags_combine(self, store):
        assert store.insert("edge", 0.3, (0, 1)) is True
        assert store.insert("edge", 0.7, (0, 1)) is False

        facts = list(store.get("edge"))
        assert len(facts) == 1
        assert facts[0].tag == pytest.approx(0.7)
        assert facts[0].derivation_count == 2

    def test_natural_counts_combine(self):
        store = RelationStore(NaturalProvenance())
        store.insert("r", 2, ("a",))
        store.insert("r", 3, ("a",))
        assert [f.tag for f in store.get("r")] == [5]

    def test_proofs_combine(self):
        prov = ProofsProvenance()
        store = RelationStore(prov)
        t1 = prov.tagging_fn(0.5, 0)
        t2 = prov.tagging_fn(0.5, 1)
        store.insert("r", t1, (1,))
        store.insert("r", t2, (1,))
        (fact,) = store.get("r")
        assert fact.tag == prov.add(t1, t2)

    def test_extensional_copy_also_merges(self, store):
        store.insert("edge", 0.3, (0, 1))
        store.insert("edge", 0.9, (0, 1))
        assert store.relation("edge").edb[(0, 1)] == pytest.approx(0.9)


class TestRelationStore:
    """Test schema handling and lookups."""

    def test_infers_schema_on_first_insert(self, store):
        store.insert("word", 1.0, ("hello", 3))
        schema = store.relation("word").schema
        assert schema.types == (ValueType.STRING, ValueType.I32)

    def test_declare_then_redeclare_same(self, store):
        store.declare("edge", [ValueType.I32, ValueType.I32])
        store.declare("edge", [ValueType.I32, ValueType.I32])
        assert store.relation("edge").schema.arity == 2

    def test_redeclare_conflict(self, store):
        store.declare("edge", [ValueType.I32, ValueType.I32])
        with pytest.raises(SchemaRedeclarationError):
            store.declare("edge", [ValueType.STRING, ValueType.I32])

    def test_declare_upgrades_untyped(self, store):
        store.ensure("edge", 2)
        store.declare("edge", [ValueType.I64, ValueType.I64])
        assert store.relation("edge").schema.types == (ValueType.I64, ValueType.I64)

    def test_ensure_arity_conflict(self, store):
        store.ensure("edge", 2)
        with pytest.raises(SchemaError):
            store.ensure("edge", 3)

    def test_unknown_relation_is_empty(self, store):
        assert list(store.get("missing")) == []
        assert store.len("missing") == 0
        assert "missing" not in store

    def test_source_marks_base_and_derived(self, store):
        store.insert("r", 1.0, (1,))
        store.insert("r", 1.0, (2,), base=False)
        sources = {f.tuple: f.source for f in store.get("r")}
        assert sources == {(1,): "base", (2,): "derived"}

    def test_reset_to_edb(self, store):
        store.insert("r", 1.0, (1,))
        store.insert("r", 1.0, (2,), base=False)
        store.relation("r").reset_to_edb()
        assert store.len("r") == 1

    def test_size_and_names(self, store):
        store.insert("a", 1.0, (1,))
        store.insert("b", 1.0, (1,))
        store.insert("b", 1.0, (2,))
        assert store.size() == 3
        assert store.names() == ["a", "b"]


class TestRelationSchema:
    """Test tuple checks."""

    def test_declared_check(self):
        schema = RelationSchema.declared("edge", [ValueType.I32, ValueType.I32])
        assert schema.check((1, 2)) is None
        assert "arity" in schema.check((1,))
        assert "column 1" in schema.check((1, "x"))

    def test_untyped_checks_arity_only(self):
        schema = RelationSchema(name="r", types=None, arity=2)
        assert schema.check(("x", 1.5)) is None
        assert schema.check((1,)) is not None

    def test_str(self):
        assert str(RelationSchema.declared("edge", [ValueType.I32, ValueType.STRING])) == "edge(i32, String)"


class TestFactView:
    """Test indexed lookups."""

    def test_lookup_by_position(self):
        view = FactView({(0, 1): "a", (0, 2): "b", (1, 2): "c"})
        assert sorted(t for t, _ in view.lookup((0,), (0,))) == [(0, 1), (0, 2)]
        assert list(view.lookup((1,), (9,))) == []

    def test_lookup_without_positions_scans(self):
        view = FactView({(0, 1): "a"})
        assert list(view.lookup((), ())) == [((0, 1), "a")]


class TestFactIdAllocator:
    """Test session fact ids."""

    def test_monotonic(self):
        allocator = FactIdAllocator()
        assert [allocator.allocate() for _ in range(3)] == [0, 1, 2]
        assert allocator.next_id == 3
