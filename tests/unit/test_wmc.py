"""Unit tests for proofs, BDD compilation and weighted model counting."""

import pytest

from provlog.errors import DanglingFactIdError, InternalConsistencyError
from provlog.wmc import (
    FALSE,
    TRUE,
    BDDManager,
    ProbabilityTable,
    Proofs,
    evaluate_bdd,
    literal,
    literal_fact,
    literal_negated,
    make_conjunction,
    variable_order,
    weighted_model_count,
)


@pytest.fixture
def table():
    t = ProbabilityTable()
    t.register(0, 0.6)
    t.register(1, 0.9)
    t.register(2, 0.8)
    t.register(3, 0.5)
    return t


# ==============================================================================
# Literals and Conjunctions
# ==============================================================================


class TestLiterals:
    """Test the integer literal encoding."""

    def test_positive(self):
        assert literal(5) == 10
        assert literal_fact(10) == 5
        assert not literal_negated(10)

    def test_negative(self):
        assert literal(5, negated=True) == 11
        assert literal_fact(11) == 5
        assert literal_negated(11)


class TestMakeConjunction:
    """Test conjunction normalisation."""

    def test_sorted_and_deduplicated(self):
        assert make_conjunction([literal(3), literal(1), literal(3)]) == (literal(1), literal(3))

    def test_contradiction_is_none(self):
        assert make_conjunction([literal(2), literal(2, negated=True)]) is None


# ==============================================================================
# Proofs
# ==============================================================================


class TestProofs:
    """Test DNF operations."""

    def test_zero_and_one(self):
        assert Proofs.zero().is_zero()
        assert Proofs.one().is_one()
        assert not Proofs.one().is_zero()

    def test_union_removes_subsumed(self):
        """{a} or {a, b} is just {a}."""
        a = Proofs.from_fact(0)
        ab = Proofs.of([[literal(0), literal(1)]])
        assert a.union(ab) == a

    def test_union_with_zero(self):
        a = Proofs.from_fact(0)
        assert a.union(Proofs.zero()) == a
        assert Proofs.zero().union(a) == a

    def test_product_distributes(self):
        left = Proofs.of([[literal(0)], [literal(1)]])
        right = Proofs.from_fact(2)
        result = left.product(right)
        assert set(result) == {(literal(0), literal(2)), (literal(1), literal(2))}

    def test_product_drops_contradictions(self):
        pos = Proofs.from_fact(0)
        neg = Proofs.of([[literal(0, negated=True)]])
        assert pos.product(neg).is_zero()

    def test_negate_single_conjunction(self):
        """not (a and b) = (not a) or (not b)."""
        ab = Proofs.of([[literal(0), literal(1)]])
        assert set(ab.negate()) == {(literal(0, True),), (literal(1, True),)}

    def test_negate_disjunction(self):
        """not (a or b) = (not a) and (not b)."""
        a_or_b = Proofs.of([[literal(0)], [literal(1)]])
        assert a_or_b.negate() == Proofs.of([[literal(0, True), literal(1, True)]])

    def test_negate_constants(self):
        assert Proofs.zero().negate().is_one()
        assert Proofs.one().negate().is_zero()

    def test_fact_ids(self):
        proofs = Proofs.of([[literal(0), literal(4, True)], [literal(2)]])
        assert proofs.fact_ids() == {0, 2, 4}

    def test_top_k_by_weight(self, table):
        proofs = Proofs.of([[literal(0)], [literal(1)], [literal(3)]])
        kept = proofs.top_k(2, table.conjunction_weight)
        assert set(kept) == {(literal(0),), (literal(1),)}

    def test_top_k_without_bound(self, table):
        proofs = Proofs.of([[literal(0)], [literal(1)], [literal(3)]])
        assert proofs.top_k(None, table.conjunction_weight) == proofs

    def test_str(self):
        proofs = Proofs.of([[literal(1), literal(2, True)]])
        assert str(proofs) == "{{1, ~2}}"


# ==============================================================================
# BDD
# ==============================================================================


class TestBDDManager:
    """Test diagram construction."""

    def test_literal_nodes_are_shared(self):
        manager = BDDManager([0, 1])
        assert manager.literal(0) == manager.literal(0)

    def test_x_and_not_x_is_false(self):
        manager = BDDManager([0])
        assert manager.apply_and(manager.literal(0), manager.literal(0, negated=True)) == FALSE

    def test_x_or_not_x_is_true(self):
        manager = BDDManager([0])
        assert manager.apply_or(manager.literal(0), manager.literal(0, negated=True)) == TRUE

    def test_reduction(self):
        """(a and b) or (a and not b) reduces to a."""
        manager = BDDManager([0, 1])
        proofs = Proofs.of([[literal(0), literal(1)], [literal(0), literal(1, True)]])
        assert manager.compile(proofs) == manager.literal(0)

    def test_compile_constants(self):
        manager = BDDManager()
        assert manager.compile(Proofs.zero()) == FALSE
        assert manager.compile(Proofs.one()) == TRUE

    def test_reachable_children_first(self):
        manager = BDDManager([0, 1])
        root = manager.compile(Proofs.of([[literal(0), literal(1)]]))
        order = manager.reachable(root)
        assert order[-1] == root
        assert len(order) == 2

    def test_variable_order_by_frequency(self):
        proofs = Proofs.of([[literal(5), literal(1)], [literal(5), literal(2)]])
        assert variable_order(proofs)[0] == 5


# ==============================================================================
# Weighted Model Counting
# ==============================================================================


class TestWeightedModelCount:
    """Test exact probability recovery."""

    def test_shortcut_or_two_step_path(self, table):
        """0.6 + 0.72 - 0.6 * 0.72 = 0.888."""
        proofs = Proofs.of([[literal(0)], [literal(1), literal(2)]])
        assert weighted_model_count(proofs, table) == pytest.approx(0.888)

    def test_shared_fact_not_double_counted(self, table):
        """(a and b) or (a and c) = a and (b or c)."""
        proofs = Proofs.of([[literal(0), literal(1)], [literal(0), literal(2)]])
        expected = 0.6 * (1 - (1 - 0.9) * (1 - 0.8))
        assert weighted_model_count(proofs, table) == pytest.approx(expected)

    def test_negated_literal(self, table):
        proofs = Proofs.of([[literal(3, negated=True)]])
        assert weighted_model_count(proofs, table) == pytest.approx(0.5)

    def test_constants(self, table):
        assert weighted_model_count(Proofs.zero(), table) == 0.0
        assert weighted_model_count(Proofs.one(), table) == 1.0

    def test_matches_evaluate_bdd(self, table):
        proofs = Proofs.of([[literal(0)], [literal(1), literal(3)]])
        manager = BDDManager(variable_order(proofs))
        root = manager.compile(proofs)
        assert evaluate_bdd(manager, root, table) == pytest.approx(
            weighted_model_count(proofs, table)
        )

    def test_dangling_fact_id(self, table):
        proofs = Proofs.from_fact(42)
        with pytest.raises(DanglingFactIdError) as exc_info:
            weighted_model_count(proofs, table)
        assert exc_info.value.fact_id == 42
        assert isinstance(exc_info.value, InternalConsistencyError)


class TestProbabilityTable:
    """Test literal weights."""

    def test_literal_weight(self, table):
        assert table.literal_weight(literal(0)) == pytest.approx(0.6)
        assert table.literal_weight(literal(0, negated=True)) == pytest.approx(0.4)

    def test_conjunction_weight(self, table):
        assert table.conjunction_weight((literal(1), literal(2))) == pytest.approx(0.72)

    def test_unknown_id(self, table):
        with pytest.raises(DanglingFactIdError):
            table.get(99)
