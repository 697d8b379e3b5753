"""Unit tests for incremental sessions.

Results after several add_facts/run rounds must equal a single run from
scratch on the union of all facts, whichever strata get skipped, continued
or recomputed on the way.
"""

import pytest

from provlog.engine import Context, RunStatus


PATH_RULES = """
rel path(a, b) = edge(a, b)
rel path(a, c) = path(a, b), edge(b, c)
"""

ROUNDS = [
    [(0.9, (0, 1)), (0.8, (1, 2))],
    [(0.7, (2, 3)), (0.6, (0, 2))],
    [(0.5, (3, 4)), (0.95, (1, 3))],
]


def _tagged(provenance, edges):
    if provenance in ("unit", "natural"):
        return [(None, values) for _, values in edges]
    return edges


def _normalise(pairs):
    return {
        values: pytest.approx(tag) if isinstance(tag, float) else tag
        for tag, values in pairs
    }


def _from_scratch(provenance, rounds):
    ctx = Context(provenance)
    ctx.add_program(PATH_RULES)
    for edges in rounds:
        ctx.add_facts("edge", _tagged(provenance, edges))
    ctx.run()
    return ctx


PROVENANCES = ["unit", "boolean", "minmaxprob", "maxmultprob", "proofs", "topkproofs", "addmultprob"]


class TestIncrementalEquivalence:
    """Three rounds equal one run over the union."""

    @pytest.mark.parametrize("provenance", PROVENANCES)
    def test_three_rounds(self, provenance):
        if provenance == "boolean":
            rounds = [[(True, values) for _, values in edges] for edges in ROUNDS]
        else:
            rounds = ROUNDS

        ctx = Context.new_incremental(provenance)
        ctx.add_program(PATH_RULES)
        for edges in rounds:
            ctx.add_facts("edge", _tagged(provenance, edges))
            assert ctx.run().status is RunStatus.CONVERGED

        expected = _from_scratch(provenance, rounds)
        for name in ("edge", "path"):
            incremental = list(ctx.computed_relation(name))
            scratch = list(expected.computed_relation(name))
            assert [v for _, v in incremental] == [v for _, v in scratch]
            assert {v: t for t, v in incremental} == _normalise(scratch)

    def test_first_run_is_full(self):
        ctx = Context.new_incremental("unit")
        ctx.add_program(PATH_RULES)
        ctx.add_facts("edge", [(None, (0, 1))])
        result = ctx.run()
        assert result.recomputed_strata == [0]

    def test_idempotent_fact_addition(self):
        """Re-adding a present fact combines tags and changes nothing else."""
        ctx = Context.new_incremental("minmaxprob")
        ctx.add_program(PATH_RULES)
        ctx.add_facts("edge", [(0.5, (0, 1)), (0.5, (1, 2))])
        ctx.run()
        before = _normalise(ctx.computed_relation("path"))

        ctx.add_facts("edge", [(0.5, (0, 1))])
        ctx.run()
        assert {v: t for t, v in ctx.computed_relation("path")} == before


class TestStratumScheduling:
    """Which strata an incremental run revisits."""

    PROGRAM = """
    rel path(a, b) = edge(a, b)
    rel path(a, c) = path(a, b), edge(b, c)
    rel tagged(x) = label(x)
    """

    def _context(self, provenance="unit"):
        ctx = Context.new_incremental(provenance)
        ctx.add_program(self.PROGRAM)
        ctx.add_facts("edge", [(None, (0, 1))] if provenance == "unit" else [(0.5, (0, 1))])
        ctx.add_facts("label", [(None, ("a",))] if provenance == "unit" else [(0.5, ("a",))])
        ctx.run()
        return ctx

    def test_unaffected_stratum_is_skipped(self):
        ctx = self._context()
        ctx.add_facts("label", [(None, ("b",))])
        result = ctx.run()

        assert len(result.skipped_strata) == 1
        assert len(result.continued_strata) == 1
        assert set(v for _, v in ctx.computed_relation("tagged")) == {("a",), ("b",)}

    def test_nothing_changed_skips_everything(self):
        ctx = self._context()
        result = ctx.run()
        assert result.skipped_strata == [0, 1]
        assert result.iterations == 0

    def test_non_idempotent_algebra_recomputes(self):
        ctx = self._context("addmultprob")
        ctx.add_facts("edge", [(0.5, (1, 2))])
        result = ctx.run()
        assert len(result.recomputed_strata) == 1
        assert result.continued_strata == []

    def test_new_rule_forces_full_run(self):
        ctx = self._context()
        ctx.add_rule("start(a) = edge(a, b)")
        result = ctx.run()
        assert result.skipped_strata == []
        assert set(v for _, v in ctx.computed_relation("start")) == {(0,)}


class TestIncrementalNegation:
    """Strata reading a changed relation under negation are recomputed."""

    def test_new_blocker_removes_result(self):
        ctx = Context.new_incremental("unit")
        ctx.add_program(
            """
            rel node = {1, 2, 3}
            rel safe(x) = node(x), ~blocked(x)
            """
        )
        ctx.run()
        assert {v for _, v in ctx.computed_relation("safe")} == {(1,), (2,), (3,)}

        ctx.add_facts("blocked", [(None, (2,))])
        result = ctx.run()

        assert result.recomputed_strata == [0]
        assert {v for _, v in ctx.computed_relation("safe")} == {(1,), (3,)}

    def test_downstream_of_recomputed_stratum(self):
        ctx = Context.new_incremental("unit")
        ctx.add_program(
            """
            rel node = {1, 2, 3}
            rel safe(x) = node(x), ~blocked(x)
            rel safe_pair(x, y) = safe(x), safe(y), x < y
            """
        )
        ctx.run()
        ctx.add_facts("blocked", [(None, (3,))])
        result = ctx.run()

        assert result.recomputed_strata == [0, 1]
        assert {v for _, v in ctx.computed_relation("safe_pair")} == {(1, 2)}


class TestTruncationRecovery:
    """A truncated run makes the next run start over."""

    def test_full_run_after_truncation(self):
        ctx = Context.new_incremental("unit", iteration_limit=2)
        ctx.add_program(PATH_RULES)
        ctx.add_facts("edge", [(None, (i, i + 1)) for i in range(5)])
        assert ctx.run().status is RunStatus.TRUNCATED

        result = ctx.run()
        assert result.recomputed_strata == [0]
        assert result.status is RunStatus.TRUNCATED
