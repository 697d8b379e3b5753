"""Unit tests for foreign functions and foreign predicates."""

import pytest

from provlog.engine import (
    Context,
    ForeignFunction,
    ForeignPredicate,
    ForeignRegistry,
    foreign_function,
    foreign_predicate,
)
from provlog.errors import ConfigurationError
from provlog.values import ValueType


def _values(ctx, name):
    return {values for _, values in ctx.computed_relation(name)}


# ==============================================================================
# Foreign Functions
# ==============================================================================


class TestForeignFunction:
    """Test calling conventions and failure handling."""

    def test_decorated_callable(self):
        @foreign_function("str_len", ["String"], "usize")
        def str_len(s):
            return len(s)

        assert isinstance(str_len, ForeignFunction)
        assert str_len.call(["hello"]) == 5

    def test_wrong_argument_type_fails(self):
        @foreign_function("str_len", ["String"], "usize")
        def str_len(s):
            return len(s)

        assert str_len.call([3]) is None

    def test_wrong_argument_count_fails(self):
        @foreign_function("double", ["i32"])
        def double(x):
            return 2 * x

        assert double.call([1, 2]) is None

    def test_exception_becomes_failure(self):
        @foreign_function("boom")
        def boom(*args):
            raise RuntimeError("nope")

        assert boom.call([1]) is None

    def test_bad_return_type_fails(self):
        @foreign_function("negative", ["i32"], "usize")
        def negative(x):
            return -x

        assert negative.call([5]) is None

    def test_subclass(self):
        class IntMax(ForeignFunction):
            name = "int_max"
            arg_types = (ValueType.I32, ValueType.I32)
            return_type = ValueType.I32

            def execute(self, args):
                return max(args)

        assert IntMax().call([3, 9]) == 9


class TestStandardFunctions:
    """Test the built-in function set inside rules."""

    def test_string_functions(self):
        ctx = Context("unit")
        ctx.add_program(
            """
            rel word = {"Hello", "ab"}
            rel info(w, $string_length(w), $string_upper(w), $string_lower(w)) = word(w)
            """
        )
        ctx.run()
        assert _values(ctx, "info") == {
            ("Hello", 5, "HELLO", "hello"),
            ("ab", 2, "AB", "ab"),
        }

    def test_failed_call_drops_derivation(self):
        """substring past the end fails for the short word only."""
        ctx = Context("unit")
        ctx.add_program(
            """
            rel word = {"Hello", "ab"}
            rel prefix(w, $substring(w, 0, 3)) = word(w)
            """
        )
        ctx.run()
        assert _values(ctx, "prefix") == {("Hello", "Hel")}

    def test_numeric_functions(self):
        ctx = Context("unit")
        ctx.add_program(
            """
            rel pair = {(-3, 7), (4, 2)}
            rel stats(a, b, $abs(a), $max(a, b), $min(a, b)) = pair(a, b)
            """
        )
        ctx.run()
        assert _values(ctx, "stats") == {(-3, 7, 3, 7, -3), (4, 2, 4, 4, 2)}

    def test_concat_in_assignment(self):
        ctx = Context("unit")
        ctx.add_program(
            """
            rel name = {("ada", "lovelace")}
            rel full(f) = name(a, b), f == $string_concat(a, " ", b)
            """
        )
        ctx.run()
        assert _values(ctx, "full") == {("ada lovelace",)}

    def test_registered_function(self):
        ctx = Context("unit")
        ctx.register_foreign_function(lambda s: s[::-1], name="reverse", arg_types=["String"], return_type="String")
        ctx.add_program(
            """
            rel word = {"abc"}
            rel rev(w, $reverse(w)) = word(w)
            """
        )
        ctx.run()
        assert _values(ctx, "rev") == {("abc", "cba")}

    def test_tags_flow_through_function_results(self):
        ctx = Context("minmaxprob")
        ctx.add_program(
            """
            rel word = {0.4::"abc"}
            rel len(w, $string_length(w)) = word(w)
            """
        )
        ctx.run()
        assert {v: t for t, v in ctx.computed_relation("len")} == {("abc", 3): pytest.approx(0.4)}


# ==============================================================================
# Foreign Predicates
# ==============================================================================


class TestForeignPredicate:
    """Test fact generation."""

    def test_free_suffix_output(self):
        @foreign_predicate("digits", ["i32", "i32"], num_bounded=1)
        def digits(n):
            for d in str(abs(n)):
                yield None, (int(d),)

        assert isinstance(digits, ForeignPredicate)
        assert list(digits.generate((42,))) == [(None, (42, 4)), (None, (42, 2))]

    def test_full_tuple_output(self):
        @foreign_predicate("echo", ["i32", "i32"], num_bounded=1)
        def echo(n):
            yield 0.5, (n, n)

        assert list(echo.generate((7,))) == [(0.5, (7, 7))]

    def test_malformed_output_skipped(self):
        @foreign_predicate("bad", ["i32", "i32"], num_bounded=1)
        def bad(n):
            yield None, (1, 2, 3)
            yield None, (n + 1,)

        assert list(bad.generate((1,))) == [(None, (1, 2))]

    def test_exception_ends_generation(self):
        @foreign_predicate("flaky", ["i32", "i32"], num_bounded=1)
        def flaky(n):
            yield None, (1,)
            raise ValueError("stop")

        assert list(flaky.generate((0,))) == [(None, (0, 1))]

    def test_bound_type_mismatch_yields_nothing(self):
        @foreign_predicate("typed", ["i32", "i32"], num_bounded=1)
        def typed(n):
            yield None, (n,)

        assert list(typed.generate(("x",))) == []

    def test_num_bounded_outside_arity(self):
        with pytest.raises(ConfigurationError):
            foreign_predicate("oops", ["i32"], num_bounded=2)(lambda a, b: iter(()))


class TestStandardPredicates:
    """Test built-in predicates inside rules."""

    def test_range_without_relations(self):
        ctx = Context("unit")
        ctx.add_rule("small(i) = range(0, 4, i)")
        ctx.run()
        assert _values(ctx, "small") == {(0,), (1,), (2,), (3,)}

    def test_range_bound_by_relation(self):
        ctx = Context("unit")
        ctx.add_program(
            """
            rel limit = {2, 3}
            rel below(n, i) = limit(n), range(0, n, i)
            """
        )
        ctx.run()
        assert _values(ctx, "below") == {(2, 0), (2, 1), (3, 0), (3, 1), (3, 2)}

    def test_range_with_bound_output(self):
        ctx = Context("unit")
        ctx.add_program(
            """
            rel n = {1, 5, 9}
            rel in_range(x) = n(x), range(0, 6, x)
            """
        )
        ctx.run()
        assert _values(ctx, "in_range") == {(1,), (5,)}

    def test_string_chars(self):
        ctx = Context("unit")
        ctx.add_program(
            """
            rel word = {"hi"}
            rel char_at(w, i, c) = word(w), string_chars(w, i, c)
            """
        )
        ctx.run()
        assert _values(ctx, "char_at") == {("hi", 0, "h"), ("hi", 1, "i")}

    def test_negated_foreign_predicate(self):
        ctx = Context("unit")
        ctx.add_program(
            """
            rel n = {1, 5, 9}
            rel outside(x) = n(x), ~range(0, 6, x)
            """
        )
        ctx.run()
        assert _values(ctx, "outside") == {(9,)}

    def test_unbound_input_is_unsafe(self):
        from provlog.errors import UnsafeRuleError

        ctx = Context("unit")
        with pytest.raises(UnsafeRuleError):
            ctx.add_rule("r(i) = range(0, n, i)")


class TestRegisteredPredicates:
    """Test user predicates with tags and stable fact ids."""

    def test_tagged_predicate_under_proofs(self):
        ctx = Context("proofs")

        def weather(city):
            if city == "oslo":
                yield 0.3, ("rain",)
                yield 0.6, ("snow",)

        ctx.register_foreign_predicate(weather, name="weather", arg_types=["String", "String"], num_bounded=1)
        ctx.add_program(
            """
            rel city = {0.5::"oslo"}
            rel wet(c) = city(c), weather(c, w)
            """
        )
        ctx.run()
        wet = {v: t for t, v in ctx.computed_relation("wet")}
        assert wet[("oslo",)] == pytest.approx(0.5 * (1 - 0.7 * 0.4))

    def test_generated_facts_are_cached(self):
        calls = []

        def probe(n):
            calls.append(n)
            yield None, (n * 10,)

        ctx = Context("unit")
        ctx.register_foreign_predicate(probe, name="probe", arg_types=["i32", "i32"], num_bounded=1)
        ctx.add_program(
            """
            rel n = {1, 2}
            rel scaled(x, y) = n(x), probe(x, y)
            """
        )
        ctx.run()
        ctx.run()
        assert sorted(calls) == [1, 2]
        assert _values(ctx, "scaled") == {(1, 10), (2, 20)}


class TestForeignRegistry:
    """Test registration rules."""

    def test_standard_library_present(self):
        registry = ForeignRegistry()
        assert {"abs", "max", "min", "hash", "string_length"} <= set(registry.functions)
        assert {"range", "string_chars"} <= set(registry.predicates)

    def test_empty_registry(self):
        registry = ForeignRegistry(include_standard=False)
        assert registry.functions == {}
        assert registry.predicates == {}

    def test_duplicate_rejected(self):
        registry = ForeignRegistry()

        @foreign_function("abs")
        def other_abs(x):
            return x

        with pytest.raises(ConfigurationError):
            registry.register_function(other_abs)
        registry.register_function(other_abs, replace=True)
        assert registry.functions["abs"] is other_abs
