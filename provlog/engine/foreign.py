"""Foreign functions and predicates callable from rules.

Foreign functions are pure: given argument values they return a value, or
None when the call does not apply (wrong types, domain error). A None
result silently drops the derivation that needed it.

Foreign predicates generate facts: given the values of their bound
(leading) arguments they yield (input_tag, values) pairs lazily, where
values is either the full tuple or only its free suffix. An empty sequence
means "no facts for this input".

Neither kind ever raises into the evaluator: exceptions from user code are
logged and treated as a failed call.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Iterator, Sequence

from provlog.errors import ConfigurationError
from provlog.values import ValueType, parse_type

__all__ = [
    "ForeignFunction",
    "ForeignPredicate",
    "ForeignRegistry",
    "foreign_function",
    "foreign_predicate",
    "STANDARD_FUNCTIONS",
    "STANDARD_PREDICATES",
]

logger = logging.getLogger(__name__)


def _types(types: Sequence[ValueType | str | None] | None) -> tuple[ValueType | None, ...] | None:
    if types is None:
        return None
    return tuple(None if t is None else parse_type(t) for t in types)


class ForeignFunction(ABC):
    """Abstract base for foreign functions.

    Attributes:
        name: Name used in rules as $name(...)
        arg_types: Expected argument types (None entries accept any value);
            None for a variadic function
        return_type: Declared result type, checked when not None
    """

    name: str = ""
    arg_types: tuple[ValueType | None, ...] | None = None
    return_type: ValueType | None = None

    @abstractmethod
    def execute(self, args: list[Any]) -> Any | None:
        """Compute the function, returning None when it does not apply."""
        pass

    def call(self, args: list[Any]) -> Any | None:
        """Type check, execute and validate one call.

        Returns:
            The result value, or None if the call failed for any reason
        """
        if self.arg_types is not None:
            if len(args) != len(self.arg_types):
                logger.debug(f"${self.name}: expected {len(self.arg_types)} args, got {len(args)}")
                return None
            for value_type, value in zip(self.arg_types, args):
                if value_type is not None and value_type.check(value) is not None:
                    return None
        try:
            result = self.execute(args)
        except Exception as e:
            logger.debug(f"${self.name}{tuple(args)} raised {type(e).__name__}: {e}")
            return None
        if result is None:
            return None
        if self.return_type is not None and self.return_type.check(result) is not None:
            logger.debug(f"${self.name} returned {result!r}, not a {self.return_type.value}")
            return None
        return result


class ForeignPredicate(ABC):
    """Abstract base for foreign predicates.

    Attributes:
        name: Name used as a body atom
        arg_types: Column types; their count is the predicate's arity
        num_bounded: Number of leading arguments that must be bound
    """

    name: str = ""
    arg_types: tuple[ValueType | None, ...] = ()
    num_bounded: int = 0

    @property
    def arity(self) -> int:
        return len(self.arg_types)

    @abstractmethod
    def evaluate(self, bound: tuple) -> Iterable[tuple[Any, tuple]]:
        """Yield (input_tag, values) pairs for the given bound values."""
        pass

    def generate(self, bound: tuple) -> Iterator[tuple[Any, tuple]]:
        """Yield (input_tag, full_tuple) pairs, skipping malformed output."""
        for value_type, value in zip(self.arg_types, bound):
            if value_type is not None and value_type.check(value) is not None:
                return
        free_arity = self.arity - len(bound)
        try:
            for input_tag, values in self.evaluate(bound):
                values = tuple(values)
                if len(values) == free_arity:
                    full = bound + values
                elif len(values) == self.arity and values[: len(bound)] == bound:
                    full = values
                else:
                    logger.debug(f"{self.name}{bound}: ignoring malformed output {values!r}")
                    continue
                yield input_tag, full
        except Exception as e:
            logger.debug(f"{self.name}{bound} raised {type(e).__name__}: {e}")


class _CallableFunction(ForeignFunction):
    def __init__(
        self,
        fn: Callable[..., Any],
        name: str,
        arg_types: tuple[ValueType | None, ...] | None,
        return_type: ValueType | None,
    ) -> None:
        self.fn = fn
        self.name = name
        self.arg_types = arg_types
        self.return_type = return_type

    def execute(self, args: list[Any]) -> Any | None:
        return self.fn(*args)


class _CallablePredicate(ForeignPredicate):
    def __init__(
        self,
        fn: Callable[..., Iterable[tuple[Any, tuple]]],
        name: str,
        arg_types: tuple[ValueType | None, ...],
        num_bounded: int,
    ) -> None:
        self.fn = fn
        self.name = name
        self.arg_types = arg_types
        self.num_bounded = num_bounded

    def evaluate(self, bound: tuple) -> Iterable[tuple[Any, tuple]]:
        return self.fn(*bound)


def foreign_function(
    name: str | None = None,
    arg_types: Sequence[ValueType | str | None] | None = None,
    return_type: ValueType | str | None = None,
) -> Callable[[Callable[..., Any]], ForeignFunction]:
    """Wrap a plain callable as a foreign function.

    Example:
        @foreign_function("str_len", ["String"], "usize")
        def str_len(s):
            return len(s)
    """

    def wrap(fn: Callable[..., Any]) -> ForeignFunction:
        return _CallableFunction(
            fn,
            name or fn.__name__,
            _types(arg_types),
            None if return_type is None else parse_type(return_type),
        )

    return wrap


def foreign_predicate(
    name: str | None = None,
    arg_types: Sequence[ValueType | str | None] = (),
    num_bounded: int = 0,
) -> Callable[[Callable[..., Iterable[tuple[Any, tuple]]]], ForeignPredicate]:
    """Wrap a generator function as a foreign predicate.

    The function receives the bound values as positional arguments.

    Example:
        @foreign_predicate("digits", ["i32", "i32"], num_bounded=1)
        def digits(n):
            for d in str(abs(n)):
                yield None, (int(d),)
    """

    def wrap(fn: Callable[..., Iterable[tuple[Any, tuple]]]) -> ForeignPredicate:
        types = _types(arg_types) or ()
        if not 0 <= num_bounded <= len(types):
            raise ConfigurationError(
                f"Foreign predicate {name or fn.__name__}: num_bounded {num_bounded} "
                f"outside arity {len(types)}"
            )
        return _CallablePredicate(fn, name or fn.__name__, types, num_bounded)

    return wrap


# Standard library

@foreign_function("abs", [None])
def _abs(x: Any) -> Any:
    if isinstance(x, bool) or not isinstance(x, (int, float)):
        return None
    return abs(x)


@foreign_function("max")
def _max(*args: Any) -> Any:
    return max(args) if args else None


@foreign_function("min")
def _min(*args: Any) -> Any:
    return min(args) if args else None


@foreign_function("string_length", ["String"], "usize")
def _string_length(s: str) -> int:
    return len(s)


@foreign_function("string_concat")
def _string_concat(*args: Any) -> str | None:
    if not all(isinstance(a, str) for a in args):
        return None
    return "".join(args)


@foreign_function("string_upper", ["String"], "String")
def _string_upper(s: str) -> str:
    return s.upper()


@foreign_function("string_lower", ["String"], "String")
def _string_lower(s: str) -> str:
    return s.lower()


@foreign_function("substring", ["String", "usize", "usize"], "String")
def _substring(s: str, begin: int, end: int) -> str | None:
    if begin > end or end > len(s):
        return None
    return s[begin:end]


@foreign_function("hash", None, "u64")
def _hash(*args: Any) -> int:
    return hash(args) & 0xFFFFFFFFFFFFFFFF


@foreign_predicate("range", [None, None, None], num_bounded=2)
def _range(begin: Any, end: Any) -> Iterator[tuple[Any, tuple]]:
    if isinstance(begin, bool) or isinstance(end, bool):
        return
    if not isinstance(begin, int) or not isinstance(end, int):
        return
    for i in range(begin, end):
        yield None, (i,)


@foreign_predicate("string_chars", ["String", "usize", "char"], num_bounded=1)
def _string_chars(s: str) -> Iterator[tuple[Any, tuple]]:
    for i, c in enumerate(s):
        yield None, (i, c)


STANDARD_FUNCTIONS: tuple[ForeignFunction, ...] = (
    _abs,
    _max,
    _min,
    _string_length,
    _string_concat,
    _string_upper,
    _string_lower,
    _substring,
    _hash,
)

STANDARD_PREDICATES: tuple[ForeignPredicate, ...] = (
    _range,
    _string_chars,
)


class ForeignRegistry:
    """Foreign functions and predicates known to one session."""

    def __init__(self, include_standard: bool = True) -> None:
        self.functions: dict[str, ForeignFunction] = {}
        self.predicates: dict[str, ForeignPredicate] = {}
        if include_standard:
            for function in STANDARD_FUNCTIONS:
                self.functions[function.name] = function
            for predicate in STANDARD_PREDICATES:
                self.predicates[predicate.name] = predicate

    def register_function(self, function: ForeignFunction, replace: bool = False) -> None:
        """Register a foreign function.

        Raises:
            ConfigurationError: If the name is taken and replace is False
        """
        if not function.name:
            raise ConfigurationError("Foreign function needs a name")
        if function.name in self.functions and not replace:
            raise ConfigurationError(f"Foreign function '{function.name}' already registered")
        self.functions[function.name] = function

    def register_predicate(self, predicate: ForeignPredicate, replace: bool = False) -> None:
        """Register a foreign predicate.

        Raises:
            ConfigurationError: If the name is taken and replace is False
        """
        if not predicate.name:
            raise ConfigurationError("Foreign predicate needs a name")
        if predicate.name in self.predicates and not replace:
            raise ConfigurationError(f"Foreign predicate '{predicate.name}' already registered")
        self.predicates[predicate.name] = predicate
