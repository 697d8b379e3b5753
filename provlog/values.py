"""Value kinds that may appear inside tuples.

Tuples are plain Python tuples. Scalars map onto Python types:

- integers of every width -> int (range checked against the declared width)
- f32/f64 -> float
- bool -> bool
- char -> one-character str
- String -> str
- Symbol, Tensor, Entity -> the frozen wrappers defined here

ValueType carries the declared kind of a column and knows how to check
and infer values.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any

from provlog.errors import SchemaError

__all__ = [
    "Symbol",
    "TensorHandle",
    "EntityRef",
    "ValueType",
    "parse_type",
    "infer_type",
    "check_tuple",
]


@dataclass(frozen=True)
class Symbol:
    """An interned symbol, compared by name."""

    name: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", sys.intern(self.name))

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class TensorHandle:
    """Opaque reference to a tensor owned by an external collaborator."""

    handle: int

    def __str__(self) -> str:
        return f"<tensor #{self.handle}>"


@dataclass(frozen=True)
class EntityRef:
    """Reference to an entity value by its hash."""

    entity: int

    def __str__(self) -> str:
        return f"<entity {self.entity:#x}>"


_INT_RANGES: dict[str, tuple[int, int]] = {
    "i8": (-(2**7), 2**7 - 1),
    "i16": (-(2**15), 2**15 - 1),
    "i32": (-(2**31), 2**31 - 1),
    "i64": (-(2**63), 2**63 - 1),
    "i128": (-(2**127), 2**127 - 1),
    "isize": (-(2**63), 2**63 - 1),
    "u8": (0, 2**8 - 1),
    "u16": (0, 2**16 - 1),
    "u32": (0, 2**32 - 1),
    "u64": (0, 2**64 - 1),
    "u128": (0, 2**128 - 1),
    "usize": (0, 2**64 - 1),
}


class ValueType(str, Enum):
    """Declared type of a relation column."""

    I8 = "i8"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    I128 = "i128"
    ISIZE = "isize"
    U8 = "u8"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    U128 = "u128"
    USIZE = "usize"
    F32 = "f32"
    F64 = "f64"
    BOOL = "bool"
    CHAR = "char"
    STRING = "String"
    SYMBOL = "Symbol"
    TENSOR = "Tensor"
    ENTITY = "Entity"

    @property
    def is_integer(self) -> bool:
        return self.value in _INT_RANGES

    @property
    def is_float(self) -> bool:
        return self in (ValueType.F32, ValueType.F64)

    def check(self, value: Any) -> str | None:
        """Check a value against this type.

        Args:
            value: Candidate value

        Returns:
            None if the value fits, otherwise a reason string
        """
        if self.is_integer:
            # bool is an int subclass; reject it explicitly
            if isinstance(value, bool) or not isinstance(value, int):
                return f"expected {self.value}, got {type(value).__name__}"
            low, high = _INT_RANGES[self.value]
            if not low <= value <= high:
                return f"{value} out of range for {self.value}"
            return None
        if self.is_float:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return f"expected {self.value}, got {type(value).__name__}"
            return None
        if self is ValueType.BOOL:
            return None if isinstance(value, bool) else f"expected bool, got {type(value).__name__}"
        if self is ValueType.CHAR:
            if isinstance(value, str) and len(value) == 1:
                return None
            return f"expected a single character, got {value!r}"
        if self is ValueType.STRING:
            return None if isinstance(value, str) else f"expected String, got {type(value).__name__}"
        if self is ValueType.SYMBOL:
            return None if isinstance(value, Symbol) else f"expected Symbol, got {type(value).__name__}"
        if self is ValueType.TENSOR:
            return None if isinstance(value, TensorHandle) else f"expected Tensor, got {type(value).__name__}"
        return None if isinstance(value, EntityRef) else f"expected Entity, got {type(value).__name__}"


# Aliases accepted in declarations
_TYPE_ALIASES: dict[str, ValueType] = {
    "string": ValueType.STRING,
    "str": ValueType.STRING,
    "&str": ValueType.STRING,
    "symbol": ValueType.SYMBOL,
    "tensor": ValueType.TENSOR,
    "entity": ValueType.ENTITY,
}


def parse_type(name: str | ValueType) -> ValueType:
    """Resolve a type name such as "i32" or "String".

    Raises:
        SchemaError: If the name is not a known value type
    """
    if isinstance(name, ValueType):
        return name
    name = name.strip()
    try:
        return ValueType(name)
    except ValueError:
        pass
    if name in _TYPE_ALIASES:
        return _TYPE_ALIASES[name]
    raise SchemaError(f"Unknown value type: {name}")


def infer_type(value: Any) -> ValueType:
    """Pick the default declared type for a value seen on first insertion."""
    if isinstance(value, bool):
        return ValueType.BOOL
    if isinstance(value, int):
        low, high = _INT_RANGES["i32"]
        return ValueType.I32 if low <= value <= high else ValueType.I64
    if isinstance(value, float):
        return ValueType.F64
    if isinstance(value, str):
        return ValueType.STRING
    if isinstance(value, Symbol):
        return ValueType.SYMBOL
    if isinstance(value, TensorHandle):
        return ValueType.TENSOR
    if isinstance(value, EntityRef):
        return ValueType.ENTITY
    raise SchemaError(f"Unsupported value: {value!r} ({type(value).__name__})")


def check_tuple(types: tuple[ValueType, ...], values: tuple) -> str | None:
    """Check a tuple against a column type list.

    Returns:
        None if the tuple fits, otherwise a reason string
    """
    if len(types) != len(values):
        return f"arity mismatch: expected {len(types)}, got {len(values)}"
    for position, (value_type, value) in enumerate(zip(types, values)):
        reason = value_type.check(value)
        if reason is not None:
            return f"column {position}: {reason}"
    return None
