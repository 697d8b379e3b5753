"""Reduced ordered binary decision diagrams.

Nodes live in flat arrays owned by a BDDManager and are referenced by
integer index, so diagrams share structure freely and there is no
pointer graph to manage. Index 0 is the False terminal and index 1 the
True terminal.

Each decision node tests one variable (a fact id) at a fixed level of the
manager's variable order; low is the branch where the variable is false.
Reduction is kept by construction: mk() never creates a node whose two
branches are equal, and the unique table never creates a duplicate.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable

from .formula import Conjunction, Proofs

__all__ = [
    "FALSE",
    "TRUE",
    "BDDManager",
    "variable_order",
]

logger = logging.getLogger(__name__)

FALSE = 0
TRUE = 1

_TERMINAL_LEVEL = 1 << 62

_AND = 0
_OR = 1


def variable_order(proofs: Proofs) -> list[int]:
    """Heuristic variable order: most frequent fact ids first."""
    counts: Counter[int] = Counter()
    for conj in proofs:
        for lit in conj:
            counts[lit >> 1] += 1
    return sorted(counts, key=lambda fact_id: (-counts[fact_id], fact_id))


class BDDManager:
    """Owner of a family of BDD nodes sharing one variable order."""

    def __init__(self, order: Iterable[int] = ()) -> None:
        """Initialize the manager.

        Args:
            order: Fact ids from top (first tested) to bottom
        """
        self._level: dict[int, int] = {}
        self._vars: list[int] = []
        for fact_id in order:
            self.declare(fact_id)

        # Node arrays; entries 0 and 1 are the terminals
        self._node_level: list[int] = [_TERMINAL_LEVEL, _TERMINAL_LEVEL]
        self._low: list[int] = [FALSE, TRUE]
        self._high: list[int] = [FALSE, TRUE]

        self._unique: dict[tuple[int, int, int], int] = {}
        self._apply_cache: dict[tuple[int, int, int], int] = {}

    def declare(self, fact_id: int) -> int:
        """Append a variable to the bottom of the order if not yet known."""
        level = self._level.get(fact_id)
        if level is None:
            level = len(self._vars)
            self._level[fact_id] = level
            self._vars.append(fact_id)
        return level

    @property
    def num_nodes(self) -> int:
        """Number of nodes allocated, terminals included."""
        return len(self._low)

    def variable(self, node: int) -> int:
        """Fact id tested by a decision node."""
        return self._vars[self._node_level[node]]

    def low(self, node: int) -> int:
        return self._low[node]

    def high(self, node: int) -> int:
        return self._high[node]

    def is_terminal(self, node: int) -> bool:
        return node <= TRUE

    def mk(self, level: int, low: int, high: int) -> int:
        """Find or create the node (level, low, high)."""
        if low == high:
            return low
        key = (level, low, high)
        node = self._unique.get(key)
        if node is None:
            node = len(self._low)
            self._node_level.append(level)
            self._low.append(low)
            self._high.append(high)
            self._unique[key] = node
        return node

    def literal(self, fact_id: int, negated: bool = False) -> int:
        level = self.declare(fact_id)
        if negated:
            return self.mk(level, TRUE, FALSE)
        return self.mk(level, FALSE, TRUE)

    def conjunction(self, conj: Conjunction) -> int:
        """Diagram of a single conjunction of literals."""
        levelled = sorted(
            ((self.declare(lit >> 1), bool(lit & 1)) for lit in conj),
            reverse=True,
        )
        node = TRUE
        for level, negated in levelled:
            if negated:
                node = self.mk(level, node, FALSE)
            else:
                node = self.mk(level, FALSE, node)
        return node

    def apply_and(self, u: int, v: int) -> int:
        return self._apply(_AND, u, v)

    def apply_or(self, u: int, v: int) -> int:
        return self._apply(_OR, u, v)

    def _apply(self, op: int, u: int, v: int) -> int:
        # Terminal cases
        if op == _AND:
            if u == FALSE or v == FALSE:
                return FALSE
            if u == TRUE:
                return v
            if v == TRUE or u == v:
                return u
        else:
            if u == TRUE or v == TRUE:
                return TRUE
            if u == FALSE:
                return v
            if v == FALSE or u == v:
                return u

        if u > v:
            u, v = v, u
        key = (op, u, v)
        cached = self._apply_cache.get(key)
        if cached is not None:
            return cached

        level_u = self._node_level[u]
        level_v = self._node_level[v]
        level = min(level_u, level_v)
        u_low, u_high = (self._low[u], self._high[u]) if level_u == level else (u, u)
        v_low, v_high = (self._low[v], self._high[v]) if level_v == level else (v, v)

        result = self.mk(
            level,
            self._apply(op, u_low, v_low),
            self._apply(op, u_high, v_high),
        )
        self._apply_cache[key] = result
        return result

    def compile(self, proofs: Proofs) -> int:
        """Compile a DNF into a diagram, returning its root node."""
        root = FALSE
        # Short conjunctions first keeps intermediate diagrams small
        for conj in sorted(proofs.conjunctions, key=len):
            root = self.apply_or(root, self.conjunction(conj))
            if root == TRUE:
                break
        logger.debug(
            f"Compiled {len(proofs)} proof(s) over {len(self._vars)} variable(s) "
            f"into {self.num_nodes} node(s)"
        )
        return root

    def reachable(self, root: int) -> list[int]:
        """Decision nodes reachable from root, children before parents."""
        order: list[int] = []
        seen: set[int] = set()
        stack: list[tuple[int, bool]] = [(root, False)]
        while stack:
            node, expanded = stack.pop()
            if node <= TRUE:
                continue
            if expanded:
                order.append(node)
                continue
            if node in seen:
                continue
            seen.add(node)
            stack.append((node, True))
            stack.append((self._high[node], False))
            stack.append((self._low[node], False))
        return order
