"""
Read-only queries over an ownership graph and its event log.

All methods are pure functions of (graph, log, arguments). Passing an id
the graph does not know, or a negative timestamp, is a caller error and
raises immediately.
"""

from __future__ import annotations

from statistics import mean, median
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from borrowtrace.core.event import Event, mentions
from borrowtrace.core.graph import (
    OwnershipGraph,
    Relationship,
    RelationshipKind,
    Variable,
    VariableStatus,
)
from borrowtrace.errors import PreconditionError, UnknownVariableError


class OwnershipQuery:
    """
    Query engine bound to one graph and the log it was built from.

    Attributes:
        graph: The ownership graph.
        events: The event log snapshot (may be empty when only a graph
            is available, in which case ``history`` returns nothing).
    """

    def __init__(
        self, graph: OwnershipGraph, events: Iterable[Event] = (),
    ) -> None:
        self.graph: OwnershipGraph = graph
        self.events: Tuple[Event, ...] = tuple(events)

    # ------------------------------------------------------------------ #
    # Core queries
    # ------------------------------------------------------------------ #

    def variable(self, var_id: int) -> Variable:
        """
        Return the variable with *var_id*.

        Raises:
            UnknownVariableError: If the graph has no such variable.
        """
        var = self.graph.get_variable(var_id)
        if var is None:
            raise UnknownVariableError(var_id)
        return var

    def active_borrows(self, var_id: int, at: int) -> FrozenSet[Relationship]:
        """
        Borrows of *var_id* open at timestamp *at*.

        A borrow is active when ``start_time <= at < end_time``.
        """
        self.variable(var_id)
        _check_timestamp(at)
        return frozenset(
            edge for edge in self.graph.incoming(var_id)
            if edge.kind.is_borrow() and edge.active_at(at)
        )

    def history(self, var_id: int) -> Tuple[Event, ...]:
        """Events that introduce or reference *var_id*, in log order."""
        self.variable(var_id)
        return tuple(e for e in self.events if mentions(e, var_id))

    def lifetimes_overlap(self, first_id: int, second_id: int) -> bool:
        """
        True when the lifetimes of two variables overlap.

        A lifetime is ``[created_at, dropped_at or moved_at)``, open-ended
        while the variable is still active.
        """
        a = self.variable(first_id)
        b = self.variable(second_id)
        return _lifetime_before(a.created_at, b.ended_at) and _lifetime_before(
            b.created_at, a.ended_at
        )

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def find_by_name(self, name: str) -> List[Variable]:
        """All variables declared as *name* (names are not unique)."""
        return [v for v in self.graph.nodes if v.name == name]

    def find_by_type(self, type_name: str) -> List[Variable]:
        return [v for v in self.graph.nodes if v.type_name == type_name]

    def alive_at(self, at: int) -> List[Variable]:
        """Variables alive at timestamp *at*."""
        _check_timestamp(at)
        return [v for v in self.graph.nodes if v.is_alive_at(at)]

    def with_status(self, status: VariableStatus) -> List[Variable]:
        return [v for v in self.graph.nodes if v.status is status]

    def borrowers_of(self, var_id: int) -> List[Variable]:
        """Variables that borrowed *var_id* at any time."""
        self.variable(var_id)
        return self._endpoints(
            (e for e in self.graph.incoming(var_id) if e.kind.is_borrow()),
            lambda e: e.from_id,
        )

    def borrowed_by(self, var_id: int) -> List[Variable]:
        """Variables that *var_id* borrowed at any time."""
        self.variable(var_id)
        return self._endpoints(
            (e for e in self.graph.outgoing(var_id) if e.kind.is_borrow()),
            lambda e: e.to_id,
        )

    def overlapping_lifetimes(self, var_id: int) -> List[Variable]:
        """Every other variable whose lifetime overlaps *var_id*'s."""
        self.variable(var_id)
        return [
            v for v in self.graph.nodes
            if v.id != var_id and self.lifetimes_overlap(var_id, v.id)
        ]

    def moved_into(self, var_id: int) -> Optional[Variable]:
        """The binding *var_id* was moved into, if it was moved."""
        self.variable(var_id)
        for edge in self.graph.incoming(var_id):
            if edge.kind is RelationshipKind.OWNS:
                return self.graph.get_variable(edge.from_id)
        return None

    # ------------------------------------------------------------------ #
    # Borrow structure
    # ------------------------------------------------------------------ #

    def transitive_borrowers(self, var_id: int) -> List[Variable]:
        """
        Every variable that borrows *var_id* directly or through a chain
        of borrows (a borrower of a borrower), in discovery order.
        """
        self.variable(var_id)
        seen: Set[int] = {var_id}
        result: List[Variable] = []
        stack = [var_id]
        while stack:
            current = stack.pop()
            for edge in self.graph.incoming(current):
                if not edge.kind.is_borrow() or edge.from_id in seen:
                    continue
                seen.add(edge.from_id)
                borrower = self.graph.get_variable(edge.from_id)
                if borrower is not None:
                    result.append(borrower)
                    stack.append(borrower.id)
        return result

    def longest_borrow_chain(self) -> Tuple[int, ...]:
        """
        Ids along the longest path of borrow edges, borrower first.

        Ties resolve to the chain starting at the lowest id. Returns an
        empty tuple when the graph has no borrows.
        """
        memo: Dict[int, Tuple[int, ...]] = {}

        def chain_from(var_id: int, on_path: Set[int]) -> Tuple[int, ...]:
            if var_id in memo:
                return memo[var_id]
            on_path.add(var_id)
            best: Tuple[int, ...] = ()
            for edge in self.graph.outgoing(var_id):
                if not edge.kind.is_borrow() or edge.to_id in on_path:
                    continue
                tail = chain_from(edge.to_id, on_path)
                if len(tail) > len(best):
                    best = tail
            on_path.discard(var_id)
            memo[var_id] = (var_id, *best)
            return memo[var_id]

        longest: Tuple[int, ...] = ()
        for var in self.graph.nodes:
            chain = chain_from(var.id, set())
            if len(chain) > len(longest):
                longest = chain
        return longest if len(longest) > 1 else ()

    def roots(self) -> List[Variable]:
        """Variables nothing ever borrowed."""
        return [
            v for v in self.graph.nodes
            if not any(e.kind.is_borrow() for e in self.graph.incoming(v.id))
        ]

    def leaves(self) -> List[Variable]:
        """Variables that never borrowed anything."""
        return [
            v for v in self.graph.nodes
            if not any(e.kind.is_borrow() for e in self.graph.outgoing(v.id))
        ]

    def lifetimes(self) -> List[Tuple[Variable, int]]:
        """``(variable, duration)`` for every variable whose lifetime ended."""
        return [
            (v, v.ended_at - v.created_at)
            for v in self.graph.nodes
            if v.ended_at is not None
        ]

    # ------------------------------------------------------------------ #
    # Shared ownership
    # ------------------------------------------------------------------ #

    def shared_owners(self, var_id: int) -> List[Variable]:
        """
        All rc/arc handles sharing *var_id*'s allocation, including itself.

        Returns an empty list for variables that are not reference-counted.
        """
        var = self.variable(var_id)
        if var.allocation_id is None:
            return []
        return [v for v in self.graph.nodes if v.allocation_id == var.allocation_id]

    def live_count(self, var_id: int, at: int) -> int:
        """Number of handles to *var_id*'s allocation alive at *at*."""
        _check_timestamp(at)
        return sum(1 for v in self.shared_owners(var_id) if v.is_alive_at(at))

    # ------------------------------------------------------------------ #
    # Statistics
    # ------------------------------------------------------------------ #

    def statistics(self) -> Dict[str, Any]:
        """
        Graph statistics plus per-status variable counts and lifetime
        figures over the variables that ended (``None`` when none did).
        """
        stats = self.graph.stats()
        for status in VariableStatus:
            stats[f"{status.value}_variables"] = len(self.with_status(status))

        durations = [duration for _, duration in self.lifetimes()]
        if durations:
            stats["average_lifetime"] = mean(durations)
            stats["median_lifetime"] = median(durations)
            stats["longest_lifetime"] = max(durations)
            stats["shortest_lifetime"] = min(durations)
        else:
            stats["average_lifetime"] = None
            stats["median_lifetime"] = None
            stats["longest_lifetime"] = None
            stats["shortest_lifetime"] = None
        return stats

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _endpoints(
        self,
        edges: Iterable[Relationship],
        pick: Callable[[Relationship], int],
    ) -> List[Variable]:
        seen: Set[int] = set()
        result: List[Variable] = []
        for edge in edges:
            var_id = pick(edge)
            if var_id in seen:
                continue
            seen.add(var_id)
            var = self.graph.get_variable(var_id)
            if var is not None:
                result.append(var)
        return result


def _check_timestamp(at: int) -> None:
    if at < 0:
        raise PreconditionError(f"Timestamp must be non-negative, got {at}")


def _lifetime_before(start: int, end: Optional[int]) -> bool:
    return end is None or start < end
