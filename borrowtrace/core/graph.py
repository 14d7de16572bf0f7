"""
Ownership graph and its incremental builder.

Nodes are variables, edges are relationships (borrows, ownership
provenance after a move, shared ownership between reference-counted
clones). Both live in append-only lists addressed by integer id, so the
graph is trivially serializable and safe to share for read-only queries.

The graph is a projection of the event log: ``build_graph`` is a pure
function of its input, and folding a log one event at a time with
``GraphBuilder.apply`` yields exactly the graph a batch build would.
Integrity problems in the log never abort a build; the offending node or
edge is skipped and a ``Diagnostic`` is recorded instead.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from borrowtrace.core.event import (
    BorrowEvent,
    DropEvent,
    Event,
    Location,
    MoveEvent,
    NewEvent,
    ValueKind,
)


class VariableStatus(Enum):
    """Lifecycle state of a variable. ``MOVED`` and ``DROPPED`` are terminal."""

    ACTIVE = "active"
    MOVED = "moved"
    DROPPED = "dropped"

    def is_terminal(self) -> bool:
        return self is not VariableStatus.ACTIVE


class RelationshipKind(Enum):
    """Kind of a graph edge."""

    OWNS = "owns"
    BORROWS_IMMUT = "borrows_immut"
    BORROWS_MUT = "borrows_mut"
    SHARES = "shares"

    def is_borrow(self) -> bool:
        return self in (RelationshipKind.BORROWS_IMMUT, RelationshipKind.BORROWS_MUT)


@dataclass(frozen=True)
class Variable:
    """
    A tracked binding (graph node).

    Attributes:
        id: Variable id (the id of the event that introduced it).
        name: Declared binding name.
        type_name: Type label.
        created_at: Timestamp of creation.
        dropped_at: Timestamp of the drop, if any. A move does not set it.
        status: Lifecycle state.
        kind: Value kind tag.
        location: Where the binding was created.
        moved_at: Timestamp at which the value was moved out, if any.
        allocation_id: For rc/arc handles, id of the handle that first
            allocated the shared value.
        strong_count: Strong count reported at creation (rc/arc only).
        weak_count: Weak count reported at creation (rc/arc only).
    """

    id: int
    name: str
    type_name: str
    created_at: int
    dropped_at: Optional[int] = None
    status: VariableStatus = VariableStatus.ACTIVE
    kind: ValueKind = ValueKind.OWNED
    location: Optional[Location] = None
    moved_at: Optional[int] = None
    allocation_id: Optional[int] = None
    strong_count: Optional[int] = None
    weak_count: Optional[int] = None

    @property
    def ended_at(self) -> Optional[int]:
        """End of the binding's lifetime: drop or move time, None if alive."""
        return self.dropped_at if self.dropped_at is not None else self.moved_at

    def is_alive_at(self, timestamp: int) -> bool:
        """True when ``created_at <= timestamp < ended_at``."""
        end = self.ended_at
        return self.created_at <= timestamp and (end is None or timestamp < end)


@dataclass(frozen=True)
class Relationship:
    """
    A relationship between two variables (graph edge).

    Borrow edges point from the borrower to the owner. An ``OWNS`` edge
    points from a move destination to the moved-from binding. A
    ``SHARES`` edge points from an rc/arc clone to its source handle.

    Attributes:
        id: Edge id (position in the edge list).
        kind: Relationship kind.
        from_id: Borrower / new owner / clone.
        to_id: Owner / previous owner / source handle.
        start_time: Timestamp at which the relationship began.
        end_time: Timestamp at which it ended; None while open.
        location: Call site of the event that created the edge.
        runtime_checked: True for borrows through a ``RefCell``.
        event_id: Id of the event that created the edge, when known.
    """

    id: int
    kind: RelationshipKind
    from_id: int
    to_id: int
    start_time: int
    end_time: Optional[int] = None
    location: Optional[Location] = None
    runtime_checked: bool = False
    event_id: Optional[int] = None

    def is_open(self) -> bool:
        return self.end_time is None

    def is_mutable(self) -> bool:
        return self.kind is RelationshipKind.BORROWS_MUT

    def active_at(self, timestamp: int) -> bool:
        """True when ``start_time <= timestamp < end_time``."""
        return self.start_time <= timestamp and (
            self.end_time is None or timestamp < self.end_time
        )

    def overlaps(self, other: Relationship) -> bool:
        """
        Half-open interval overlap; an open end extends to infinity.

        ``[a, b)`` and ``[c, d)`` overlap iff ``a < d and c < b``.
        """
        return _before(self.start_time, other.end_time) and _before(
            other.start_time, self.end_time
        )


def _before(start: int, end: Optional[int]) -> bool:
    return end is None or start < end


class DiagnosticKind(Enum):
    """Integrity problems the builder recovers from."""

    UNKNOWN_REFERENCE = "unknown_reference"
    TERMINAL_REFERENCE = "terminal_reference"
    DUPLICATE_ID = "duplicate_id"
    CLOCK_REGRESSION = "clock_regression"


@dataclass(frozen=True)
class Diagnostic:
    """
    A non-fatal problem found while folding the log.

    Attributes:
        kind: Problem category.
        event_id: Id of the offending event.
        timestamp: Timestamp of the offending event.
        location: Call site of the offending event.
        message: Human-readable description.
        var_id: Variable id the problem concerns, if any.
        status: For ``TERMINAL_REFERENCE``, the variable's state at the time.
    """

    kind: DiagnosticKind
    event_id: int
    timestamp: int
    location: Location
    message: str
    var_id: Optional[int] = None
    status: Optional[VariableStatus] = None


class OwnershipGraph:
    """
    Arena-backed graph of variables and relationships.

    ``nodes`` and ``edges`` are append-only; nodes are replaced in place
    (as new frozen values) when their status changes, edges when they
    close. Lookups go through id indexes that are rebuilt whenever
    elements are added, so a graph reconstructed from its nodes and
    edges behaves identically to the original.

    Attributes:
        nodes: Variables in creation order.
        edges: Relationships in creation order; ``edges[i].id == i``.
        diagnostics: Integrity problems recorded during the build.
        event_count: Number of events folded into the graph.
        max_timestamp: Highest timestamp seen (0 for an empty graph).
    """

    def __init__(self) -> None:
        self.nodes: List[Variable] = []
        self.edges: List[Relationship] = []
        self.diagnostics: List[Diagnostic] = []
        self.event_count: int = 0
        self.max_timestamp: int = 0

        self._node_index: Dict[int, int] = {}
        self._outgoing: Dict[int, List[int]] = {}
        self._incoming: Dict[int, List[int]] = {}

    # ------------------------------------------------------------------ #
    # Mutation (used by GraphBuilder and by document import)
    # ------------------------------------------------------------------ #

    def add_variable(self, var: Variable) -> None:
        """
        Append a variable.

        Raises:
            ValueError: If a variable with the same id already exists.
        """
        if var.id in self._node_index:
            raise ValueError(f"Duplicate variable id: {var.id}")
        self._node_index[var.id] = len(self.nodes)
        self.nodes.append(var)
        self._outgoing.setdefault(var.id, [])
        self._incoming.setdefault(var.id, [])

    def replace_variable(self, var: Variable) -> None:
        """Replace the stored variable with the same id."""
        self.nodes[self._node_index[var.id]] = var

    def add_relationship(
        self,
        kind: RelationshipKind,
        from_id: int,
        to_id: int,
        start_time: int,
        end_time: Optional[int] = None,
        location: Optional[Location] = None,
        runtime_checked: bool = False,
        event_id: Optional[int] = None,
    ) -> Relationship:
        """Append a new edge and return it."""
        rel = Relationship(
            id=len(self.edges),
            kind=kind,
            from_id=from_id,
            to_id=to_id,
            start_time=start_time,
            end_time=end_time,
            location=location,
            runtime_checked=runtime_checked,
            event_id=event_id,
        )
        self.insert_relationship(rel)
        return rel

    def insert_relationship(self, rel: Relationship) -> None:
        """
        Append an existing edge value.

        Raises:
            ValueError: If ``rel.id`` is not the next edge id, or an
                endpoint is not a known variable.
        """
        if rel.id != len(self.edges):
            raise ValueError(
                f"Edge id {rel.id} out of sequence (expected {len(self.edges)})"
            )
        for endpoint in (rel.from_id, rel.to_id):
            if endpoint not in self._node_index:
                raise ValueError(f"Edge {rel.id} references unknown variable {endpoint}")
        self.edges.append(rel)
        self._outgoing[rel.from_id].append(rel.id)
        self._incoming[rel.to_id].append(rel.id)

    def close_outgoing(self, var_id: int, end_time: int) -> List[Relationship]:
        """Close every open edge leaving *var_id*; return the closed edges."""
        closed: List[Relationship] = []
        for eid in self._outgoing.get(var_id, []):
            edge = self.edges[eid]
            if edge.end_time is None:
                edge = replace(edge, end_time=end_time)
                self.edges[eid] = edge
                closed.append(edge)
        return closed

    def add_diagnostic(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def get_variable(self, var_id: int) -> Optional[Variable]:
        """Return the variable with *var_id*, or None."""
        idx = self._node_index.get(var_id)
        return None if idx is None else self.nodes[idx]

    def __contains__(self, var_id: object) -> bool:
        return var_id in self._node_index

    def outgoing(self, var_id: int) -> List[Relationship]:
        """Edges leaving *var_id* (it is the borrower / new owner / clone)."""
        return [self.edges[eid] for eid in self._outgoing.get(var_id, [])]

    def incoming(self, var_id: int) -> List[Relationship]:
        """Edges entering *var_id* (it is the owner / source)."""
        return [self.edges[eid] for eid in self._incoming.get(var_id, [])]

    def borrow_edges(self) -> List[Relationship]:
        """All borrow edges in creation order."""
        return [e for e in self.edges if e.kind.is_borrow()]

    # ------------------------------------------------------------------ #
    # Statistics & equality
    # ------------------------------------------------------------------ #

    def stats(self) -> Dict[str, Any]:
        """Return summary counts for the graph."""
        counts = {kind: 0 for kind in RelationshipKind}
        for edge in self.edges:
            counts[edge.kind] += 1
        return {
            "total_events": self.event_count,
            "total_variables": len(self.nodes),
            "total_relationships": len(self.edges),
            "immutable_borrows": counts[RelationshipKind.BORROWS_IMMUT],
            "mutable_borrows": counts[RelationshipKind.BORROWS_MUT],
            "moves": counts[RelationshipKind.OWNS],
            "shared_clones": counts[RelationshipKind.SHARES],
            "open_relationships": sum(1 for e in self.edges if e.is_open()),
            "diagnostics": len(self.diagnostics),
            "max_timestamp": self.max_timestamp,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OwnershipGraph):
            return NotImplemented
        return (
            self.nodes == other.nodes
            and self.edges == other.edges
            and self.diagnostics == other.diagnostics
            and self.event_count == other.event_count
            and self.max_timestamp == other.max_timestamp
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"OwnershipGraph(nodes={len(self.nodes)}, edges={len(self.edges)}, "
            f"diagnostics={len(self.diagnostics)})"
        )


class GraphBuilder:
    """
    Folds ownership events into an ``OwnershipGraph``.

    The builder holds no state besides the graph it wraps, so it can be
    attached to a graph produced earlier (by a batch build or an import)
    and continue from there.

    Attributes:
        graph: The graph being built.
    """

    def __init__(self, graph: Optional[OwnershipGraph] = None) -> None:
        """
        Args:
            graph: Graph to continue folding into (a new one if omitted).
        """
        self.graph: OwnershipGraph = graph if graph is not None else OwnershipGraph()

    def extend(self, events: Iterable[Event]) -> GraphBuilder:
        """Fold *events* in order; return self for chaining."""
        for event in events:
            self.apply(event)
        return self

    def apply(self, event: Event) -> None:
        """
        Fold one event into the graph.

        Log order is authoritative: a timestamp lower than one already
        seen is recorded as ``CLOCK_REGRESSION`` and processed anyway.

        Raises:
            TypeError: If *event* is not one of the four event types.
        """
        graph = self.graph
        if graph.event_count and event.timestamp < graph.max_timestamp:
            self._diagnose(
                DiagnosticKind.CLOCK_REGRESSION, event,
                f"timestamp {event.timestamp} precedes {graph.max_timestamp}",
            )
        graph.event_count += 1
        graph.max_timestamp = max(graph.max_timestamp, event.timestamp)

        if isinstance(event, NewEvent):
            self._apply_new(event)
        elif isinstance(event, BorrowEvent):
            self._apply_borrow(event)
        elif isinstance(event, MoveEvent):
            self._apply_move(event)
        elif isinstance(event, DropEvent):
            self._apply_drop(event)
        else:
            raise TypeError(f"Not an ownership event: {event!r}")

    # ------------------------------------------------------------------ #
    # Per-kind handlers
    # ------------------------------------------------------------------ #

    def _apply_new(self, event: NewEvent) -> None:
        graph = self.graph
        if event.id in graph:
            self._diagnose(
                DiagnosticKind.DUPLICATE_ID, event,
                f"variable {event.id} ({event.name}) already exists", event.id,
            )
            return

        source = None
        if event.source_id is not None:
            source = self._resolve(event, event.source_id)

        allocation_id = None
        if event.kind.is_refcounted():
            allocation_id = event.id
            if source is not None and source.allocation_id is not None:
                allocation_id = source.allocation_id

        graph.add_variable(
            Variable(
                id=event.id,
                name=event.name,
                type_name=event.type_name,
                created_at=event.timestamp,
                kind=event.kind,
                location=event.location,
                allocation_id=allocation_id,
                strong_count=event.strong_count,
                weak_count=event.weak_count,
            )
        )
        if source is not None:
            graph.add_relationship(
                RelationshipKind.SHARES, event.id, source.id,
                event.timestamp, location=event.location,
                event_id=event.id,
            )

    def _apply_borrow(self, event: BorrowEvent) -> None:
        graph = self.graph
        owner = self._resolve(event, event.owner_id)

        if event.creates_borrower():
            if event.borrower_id in graph:
                self._diagnose(
                    DiagnosticKind.DUPLICATE_ID, event,
                    f"borrower {event.borrower_id} already exists",
                    event.borrower_id,
                )
                return
            graph.add_variable(
                Variable(
                    id=event.borrower_id,
                    name=event.borrower_name,
                    type_name=_reference_type(event, owner),
                    created_at=event.timestamp,
                    kind=event.kind,
                    location=event.location,
                )
            )
        else:
            borrower = graph.get_variable(event.borrower_id)
            if borrower is None:
                self._diagnose(
                    DiagnosticKind.UNKNOWN_REFERENCE, event,
                    f"borrower {event.borrower_id} was never created",
                    event.borrower_id,
                )
                return
            if borrower.status.is_terminal():
                # A dead borrower can never close the edge; skip it.
                self._terminal(event, borrower)
                return

        if owner is None:
            return
        kind = (
            RelationshipKind.BORROWS_MUT if event.mutable
            else RelationshipKind.BORROWS_IMMUT
        )
        graph.add_relationship(
            kind, event.borrower_id, owner.id, event.timestamp,
            location=event.location,
            runtime_checked=event.kind is ValueKind.REF_CELL,
            event_id=event.id,
        )

    def _apply_move(self, event: MoveEvent) -> None:
        graph = self.graph
        if event.to_id in graph:
            self._diagnose(
                DiagnosticKind.DUPLICATE_ID, event,
                f"move destination {event.to_id} already exists", event.to_id,
            )
            return

        source = graph.get_variable(event.from_id)
        if source is None:
            self._diagnose(
                DiagnosticKind.UNKNOWN_REFERENCE, event,
                f"moved-from variable {event.from_id} was never created",
                event.from_id,
            )
            graph.add_variable(
                Variable(
                    id=event.to_id,
                    name=event.to_name,
                    type_name="<unknown>",
                    created_at=event.timestamp,
                    location=event.location,
                )
            )
            return

        if source.status.is_terminal():
            self._terminal(event, source)
        else:
            graph.replace_variable(
                replace(source, status=VariableStatus.MOVED, moved_at=event.timestamp)
            )
            graph.close_outgoing(source.id, event.timestamp)

        graph.add_variable(
            Variable(
                id=event.to_id,
                name=event.to_name,
                type_name=source.type_name,
                created_at=event.timestamp,
                kind=source.kind,
                location=event.location,
                allocation_id=source.allocation_id,
                strong_count=source.strong_count,
                weak_count=source.weak_count,
            )
        )
        graph.add_relationship(
            RelationshipKind.OWNS, event.to_id, source.id, event.timestamp,
            location=event.location,
            event_id=event.id,
        )

    def _apply_drop(self, event: DropEvent) -> None:
        graph = self.graph
        var = self._resolve(event, event.var_id)
        if var is None or var.status.is_terminal():
            return
        graph.replace_variable(
            replace(var, status=VariableStatus.DROPPED, dropped_at=event.timestamp)
        )
        graph.close_outgoing(var.id, event.timestamp)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _resolve(self, event: Event, var_id: int) -> Optional[Variable]:
        """
        Look up a referenced variable, recording a diagnostic when it is
        missing or already terminal. Terminal variables are still returned.
        """
        var = self.graph.get_variable(var_id)
        if var is None:
            self._diagnose(
                DiagnosticKind.UNKNOWN_REFERENCE, event,
                f"variable {var_id} was never created", var_id,
            )
        elif var.status.is_terminal():
            self._terminal(event, var)
        return var

    def _terminal(self, event: Event, var: Variable) -> None:
        self._diagnose(
            DiagnosticKind.TERMINAL_REFERENCE, event,
            f"variable {var.id} ({var.name}) used after being {var.status.value}",
            var.id, var.status,
        )

    def _diagnose(
        self,
        kind: DiagnosticKind,
        event: Event,
        message: str,
        var_id: Optional[int] = None,
        status: Optional[VariableStatus] = None,
    ) -> None:
        self.graph.add_diagnostic(
            Diagnostic(
                kind=kind,
                event_id=event.id,
                timestamp=event.timestamp,
                location=event.location,
                message=f"{event.TAG} event {event.id}: {message}",
                var_id=var_id,
                status=status,
            )
        )


def _reference_type(event: BorrowEvent, owner: Optional[Variable]) -> str:
    """Type label for a borrower created by *event*."""
    target = owner.type_name if owner is not None else "<unknown>"
    if event.kind is ValueKind.REF_CELL:
        return f"RefMut<{target}>" if event.mutable else f"Ref<{target}>"
    return f"&mut {target}" if event.mutable else f"&{target}"


def build_graph(events: Iterable[Event]) -> OwnershipGraph:
    """
    Build an ownership graph from an ordered event sequence.

    Pure function of its input: the same events always yield a
    structurally equal graph.
    """
    return GraphBuilder().extend(events).graph
