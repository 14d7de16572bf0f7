"""
Borrow conflict detection over an ownership graph.

Two families of conflicts are reported:

* Aliasing conflicts between borrow intervals on the same owner: an
  exclusive borrow overlapping any other borrow. Shared borrows never
  conflict with each other.
* Uses of a binding after it was moved or dropped, taken from the
  ``TERMINAL_REFERENCE`` diagnostics the graph builder records.

Intervals are half-open, ``[start_time, end_time)``, with an open end
extending to infinity.

Besides the whole-graph sweep, ``conflicts_at`` checks one owner at one
instant and ``conflict_timeline`` lists the instants where its set of
active borrows changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from borrowtrace.core.event import Location, UNKNOWN_LOCATION
from borrowtrace.core.graph import (
    DiagnosticKind,
    OwnershipGraph,
    Relationship,
    VariableStatus,
)


class ConflictKind(Enum):
    """Category of a reported conflict."""

    MUTABLE_BORROW_WHILE_IMMUTABLE = "mutable_borrow_while_immutable"
    IMMUTABLE_BORROW_WHILE_MUTABLE = "immutable_borrow_while_mutable"
    MULTIPLE_MUTABLE_BORROWS = "multiple_mutable_borrows"
    USE_AFTER_MOVE = "use_after_move"
    USE_AFTER_DROP = "use_after_drop"

    def is_aliasing(self) -> bool:
        """True for conflicts between overlapping borrows."""
        return self not in (ConflictKind.USE_AFTER_MOVE, ConflictKind.USE_AFTER_DROP)


# Tie-break order for conflicts reported at the same timestamp.
_KIND_ORDER: Dict[ConflictKind, int] = {kind: i for i, kind in enumerate(ConflictKind)}


@dataclass(frozen=True)
class BorrowConflict:
    """
    One conflict found in the graph.

    Attributes:
        kind: Conflict category.
        owner_id: The variable whose aliasing rule was violated (for
            use-after conflicts, the moved or dropped variable).
        timestamp: When the offending operation happened.
        location: Where the offending operation happened.
        conflicting_borrows: For aliasing conflicts, the offending borrow
            followed by every earlier overlapping borrow it conflicts
            with. Empty for use-after conflicts.
        event_id: Id of the offending event, when known.
        message: Human-readable description.
    """

    kind: ConflictKind
    owner_id: int
    timestamp: int
    location: Location
    conflicting_borrows: Tuple[Relationship, ...] = ()
    event_id: Optional[int] = None
    message: str = ""

    def borrower_ids(self) -> Tuple[int, ...]:
        """Borrower variable ids involved, in ``conflicting_borrows`` order."""
        return tuple(edge.from_id for edge in self.conflicting_borrows)

    def format(self, graph: OwnershipGraph) -> str:
        """Render a one-line description using variable names from *graph*."""
        owner = graph.get_variable(self.owner_id)
        owner_name = owner.name if owner is not None else "<unknown>"
        names = []
        for var_id in self.borrower_ids():
            var = graph.get_variable(var_id)
            names.append(var.name if var is not None else f"#{var_id}")

        if self.kind is ConflictKind.MULTIPLE_MUTABLE_BORROWS:
            text = f"multiple mutable borrows of '{owner_name}' by: {', '.join(names)}"
        elif self.kind is ConflictKind.MUTABLE_BORROW_WHILE_IMMUTABLE:
            text = (
                f"mutable borrow of '{owner_name}' by {names[0]} while immutably "
                f"borrowed by: {', '.join(names[1:])}"
            )
        elif self.kind is ConflictKind.IMMUTABLE_BORROW_WHILE_MUTABLE:
            text = (
                f"immutable borrow of '{owner_name}' by {names[0]} while mutably "
                f"borrowed by: {', '.join(names[1:])}"
            )
        elif self.kind is ConflictKind.USE_AFTER_MOVE:
            text = f"use of '{owner_name}' after it was moved"
        else:
            text = f"use of '{owner_name}' after it was dropped"
        return f"{self.location} [t={self.timestamp}] {text}"


def find_conflicts(graph: OwnershipGraph) -> List[BorrowConflict]:
    """
    Detect every conflict in *graph*.

    Deterministic: results are ordered by the offending operation's
    timestamp, then event id, then conflict kind.
    """
    conflicts: List[BorrowConflict] = []
    for var in graph.nodes:
        conflicts.extend(_interval_conflicts(graph, var.id))
    conflicts.extend(_use_after_conflicts(graph))

    conflicts.sort(
        key=lambda c: (
            c.timestamp,
            c.event_id if c.event_id is not None else -1,
            _KIND_ORDER[c.kind],
            c.owner_id,
        )
    )
    return conflicts


def find_conflicts_for(graph: OwnershipGraph, owner_id: int) -> List[BorrowConflict]:
    """Aliasing conflicts on a single owner, in borrow start order."""
    return _interval_conflicts(graph, owner_id)


@dataclass(frozen=True)
class TimelinePoint:
    """
    The borrows of one owner active from ``timestamp`` until the next point.

    Attributes:
        timestamp: When the active set took this value.
        active: Active borrow edges in start order.
        conflict: The aliasing conflict among ``active``, if any.
    """

    timestamp: int
    active: Tuple[Relationship, ...]
    conflict: Optional[BorrowConflict] = None


def conflicts_at(
    graph: OwnershipGraph, owner_id: int, at: int
) -> Optional[BorrowConflict]:
    """
    Check the borrows of *owner_id* active at time *at*.

    The latest-starting active borrow is the offending one. A mutable
    latest borrow conflicts with every other active borrow; a shared one
    conflicts with the active mutable borrows. Returns ``None`` when the
    active borrows are compatible.
    """
    return _conflict_among(owner_id, at, _active_borrows(graph, owner_id, at))


def conflict_timeline(graph: OwnershipGraph, owner_id: int) -> List[TimelinePoint]:
    """
    Every time the set of active borrows on *owner_id* changes.

    A point is taken at each borrow start and end; points whose active
    set equals the previous one are skipped.
    """
    borrows = [e for e in graph.incoming(owner_id) if e.kind.is_borrow()]
    times = sorted(
        {e.start_time for e in borrows}
        | {e.end_time for e in borrows if e.end_time is not None}
    )

    points: List[TimelinePoint] = []
    previous: Tuple[int, ...] = ()
    for at in times:
        active = _active_borrows(graph, owner_id, at)
        ids = tuple(e.id for e in active)
        if points and ids == previous:
            continue
        previous = ids
        points.append(
            TimelinePoint(
                timestamp=at,
                active=active,
                conflict=_conflict_among(owner_id, at, active),
            )
        )
    return points


def format_report(
    graph: OwnershipGraph, conflicts: Optional[List[BorrowConflict]] = None
) -> str:
    """Multi-line report of *conflicts* (all of the graph's by default)."""
    if conflicts is None:
        conflicts = find_conflicts(graph)
    if not conflicts:
        return "No conflicts found."
    lines = [f"Found {len(conflicts)} conflict(s):"]
    for i, conflict in enumerate(conflicts, start=1):
        lines.append(f"  {i}. {conflict.format(graph)}")
    return "\n".join(lines)


def _active_borrows(
    graph: OwnershipGraph, owner_id: int, at: int
) -> Tuple[Relationship, ...]:
    return tuple(
        sorted(
            (e for e in graph.incoming(owner_id) if e.kind.is_borrow() and e.active_at(at)),
            key=lambda e: (e.start_time, e.id),
        )
    )


def _conflict_among(
    owner_id: int, at: int, active: Tuple[Relationship, ...]
) -> Optional[BorrowConflict]:
    if len(active) < 2 or not any(e.is_mutable() for e in active):
        return None

    latest = active[-1]
    others = list(active[:-1])
    if latest.is_mutable():
        kind = (
            ConflictKind.MULTIPLE_MUTABLE_BORROWS
            if any(o.is_mutable() for o in others)
            else ConflictKind.MUTABLE_BORROW_WHILE_IMMUTABLE
        )
        partners = others
    else:
        partners = [o for o in others if o.is_mutable()]
        kind = ConflictKind.IMMUTABLE_BORROW_WHILE_MUTABLE

    return BorrowConflict(
        kind=kind,
        owner_id=owner_id,
        timestamp=at,
        location=latest.location or UNKNOWN_LOCATION,
        conflicting_borrows=(latest, *partners),
        event_id=latest.event_id,
        message=(
            f"borrow {latest.from_id} of {owner_id} overlaps "
            f"{len(partners)} conflicting borrow(s) at t={at}"
        ),
    )


def _interval_conflicts(graph: OwnershipGraph, owner_id: int) -> List[BorrowConflict]:
    """
    Sweep the owner's borrows in start order.

    Each borrow is checked against the earlier borrows whose intervals
    overlap it; the later borrow is the offending one.
    """
    borrows = sorted(
        (e for e in graph.incoming(owner_id) if e.kind.is_borrow()),
        key=lambda e: (e.start_time, e.id),
    )
    found: List[BorrowConflict] = []

    for i, edge in enumerate(borrows):
        earlier = [other for other in borrows[:i] if other.overlaps(edge)]
        if not earlier:
            continue

        if edge.is_mutable():
            kind = (
                ConflictKind.MULTIPLE_MUTABLE_BORROWS
                if any(o.is_mutable() for o in earlier)
                else ConflictKind.MUTABLE_BORROW_WHILE_IMMUTABLE
            )
            partners = earlier
        else:
            partners = [o for o in earlier if o.is_mutable()]
            if not partners:
                continue
            kind = ConflictKind.IMMUTABLE_BORROW_WHILE_MUTABLE

        found.append(
            BorrowConflict(
                kind=kind,
                owner_id=owner_id,
                timestamp=edge.start_time,
                location=edge.location or UNKNOWN_LOCATION,
                conflicting_borrows=(edge, *partners),
                event_id=edge.event_id,
                message=(
                    f"borrow {edge.from_id} of {owner_id} overlaps "
                    f"{len(partners)} conflicting borrow(s)"
                ),
            )
        )
    return found


def _use_after_conflicts(graph: OwnershipGraph) -> List[BorrowConflict]:
    found: List[BorrowConflict] = []
    for diag in graph.diagnostics:
        if diag.kind is not DiagnosticKind.TERMINAL_REFERENCE or diag.var_id is None:
            continue
        kind = (
            ConflictKind.USE_AFTER_MOVE
            if diag.status is VariableStatus.MOVED
            else ConflictKind.USE_AFTER_DROP
        )
        found.append(
            BorrowConflict(
                kind=kind,
                owner_id=diag.var_id,
                timestamp=diag.timestamp,
                location=diag.location,
                event_id=diag.event_id,
                message=diag.message,
            )
        )
    return found
