"""
Ownership event model.

Every ownership-relevant operation on a tracked binding is captured as one
immutable event. The vocabulary is closed: exactly four event classes
exist (creation, borrow, move, drop). Smart pointers, interior-mutability
cells and trait objects reuse those four shapes and are distinguished by a
``ValueKind`` tag plus kind-specific fields.

Identity: each event receives a fresh ``id`` from the tracker. When an
event introduces a binding (``NewEvent``, a borrow that creates its
borrower, the destination of a ``MoveEvent``) the binding's variable id is
the event's own ``id``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional, Tuple, Union


class ValueKind(Enum):
    """Kind of value a binding holds, or kind of borrow taken."""

    OWNED = "owned"
    BOX = "box"
    RC = "rc"
    ARC = "arc"
    REF_CELL = "ref_cell"
    CELL = "cell"
    TRAIT_OBJECT = "trait_object"

    def is_refcounted(self) -> bool:
        """True for shared-ownership pointers (``Rc`` / ``Arc``)."""
        return self in (ValueKind.RC, ValueKind.ARC)

    def is_interior_mutable(self) -> bool:
        """True for cells with runtime-checked mutation."""
        return self in (ValueKind.REF_CELL, ValueKind.CELL)


@dataclass(frozen=True)
class Location:
    """
    Source location of an instrumented call site.

    Attributes:
        file: Source file path as reported by the instrumentation.
        line: 1-based line number.
        column: 1-based column number.
    """

    file: str
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"

    @classmethod
    def parse(cls, text: str) -> Location:
        """
        Parse a ``file:line:column`` string.

        Trailing components that are not integers are treated as part
        of the file name, so ``C:\\src\\main.rs:3:9`` parses correctly.

        Raises:
            ValueError: If *text* is empty.
        """
        text = text.strip()
        if not text:
            raise ValueError("Location string must not be empty")
        parts = text.rsplit(":", 2)
        if len(parts) == 3 and parts[1].isdigit() and parts[2].isdigit():
            return cls(parts[0], int(parts[1]), int(parts[2]))
        parts = text.rsplit(":", 1)
        if len(parts) == 2 and parts[1].isdigit():
            return cls(parts[0], int(parts[1]))
        return cls(text)


UNKNOWN_LOCATION = Location("<unknown>")


@dataclass(frozen=True)
class NewEvent:
    """
    A binding was created.

    Attributes:
        id: Event id, also the id of the new variable.
        name: Declared binding name (not unique across scopes).
        type_name: Human-readable type label.
        location: Call site.
        timestamp: Logical clock value assigned by the tracker.
        kind: Value kind (plain, box, rc, arc, cell, ...).
        source_id: For rc/arc clones, the handle this one was cloned from.
        strong_count: Strong count reported at creation (rc/arc only).
        weak_count: Weak count reported at creation (rc/arc only).
    """

    TAG: ClassVar[str] = "New"

    id: int
    name: str
    type_name: str
    location: Location
    timestamp: int
    kind: ValueKind = ValueKind.OWNED
    source_id: Optional[int] = None
    strong_count: Optional[int] = None
    weak_count: Optional[int] = None

    def is_clone(self) -> bool:
        """True when this creation is a reference-counted clone."""
        return self.source_id is not None


@dataclass(frozen=True)
class BorrowEvent:
    """
    A reference to an owner was created.

    Attributes:
        id: Event id.
        borrower_id: Variable id of the reference. Equal to ``id`` when
            the borrow introduced the borrower itself.
        borrower_name: Declared name of the reference binding.
        owner_id: Variable id of the borrowed value.
        mutable: True for an exclusive borrow, False for a shared one.
        location: Call site.
        timestamp: Logical clock value assigned by the tracker.
        kind: ``REF_CELL`` for runtime-checked cell borrows.
    """

    TAG: ClassVar[str] = "Borrow"

    id: int
    borrower_id: int
    borrower_name: str
    owner_id: int
    mutable: bool
    location: Location
    timestamp: int
    kind: ValueKind = ValueKind.OWNED

    def creates_borrower(self) -> bool:
        """True when the borrower binding is introduced by this event."""
        return self.borrower_id == self.id


@dataclass(frozen=True)
class MoveEvent:
    """
    Ownership moved from one binding to a new one.

    Attributes:
        id: Event id, also the id of the destination variable.
        from_id: Variable id of the source, invalid after the move.
        to_id: Variable id of the destination (equal to ``id``).
        to_name: Declared name of the destination binding.
        location: Call site.
        timestamp: Logical clock value assigned by the tracker.
    """

    TAG: ClassVar[str] = "Move"

    id: int
    from_id: int
    to_id: int
    to_name: str
    location: Location
    timestamp: int


@dataclass(frozen=True)
class DropEvent:
    """
    A binding was destroyed at scope exit or released explicitly.

    Attributes:
        id: Event id.
        var_id: Variable id of the destroyed binding.
        location: Call site.
        timestamp: Logical clock value assigned by the tracker.
    """

    TAG: ClassVar[str] = "Drop"

    id: int
    var_id: int
    location: Location
    timestamp: int


Event = Union[NewEvent, BorrowEvent, MoveEvent, DropEvent]

EVENT_TYPES: Tuple[type, ...] = (NewEvent, BorrowEvent, MoveEvent, DropEvent)

EVENT_CLASSES_BY_TAG = {cls.TAG: cls for cls in EVENT_TYPES}


def introduced_id(event: Event) -> Optional[int]:
    """
    Return the variable id *event* introduces, or None.

    Raises:
        TypeError: If *event* is not one of the four event types.
    """
    if isinstance(event, NewEvent):
        return event.id
    if isinstance(event, BorrowEvent):
        return event.borrower_id if event.creates_borrower() else None
    if isinstance(event, MoveEvent):
        return event.to_id
    if isinstance(event, DropEvent):
        return None
    raise TypeError(f"Not an ownership event: {event!r}")


def referenced_ids(event: Event) -> Tuple[int, ...]:
    """
    Return the variable ids *event* refers to that must already exist.

    Raises:
        TypeError: If *event* is not one of the four event types.
    """
    if isinstance(event, NewEvent):
        return (event.source_id,) if event.source_id is not None else ()
    if isinstance(event, BorrowEvent):
        if event.creates_borrower():
            return (event.owner_id,)
        return (event.owner_id, event.borrower_id)
    if isinstance(event, MoveEvent):
        return (event.from_id,)
    if isinstance(event, DropEvent):
        return (event.var_id,)
    raise TypeError(f"Not an ownership event: {event!r}")


def mentions(event: Event, var_id: int) -> bool:
    """True when *event* introduces or references *var_id*."""
    return introduced_id(event) == var_id or var_id in referenced_ids(event)
