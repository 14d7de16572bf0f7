"""
Thread-safe recorder for ownership events.

A ``Tracker`` owns one session's event log together with the id counter
and the logical clock. Instrumented code calls one ``record_*`` method per
ownership operation; each call stamps an id and a timestamp, appends the
event under a single lock, and hands the wrapped value back unchanged so
instrumentation never alters program semantics.

There is no process-wide tracker. Code that needs ambient access installs
one for a region with ``tracking(tracker)`` and fetches it with
``current_tracker()``.
"""

from __future__ import annotations

import contextvars
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple, TypeVar

from borrowtrace.core.event import (
    BorrowEvent,
    DropEvent,
    Event,
    Location,
    MoveEvent,
    NewEvent,
    ValueKind,
    introduced_id,
)
from borrowtrace.errors import PreconditionError

T = TypeVar("T")


class Tracker:
    """
    Recorder for one tracking session.

    The append path is the only shared mutation point: id assignment,
    clock tick and list append happen together under ``_lock``. Reads
    copy the log under the same lock, so a snapshot is never affected by
    later appends.

    Recorders that introduce or transfer a binding take the wrapped value
    first and return it. ``record_drop`` and ``record_refcell_release`` end
    a binding named by id, so they take the id first; their value is an
    optional trailing pass-through that defaults to ``None``.

    ``reset`` is a session boundary. It must not race with recordings;
    callers serialize it themselves.

    Attributes:
        name: Optional label for the session (used as the export source).
    """

    def __init__(self, name: Optional[str] = None) -> None:
        """
        Create an empty session.

        Args:
            name: Optional label for this session.
        """
        self.name: Optional[str] = name
        self._lock = threading.Lock()
        self._events: List[Event] = []
        self._next_id: int = 1
        self._clock: int = 0
        self._local = threading.local()

    # ------------------------------------------------------------------ #
    # Append path
    # ------------------------------------------------------------------ #

    def _append(self, build: Callable[[int, int], Event]) -> Event:
        """Assign id and timestamp, build the event, and append it."""
        with self._lock:
            event_id = self._next_id
            self._next_id += 1
            self._clock += 1
            event = build(event_id, self._clock)
            self._events.append(event)
        self._local.last_id = introduced_id(event)
        return event

    def last_id(self) -> Optional[int]:
        """
        Return the variable id introduced by this thread's latest recording.

        Drops introduce nothing, so after ``record_drop`` this is None.
        """
        return getattr(self._local, "last_id", None)

    # ------------------------------------------------------------------ #
    # Core recorders
    # ------------------------------------------------------------------ #

    def record_new(
        self,
        value: T,
        name: str,
        type_name: str,
        location: Location,
        kind: ValueKind = ValueKind.OWNED,
    ) -> T:
        """
        Record creation of a binding and return *value* unchanged.

        Args:
            value: The runtime value (never inspected).
            name: Declared binding name.
            type_name: Human-readable type label.
            location: Call site.
            kind: Value kind tag for smart pointers and cells.
        """
        self._append(
            lambda eid, ts: NewEvent(
                id=eid,
                name=name,
                type_name=type_name,
                location=location,
                timestamp=ts,
                kind=kind,
            )
        )
        return value

    def record_borrow(
        self,
        value: T,
        borrower_name: str,
        owner_id: int,
        location: Location,
        mutable: bool = False,
        borrower_id: Optional[int] = None,
        kind: ValueKind = ValueKind.OWNED,
    ) -> T:
        """
        Record a shared or exclusive borrow and return *value* unchanged.

        Args:
            value: The reference being created.
            borrower_name: Declared name of the reference binding.
            owner_id: Variable id of the borrowed value.
            location: Call site.
            mutable: True for an exclusive (``&mut``) borrow.
            borrower_id: Id of an already-created borrower binding. When
                omitted the borrow introduces a new borrower whose id is
                the event id.
            kind: ``REF_CELL`` for runtime-checked cell borrows.
        """
        self._append(
            lambda eid, ts: BorrowEvent(
                id=eid,
                borrower_id=eid if borrower_id is None else borrower_id,
                borrower_name=borrower_name,
                owner_id=owner_id,
                mutable=mutable,
                location=location,
                timestamp=ts,
                kind=kind,
            )
        )
        return value

    def record_move(
        self, value: T, from_id: int, to_name: str, location: Location,
    ) -> T:
        """
        Record an ownership transfer and return *value* unchanged.

        The destination binding receives the event id as its variable id.

        Args:
            value: The moved value.
            from_id: Variable id of the source binding.
            to_name: Declared name of the destination binding.
            location: Call site.
        """
        self._append(
            lambda eid, ts: MoveEvent(
                id=eid,
                from_id=from_id,
                to_id=eid,
                to_name=to_name,
                location=location,
                timestamp=ts,
            )
        )
        return value

    def record_drop(
        self, var_id: int, location: Location, value: Optional[T] = None,
    ) -> Optional[T]:
        """
        Record destruction of a binding.

        Args:
            var_id: Variable id of the destroyed binding.
            location: Call site (scope exit or explicit release).
            value: Optional value to pass through.

        Returns:
            *value*, unchanged.
        """
        self._append(
            lambda eid, ts: DropEvent(
                id=eid, var_id=var_id, location=location, timestamp=ts,
            )
        )
        return value

    # ------------------------------------------------------------------ #
    # Smart pointers, cells and trait objects
    # ------------------------------------------------------------------ #

    def record_box_new(
        self, value: T, name: str, type_name: str, location: Location,
    ) -> T:
        """Record a heap allocation (``Box<T>``)."""
        return self.record_new(value, name, type_name, location, ValueKind.BOX)

    def _record_refcounted(
        self,
        value: T,
        name: str,
        type_name: str,
        location: Location,
        kind: ValueKind,
        strong_count: int,
        weak_count: int,
        source_id: Optional[int],
    ) -> T:
        self._append(
            lambda eid, ts: NewEvent(
                id=eid,
                name=name,
                type_name=type_name,
                location=location,
                timestamp=ts,
                kind=kind,
                source_id=source_id,
                strong_count=strong_count,
                weak_count=weak_count,
            )
        )
        return value

    def record_rc_new(
        self,
        value: T,
        name: str,
        type_name: str,
        location: Location,
        strong_count: int = 1,
        weak_count: int = 0,
    ) -> T:
        """Record a new reference-counted allocation (``Rc::new``)."""
        return self._record_refcounted(
            value, name, type_name, location, ValueKind.RC,
            strong_count, weak_count, None,
        )

    def record_rc_clone(
        self,
        value: T,
        name: str,
        source_id: int,
        location: Location,
        strong_count: int,
        weak_count: int = 0,
        type_name: str = "Rc<T>",
    ) -> T:
        """Record an ``Rc::clone`` of the handle *source_id*."""
        return self._record_refcounted(
            value, name, type_name, location, ValueKind.RC,
            strong_count, weak_count, source_id,
        )

    def record_arc_new(
        self,
        value: T,
        name: str,
        type_name: str,
        location: Location,
        strong_count: int = 1,
        weak_count: int = 0,
    ) -> T:
        """Record a new atomically reference-counted allocation."""
        return self._record_refcounted(
            value, name, type_name, location, ValueKind.ARC,
            strong_count, weak_count, None,
        )

    def record_arc_clone(
        self,
        value: T,
        name: str,
        source_id: int,
        location: Location,
        strong_count: int,
        weak_count: int = 0,
        type_name: str = "Arc<T>",
    ) -> T:
        """Record an ``Arc::clone`` of the handle *source_id*."""
        return self._record_refcounted(
            value, name, type_name, location, ValueKind.ARC,
            strong_count, weak_count, source_id,
        )

    def record_refcell_new(
        self, value: T, name: str, type_name: str, location: Location,
    ) -> T:
        """Record creation of a runtime-checked cell (``RefCell``)."""
        return self.record_new(value, name, type_name, location, ValueKind.REF_CELL)

    def record_refcell_borrow(
        self,
        value: T,
        guard_name: str,
        refcell_id: int,
        location: Location,
        mutable: bool = False,
    ) -> T:
        """
        Record ``RefCell::borrow`` / ``borrow_mut``.

        The returned guard is the borrower; release it with
        ``record_refcell_release`` using ``last_id()``.
        """
        return self.record_borrow(
            value, guard_name, refcell_id, location,
            mutable=mutable, kind=ValueKind.REF_CELL,
        )

    def record_refcell_release(
        self, guard_id: int, location: Location, value: Optional[T] = None,
    ) -> Optional[T]:
        """Record that a ``Ref`` / ``RefMut`` guard was dropped."""
        return self.record_drop(guard_id, location, value)

    def record_cell_new(
        self, value: T, name: str, type_name: str, location: Location,
    ) -> T:
        """Record creation of a copy-in/copy-out cell (``Cell``)."""
        return self.record_new(value, name, type_name, location, ValueKind.CELL)

    def record_dyn_new(
        self, value: T, name: str, trait_name: str, location: Location,
    ) -> T:
        """Record creation of a dynamically dispatched trait value."""
        type_name = trait_name if trait_name.startswith("dyn ") else f"dyn {trait_name}"
        return self.record_new(
            value, name, type_name, location, ValueKind.TRAIT_OBJECT,
        )

    # ------------------------------------------------------------------ #
    # Session
    # ------------------------------------------------------------------ #

    def get_events(self) -> Tuple[Event, ...]:
        """Return an ordered, immutable snapshot of the log."""
        with self._lock:
            return tuple(self._events)

    def reset(self) -> None:
        """
        Clear the log, the id counter and the clock.

        Precondition: no recording is in flight. This is checked, not
        synchronized against.

        Raises:
            PreconditionError: If another thread is inside the append path.
        """
        if not self._lock.acquire(blocking=False):
            raise PreconditionError(
                "Tracker.reset() called while a recording is in flight"
            )
        try:
            self._events = []
            self._next_id = 1
            self._clock = 0
        finally:
            self._lock.release()
        self._local = threading.local()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def __repr__(self) -> str:
        label = f"{self.name!r}, " if self.name else ""
        return f"Tracker({label}events={len(self)})"


# ---------------------------------------------------------------------- #
# Ambient session handle
# ---------------------------------------------------------------------- #

_current_tracker: contextvars.ContextVar[Optional[Tracker]] = contextvars.ContextVar(
    "borrowtrace_current_tracker", default=None
)


@contextmanager
def tracking(tracker: Tracker) -> Iterator[Tracker]:
    """
    Install *tracker* as the current session for the enclosed block.

    Nested blocks restore the outer tracker on exit.
    """
    token = _current_tracker.set(tracker)
    try:
        yield tracker
    finally:
        _current_tracker.reset(token)


def current_tracker() -> Tracker:
    """
    Return the tracker installed by the innermost ``tracking`` block.

    Raises:
        PreconditionError: If no tracking session is active.
    """
    tracker = _current_tracker.get()
    if tracker is None:
        raise PreconditionError("No active tracking session")
    return tracker
