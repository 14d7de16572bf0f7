"""
Tests for the ownership event model.

Tests cover event construction and immutability, location parsing,
value kinds, and the introduced/referenced id helpers.
"""

import pytest

from borrowtrace.core.event import (
    BorrowEvent,
    DropEvent,
    EVENT_CLASSES_BY_TAG,
    Location,
    MoveEvent,
    NewEvent,
    ValueKind,
    introduced_id,
    mentions,
    referenced_ids,
)

HERE = Location("main.rs", 3, 9)


class TestEventCreation:
    """Test event construction and attribute access."""

    def test_new_event_defaults(self) -> None:
        """A plain creation is OWNED and not a clone."""
        e = NewEvent(id=1, name="x", type_name="i32", location=HERE, timestamp=1)
        assert e.kind is ValueKind.OWNED
        assert e.source_id is None
        assert not e.is_clone()

    def test_clone_event(self) -> None:
        """A NewEvent with a source id is a clone."""
        e = NewEvent(
            id=2, name="b", type_name="Rc<i32>", location=HERE, timestamp=2,
            kind=ValueKind.RC, source_id=1, strong_count=2,
        )
        assert e.is_clone()

    def test_event_is_frozen(self) -> None:
        """Events are immutable."""
        e = DropEvent(id=4, var_id=1, location=HERE, timestamp=4)
        with pytest.raises(AttributeError):
            e.var_id = 2  # type: ignore[misc]

    def test_borrow_creates_borrower(self) -> None:
        """A borrow whose borrower id equals its own id introduces the borrower."""
        fresh = BorrowEvent(
            id=2, borrower_id=2, borrower_name="r", owner_id=1,
            mutable=False, location=HERE, timestamp=2,
        )
        existing = BorrowEvent(
            id=3, borrower_id=2, borrower_name="r", owner_id=1,
            mutable=False, location=HERE, timestamp=3,
        )
        assert fresh.creates_borrower()
        assert not existing.creates_borrower()

    def test_tags_are_unique(self) -> None:
        """Each event class is addressable by its tag."""
        assert EVENT_CLASSES_BY_TAG == {
            "New": NewEvent,
            "Borrow": BorrowEvent,
            "Move": MoveEvent,
            "Drop": DropEvent,
        }


class TestLocation:
    """Test Location formatting and parsing."""

    def test_str(self) -> None:
        assert str(HERE) == "main.rs:3:9"

    def test_parse_full(self) -> None:
        assert Location.parse("src/lib.rs:10:4") == Location("src/lib.rs", 10, 4)

    def test_parse_line_only(self) -> None:
        assert Location.parse("src/lib.rs:10") == Location("src/lib.rs", 10, 0)

    def test_parse_windows_path(self) -> None:
        """Drive letters are kept as part of the file name."""
        assert Location.parse("C:\\src\\main.rs:3:9") == Location("C:\\src\\main.rs", 3, 9)

    def test_parse_bare_file(self) -> None:
        assert Location.parse("main.rs") == Location("main.rs")

    def test_parse_empty_raises(self) -> None:
        with pytest.raises(ValueError):
            Location.parse("   ")


class TestValueKind:
    """Test value kind classification."""

    @pytest.mark.parametrize("kind", [ValueKind.RC, ValueKind.ARC])
    def test_refcounted(self, kind: ValueKind) -> None:
        assert kind.is_refcounted()
        assert not kind.is_interior_mutable()

    @pytest.mark.parametrize("kind", [ValueKind.REF_CELL, ValueKind.CELL])
    def test_interior_mutable(self, kind: ValueKind) -> None:
        assert kind.is_interior_mutable()
        assert not kind.is_refcounted()

    def test_owned_is_plain(self) -> None:
        assert not ValueKind.OWNED.is_refcounted()
        assert not ValueKind.OWNED.is_interior_mutable()


class TestIdHelpers:
    """Test introduced_id, referenced_ids and mentions."""

    def test_new_introduces_itself(self) -> None:
        e = NewEvent(id=1, name="x", type_name="i32", location=HERE, timestamp=1)
        assert introduced_id(e) == 1
        assert referenced_ids(e) == ()

    def test_clone_references_source(self) -> None:
        e = NewEvent(
            id=5, name="c", type_name="Arc<T>", location=HERE, timestamp=5,
            kind=ValueKind.ARC, source_id=3,
        )
        assert referenced_ids(e) == (3,)

    def test_borrow_with_existing_borrower(self) -> None:
        e = BorrowEvent(
            id=7, borrower_id=4, borrower_name="r", owner_id=1,
            mutable=True, location=HERE, timestamp=7,
        )
        assert introduced_id(e) is None
        assert referenced_ids(e) == (1, 4)

    def test_move(self) -> None:
        e = MoveEvent(id=3, from_id=1, to_id=3, to_name="y", location=HERE, timestamp=3)
        assert introduced_id(e) == 3
        assert referenced_ids(e) == (1,)
        assert mentions(e, 1) and mentions(e, 3)
        assert not mentions(e, 2)

    def test_drop_introduces_nothing(self) -> None:
        e = DropEvent(id=9, var_id=2, location=HERE, timestamp=9)
        assert introduced_id(e) is None
        assert referenced_ids(e) == (2,)

    def test_non_event_raises(self) -> None:
        with pytest.raises(TypeError):
            introduced_id("not an event")  # type: ignore[arg-type]
        with pytest.raises(TypeError):
            referenced_ids(42)  # type: ignore[arg-type]
