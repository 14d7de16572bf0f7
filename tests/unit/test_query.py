"""
Tests for the ownership query engine.

Tests cover active borrows at a point in time, per-variable history,
lifetime overlap, lookups, borrow chains, shared ownership counts,
lifetime statistics and fail-fast handling of unknown ids and negative
timestamps.
"""

import pytest

from borrowtrace.core.graph import VariableStatus, build_graph
from borrowtrace.core.query import OwnershipQuery
from borrowtrace.core.tracker import Tracker
from borrowtrace.errors import PreconditionError, UnknownVariableError
from conftest import loc


def _query(events) -> OwnershipQuery:
    return OwnershipQuery(build_graph(events), events)


@pytest.fixture
def shared(scenario_shared_borrows) -> OwnershipQuery:
    return _query(scenario_shared_borrows)


class TestActiveBorrows:
    """Test active_borrows over the shared-borrow scenario."""

    @pytest.mark.parametrize(
        "at, expected",
        [(1, set()), (2, {2}), (3, {2, 3}), (4, {3}), (5, set()), (100, set())],
    )
    def test_active_borrows(self, shared: OwnershipQuery, at: int, expected) -> None:
        assert {e.from_id for e in shared.active_borrows(1, at)} == expected

    def test_returns_frozenset(self, shared: OwnershipQuery) -> None:
        assert isinstance(shared.active_borrows(1, 3), frozenset)

    def test_unknown_variable(self, shared: OwnershipQuery) -> None:
        with pytest.raises(UnknownVariableError) as info:
            shared.active_borrows(99, 1)
        assert info.value.var_id == 99
        assert isinstance(info.value, KeyError)

    def test_negative_timestamp(self, shared: OwnershipQuery) -> None:
        with pytest.raises(PreconditionError):
            shared.active_borrows(1, -1)


class TestHistory:
    """Test per-variable event history."""

    def test_owner_history(self, shared: OwnershipQuery) -> None:
        history = shared.history(1)
        assert [e.TAG for e in history] == ["New", "Borrow", "Borrow", "Drop"]
        assert [e.timestamp for e in history] == [1, 2, 3, 6]

    def test_borrower_history(self, shared: OwnershipQuery) -> None:
        assert [e.id for e in shared.history(2)] == [2, 4]

    def test_move_history(self, scenario_use_after_move) -> None:
        query = _query(scenario_use_after_move)
        assert [e.TAG for e in query.history(1)] == ["New", "Move", "Borrow"]
        assert [e.TAG for e in query.history(2)] == ["Move"]

    def test_graph_only_history_is_empty(self, scenario_shared_borrows) -> None:
        query = OwnershipQuery(build_graph(scenario_shared_borrows))
        assert query.history(1) == ()

    def test_unknown_variable(self, shared: OwnershipQuery) -> None:
        with pytest.raises(UnknownVariableError):
            shared.history(42)


class TestLifetimes:
    """Test lifetime overlap and liveness queries."""

    def test_overlap(self, shared: OwnershipQuery) -> None:
        assert shared.lifetimes_overlap(1, 2)
        assert shared.lifetimes_overlap(2, 3)

    def test_disjoint(self, tracker: Tracker) -> None:
        tracker.record_new(0, "a", "i32", loc(1))
        tracker.record_drop(1, loc(2))
        tracker.record_new(0, "b", "i32", loc(3))
        query = _query(tracker.get_events())
        assert not query.lifetimes_overlap(1, 3)
        assert not query.lifetimes_overlap(3, 1)

    def test_touching_lifetimes_do_not_overlap(self, tracker: Tracker) -> None:
        """A move ends the source exactly when the destination starts."""
        tracker.record_new(0, "a", "i32", loc(1))
        tracker.record_move(0, 1, "b", loc(2))
        query = _query(tracker.get_events())
        assert not query.lifetimes_overlap(1, 2)

    def test_alive_at(self, shared: OwnershipQuery) -> None:
        assert [v.name for v in shared.alive_at(3)] == ["x", "r1", "r2"]
        assert [v.name for v in shared.alive_at(5)] == ["x"]
        assert shared.alive_at(6) == []

    def test_overlapping_lifetimes(self, shared: OwnershipQuery) -> None:
        assert [v.name for v in shared.overlapping_lifetimes(2)] == ["x", "r2"]


class TestLookups:
    """Test name, type and relationship lookups."""

    def test_find_by_name(self, tracker: Tracker) -> None:
        tracker.record_new(0, "x", "i32", loc(1))
        tracker.record_new(0, "x", "u8", loc(2))
        query = _query(tracker.get_events())
        assert [v.id for v in query.find_by_name("x")] == [1, 2]
        assert query.find_by_name("missing") == []
        assert [v.id for v in query.find_by_type("u8")] == [2]

    def test_borrowers_and_borrowed(self, shared: OwnershipQuery) -> None:
        assert [v.name for v in shared.borrowers_of(1)] == ["r1", "r2"]
        assert [v.name for v in shared.borrowed_by(2)] == ["x"]
        assert shared.borrowed_by(1) == []

    def test_with_status(self, scenario_use_after_move) -> None:
        query = _query(scenario_use_after_move)
        assert [v.name for v in query.with_status(VariableStatus.MOVED)] == ["a"]

    def test_moved_into(self, scenario_use_after_move) -> None:
        query = _query(scenario_use_after_move)
        assert query.moved_into(1).name == "b"
        assert query.moved_into(2) is None


class TestBorrowStructure:
    """Test transitive borrowers, chains, roots and leaves."""

    @pytest.fixture
    def chained(self, tracker: Tracker) -> OwnershipQuery:
        tracker.record_new(0, "x", "i32", loc(1))     # 1
        tracker.record_borrow(0, "r", 1, loc(2))      # 2 borrows x
        tracker.record_borrow(0, "rr", 2, loc(3))     # 3 borrows r
        tracker.record_borrow(0, "s", 1, loc(4))      # 4 borrows x
        return _query(tracker.get_events())

    def test_transitive_borrowers(self, chained: OwnershipQuery) -> None:
        assert [v.name for v in chained.transitive_borrowers(1)] == ["r", "s", "rr"]
        assert [v.name for v in chained.transitive_borrowers(2)] == ["rr"]
        assert chained.transitive_borrowers(3) == []

    def test_transitive_borrowers_unknown(self, chained: OwnershipQuery) -> None:
        with pytest.raises(UnknownVariableError):
            chained.transitive_borrowers(99)

    def test_longest_borrow_chain(self, chained: OwnershipQuery) -> None:
        assert chained.longest_borrow_chain() == (3, 2, 1)

    def test_chain_ties_take_lowest_id(self, shared: OwnershipQuery) -> None:
        assert shared.longest_borrow_chain() == (2, 1)

    def test_no_borrows_no_chain(self, tracker: Tracker) -> None:
        tracker.record_new(0, "x", "i32", loc(1))
        assert _query(tracker.get_events()).longest_borrow_chain() == ()

    def test_roots_and_leaves(self, chained: OwnershipQuery) -> None:
        assert [v.name for v in chained.roots()] == ["rr", "s"]
        assert [v.name for v in chained.leaves()] == ["x"]


class TestSharedOwnership:
    """Test rc/arc allocation queries."""

    def _rc_log(self, tracker: Tracker):
        tracker.record_rc_new(0, "a", "Rc<i32>", loc(1))      # 1, t=1
        tracker.record_rc_clone(0, "b", 1, loc(2), strong_count=2)  # 2, t=2
        tracker.record_arc_new(0, "z", "Arc<i32>", loc(3))    # 3, t=3
        tracker.record_drop(1, loc(4))                        # t=4
        return tracker.get_events()

    def test_shared_owners(self, tracker: Tracker) -> None:
        query = _query(self._rc_log(tracker))
        assert [v.name for v in query.shared_owners(2)] == ["a", "b"]
        assert [v.name for v in query.shared_owners(3)] == ["z"]

    def test_live_count(self, tracker: Tracker) -> None:
        query = _query(self._rc_log(tracker))
        assert query.live_count(1, 1) == 1
        assert query.live_count(1, 3) == 2
        assert query.live_count(2, 4) == 1

    def test_plain_variable_has_no_owners(self, shared: OwnershipQuery) -> None:
        assert shared.shared_owners(1) == []
        assert shared.live_count(1, 2) == 0


class TestStatistics:
    """Test statistics output."""

    def test_statistics(self, scenario_use_after_move) -> None:
        stats = _query(scenario_use_after_move).statistics()
        assert stats["total_variables"] == 3
        assert stats["moves"] == 1
        assert stats["moved_variables"] == 1
        assert stats["active_variables"] == 2
        assert stats["dropped_variables"] == 0
        assert stats["diagnostics"] == 1

    def test_lifetime_statistics(self, shared: OwnershipQuery) -> None:
        """x lives [1,6), r1 [2,4), r2 [3,5)."""
        assert sorted(d for _, d in shared.lifetimes()) == [2, 2, 5]
        stats = shared.statistics()
        assert stats["average_lifetime"] == 3
        assert stats["median_lifetime"] == 2
        assert stats["longest_lifetime"] == 5
        assert stats["shortest_lifetime"] == 2

    def test_lifetime_statistics_without_ended_variables(self, tracker: Tracker) -> None:
        tracker.record_new(0, "x", "i32", loc(1))
        query = _query(tracker.get_events())
        assert query.lifetimes() == []
        stats = query.statistics()
        assert stats["average_lifetime"] is None
        assert stats["median_lifetime"] is None
        assert stats["longest_lifetime"] is None
        assert stats["shortest_lifetime"] is None
