"""
Shared pytest fixtures for the borrowtrace test suite.

Provides a fresh tracker, a location factory, the two reference
scenarios (shared borrows released cleanly, use after move) and a
seeded random log generator used by the property tests.
"""

import random
from pathlib import Path
from typing import Callable, Tuple

import pytest

from borrowtrace.core.event import Event, Location
from borrowtrace.core.tracker import Tracker


def loc(line: int, column: int = 5) -> Location:
    """Location in a fictional ``main.rs``."""
    return Location("main.rs", line, column)


def generate_log(seed: int, length: int = 60) -> Tuple[Event, ...]:
    """
    Record a random but well-formed ownership history.

    Operations only name live variables, except for a small share of
    deliberate uses after move or drop so that diagnostics and use-after
    conflicts appear too.
    """
    rng = random.Random(seed)
    tracker = Tracker(name=f"random-{seed}")
    live = []
    dead = []

    for step in range(length):
        roll = rng.random()
        where = loc(step + 1)
        if not live or roll < 0.25:
            tracker.record_new(None, f"v{step}", "i32", where)
            live.append(tracker.last_id())
        elif roll < 0.55:
            owner = rng.choice(live)
            tracker.record_borrow(
                None, f"r{step}", owner, where, mutable=rng.random() < 0.4,
            )
            live.append(tracker.last_id())
        elif roll < 0.70:
            source = live.pop(rng.randrange(len(live)))
            tracker.record_move(None, source, f"m{step}", where)
            dead.append(source)
            live.append(tracker.last_id())
        elif roll < 0.95 or not dead:
            var_id = live.pop(rng.randrange(len(live)))
            tracker.record_drop(var_id, where)
            dead.append(var_id)
        else:
            tracker.record_borrow(None, f"bad{step}", rng.choice(dead), where)
            live.append(tracker.last_id())
    return tracker.get_events()


@pytest.fixture
def tracker() -> Tracker:
    """A fresh, empty tracker."""
    return Tracker(name="test")


@pytest.fixture
def random_log() -> Callable[..., Tuple[Event, ...]]:
    """Factory for seeded random event logs."""
    return generate_log


@pytest.fixture
def scenario_shared_borrows() -> Tuple[Event, ...]:
    """
    ``x`` is created, borrowed twice immutably, then everything drops.

    Event ids: x=1, r1=2, r2=3; drops at t=4 (r1), t=5 (r2), t=6 (x).
    """
    t = Tracker()
    t.record_new(5, "x", "i32", loc(1))
    x = t.last_id()
    t.record_borrow(5, "r1", x, loc(2))
    r1 = t.last_id()
    t.record_borrow(5, "r2", x, loc(3))
    r2 = t.last_id()
    t.record_drop(r1, loc(4))
    t.record_drop(r2, loc(4))
    t.record_drop(x, loc(5))
    return t.get_events()


@pytest.fixture
def scenario_use_after_move() -> Tuple[Event, ...]:
    """
    ``a`` is moved into ``b`` and then borrowed.

    Event ids: a=1, b=2 (move), borrow=3.
    """
    t = Tracker()
    t.record_new("s", "a", "String", loc(1))
    a = t.last_id()
    t.record_move("s", a, "b", loc(2))
    t.record_borrow("s", "r", a, loc(3))
    return t.get_events()


@pytest.fixture
def export_path(tmp_path: Path) -> Path:
    """Path for a temporary export document."""
    return tmp_path / "export.json"
