"""
borrowtrace: runtime ownership and borrow tracking.

Records ownership events (creation, borrow, move, drop) emitted by
instrumented programs, folds them into an ownership graph, and reports
the aliasing conflicts a static borrow checker would reject on the
paths actually executed.
"""

__version__ = "0.1.0"
