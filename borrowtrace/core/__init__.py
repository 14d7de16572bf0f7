"""
Core tracking and analysis engine for borrowtrace.

Contains the event model, the thread-safe tracker, the incremental
ownership graph builder, the borrow conflict detector, and the
read-only query engine.
"""
