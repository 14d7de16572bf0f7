"""
Error types for borrowtrace.

Referential problems found while folding an event log are not raised;
they become diagnostics on the graph. The exceptions here cover the
remaining failure classes: malformed or incompatible export documents,
and callers violating a precondition of the tracker or query API.
"""

from __future__ import annotations

from typing import Iterable, List


class BorrowTraceError(Exception):
    """Base class for all borrowtrace errors."""


class SerializationError(BorrowTraceError):
    """
    Raised when an export document cannot be produced or read.

    Attributes:
        problems: Every format mismatch found, in document order.
    """

    def __init__(self, message: str, problems: Iterable[str] = ()) -> None:
        self.problems: List[str] = list(problems)
        if self.problems:
            message = f"{message}: " + "; ".join(self.problems)
        super().__init__(message)


class PreconditionError(BorrowTraceError):
    """Raised when an operation is invoked in an invalid session state."""


class UnknownVariableError(PreconditionError, KeyError):
    """Raised when a query names a variable id absent from the graph."""

    def __init__(self, var_id: int) -> None:
        self.var_id = var_id
        super().__init__(f"Unknown variable id: {var_id}")

    def __str__(self) -> str:
        return self.args[0]
