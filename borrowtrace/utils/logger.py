"""
Structured logging for ownership analysis.

Provides configurable log levels (silent, normal, verbose, debug)
with consistent formatting for progress, conflicts, verdicts and
graph statistics.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Any, Dict, TextIO


class LogLevel(Enum):
    """
    Logging levels for the analyzer.

    SILENT:  No output at all.
    NORMAL:  Conflicts and the final verdict.
    VERBOSE: Diagnostics, progress information and statistics.
    DEBUG:   Detailed per-event processing output.
    """

    SILENT = 0
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


class AnalysisLogger:
    """
    Structured logger for ownership analysis.

    Output is filtered by the configured log level and written as plain
    lines to a text stream.

    Attributes:
        level: The minimum log level to display.
        stream: The output stream (defaults to stdout).
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.NORMAL,
        stream: TextIO = sys.stdout,
    ) -> None:
        self.level: LogLevel = level
        self.stream: TextIO = stream

    def enabled(self, level: LogLevel) -> bool:
        """True when messages at *level* would be written."""
        return level is not LogLevel.SILENT and self.level.value >= level.value

    def debug(self, message: str, **kwargs: Any) -> None:
        """
        Log a debug message (only shown at DEBUG level).

        Args:
            message: The message to log.
            **kwargs: Additional key-value pairs to include.
        """
        if self.enabled(LogLevel.DEBUG):
            self._write(f"[DEBUG] {message}")
            for k, v in kwargs.items():
                self._write(f"  {k}: {v}")

    def info(self, message: str, **kwargs: Any) -> None:
        """
        Log an info message (shown at VERBOSE and DEBUG levels).

        Args:
            message: The message to log.
            **kwargs: Additional key-value pairs to include.
        """
        if self.enabled(LogLevel.VERBOSE):
            self._write(f"[INFO] {message}")
            for k, v in kwargs.items():
                self._write(f"  {k}: {v}")

    def conflict(self, text: str) -> None:
        """Log one formatted conflict (NORMAL level and above)."""
        if self.enabled(LogLevel.NORMAL):
            self._write(f"[CONFLICT] {text}")

    def diagnostic(self, kind: str, message: str) -> None:
        """Log a graph integrity diagnostic (VERBOSE level and above)."""
        if self.enabled(LogLevel.VERBOSE):
            self._write(f"[DIAGNOSTIC] {kind}: {message}")

    def verdict_clean(self) -> None:
        if self.enabled(LogLevel.NORMAL):
            self._write("CLEAN: No borrow conflicts detected")

    def verdict_conflicts(self, count: int) -> None:
        if self.enabled(LogLevel.NORMAL):
            noun = "conflict" if count == 1 else "conflicts"
            self._write(f"CONFLICTS: {count} borrow {noun} detected")

    def statistics(self, stats: Dict[str, Any]) -> None:
        """
        Log analysis statistics (shown at VERBOSE level and above).

        Args:
            stats: Dictionary of statistic names to values.
        """
        if self.enabled(LogLevel.VERBOSE):
            self._write("=== Statistics ===")
            for key, value in stats.items():
                label = key.replace("_", " ").title()
                self._write(f"  {label}: {value}")

    def event_processed(self, tag: str, event_id: int, node_count: int) -> None:
        """
        Log event processing (shown at DEBUG level).

        Args:
            tag: Event type tag (``New``, ``Borrow``, ...).
            event_id: The id of the processed event.
            node_count: Current number of variables in the graph.
        """
        if self.enabled(LogLevel.DEBUG):
            self._write(f"[DEBUG] Processed {tag} {event_id} (nodes: {node_count})")

    def _write(self, message: str) -> None:
        """Write a line to the output stream."""
        self.stream.write(message + "\n")
