"""
Analysis orchestration.

Takes one snapshot of an event log, folds it into an ownership graph,
runs conflict detection and reports through an ``AnalysisLogger``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from borrowtrace.core.conflicts import BorrowConflict, find_conflicts
from borrowtrace.core.event import Event
from borrowtrace.core.graph import GraphBuilder, OwnershipGraph
from borrowtrace.core.query import OwnershipQuery
from borrowtrace.core.tracker import Tracker
from borrowtrace.utils.export import ExportDocument, read_export
from borrowtrace.utils.logger import AnalysisLogger, LogLevel


@dataclass
class AnalysisResult:
    """
    Result of analysing one event log.

    Attributes:
        events: The log snapshot that was analysed.
        graph: The ownership graph built from it.
        conflicts: Conflicts found, in deterministic order.
        statistics: Graph statistics plus the conflict count.
    """

    events: Tuple[Event, ...]
    graph: OwnershipGraph
    conflicts: List[BorrowConflict]
    statistics: Dict[str, Any]

    @property
    def clean(self) -> bool:
        return not self.conflicts

    def query(self) -> OwnershipQuery:
        """Return a query engine over this result's graph and log."""
        return OwnershipQuery(self.graph, self.events)


class OwnershipAnalyzer:
    """
    Builds the ownership graph for a log and checks it for conflicts.

    The analyzer is stateless between runs; each entry point works on
    its own snapshot.

    Attributes:
        logger: Logger for progress, diagnostics and conflicts.
    """

    def __init__(self, logger: Optional[AnalysisLogger] = None) -> None:
        """
        Args:
            logger: Optional logger (silent if omitted).
        """
        self.logger: AnalysisLogger = logger or AnalysisLogger(LogLevel.SILENT)

    def run(self, events: Iterable[Event]) -> AnalysisResult:
        """
        Analyse an ordered event sequence.

        Args:
            events: The event log, in append order.

        Returns:
            AnalysisResult with graph, conflicts and statistics.
        """
        snapshot = tuple(events)
        self.logger.info("Building ownership graph", events=len(snapshot))

        builder = GraphBuilder()
        for event in snapshot:
            builder.apply(event)
            self.logger.event_processed(event.TAG, event.id, len(builder.graph.nodes))

        return self._finish(snapshot, builder.graph)

    def run_tracker(self, tracker: Tracker) -> AnalysisResult:
        """Analyse a snapshot of *tracker*'s log taken now."""
        return self.run(tracker.get_events())

    def run_document(
        self, document: ExportDocument, use_graph: bool = False,
    ) -> AnalysisResult:
        """
        Analyse an imported export document.

        The event log is the source of truth: the graph is rebuilt from it
        unless *use_graph* is set, in which case the exported graph is
        analysed as is.

        Args:
            document: The imported document.
            use_graph: Trust the document's graph instead of rebuilding.
        """
        if use_graph and document.graph is not None:
            self.logger.info(
                "Using exported graph",
                nodes=len(document.graph.nodes),
                edges=len(document.graph.edges),
            )
            return self._finish(tuple(document.events), document.graph)
        if not document.events and document.graph is not None:
            self.logger.info("Document has no event log; using exported graph")
            return self._finish((), document.graph)
        return self.run(document.events)

    def run_file(
        self, path: Union[str, Path], use_graph: bool = False,
    ) -> AnalysisResult:
        """Read an export document from *path* and analyse it."""
        return self.run_document(read_export(path), use_graph=use_graph)

    def _finish(
        self, events: Tuple[Event, ...], graph: OwnershipGraph,
    ) -> AnalysisResult:
        for diag in graph.diagnostics:
            self.logger.diagnostic(diag.kind.value, diag.message)

        conflicts = find_conflicts(graph)
        for conflict in conflicts:
            self.logger.conflict(conflict.format(graph))

        if conflicts:
            self.logger.verdict_conflicts(len(conflicts))
        else:
            self.logger.verdict_clean()

        stats = graph.stats()
        stats["conflicts"] = len(conflicts)
        self.logger.statistics(stats)

        return AnalysisResult(
            events=events,
            graph=graph,
            conflicts=conflicts,
            statistics=stats,
        )
