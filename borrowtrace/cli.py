"""
Command-line interface for borrowtrace.

Reads an export document, rebuilds the ownership graph from its event
log, reports borrow conflicts and answers simple queries.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

import borrowtrace
from borrowtrace.core.analyzer import AnalysisResult, OwnershipAnalyzer
from borrowtrace.utils.export import read_export
from borrowtrace.utils.logger import AnalysisLogger, LogLevel


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the borrowtrace CLI."""
    parser = argparse.ArgumentParser(
        prog="borrowtrace",
        description=(
            "borrowtrace: runtime ownership tracking - "
            "rebuild ownership graphs from recorded event logs "
            "and detect borrow conflicts"
        ),
    )

    required = parser.add_argument_group("required arguments")
    required.add_argument(
        "-i",
        "--input",
        type=Path,
        required=True,
        help="Path to an export document (.json)",
    )

    parser.add_argument(
        "--history",
        type=int,
        default=None,
        metavar="ID",
        help="Print every event that mentions variable ID",
    )
    parser.add_argument(
        "--active",
        type=int,
        default=None,
        metavar="ID",
        help="Print borrows of variable ID active at --at",
    )
    parser.add_argument(
        "--at",
        type=int,
        default=None,
        metavar="T",
        help="Timestamp for --active",
    )
    parser.add_argument(
        "--use-graph",
        action="store_true",
        help="Analyse the exported graph instead of rebuilding it from events",
    )
    parser.add_argument(
        "-o",
        "--output",
        choices=["silent", "normal", "verbose"],
        default="normal",
        help="Output level (default: normal)",
    )
    parser.add_argument(
        "-d",
        "--debug",
        type=int,
        choices=[0, 1, 2, 3],
        default=0,
        help="Debug level 0-3 (default: 0)",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print statistics after analysis",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"borrowtrace {borrowtrace.__version__}",
    )

    return parser


def _resolve_log_level(output: str, debug: int) -> LogLevel:
    """Determine the effective log level from output and debug settings."""
    if debug >= 3:
        return LogLevel.DEBUG
    if output == "verbose" or debug >= 1:
        return LogLevel.VERBOSE
    if output == "silent":
        return LogLevel.SILENT
    return LogLevel.NORMAL


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the ``borrowtrace`` CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if (args.active is None) != (args.at is None):
        parser.error("--active and --at must be given together")

    try:
        _run(args)
    except SystemExit:
        raise
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)


def _run(args: argparse.Namespace) -> None:
    """Execute the analysis pipeline."""
    if not args.input.exists():
        print(f"Error: Input file not found: {args.input}", file=sys.stderr)
        sys.exit(2)

    log_level = _resolve_log_level(args.output, args.debug)
    logger = AnalysisLogger(level=log_level, stream=sys.stdout)

    document = read_export(args.input)
    analyzer = OwnershipAnalyzer(logger=logger)
    result = analyzer.run_document(document, use_graph=args.use_graph)

    if args.history is not None:
        _print_history(result, args.history)

    if args.active is not None:
        _print_active(result, args.active, args.at)

    # Statistics (skip if verbose already printed them)
    if args.stats and log_level.value < LogLevel.VERBOSE.value:
        print()
        print("=== Statistics ===")
        for key, value in result.statistics.items():
            label = key.replace("_", " ").title()
            print(f"  {label}: {value}")

    sys.exit(1 if result.conflicts else 0)


def _print_history(result: AnalysisResult, var_id: int) -> None:
    query = result.query()
    var = query.variable(var_id)
    print(f"History of {var.name} (#{var.id}):")
    for event in query.history(var_id):
        print(f"  t={event.timestamp} {event.TAG} #{event.id} at {event.location}")


def _print_active(result: AnalysisResult, var_id: int, at: int) -> None:
    query = result.query()
    var = query.variable(var_id)
    active = sorted(query.active_borrows(var_id, at), key=lambda e: e.id)
    print(f"Active borrows of {var.name} (#{var.id}) at t={at}: {len(active)}")
    for edge in active:
        borrower = query.variable(edge.from_id)
        mode = "mut" if edge.is_mutable() else "shared"
        print(f"  {borrower.name} (#{borrower.id}) {mode} since t={edge.start_time}")
