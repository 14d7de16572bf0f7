"""
JSON export and import of event logs and ownership graphs.

An export document carries the raw event log (the source of truth), the
graph built from it, and the options used to produce it::

    {
      "version": "1.0.0",
      "events": [{"type": "New", "id": 1, ..., "location": {...}}, ...],
      "graph": {"nodes": [...], "edges": [...], "diagnostics": [...],
                "metadata": {...}},
      "config": {"timestamp_unit": "logical", ...}
    }

Reading is all-or-nothing: every format problem in a document is
collected and reported in one ``SerializationError``, and no partial
result is returned. Unknown fields are ignored.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from borrowtrace.core.event import (
    BorrowEvent,
    DropEvent,
    Event,
    EVENT_CLASSES_BY_TAG,
    Location,
    MoveEvent,
    NewEvent,
    ValueKind,
)
from borrowtrace.core.graph import (
    Diagnostic,
    DiagnosticKind,
    OwnershipGraph,
    Relationship,
    RelationshipKind,
    Variable,
    VariableStatus,
)
from borrowtrace.errors import SerializationError

SCHEMA_VERSION = "1.0.0"


@dataclass
class ExportConfig:
    """
    Options recorded in, and controlling, an export.

    Attributes:
        include_events: Write the raw event log.
        include_graph: Write the ownership graph.
        timestamp_unit: Unit of the timestamps (always logical ticks).
    """

    include_events: bool = True
    include_graph: bool = True
    timestamp_unit: str = "logical"


@dataclass
class ExportDocument:
    """
    In-memory form of an export document.

    Attributes:
        version: Schema version string.
        events: The event log, in append order.
        graph: The ownership graph, or None when not exported.
        config: Export options.
        source: Optional label of the producing session.
        function: Optional name of the instrumented function.
    """

    version: str = SCHEMA_VERSION
    events: List[Event] = field(default_factory=list)
    graph: Optional[OwnershipGraph] = None
    config: ExportConfig = field(default_factory=ExportConfig)
    source: Optional[str] = None
    function: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON-ready dictionary form of this document."""
        graph = None
        if self.config.include_graph and self.graph is not None:
            graph = _graph_to_dict(self.graph, self.source, self.function)
        events = [event_to_dict(e) for e in self.events] if self.config.include_events else []
        return {
            "version": self.version,
            "events": events,
            "graph": graph,
            "config": {
                "timestamp_unit": self.config.timestamp_unit,
                "include_events": self.config.include_events,
                "include_graph": self.config.include_graph,
            },
        }


# ---------------------------------------------------------------------- #
# Writing
# ---------------------------------------------------------------------- #

def to_dict(
    graph: Optional[OwnershipGraph],
    events: Iterable[Event] = (),
    config: Optional[ExportConfig] = None,
    source: Optional[str] = None,
    function: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the dictionary form of an export document."""
    document = ExportDocument(
        events=list(events),
        graph=graph,
        config=config or ExportConfig(),
        source=source,
        function=function,
    )
    return document.to_dict()


def serialize(
    graph: Optional[OwnershipGraph],
    events: Iterable[Event] = (),
    config: Optional[ExportConfig] = None,
    source: Optional[str] = None,
    function: Optional[str] = None,
) -> str:
    """
    Serialize a graph and its event log to a JSON string.

    Args:
        graph: The ownership graph (may be None to export only events).
        events: The event log.
        config: Export options.
        source: Optional session label.
        function: Optional instrumented function name.

    Returns:
        The JSON document text.
    """
    return json.dumps(to_dict(graph, events, config, source, function), indent=2)


def write_export(
    path: Union[str, Path],
    graph: Optional[OwnershipGraph],
    events: Iterable[Event] = (),
    config: Optional[ExportConfig] = None,
    source: Optional[str] = None,
    function: Optional[str] = None,
) -> None:
    """Serialize and write an export document to *path*."""
    Path(path).write_text(serialize(graph, events, config, source, function))


def event_to_dict(event: Event) -> Dict[str, Any]:
    """
    Encode one event, tagged by ``"type"``.

    Raises:
        SerializationError: If *event* is not an ownership event.
    """
    if not isinstance(event, (NewEvent, BorrowEvent, MoveEvent, DropEvent)):
        raise SerializationError(f"Cannot serialize {event!r}")
    data: Dict[str, Any] = {"type": event.TAG, "id": event.id}
    if isinstance(event, NewEvent):
        data.update(
            name=event.name,
            type_name=event.type_name,
            kind=event.kind.value,
            source_id=event.source_id,
            strong_count=event.strong_count,
            weak_count=event.weak_count,
        )
    elif isinstance(event, BorrowEvent):
        data.update(
            borrower_id=event.borrower_id,
            borrower_name=event.borrower_name,
            owner_id=event.owner_id,
            mutable=event.mutable,
            kind=event.kind.value,
        )
    elif isinstance(event, MoveEvent):
        data.update(from_id=event.from_id, to_id=event.to_id, to_name=event.to_name)
    else:
        data.update(var_id=event.var_id)
    data["location"] = _location_to_dict(event.location)
    data["timestamp"] = event.timestamp
    return data


def _location_to_dict(location: Optional[Location]) -> Optional[Dict[str, Any]]:
    if location is None:
        return None
    return {"file": location.file, "line": location.line, "column": location.column}


def _graph_to_dict(
    graph: OwnershipGraph, source: Optional[str], function: Optional[str],
) -> Dict[str, Any]:
    nodes = [
        {
            "id": v.id,
            "name": v.name,
            "type_name": v.type_name,
            "created_at": v.created_at,
            "dropped_at": v.dropped_at,
            "moved_at": v.moved_at,
            "status": v.status.value,
            "kind": v.kind.value,
            "location": _location_to_dict(v.location),
            "allocation_id": v.allocation_id,
            "strong_count": v.strong_count,
            "weak_count": v.weak_count,
        }
        for v in graph.nodes
    ]
    edges = [
        {
            "id": e.id,
            "kind": e.kind.value,
            "from_id": e.from_id,
            "to_id": e.to_id,
            "start_time": e.start_time,
            "end_time": e.end_time,
            "location": _location_to_dict(e.location),
            "runtime_checked": e.runtime_checked,
            "event_id": e.event_id,
        }
        for e in graph.edges
    ]
    diagnostics = [
        {
            "kind": d.kind.value,
            "event_id": d.event_id,
            "timestamp": d.timestamp,
            "location": _location_to_dict(d.location),
            "message": d.message,
            "var_id": d.var_id,
            "status": d.status.value if d.status is not None else None,
        }
        for d in graph.diagnostics
    ]
    return {
        "nodes": nodes,
        "edges": edges,
        "diagnostics": diagnostics,
        "metadata": {
            "total_events": graph.event_count,
            "total_variables": len(graph.nodes),
            "total_relationships": len(graph.edges),
            "max_timestamp": graph.max_timestamp,
            "source": source,
            "function": function,
        },
    }


# ---------------------------------------------------------------------- #
# Reading
# ---------------------------------------------------------------------- #

def validate_document(data: Any) -> List[str]:
    """
    Check the top-level structure and version of a parsed document.

    Field-level problems inside events and the graph are found while
    decoding; this only covers what must hold before decoding starts.

    Returns:
        A list of problems (empty when the document can be decoded).
    """
    if not isinstance(data, dict):
        return ["document must be a JSON object"]

    problems: List[str] = []
    version = data.get("version")
    if not isinstance(version, str):
        problems.append("missing or non-string 'version'")
    else:
        major = version.split(".", 1)[0]
        expected = SCHEMA_VERSION.split(".", 1)[0]
        if major != expected:
            problems.append(
                f"unsupported version {version!r} (expected {expected}.x)"
            )

    if not isinstance(data.get("events", []), list):
        problems.append("'events' must be a list")
    graph = data.get("graph")
    if graph is not None:
        if not isinstance(graph, dict):
            problems.append("'graph' must be an object or null")
        else:
            for key in ("nodes", "edges"):
                if not isinstance(graph.get(key), list):
                    problems.append(f"'graph.{key}' must be a list")
            if not isinstance(graph.get("diagnostics", []), list):
                problems.append("'graph.diagnostics' must be a list")
            if not isinstance(graph.get("metadata", {}), (dict, type(None))):
                problems.append("'graph.metadata' must be an object")
    if "config" in data and not isinstance(data["config"], dict):
        problems.append("'config' must be an object")
    return problems


def deserialize(text: str) -> ExportDocument:
    """
    Parse an export document from JSON text.

    Raises:
        SerializationError: If the text is not valid JSON, the major
            version differs, or any field is missing or malformed.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SerializationError("Invalid JSON", [str(e)]) from e
    return from_dict(data)


def from_dict(data: Any) -> ExportDocument:
    """
    Decode an already-parsed export document.

    Raises:
        SerializationError: On any structural or field-level problem.
    """
    problems = validate_document(data)
    if problems:
        raise SerializationError("Invalid export document", problems)

    decoder = _Decoder()
    events = [
        decoder.event(item, f"events[{i}]")
        for i, item in enumerate(data.get("events", []))
    ]
    graph = None
    source = function = None
    if data.get("graph") is not None:
        graph = decoder.graph(data["graph"])
        metadata = data["graph"].get("metadata") or {}
        source = decoder.optional(metadata, "source", str, "graph.metadata")
        function = decoder.optional(metadata, "function", str, "graph.metadata")

    config_data = data.get("config") or {}
    config = ExportConfig(
        include_events=decoder.optional(
            config_data, "include_events", bool, "config", default=True,
        ),
        include_graph=decoder.optional(
            config_data, "include_graph", bool, "config", default=True,
        ),
        timestamp_unit=decoder.optional(
            config_data, "timestamp_unit", str, "config", default="logical",
        ),
    )

    if decoder.problems:
        raise SerializationError("Invalid export document", decoder.problems)
    return ExportDocument(
        version=data["version"],
        events=events,
        graph=graph,
        config=config,
        source=source,
        function=function,
    )


def read_export(path: Union[str, Path]) -> ExportDocument:
    """
    Read an export document from *path*.

    Raises:
        SerializationError: If the document is malformed.
        OSError: If the file cannot be read.
    """
    return deserialize(Path(path).read_text())


class _Decoder:
    """
    Field decoder that records problems instead of raising.

    Every accessor returns a placeholder on failure so decoding can
    continue and report all problems at once; callers discard the result
    whenever ``problems`` is non-empty.
    """

    def __init__(self) -> None:
        self.problems: List[str] = []

    # -- primitives ---------------------------------------------------- #

    def _check(self, value: Any, expected: type) -> bool:
        if expected is int:
            return isinstance(value, int) and not isinstance(value, bool)
        return isinstance(value, expected)

    def required(self, obj: Dict[str, Any], key: str, expected: type, where: str) -> Any:
        if key not in obj:
            self.problems.append(f"{where}: missing field '{key}'")
            return None
        value = obj[key]
        if not self._check(value, expected):
            self.problems.append(
                f"{where}: field '{key}' must be {expected.__name__}, got {value!r}"
            )
            return None
        return value

    def optional(
        self,
        obj: Dict[str, Any],
        key: str,
        expected: type,
        where: str,
        default: Any = None,
    ) -> Any:
        value = obj.get(key)
        if value is None:
            return default
        if not self._check(value, expected):
            self.problems.append(
                f"{where}: field '{key}' must be {expected.__name__}, got {value!r}"
            )
            return default
        return value

    def enum(self, obj: Dict[str, Any], key: str, enum_type: Any, where: str,
             default: Any = None) -> Any:
        value = obj.get(key)
        if value is None:
            if default is None:
                self.problems.append(f"{where}: missing field '{key}'")
            return default
        try:
            return enum_type(value)
        except ValueError:
            self.problems.append(f"{where}: unknown {key} {value!r}")
            return default

    def location(self, obj: Dict[str, Any], where: str, required: bool = True) -> Optional[Location]:
        value = obj.get("location")
        if value is None:
            if required:
                self.problems.append(f"{where}: missing field 'location'")
            return None
        if isinstance(value, str):
            try:
                return Location.parse(value)
            except ValueError as e:
                self.problems.append(f"{where}: {e}")
                return None
        if not isinstance(value, dict):
            self.problems.append(f"{where}: 'location' must be an object")
            return None
        where = f"{where}.location"
        file = self.required(value, "file", str, where)
        line = self.optional(value, "line", int, where, default=0)
        column = self.optional(value, "column", int, where, default=0)
        return Location(file, line, column) if file is not None else None

    # -- events -------------------------------------------------------- #

    def event(self, item: Any, where: str) -> Optional[Event]:
        if not isinstance(item, dict):
            self.problems.append(f"{where}: event must be an object")
            return None
        tag = item.get("type")
        cls = EVENT_CLASSES_BY_TAG.get(tag) if isinstance(tag, str) else None
        if cls is None:
            self.problems.append(f"{where}: unknown event type {tag!r}")
            return None

        before = len(self.problems)
        common = {
            "id": self.required(item, "id", int, where),
            "location": self.location(item, where),
            "timestamp": self.required(item, "timestamp", int, where),
        }
        if cls is NewEvent:
            fields = dict(
                name=self.required(item, "name", str, where),
                type_name=self.required(item, "type_name", str, where),
                kind=self.enum(item, "kind", ValueKind, where, ValueKind.OWNED),
                source_id=self.optional(item, "source_id", int, where),
                strong_count=self.optional(item, "strong_count", int, where),
                weak_count=self.optional(item, "weak_count", int, where),
            )
        elif cls is BorrowEvent:
            fields = dict(
                borrower_id=self.required(item, "borrower_id", int, where),
                borrower_name=self.required(item, "borrower_name", str, where),
                owner_id=self.required(item, "owner_id", int, where),
                mutable=self.required(item, "mutable", bool, where),
                kind=self.enum(item, "kind", ValueKind, where, ValueKind.OWNED),
            )
        elif cls is MoveEvent:
            fields = dict(
                from_id=self.required(item, "from_id", int, where),
                to_id=self.required(item, "to_id", int, where),
                to_name=self.required(item, "to_name", str, where),
            )
        else:
            fields = dict(var_id=self.required(item, "var_id", int, where))

        if len(self.problems) > before:
            return None
        return cls(**common, **fields)

    # -- graph --------------------------------------------------------- #

    def graph(self, data: Dict[str, Any]) -> OwnershipGraph:
        graph = OwnershipGraph()
        for i, item in enumerate(data["nodes"]):
            var = self._variable(item, f"graph.nodes[{i}]")
            if var is None:
                continue
            try:
                graph.add_variable(var)
            except ValueError as e:
                self.problems.append(f"graph.nodes[{i}]: {e}")

        for i, item in enumerate(data["edges"]):
            rel = self._relationship(item, f"graph.edges[{i}]")
            if rel is None:
                continue
            try:
                graph.insert_relationship(rel)
            except ValueError as e:
                self.problems.append(f"graph.edges[{i}]: {e}")

        for i, item in enumerate(data.get("diagnostics", [])):
            diag = self._diagnostic(item, f"graph.diagnostics[{i}]")
            if diag is not None:
                graph.add_diagnostic(diag)

        metadata = data.get("metadata") or {}
        graph.event_count = self.optional(
            metadata, "total_events", int, "graph.metadata", default=0,
        )
        graph.max_timestamp = self.optional(
            metadata, "max_timestamp", int, "graph.metadata", default=0,
        )
        return graph

    def _variable(self, item: Any, where: str) -> Optional[Variable]:
        if not isinstance(item, dict):
            self.problems.append(f"{where}: node must be an object")
            return None
        before = len(self.problems)
        values = dict(
            id=self.required(item, "id", int, where),
            name=self.required(item, "name", str, where),
            type_name=self.required(item, "type_name", str, where),
            created_at=self.required(item, "created_at", int, where),
            dropped_at=self.optional(item, "dropped_at", int, where),
            moved_at=self.optional(item, "moved_at", int, where),
            status=self.enum(item, "status", VariableStatus, where),
            kind=self.enum(item, "kind", ValueKind, where, ValueKind.OWNED),
            location=self.location(item, where, required=False),
            allocation_id=self.optional(item, "allocation_id", int, where),
            strong_count=self.optional(item, "strong_count", int, where),
            weak_count=self.optional(item, "weak_count", int, where),
        )
        if len(self.problems) > before:
            return None
        return Variable(**values)

    def _relationship(self, item: Any, where: str) -> Optional[Relationship]:
        if not isinstance(item, dict):
            self.problems.append(f"{where}: edge must be an object")
            return None
        before = len(self.problems)
        values = dict(
            id=self.required(item, "id", int, where),
            kind=self.enum(item, "kind", RelationshipKind, where),
            from_id=self.required(item, "from_id", int, where),
            to_id=self.required(item, "to_id", int, where),
            start_time=self.required(item, "start_time", int, where),
            end_time=self.optional(item, "end_time", int, where),
            location=self.location(item, where, required=False),
            runtime_checked=self.optional(
                item, "runtime_checked", bool, where, default=False,
            ),
            event_id=self.optional(item, "event_id", int, where),
        )
        if len(self.problems) > before:
            return None
        return Relationship(**values)

    def _diagnostic(self, item: Any, where: str) -> Optional[Diagnostic]:
        if not isinstance(item, dict):
            self.problems.append(f"{where}: diagnostic must be an object")
            return None
        before = len(self.problems)
        status = None
        if item.get("status") is not None:
            status = self.enum(item, "status", VariableStatus, where)
        values = dict(
            kind=self.enum(item, "kind", DiagnosticKind, where),
            event_id=self.required(item, "event_id", int, where),
            timestamp=self.required(item, "timestamp", int, where),
            location=self.location(item, where),
            message=self.required(item, "message", str, where),
            var_id=self.optional(item, "var_id", int, where),
            status=status,
        )
        if len(self.problems) > before:
            return None
        return Diagnostic(**values)


def events_from_dicts(items: Sequence[Any]) -> List[Event]:
    """
    Decode a bare list of event dictionaries.

    Raises:
        SerializationError: If any item is malformed.
    """
    decoder = _Decoder()
    events = [decoder.event(item, f"events[{i}]") for i, item in enumerate(items)]
    if decoder.problems:
        raise SerializationError("Invalid event list", decoder.problems)
    return events
