"""Dependency graph construction.

``analyze_file`` is a pure function of one file's text and the known-file set;
``build_graph`` fans it out over daemon worker threads and merges the results, in
sorted path order, into a :class:`GraphContext` owned by the caller. There is
no module-level graph: each invocation gets its own context.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Mapping
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import AbstractSet, Any, Callable, Iterable, Iterator

from .config import DEFAULT_FILE_TIMEOUT_S, DEFAULT_MAX_WORKERS, RepographConfig
from .extract import ImportRecord, ImportStyle, StructuralView, extract, language_for
from .models import CancelToken, FileMap, Level, NodeKey, Occurrence
from .resolver import Resolution, normalize_posix, resolve_module, resolve_python_module
from .util import log_event, setup_json_logger

_LOG = setup_json_logger("repograph.graph")

LONG_RELATIVE_SPLIT_LIMIT = 3


class DependencyGraph:
    """Simple directed graph: source rel_path -> set of target node keys."""

    def __init__(self) -> None:
        self._edges: dict[str, set[NodeKey]] = {}

    def add_node(self, source: str) -> None:
        self._edges.setdefault(normalize_posix(source), set())

    def add_edge(self, source: str, target: NodeKey) -> None:
        self._edges.setdefault(normalize_posix(source), set()).add(target)

    def dependencies(self, source: str) -> frozenset[NodeKey]:
        return frozenset(self._edges.get(normalize_posix(source), ()))

    def internal_targets(self, source: str) -> list[str]:
        return sorted(k.name for k in self.dependencies(source) if k.is_internal)

    def has_edge(self, source: str, target: str) -> bool:
        return NodeKey.internal(normalize_posix(target)) in self.dependencies(source)

    def sources(self) -> list[str]:
        return sorted(self._edges)

    def edge_count(self) -> int:
        return sum(len(v) for v in self._edges.values())

    def merge(self, other: "DependencyGraph") -> None:
        for source in other.sources():
            self.add_node(source)
            for target in other.dependencies(source):
                self.add_edge(source, target)

    def __contains__(self, source: object) -> bool:
        return isinstance(source, str) and normalize_posix(source) in self._edges

    def __len__(self) -> int:
        return len(self._edges)

    def as_dict(self) -> dict[str, list[str]]:
        return {
            source: sorted(str(k) for k in self._edges[source])
            for source in self.sources()
        }


class DynamicUsageRegistry(Mapping):
    """Read-only view: rel_path -> imported names seen in registration shapes."""

    def __init__(self) -> None:
        self._names: dict[str, frozenset[str]] = {}

    def _record(self, rel_path: str, names: Iterable[str]) -> None:
        names = frozenset(names)
        if names:
            self._names[rel_path] = self._names.get(rel_path, frozenset()) | names

    def __getitem__(self, rel_path: str) -> frozenset[str]:
        return self._names[rel_path]

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._names))

    def __len__(self) -> int:
        return len(self._names)

    def is_dynamically_used(self, rel_path: str, name: str) -> bool:
        return name in self._names.get(rel_path, frozenset())


# --- dynamic-usage rules -----------------------------------------------------

Matcher = Callable[[StructuralView, str], bool]


@dataclass(frozen=True)
class UsageRule:
    name: str
    capability: str
    matches: Matcher


def call_with_identifier_arg(callees: AbstractSet[str], position: str = "first", arity: int | None = None) -> Matcher:
    def _match(view: StructuralView, name: str) -> bool:
        for call in view.calls:
            if call.callee not in callees or not call.args:
                continue
            if arity is not None and len(call.args) != arity:
                continue
            if position == "first" and call.args[0] == name:
                return True
            if position == "last" and len(call.args) >= 2 and call.args[-1] == name:
                return True
        return False

    return _match


def array_literal_containing_identifier(owners: AbstractSet[str] | None = None) -> Matcher:
    def _match(view: StructuralView, name: str) -> bool:
        return any(
            name in arr.items and (owners is None or arr.owner in owners)
            for arr in view.arrays
        )

    return _match


def property_value_is_identifier(owners: AbstractSet[str] | None = None) -> Matcher:
    def _match(view: StructuralView, name: str) -> bool:
        return any(
            prop.value == name and (owners is None or prop.owner in owners)
            for prop in view.properties
        )

    return _match


DYNAMIC_USAGE_RULES: tuple[UsageRule, ...] = (
    UsageRule(
        "registration-call",
        "call-with-identifier-arg",
        call_with_identifier_arg(
            {"register", "use", "registerPlugin", "addPlugin", "apply", "load", "push"}
        ),
    ),
    UsageRule(
        "event-handler",
        "call-with-identifier-arg",
        call_with_identifier_arg({"on", "once"}, position="last", arity=2),
    ),
    UsageRule(
        "route-handler",
        "call-with-identifier-arg",
        call_with_identifier_arg(
            {"get", "post", "put", "delete", "patch", "options", "head"}, position="last"
        ),
    ),
    UsageRule(
        "module-metadata",
        "array-literal-containing-identifier",
        array_literal_containing_identifier({"providers", "controllers", "imports", "exports"}),
    ),
    UsageRule(
        "array-member",
        "array-literal-containing-identifier",
        array_literal_containing_identifier(),
    ),
    UsageRule(
        "component-registration",
        "property-value-is-identifier",
        property_value_is_identifier({"components", "combineReducers"}),
    ),
    UsageRule(
        "object-value",
        "property-value-is-identifier",
        property_value_is_identifier(),
    ),
)


def dynamic_usage(
    view: StructuralView,
    names: Iterable[str],
    rules: Iterable[UsageRule] = DYNAMIC_USAGE_RULES,
) -> dict[str, str]:
    """Imported names matched by a registration rule, with the first matching rule."""
    rules = tuple(rules)
    out: dict[str, str] = {}
    for name in names:
        for rule in rules:
            if rule.matches(view, name):
                out[name] = rule.name
                break
    return out


# --- per-file analysis -------------------------------------------------------


@dataclass(frozen=True)
class UnknownEdge:
    source: str
    expression: str
    line: int
    column: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "expression": self.expression,
            "line": self.line,
            "column": self.column,
        }


@dataclass
class FileAnalysis:
    rel_path: str
    edges: list[NodeKey] = field(default_factory=list)
    unknown_edges: list[UnknownEdge] = field(default_factory=list)
    occurrences: list[Occurrence] = field(default_factory=list)
    dynamic_usage: dict[str, str] = field(default_factory=dict)

    def add_edge(self, key: NodeKey) -> None:
        if key not in self.edges:
            self.edges.append(key)

    def note(self, kind: str, level: str, message: str, record: ImportRecord | None = None, context: str | None = None) -> None:
        self.occurrences.append(
            Occurrence(
                kind=kind,
                level=level,
                message=message,
                rel_path=self.rel_path,
                line=record.line if record else None,
                column=record.column if record else None,
                context=context,
            )
        )


def _resolve(record: ImportRecord, rel_path: str, language: str, known_files: AbstractSet[str] | None) -> Resolution:
    if language == "python":
        return resolve_python_module(record.module, record.level, record.name, rel_path, known_files)
    return resolve_module(record.specifier or "", rel_path, known_files)


def _is_relative(record: ImportRecord, language: str) -> bool:
    if language == "python":
        return record.level > 0
    return (record.specifier or "").startswith(".")


def _diagnose(
    out: FileAnalysis,
    record: ImportRecord,
    resolution: Resolution,
    language: str,
    known_files: AbstractSet[str] | None,
) -> None:
    spec = record.specifier or ""
    verb = "require" if record.style == ImportStyle.REQUIRE else "import"
    if not resolution.key.is_internal:
        out.note("external-dependency", Level.INFO, f"{verb} of external dependency '{spec}'", record)
        return
    if language == "js" and spec.startswith(".") and len(spec.split("../")) > LONG_RELATIVE_SPLIT_LIMIT:
        out.note(
            "long-relative-import",
            Level.WARNING,
            f"{verb} of '{spec}' climbs too many directories; consider an alias or a closer module",
            record,
        )
    if out.rel_path.endswith(".ts") and spec.endswith(".js") and not resolution.key.name.endswith(".ts"):
        out.note(
            "js-extension-in-ts",
            Level.WARNING,
            f"{verb} of '{spec}' from a TypeScript file does not resolve to a TypeScript source",
            record,
        )
    if _is_relative(record, language) and known_files is not None and not resolution.exists:
        out.note("missing-import-target", Level.ERROR, f"{verb} target '{spec}' does not exist", record)


def analyze_file(
    rel_path: str,
    source: str,
    known_files: AbstractSet[str] | None = None,
    config: RepographConfig | None = None,
) -> FileAnalysis:
    """Extract edges, unknown edges, diagnostics and dynamic-usage names of one file.

    Reads nothing but its arguments. Type-only imports contribute no edge.
    """
    rel_path = normalize_posix(rel_path)
    out = FileAnalysis(rel_path=rel_path)
    language = language_for(rel_path)
    if language is None:
        return out
    view = extract(rel_path, source)
    if view.parse_error is not None:
        out.note("parse-error", Level.WARNING, f"could not parse source: {view.parse_error}")
        return out

    styles: set[str] = set()
    self_key = NodeKey.internal(rel_path)
    for record in view.imports:
        if record.type_only:
            continue
        if record.style in (ImportStyle.IMPORT, ImportStyle.REQUIRE) and language == "js":
            styles.add(record.style)
        if record.computed:
            out.unknown_edges.append(UnknownEdge(rel_path, record.text, record.line, record.column))
            out.note(
                "unresolved-dynamic-import",
                Level.INFO,
                "dynamically computed module specifier cannot be resolved statically",
                record,
                context=record.text or None,
            )
            continue
        resolution = _resolve(record, rel_path, language, known_files)
        out.add_edge(resolution.key)
        _diagnose(out, record, resolution, language, known_files)

    if len(styles) > 1:
        out.note("mixed-import-styles", Level.WARNING, "file mixes import declarations and require() calls")

    if self_key in out.edges:
        out.note("self-import", Level.ALERT, "file imports itself", context=rel_path)

    out.dynamic_usage = dynamic_usage(view, view.imported_names())
    if config is not None and config.verbose:
        for name, rule in sorted(out.dynamic_usage.items()):
            out.note(
                "dynamic-usage",
                Level.INFO,
                f"import '{name}' is used through dynamic registration ({rule})",
            )
    return out


# --- invocation arena --------------------------------------------------------


@dataclass
class GraphContext:
    graph: DependencyGraph = field(default_factory=DependencyGraph)
    dynamic_usage: DynamicUsageRegistry = field(default_factory=DynamicUsageRegistry)
    known_files: frozenset[str] = frozenset()
    occurrences: list[Occurrence] = field(default_factory=list)
    unknown_edges: list[UnknownEdge] = field(default_factory=list)
    analyzed: list[str] = field(default_factory=list)
    cancelled: bool = False

    def merge(self, analysis: FileAnalysis) -> None:
        self.graph.add_node(analysis.rel_path)
        for key in analysis.edges:
            self.graph.add_edge(analysis.rel_path, key)
        self.unknown_edges.extend(analysis.unknown_edges)
        self.occurrences.extend(analysis.occurrences)
        self.dynamic_usage._record(analysis.rel_path, analysis.dynamic_usage)
        self.analyzed.append(analysis.rel_path)

    def occurrences_for(self, rel_path: str) -> list[Occurrence]:
        return [o for o in self.occurrences if o.rel_path == rel_path]

    def as_dict(self) -> dict[str, Any]:
        return {
            "graph": self.graph.as_dict(),
            "dynamic_usage": {k: sorted(v) for k, v in self.dynamic_usage.items()},
            "occurrences": [o.as_dict() for o in self.occurrences],
            "unknown_edges": [u.as_dict() for u in self.unknown_edges],
            "cancelled": self.cancelled,
        }


def _start_workers(todo: list[str], count: int, run: Callable[[str], FileAnalysis]) -> dict[str, Future]:
    """Run ``run`` over ``todo`` on daemon threads, one future per file.

    Workers are daemons so a file stuck past its timeout cannot keep the
    interpreter alive after the caller has moved on.
    """
    futures: dict[str, Future] = {rel: Future() for rel in todo}
    jobs: queue.SimpleQueue[str | None] = queue.SimpleQueue()
    for rel in todo:
        jobs.put(rel)

    def work() -> None:
        while True:
            rel = jobs.get()
            if rel is None:
                return
            future = futures[rel]
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(run(rel))
            except BaseException as exc:
                future.set_exception(exc)

    count = max(1, min(count, len(todo)))
    for _ in range(count):
        jobs.put(None)
    for i in range(count if todo else 0):
        threading.Thread(target=work, name=f"repograph-graph-{i}", daemon=True).start()
    return futures


def build_graph(
    file_map: FileMap,
    config: RepographConfig | None = None,
    context: GraphContext | None = None,
    cancel: CancelToken | None = None,
) -> GraphContext:
    context = context or GraphContext()
    context.known_files = frozenset(context.known_files | set(file_map))
    max_workers = config.max_workers if config else DEFAULT_MAX_WORKERS
    timeout_s = config.file_timeout_s if config else DEFAULT_FILE_TIMEOUT_S
    known_files = context.known_files

    todo = sorted(
        rel
        for rel, entry in file_map.items()
        if entry.content is not None and language_for(rel) is not None
    )
    log_event(_LOG, "graph.start", files=len(todo))
    futures = _start_workers(
        todo, max_workers, lambda rel: analyze_file(rel, file_map[rel].content or "", known_files, config)
    )
    try:
        for rel in todo:
            if cancel is not None and cancel.cancelled:
                context.cancelled = True
                log_event(_LOG, "graph.cancelled", analyzed=len(context.analyzed), remaining=len(todo) - len(context.analyzed))
                break
            try:
                analysis = futures[rel].result(timeout=timeout_s)
            except FutureTimeout:
                futures[rel].cancel()
                context.occurrences.append(
                    Occurrence(
                        kind="timeout",
                        level=Level.WARNING,
                        message=f"analysis abandoned after {timeout_s:g}s",
                        rel_path=rel,
                    )
                )
                log_event(_LOG, "graph.file.timeout", level=logging.WARNING, rel_path=rel, timeout_s=timeout_s)
                continue
            except Exception as exc:
                context.occurrences.append(
                    Occurrence(
                        kind="analysis-error",
                        level=Level.ERROR,
                        message=f"analysis failed: {type(exc).__name__}: {exc}",
                        rel_path=rel,
                    )
                )
                log_event(
                    _LOG,
                    "graph.file.error",
                    level=logging.WARNING,
                    rel_path=rel,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                continue
            context.merge(analysis)
    finally:
        for future in futures.values():
            future.cancel()

    log_event(
        _LOG,
        "graph.complete",
        files=len(context.analyzed),
        edges=context.graph.edge_count(),
        occurrences=len(context.occurrences),
        unknown_edges=len(context.unknown_edges),
        cancelled=context.cancelled,
    )
    return context
