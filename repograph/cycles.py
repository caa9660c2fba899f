"""Bounded cycle search over a built dependency graph.

Runs only after ``build_graph`` has finished writing; the graph is read-only
here. Self-imports are not cycles for this module: they are reported on their
own by :func:`self_imports` and skipped during the search.
"""

from __future__ import annotations

from typing import AbstractSet, Tuple

from .config import DEFAULT_MAX_CYCLE_DEPTH
from .graph import DependencyGraph, GraphContext
from .models import Level, NodeKey, Occurrence
from .resolver import normalize_posix
from .util import log_event, setup_json_logger

_LOG = setup_json_logger("repograph.cycles")

CyclePath = Tuple[str, ...]


def detect_cycle(start: str, graph: DependencyGraph, max_depth: int = DEFAULT_MAX_CYCLE_DEPTH) -> CyclePath:
    """First cycle reachable from *start* within *max_depth* edges, or ``()``.

    The returned path closes on itself (first == last) and begins at the
    node where the loop was entered, which is not necessarily *start*.
    """
    visited: set[str] = set()
    on_stack: set[str] = set()
    path: list[str] = []

    def dfs(node: str, depth: int) -> bool:
        if depth > max_depth:
            return False
        if node in on_stack:
            path.append(node)
            return True
        if node in visited:
            return False
        visited.add(node)
        on_stack.add(node)
        path.append(node)
        for dep in sorted(graph.dependencies(node)):
            if not dep.is_internal or dep.name == node:
                continue
            if dfs(dep.name, depth + 1):
                return True
        on_stack.discard(node)
        path.pop()
        return False

    if not dfs(normalize_posix(start), 0):
        return ()
    closing = path[-1]
    cycle = tuple(path[path.index(closing):])
    if not all(node in graph for node in cycle):
        return ()
    return cycle


def confirm_cycle(
    path: CyclePath,
    graph: DependencyGraph,
    known_files: AbstractSet[str] | None = None,
) -> bool:
    """True when the path is closed and every consecutive pair is an edge.

    With a known-file set, every node must also be one of those files.
    """
    if len(path) < 2 or path[0] != path[-1]:
        return False
    nodes = [normalize_posix(p) for p in path]
    if known_files is not None and any(n not in known_files for n in nodes):
        return False
    return all(graph.has_edge(a, b) for a, b in zip(nodes, nodes[1:]))


def _rotation_key(cycle: CyclePath) -> CyclePath:
    nodes = list(cycle[:-1])
    i = nodes.index(min(nodes))
    return tuple(nodes[i:] + nodes[:i])


def self_imports(graph: DependencyGraph) -> list[str]:
    return [src for src in graph.sources() if NodeKey.internal(src) in graph.dependencies(src)]


def find_cycles(
    context: GraphContext,
    max_depth: int = DEFAULT_MAX_CYCLE_DEPTH,
    verify: bool = True,
) -> list[CyclePath]:
    """Search from every analyzed file and report each distinct cycle once.

    Cycles are deduplicated by rotation; the occurrence is attributed to the
    first file (in sorted order) whose search found it. With *verify* set, a
    cycle failing :func:`confirm_cycle` is dropped.
    """
    graph = context.graph
    known = context.known_files or None
    seen: set[CyclePath] = set()
    found: list[CyclePath] = []
    dropped = 0
    for source in graph.sources():
        cycle = detect_cycle(source, graph, max_depth)
        if len(cycle) < 2:
            continue
        if verify and not confirm_cycle(cycle, graph, known):
            dropped += 1
            continue
        key = _rotation_key(cycle)
        if key in seen:
            continue
        seen.add(key)
        found.append(cycle)
        chain = " -> ".join(cycle)
        context.occurrences.append(
            Occurrence(
                kind="import-cycle",
                level=Level.ALERT,
                message=f"circular dependency across {len(cycle) - 1} files: {chain}",
                rel_path=source,
                context=f"cycle: {chain}",
            )
        )
    log_event(
        _LOG,
        "cycles.complete",
        cycles=len(found),
        dropped=dropped,
        self_imports=len(self_imports(graph)),
        max_depth=max_depth,
        verify=verify,
    )
    return found
