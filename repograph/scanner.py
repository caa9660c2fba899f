"""Repository scanner.

Walks the tree under the include/exclude rules and produces the file map.
The walk itself is a lazy stream of :class:`ScanEvent` values so callers can
observe progress, stop early, or cancel; :func:`scan_repository` is the
collecting front end.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from .config import DEFAULT_MAX_WORKERS, RepographConfig
from .matching import PathRules, derive_scan_roots, is_test_like
from .models import CancelToken, EventKind, FileEntry, FileMap, ScanEvent
from .util import log_event, setup_json_logger, to_posix

_LOG = setup_json_logger("repograph.scanner")

Predicate = Callable[[str, bool], bool]


@dataclass
class ScanOptions:
    include_content: bool = True
    scan_only: bool = False
    predicate: Predicate | None = None
    on_progress: Callable[[ScanEvent], None] | None = None
    max_workers: int = DEFAULT_MAX_WORKERS
    cancel: CancelToken | None = None

    @classmethod
    def from_config(cls, cfg: RepographConfig, **overrides) -> "ScanOptions":
        opts = cls(scan_only=cfg.scan_only, max_workers=cfg.max_workers)
        for key, value in overrides.items():
            setattr(opts, key, value)
        return opts

    @property
    def reads_content(self) -> bool:
        return self.include_content and not self.scan_only


def _rel(root: Path, path: Path) -> str:
    return to_posix(os.path.relpath(path, root))


def _error(path: str, action: str, exc: BaseException) -> ScanEvent:
    return ScanEvent(EventKind.ERROR, path, action=action, message=str(exc))


class _Walker:
    def __init__(self, root: Path, rules: PathRules, options: ScanOptions, pool: ThreadPoolExecutor) -> None:
        self.root = root
        self.rules = rules
        self.options = options
        self.pool = pool

    @property
    def cancelled(self) -> bool:
        return self.options.cancel is not None and self.options.cancel.cancelled

    def keep_dir(self, rel: str) -> bool:
        if not self.rules.allows_dir(rel):
            return False
        predicate = self.options.predicate
        return predicate is None or predicate(rel, True)

    def keep_file(self, rel: str) -> bool:
        if not self.rules.allows_file(rel):
            return False
        predicate = self.options.predicate
        return predicate is None or predicate(rel, False)

    def load(self, item: tuple[Path, str]) -> list[ScanEvent]:
        full, rel = item
        try:
            st = full.stat()
        except OSError as exc:
            return [_error(rel, "stat", exc)]
        events: list[ScanEvent] = []
        content: str | None = None
        if self.options.reads_content:
            try:
                content = full.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                events.append(_error(rel, "read", exc))
        entry = FileEntry(
            full_path=str(full),
            rel_path=rel,
            content=content,
            last_modified_ms=st.st_mtime_ns // 1_000_000,
        )
        events.append(ScanEvent(EventKind.FILE, rel, action="read", entry=entry))
        return events

    def walk(self, directory: Path) -> Iterator[ScanEvent]:
        dir_rel = _rel(self.root, directory)
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            yield _error(dir_rel, "access", exc)
            return
        yield ScanEvent(EventKind.DIRECTORY, dir_rel, action="examine")

        files: list[tuple[Path, str]] = []
        subdirs: list[Path] = []
        for entry in entries:
            if self.cancelled:
                return
            full = Path(entry.path)
            rel = _rel(self.root, full)
            if is_test_like(rel):
                continue
            try:
                is_link = entry.is_symlink()
                is_dir = entry.is_dir()
            except OSError as exc:
                yield _error(rel, "stat", exc)
                continue
            if is_dir:
                if is_link:
                    continue
                if self.keep_dir(rel):
                    subdirs.append(full)
            elif self.keep_file(rel):
                files.append((full, rel))

        for events in self.pool.map(self.load, files):
            if self.cancelled:
                return
            yield from events
        for sub in subdirs:
            if self.cancelled:
                return
            yield from self.walk(sub)

    def single_file(self, full: Path) -> Iterator[ScanEvent]:
        rel = _rel(self.root, full)
        if is_test_like(rel) or not self.keep_file(rel):
            return
        yield from self.load((full, rel))


def start_points(root: Path, rules: PathRules) -> list[Path]:
    """Directories (or files) the walk starts from, derived from include anchors."""
    spec = rules.include
    if not spec.active:
        return [root]
    anchors = [a for a in derive_scan_roots(spec) if a != ".." and not a.startswith("../")]
    if spec.requests_any_depth or not anchors:
        return [root]
    kept: list[str] = []
    for anchor in sorted(anchors):
        if any(anchor == k or anchor.startswith(f"{k}/") for k in kept):
            continue
        kept.append(anchor)
    return [root / a for a in kept]


def iter_scan(
    root: Path,
    rules: PathRules | None = None,
    options: ScanOptions | None = None,
) -> Iterator[ScanEvent]:
    root = Path(root).resolve()
    rules = rules or PathRules()
    options = options or ScanOptions()
    pool = ThreadPoolExecutor(max_workers=max(1, options.max_workers))
    walker = _Walker(root, rules, options, pool)
    try:
        for start in start_points(root, rules):
            if walker.cancelled:
                return
            if start == root or start.is_dir():
                yield from walker.walk(start)
            elif start.is_file():
                yield from walker.single_file(start)
            else:
                yield ScanEvent(
                    EventKind.ERROR,
                    _rel(root, start),
                    action="access",
                    message="include root does not exist",
                )
    finally:
        pool.shutdown(wait=True, cancel_futures=True)


def scan_repository(
    root: Path,
    rules: PathRules | None = None,
    options: ScanOptions | None = None,
) -> FileMap:
    options = options or ScanOptions()
    log_event(_LOG, "scan.start", root=str(root))
    file_map: FileMap = {}
    errors = 0
    for event in iter_scan(root, rules, options):
        if options.on_progress is not None:
            options.on_progress(event)
        if event.kind == EventKind.FILE and event.entry is not None:
            file_map[event.entry.rel_path] = event.entry
        elif event.kind == EventKind.ERROR:
            errors += 1
            log_event(_LOG, "scan.entry.error", level=logging.WARNING, **event.as_dict())
    directories = {os.path.dirname(rel) for rel in file_map}
    log_event(
        _LOG,
        "scan.complete",
        files=len(file_map),
        directories=len(directories),
        errors=errors,
        cancelled=bool(options.cancel and options.cancel.cancelled),
    )
    return file_map


def scan_with_config(cfg: RepographConfig, **overrides) -> FileMap:
    return scan_repository(cfg.repo_root, cfg.rules(), ScanOptions.from_config(cfg, **overrides))
