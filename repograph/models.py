from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict


class NodeKind:
    INTERNAL = "internal"
    EXTERNAL = "external"


class Level:
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    ALERT = "alert"


class EventKind:
    DIRECTORY = "directory"
    FILE = "file"
    ERROR = "error"


@dataclass(frozen=True, order=True)
class NodeKey:
    """Graph vertex identity: a normalized repo-relative path or a bare module name."""

    kind: str
    name: str

    @classmethod
    def internal(cls, path: str) -> "NodeKey":
        return cls(NodeKind.INTERNAL, path)

    @classmethod
    def external(cls, name: str) -> "NodeKey":
        return cls(NodeKind.EXTERNAL, name)

    @property
    def is_internal(self) -> bool:
        return self.kind == NodeKind.INTERNAL

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class FileEntry:
    full_path: str
    rel_path: str
    content: str | None
    last_modified_ms: int


FileMap = Dict[str, FileEntry]


@dataclass(frozen=True)
class ScanEvent:
    kind: str
    path: str
    action: str | None = None
    message: str | None = None
    entry: FileEntry | None = field(default=None, compare=False, repr=False)

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind, "path": self.path}
        if self.action is not None:
            out["action"] = self.action
        if self.message is not None:
            out["message"] = self.message
        return out


@dataclass(frozen=True)
class Occurrence:
    kind: str
    level: str
    message: str
    rel_path: str
    line: int | None = None
    column: int | None = None
    context: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "kind": self.kind,
            "level": self.level,
            "message": self.message,
            "rel_path": self.rel_path,
        }
        for key in ("line", "column", "context"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out


@dataclass
class CancelToken:
    """Cooperative cancellation flag shared by the scanner and the graph builder."""

    _event: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
