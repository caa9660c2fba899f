from __future__ import annotations

import io
import os
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from repograph.util import set_request_id, setup_json_logger

REPOGRAPH_LOGGERS = (
    "repograph.scanner",
    "repograph.graph",
    "repograph.cycles",
    "repograph.cli",
)


@pytest.fixture(autouse=True)
def isolate_runtime_state() -> Iterator[None]:
    environ_before = dict(os.environ)

    yield

    for key in list(os.environ.keys()):
        if key not in environ_before:
            os.environ.pop(key, None)
    for key, value in environ_before.items():
        os.environ[key] = value
    set_request_id(None)


@pytest.fixture
def log_stream() -> Iterator[io.StringIO]:
    stream = io.StringIO()
    for name in REPOGRAPH_LOGGERS:
        setup_json_logger(name, stream=stream)
    yield stream
    for name in REPOGRAPH_LOGGERS:
        setup_json_logger(name, stream=sys.stderr)


@pytest.fixture
def write_tree(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    def _write(files: dict[str, str]) -> Path:
        root = tmp_path / "repo"
        root.mkdir(parents=True, exist_ok=True)
        for rel, text in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return root

    return _write
