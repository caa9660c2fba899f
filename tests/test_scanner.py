from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from repograph.config import RepographConfig
from repograph.matching import IncludeSpec, PathRules
from repograph.models import CancelToken, EventKind
from repograph.scanner import ScanOptions, iter_scan, scan_repository, scan_with_config

TREE = {
    "src/a.ts": "import { b } from './b';\n",
    "src/b.ts": "export const b = 1;\n",
    "src/util/index.ts": "export {};\n",
    "src/__tests__/a.test.ts": "test('x', () => {});\n",
    "src/a.spec.ts": "describe('a', () => {});\n",
    "lib/c.js": "module.exports = {};\n",
    "node_modules/pkg/index.js": "module.exports = 1;\n",
    "dist/out.js": "console.log(1);\n",
    "README.md": "# repo\n",
}


def test_default_scan_skips_tests_guarded_and_ignored_dirs(write_tree) -> None:
    root = write_tree(TREE)
    file_map = scan_with_config(RepographConfig(repo_root=root))
    assert set(file_map) == {"README.md", "lib/c.js", "src/a.ts", "src/b.ts", "src/util/index.ts"}
    assert file_map["src/b.ts"].content == "export const b = 1;\n"
    assert file_map["src/b.ts"].full_path == str((root / "src" / "b.ts").resolve())


def test_rel_paths_are_normalized(write_tree) -> None:
    root = write_tree(TREE)
    file_map = scan_with_config(RepographConfig(repo_root=root))
    for rel, entry in file_map.items():
        assert rel == entry.rel_path
        assert "\\" not in rel
        assert not rel.startswith(("../", "./", "/"))


def test_scan_is_idempotent(write_tree) -> None:
    root = write_tree(TREE)
    cfg = RepographConfig(repo_root=root)
    first = scan_with_config(cfg)
    second = scan_with_config(cfg)
    assert first == second


def test_include_closes_the_world(write_tree) -> None:
    root = write_tree(TREE)
    cfg = RepographConfig(repo_root=root).with_cli(["src"])
    file_map = scan_with_config(cfg)
    assert set(file_map) == {"src/a.ts", "src/b.ts", "src/util/index.ts"}


def test_exclude_applies_without_include(write_tree) -> None:
    root = write_tree(TREE)
    cfg = RepographConfig(repo_root=root).with_cli(exclude_args=["src/util/**"])
    assert "src/util/index.ts" not in scan_with_config(cfg)


def test_scan_only_skips_content(write_tree) -> None:
    root = write_tree(TREE)
    file_map = scan_with_config(RepographConfig(repo_root=root, scan_only=True))
    assert file_map
    assert all(entry.content is None for entry in file_map.values())
    assert all(entry.last_modified_ms > 0 for entry in file_map.values())


def test_custom_predicate_filters_files_and_dirs(write_tree) -> None:
    root = write_tree(TREE)
    options = ScanOptions(predicate=lambda rel, is_dir: (rel != "lib") if is_dir else rel.endswith((".ts", ".js")))
    file_map = scan_repository(root, PathRules(), options)
    assert set(file_map) == {"dist/out.js", "src/a.ts", "src/b.ts", "src/util/index.ts"}


def test_iter_scan_yields_directory_then_file_events(write_tree) -> None:
    root = write_tree({"a.ts": "", "pkg/b.ts": ""})
    events = list(iter_scan(root))
    assert events[0].kind == EventKind.DIRECTORY
    assert events[0].path == "."
    files = [e.path for e in events if e.kind == EventKind.FILE]
    assert files == ["a.ts", "pkg/b.ts"]
    dirs = [e.path for e in events if e.kind == EventKind.DIRECTORY]
    assert dirs == [".", "pkg"]


def test_cancel_stops_the_walk(write_tree) -> None:
    root = write_tree({"a.ts": "", "b.ts": "", "c.ts": "", "sub/d.ts": ""})
    token = CancelToken()

    def on_progress(event) -> None:
        if event.kind == EventKind.FILE:
            token.cancel()

    file_map = scan_repository(root, PathRules(), ScanOptions(on_progress=on_progress, cancel=token))
    assert list(file_map) == ["a.ts"]


def test_missing_include_root_is_an_error_event(write_tree, log_stream) -> None:
    root = write_tree({"src/a.ts": ""})
    rules = PathRules(include=IncludeSpec.build(["missing/**"]))
    assert scan_repository(root, rules) == {}
    events = [json.loads(line) for line in log_stream.getvalue().splitlines()]
    errors = [e for e in events if e["event"] == "scan.entry.error"]
    assert errors
    assert errors[0]["path"] == "missing"
    assert errors[0]["level"] == "WARNING"
    complete = [e for e in events if e["event"] == "scan.complete"]
    assert complete[0]["files"] == 0
    assert complete[0]["errors"] == 1


def test_anchored_include_starts_below_root(write_tree) -> None:
    root = write_tree({"src/a.ts": "", "other/src/b.ts": ""})
    rules = PathRules(include=IncludeSpec.build(["src/**/*.ts"]))
    assert set(scan_repository(root, rules)) == {"src/a.ts"}


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlinked_directories_are_not_followed(write_tree) -> None:
    root = write_tree({"src/a.ts": ""})
    os.symlink(root / "src", root / "linked", target_is_directory=True)
    assert set(scan_repository(root)) == {"src/a.ts"}


def test_file_map_entries_survive_rescan_after_change(write_tree) -> None:
    root = write_tree({"src/a.ts": "one"})
    first = scan_repository(root)
    Path(root / "src" / "a.ts").write_text("two", encoding="utf-8")
    second = scan_repository(root)
    assert set(first) == set(second)
    assert second["src/a.ts"].content == "two"


def test_include_root_that_is_a_file_is_scanned_directly(write_tree) -> None:
    root = write_tree({"src/a.ts": "x", "src/b.ts": "y"})
    rules = PathRules(include=IncludeSpec.build(["src/a.ts/**"]))
    file_map = scan_repository(root, rules)
    assert set(file_map) == {"src/a.ts"}
    assert file_map["src/a.ts"].content == "x"
