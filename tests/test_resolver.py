from __future__ import annotations

from repograph.models import NodeKey
from repograph.resolver import candidate_paths, resolve_module, resolve_python_module


def test_relative_specifier_round_trip() -> None:
    res = resolve_module("./x", "a/b.ts", {"a/x.ts", "a/b.ts"})
    assert res.key == NodeKey.internal("a/x.ts")
    assert res.exists


def test_external_specifier_is_kept_verbatim() -> None:
    res = resolve_module("lodash/fp", "a/b.ts", {"a/b.ts"})
    assert res.key == NodeKey.external("lodash/fp")
    assert not res.key.is_internal
    assert res.exists


def test_js_specifier_lands_on_typescript_source() -> None:
    assert resolve_module("./x.js", "a/b.ts", {"a/x.ts"}).key.name == "a/x.ts"
    assert resolve_module("./x.js", "a/b.ts", {"a/x.tsx"}).key.name == "a/x.tsx"


def test_verbatim_candidate_wins() -> None:
    assert resolve_module("./x.js", "a/b.ts", {"a/x.js", "a/x.ts"}).key.name == "a/x.js"


def test_jsx_swap_order() -> None:
    assert candidate_paths("a/x.jsx") == ["a/x.jsx", "a/x.tsx", "a/x.ts"]


def test_extensionless_specifier_tries_index_files() -> None:
    res = resolve_module("../util", "src/core/a.ts", {"src/util/index.ts"})
    assert res.key == NodeKey.internal("src/util/index.ts")
    assert res.exists
    assert resolve_module("./types", "src/a.ts", {"src/types.d.ts"}).key.name == "src/types.d.ts"


def test_missing_target_keeps_normalized_path() -> None:
    res = resolve_module("./gone", "src/a.ts", {"src/a.ts"})
    assert res.key == NodeKey.internal("src/gone")
    assert not res.exists


def test_without_known_files_resolution_is_optimistic() -> None:
    res = resolve_module("./x/../y", "a/b.ts")
    assert res.key == NodeKey.internal("a/y")
    assert res.exists


def test_root_absolute_specifier_is_repo_relative() -> None:
    res = resolve_module("/src/x", "lib/a.ts", {"src/x.ts"})
    assert res.key == NodeKey.internal("src/x.ts")


def test_climbing_above_root_never_exists() -> None:
    res = resolve_module("../../x", "a/b.ts")
    assert res.key == NodeKey.internal("../x")
    assert not res.exists


def test_python_relative_import() -> None:
    known = {"pkg/__init__.py", "pkg/a.py", "pkg/sub/b.py", "pkg/sub/__init__.py"}
    res = resolve_python_module("a", 2, "thing", "pkg/sub/b.py", known)
    assert res.key == NodeKey.internal("pkg/a.py")
    res = resolve_python_module(None, 1, "b", "pkg/sub/__init__.py", known)
    assert res.key == NodeKey.internal("pkg/sub/b.py")
    res = resolve_python_module("missing", 1, "x", "pkg/a.py", known)
    assert not res.exists


def test_python_absolute_import_inside_and_outside_repo() -> None:
    known = {"src/app/__init__.py", "src/app/core.py"}
    assert resolve_python_module("app.core", 0, None, "src/app/__init__.py", known).key == NodeKey.internal(
        "src/app/core.py"
    )
    assert resolve_python_module("app", 0, "core", "x.py", known).key == NodeKey.internal("src/app/core.py")
    ext = resolve_python_module("yaml", 0, None, "src/app/core.py", known)
    assert ext.key == NodeKey.external("yaml")
