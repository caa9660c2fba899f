"""Module specifier resolution.

Maps a raw ``import``/``require`` specifier and the file it appears in to a
canonical :class:`NodeKey`. Relative and root-absolute specifiers become
internal keys (normalized repo-relative paths); bare names are external and
kept verbatim. When the set of known files is supplied, extension-swap
candidates are tried in a fixed priority order so that ``./x.js`` written in
a TypeScript source lands on ``x.ts``.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import AbstractSet

from .models import NodeKey

JS_RUNTIME_EXTS = (".js", ".mjs", ".cjs")
SOURCE_EXTS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")
BARE_CANDIDATE_SUFFIXES = (
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    ".mjs",
    ".cjs",
    ".d.ts",
    "/index.ts",
    "/index.tsx",
    "/index.js",
    "/index.mjs",
    "/index.cjs",
)
PYTHON_SOURCE_ROOTS = ("", "src/")


@dataclass(frozen=True)
class Resolution:
    key: NodeKey
    exists: bool


def normalize_posix(p: str) -> str:
    return posixpath.normpath((p or "").replace("\\", "/"))


def is_external_specifier(specifier: str) -> bool:
    return not specifier.startswith((".", "/"))


def candidate_paths(target: str) -> list[str]:
    """Ordered extension-swap candidates for *target* (the verbatim path first)."""
    base, ext = posixpath.splitext(target)
    out = [target]
    if ext in JS_RUNTIME_EXTS:
        out += [f"{base}.ts", f"{base}.tsx", f"{base}.js", f"{base}.mjs", f"{base}.cjs"]
    elif ext == ".jsx":
        out += [f"{base}.tsx", f"{base}.ts", f"{base}.jsx"]
    elif ext not in SOURCE_EXTS:
        # no extension, or a dotted stem such as ``./foo.config``
        out += [f"{target}{suffix}" for suffix in BARE_CANDIDATE_SUFFIXES]
    seen: list[str] = []
    for c in out:
        n = normalize_posix(c)
        if n not in seen:
            seen.append(n)
    return seen


def resolve_existing(target: str, known_files: AbstractSet[str]) -> str:
    """First candidate present in *known_files*, else the normalized target."""
    for cand in candidate_paths(target):
        if cand in known_files:
            return cand
    return normalize_posix(target)


def resolve_module(
    specifier: str,
    from_rel_path: str,
    known_files: AbstractSet[str] | None = None,
) -> Resolution:
    if is_external_specifier(specifier):
        return Resolution(NodeKey.external(specifier), True)

    if specifier.startswith("/"):
        joined = normalize_posix(specifier).lstrip("/") or "."
    else:
        from_dir = posixpath.dirname(normalize_posix(from_rel_path))
        joined = normalize_posix(posixpath.join(from_dir, specifier))

    if joined == ".." or joined.startswith("../"):
        return Resolution(NodeKey.internal(joined), False)
    if known_files is None:
        return Resolution(NodeKey.internal(joined), True)
    resolved = resolve_existing(joined, known_files)
    return Resolution(NodeKey.internal(resolved), resolved in known_files)


def _python_candidates(parts: list[str], prefix: str = "") -> list[str]:
    stem = prefix + "/".join(parts) if parts else prefix.rstrip("/")
    if not stem:
        return []
    return [f"{stem}.py", f"{stem}/__init__.py"]


def resolve_python_module(
    module: str | None,
    level: int,
    name: str | None,
    from_rel_path: str,
    known_files: AbstractSet[str] | None = None,
) -> Resolution:
    """Resolve ``import module`` / ``from (.*level)module import name``.

    Relative imports climb ``level - 1`` packages from the importing file's
    package; absolute imports are looked up from the repository root and from
    a ``src/`` layout root, and are external when no known file matches.
    """
    module_parts = [p for p in (module or "").split(".") if p]
    name_parts = [p for p in (name or "").split(".") if p and p != "*"]

    if level > 0:
        base = posixpath.dirname(normalize_posix(from_rel_path)) or "."
        base = normalize_posix(posixpath.join(base, *([".."] * (level - 1))))
        prefix = "" if base == "." else f"{base}/"
        candidates = _python_candidates(module_parts + name_parts, prefix)
        if name_parts:
            candidates += _python_candidates(module_parts, prefix)
        candidates = [normalize_posix(c) for c in candidates]
        first = candidates[0] if candidates else base
        if base == ".." or base.startswith("../"):
            return Resolution(NodeKey.internal(first), False)
        if known_files is None:
            return Resolution(NodeKey.internal(first), True)
        for cand in candidates:
            if cand in known_files:
                return Resolution(NodeKey.internal(cand), True)
        return Resolution(NodeKey.internal(first), False)

    dotted = ".".join(module_parts) or ".".join(name_parts)
    if known_files is not None:
        for root in PYTHON_SOURCE_ROOTS:
            candidates = []
            if module_parts and name_parts:
                candidates += _python_candidates(module_parts + name_parts, root)
            candidates += _python_candidates(module_parts or name_parts, root)
            for cand in candidates:
                if cand in known_files:
                    return Resolution(NodeKey.internal(cand), True)
    return Resolution(NodeKey.external(dotted), True)
