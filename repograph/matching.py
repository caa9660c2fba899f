"""Compound include/exclude path matching.

Includes are closed-world: once any include rule is active, a path is kept
only if it satisfies the include spec, and exclude/ignore globs are not
consulted. Excludes are the open-world fallback used when no include is set.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable

GLOB_META = re.compile(r"[\\*?{}\[\]]")
TEST_LIKE_PATTERNS = (
    re.compile(r"(^|/)__(tests|mocks)__(/|$)"),
    re.compile(r"(^|/)tests?(/|$)"),
    re.compile(r"\.(test|spec)\.[^/]+$"),
)
DEFAULT_GUARDED_DIRS = ("node_modules",)


def canon_rel(rel: str) -> str:
    r = rel.replace("\\", "/")
    while r.startswith("./"):
        r = r[2:]
    return r


def has_glob_meta(pattern: str) -> bool:
    return GLOB_META.search(pattern) is not None


def _find_closing(pat: str, start: int, opener: str, closer: str) -> int:
    depth = 0
    for i in range(start, len(pat)):
        if pat[i] == opener:
            depth += 1
        elif pat[i] == closer:
            depth -= 1
            if depth == 0:
                return i
    return -1


def _split_alternatives(body: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current = ""
    for ch in body:
        if ch == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current += ch
    parts.append(current)
    return parts


def _translate(pat: str) -> str:
    out: list[str] = []
    i = 0
    n = len(pat)
    while i < n:
        c = pat[i]
        if c == "*":
            j = i
            while j < n and pat[j] == "*":
                j += 1
            if j - i >= 2 and (i == 0 or pat[i - 1] == "/") and (j == n or pat[j] == "/"):
                if j < n:
                    out.append("(?:.*/)?")
                    i = j + 1
                else:
                    out.append(".*")
                    i = j
                continue
            out.append(".*" if j - i >= 2 else "[^/]*")
            i = j
        elif c == "?":
            out.append("[^/]")
            i += 1
        elif c == "/" and pat[i:] == "/**":
            out.append("(?:/.*)?")
            i = n
        elif c == "[":
            j = pat.find("]", i + 1)
            if j == -1:
                out.append(re.escape(c))
                i += 1
                continue
            body = pat[i + 1 : j].replace("\\", "\\\\")
            if body.startswith("!"):
                body = "^" + body[1:]
            out.append(f"[{body}]")
            i = j + 1
        elif c == "{":
            j = _find_closing(pat, i, "{", "}")
            if j == -1:
                out.append(re.escape(c))
                i += 1
                continue
            alts = _split_alternatives(pat[i + 1 : j])
            out.append("(?:" + "|".join(_translate(a) for a in alts) + ")")
            i = j + 1
        else:
            out.append(re.escape(c))
            i += 1
    return "".join(out)


@lru_cache(maxsize=4096)
def compile_glob(pattern: str) -> re.Pattern[str]:
    return re.compile(_translate(canon_rel(pattern)), re.DOTALL)


def glob_match(rel: str, pattern: str) -> bool:
    if not pattern:
        return False
    return compile_glob(pattern).fullmatch(canon_rel(rel)) is not None


def match_any(rel: str, patterns: Iterable[str]) -> bool:
    return any(glob_match(rel, p) for p in patterns)


def _segment_contains(rel: str, pat: str) -> bool:
    return rel == pat or rel.startswith(f"{pat}/") or f"/{pat}/" in rel or rel.endswith(f"/{pat}")


def match_pattern(rel: str, pattern: str) -> bool:
    """Glob match with the prefix and segment fallbacks used by include rules."""
    if not pattern:
        return False
    if glob_match(rel, pattern):
        return True
    if pattern.endswith("/**"):
        base = pattern[:-3]
        if base and (rel == base or rel.startswith(f"{base}/")):
            return True
    if not has_glob_meta(pattern):
        pat = re.sub(r"/+", "/", canon_rel(pattern)).rstrip("/")
        if not pat:
            return False
        return _segment_contains(rel, pat)
    return False


def base_token(pattern: str) -> str:
    b = pattern.strip()
    if b.startswith("**/"):
        b = b[3:]
    if b.endswith("/**"):
        b = b[:-3]
    b = canon_rel(b)
    return re.sub(r"/+", "/", b).rstrip("/")


def _normalize_patterns(patterns: Iterable[str]) -> tuple[str, ...]:
    out: list[str] = []
    for p in patterns:
        norm = canon_rel(str(p or "").strip())
        if norm:
            out.append(norm)
    return tuple(out)


@dataclass(frozen=True)
class IncludeSpec:
    patterns: tuple[str, ...] = ()
    groups: tuple[tuple[str, ...], ...] = ()

    @classmethod
    def build(
        cls,
        patterns: Iterable[str] | None = None,
        groups: Iterable[Iterable[str]] | None = None,
    ) -> "IncludeSpec":
        norm_groups = tuple(
            g for g in (_normalize_patterns(group) for group in (groups or [])) if g
        )
        return cls(patterns=_normalize_patterns(patterns or []), groups=norm_groups)

    @property
    def active(self) -> bool:
        return bool(self.patterns or self.groups)

    def all_patterns(self) -> list[str]:
        out = list(self.patterns)
        for group in self.groups:
            out.extend(group)
        return out

    @property
    def requests_any_depth(self) -> bool:
        return any(p.startswith("**/") for p in self.all_patterns())

    def names_segment(self, name: str) -> bool:
        rx = re.compile(rf"(^|/){re.escape(name)}(/|$)")
        return any(rx.search(p) for p in self.all_patterns())

    def _group_matches(self, rel: str, group: tuple[str, ...]) -> bool:
        by_base: dict[str, list[str]] = {}
        for p in group:
            by_base.setdefault(base_token(p), []).append(p)
        return all(any(match_pattern(rel, p) for p in variants) for variants in by_base.values())

    def matches(self, rel: str) -> bool:
        rel = canon_rel(rel)
        if self.groups:
            return any(self._group_matches(rel, g) for g in self.groups)
        return any(match_pattern(rel, p) for p in self.patterns)


def matches(rel: str, spec: IncludeSpec) -> bool:
    return spec.matches(rel)


def derive_scan_roots(spec: IncludeSpec) -> list[str]:
    """Literal directory anchors of the include patterns, in first-seen order.

    Anchors that are empty, ``.``, ``**`` or still contain glob metacharacters
    are dropped; callers add the repository root for ``**/`` patterns.
    """
    roots: list[str] = []
    for raw in spec.all_patterns():
        p = canon_rel(raw.strip())
        if not p:
            continue
        if "/**" in p:
            anchor = p[: p.index("/**")]
        elif "/*" in p:
            anchor = p[: p.index("/*")]
        elif "/" in p:
            anchor = p.split("/")[0]
        else:
            anchor = ""
        anchor = re.sub(r"/+", "/", anchor).rstrip("/")
        if anchor and anchor not in {".", "**"} and not has_glob_meta(anchor) and anchor not in roots:
            roots.append(anchor)
    return roots


def is_test_like(rel: str) -> bool:
    rp = canon_rel(rel)
    return any(rx.search(rp) for rx in TEST_LIKE_PATTERNS)


@dataclass(frozen=True)
class PathRules:
    """Everything the scanner needs to decide whether to keep or descend."""

    include: IncludeSpec = field(default_factory=IncludeSpec)
    exclude: tuple[str, ...] = ()
    ignore: tuple[str, ...] = ()
    guarded_dirs: tuple[str, ...] = DEFAULT_GUARDED_DIRS

    def _excluded(self, rel: str) -> bool:
        if self.include.active:
            return False
        return match_any(rel, self.exclude) or match_any(rel, self.ignore)

    def is_guarded(self, rel: str) -> bool:
        parts = canon_rel(rel).split("/")
        for name in self.guarded_dirs:
            if name in parts and not self.include.names_segment(name):
                return True
        return False

    def allows_dir(self, rel: str) -> bool:
        return not self._excluded(rel) and not self.is_guarded(rel)

    def allows_file(self, rel: str) -> bool:
        if self.include.active and not self.include.matches(rel):
            return False
        return not self._excluded(rel)


def split_pattern_list(raw: Iterable[str] | None) -> list[str]:
    out: list[str] = []
    for item in raw or []:
        for token in re.split(r"[\s,]+", item):
            token = token.strip()
            if token and token not in out:
                out.append(token)
    return out


def split_pattern_groups(raw: Iterable[str] | None) -> list[list[str]]:
    groups = [[t for t in re.split(r"[\s,]+", item) if t.strip()] for item in (raw or [])]
    return [g for g in groups if g]


def expand_includes(patterns: Iterable[str]) -> list[str]:
    """Widen literal names so ``src`` also selects ``src/**`` and ``**/src/**``."""
    out: list[str] = []

    def add(p: str) -> None:
        if p not in out:
            out.append(p)

    for p in patterns:
        add(p)
        if not has_glob_meta(p):
            add(f"{p.rstrip('/')}/**")
            if "/" not in p:
                add(f"**/{p}/**")
    return out
