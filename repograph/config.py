from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterable

import jsonschema
import yaml

from .matching import (
    DEFAULT_GUARDED_DIRS,
    IncludeSpec,
    PathRules,
    expand_includes,
    split_pattern_groups,
    split_pattern_list,
)
from .util import read_json

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "repograph.config.schema.json"
YAML_SUFFIXES = {".yml", ".yaml"}

DEFAULT_IGNORE_GLOBS = (
    "**/node_modules/**",
    ".pnpm/**",
    "out/**",
    "**/dist/**",
    "**/build/**",
    "**/coverage/**",
    "**/.turbo/**",
    "**/.vercel/**",
    "**/.expo/**",
    "**/.parcel-cache/**",
    "**/.git/**",
    "**/*.log",
    "**/*.lock",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
)
DEFAULT_MAX_CYCLE_DEPTH = 5
DEFAULT_MAX_WORKERS = 8
DEFAULT_FILE_TIMEOUT_S = 10.0


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class RepographConfig:
    repo_root: Path
    include: tuple[str, ...] = ()
    include_groups: tuple[tuple[str, ...], ...] = ()
    exclude: tuple[str, ...] = ()
    ignore: tuple[str, ...] = DEFAULT_IGNORE_GLOBS
    guarded_dirs: tuple[str, ...] = DEFAULT_GUARDED_DIRS
    max_cycle_depth: int = DEFAULT_MAX_CYCLE_DEPTH
    verify_cycles: bool = True
    scan_only: bool = False
    verbose: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS
    file_timeout_s: float = DEFAULT_FILE_TIMEOUT_S

    def include_spec(self) -> IncludeSpec:
        return IncludeSpec.build(
            expand_includes(self.include),
            [expand_includes(group) for group in self.include_groups],
        )

    def rules(self) -> PathRules:
        return PathRules(
            include=self.include_spec(),
            exclude=self.exclude,
            ignore=self.ignore,
            guarded_dirs=self.guarded_dirs,
        )

    def with_cli(
        self,
        include_args: Iterable[str] | None = None,
        exclude_args: Iterable[str] | None = None,
    ) -> "RepographConfig":
        """Apply command-line filters; each ``--include`` occurrence is one AND-group."""
        out = self
        include_args = list(include_args or [])
        if include_args:
            out = replace(
                out,
                include=tuple(split_pattern_list(include_args)),
                include_groups=tuple(tuple(g) for g in split_pattern_groups(include_args)),
            )
        exclude_list = split_pattern_list(exclude_args)
        if exclude_list:
            out = replace(out, exclude=tuple(exclude_list))
        return out


def _load_raw(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    try:
        if path.suffix.lower() in YAML_SUFFIXES:
            return yaml.safe_load(text) or {}
        return json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError(f"malformed config {path}: {exc}") from exc


def _str_tuple(raw: dict[str, Any], key: str) -> tuple[str, ...] | None:
    if key not in raw:
        return None
    return tuple(str(v) for v in raw[key])


def load_config(path: Path) -> RepographConfig:
    raw = _load_raw(path)
    schema = read_json(SCHEMA_PATH)
    try:
        jsonschema.validate(instance=raw, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ConfigError(f"invalid config {path}: {exc.message}") from exc

    # repo_root is resolved relative to the config file's directory
    base_dir = path.parent.resolve()
    rr = Path(str(raw.get("repo_root", ".")))
    repo_root = (base_dir / rr).resolve() if not rr.is_absolute() else rr.resolve()

    cfg = RepographConfig(
        repo_root=repo_root,
        include=_str_tuple(raw, "include") or (),
        include_groups=tuple(tuple(str(p) for p in g) for g in raw.get("include_groups", [])),
        exclude=_str_tuple(raw, "exclude") or (),
        max_cycle_depth=int(raw.get("max_cycle_depth", DEFAULT_MAX_CYCLE_DEPTH)),
        verify_cycles=bool(raw.get("verify_cycles", True)),
        scan_only=bool(raw.get("scan_only", False)),
        verbose=bool(raw.get("verbose", False)),
        max_workers=int(raw.get("max_workers", DEFAULT_MAX_WORKERS)),
        file_timeout_s=float(raw.get("file_timeout_s", DEFAULT_FILE_TIMEOUT_S)),
    )
    guarded = _str_tuple(raw, "guarded_dirs")
    if guarded is not None:
        cfg = replace(cfg, guarded_dirs=guarded)
    return cfg
