from __future__ import annotations

import json
from pathlib import Path

import pytest

from repograph.config import (
    DEFAULT_IGNORE_GLOBS,
    ConfigError,
    RepographConfig,
    load_config,
)


def test_load_json_config_resolves_repo_root(tmp_path: Path) -> None:
    cfg_dir = tmp_path / "configs"
    cfg_dir.mkdir()
    (tmp_path / "repo").mkdir()
    cfg_path = cfg_dir / "repograph.json"
    cfg_path.write_text(
        json.dumps(
            {
                "repo_root": "../repo",
                "include": ["src"],
                "include_groups": [["src", "core"]],
                "max_cycle_depth": 7,
                "verify_cycles": False,
                "guarded_dirs": ["node_modules", "vendor"],
            }
        ),
        encoding="utf-8",
    )
    cfg = load_config(cfg_path)
    assert cfg.repo_root == (tmp_path / "repo").resolve()
    assert cfg.include == ("src",)
    assert cfg.include_groups == (("src", "core"),)
    assert cfg.max_cycle_depth == 7
    assert cfg.verify_cycles is False
    assert cfg.guarded_dirs == ("node_modules", "vendor")
    assert cfg.ignore == DEFAULT_IGNORE_GLOBS


def test_load_yaml_config(tmp_path: Path) -> None:
    cfg_path = tmp_path / "repograph.yml"
    cfg_path.write_text("exclude:\n  - '**/*.gen.ts'\nscan_only: true\nmax_workers: 2\n", encoding="utf-8")
    cfg = load_config(cfg_path)
    assert cfg.repo_root == tmp_path.resolve()
    assert cfg.exclude == ("**/*.gen.ts",)
    assert cfg.scan_only is True
    assert cfg.max_workers == 2


def test_empty_yaml_uses_defaults(tmp_path: Path) -> None:
    cfg_path = tmp_path / "repograph.yaml"
    cfg_path.write_text("", encoding="utf-8")
    cfg = load_config(cfg_path)
    assert cfg.max_cycle_depth == 5
    assert cfg.verify_cycles is True


def test_unknown_key_is_rejected(tmp_path: Path) -> None:
    cfg_path = tmp_path / "repograph.json"
    cfg_path.write_text(json.dumps({"max_depth": 3}), encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid config"):
        load_config(cfg_path)


def test_wrong_type_is_rejected_as_value_error(tmp_path: Path) -> None:
    cfg_path = tmp_path / "repograph.json"
    cfg_path.write_text(json.dumps({"max_cycle_depth": "deep"}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(cfg_path)


def test_malformed_and_missing_config(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError, match="malformed config"):
        load_config(bad)
    with pytest.raises(ConfigError, match="cannot read config"):
        load_config(tmp_path / "absent.json")


def test_with_cli_overrides_filters(tmp_path: Path) -> None:
    cfg = RepographConfig(repo_root=tmp_path, include=("lib",), exclude=("a/**",))
    out = cfg.with_cli(["src,core", "test"], ["dist/**"])
    assert out.include == ("src", "core", "test")
    assert out.include_groups == (("src", "core"), ("test",))
    assert out.exclude == ("dist/**",)
    assert cfg.with_cli([], []) == cfg


def test_include_spec_expands_literal_names(tmp_path: Path) -> None:
    spec = RepographConfig(repo_root=tmp_path, include_groups=(("src", "core"),)).include_spec()
    assert spec.groups == (("src", "src/**", "**/src/**", "core", "core/**", "**/core/**"),)
    assert spec.matches("src/core/a.ts")
    assert not spec.matches("src/a.ts")
