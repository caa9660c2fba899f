from __future__ import annotations

import argparse
import json
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Any

from .config import RepographConfig, load_config
from .cycles import find_cycles, self_imports
from .graph import GraphContext, build_graph
from .scanner import scan_with_config
from .util import (
    generate_request_id,
    get_request_id,
    log_event,
    set_request_id,
    setup_json_logger,
)

_LOG = setup_json_logger("repograph.cli")


def _normalize_global_flags(argv: list[str]) -> list[str]:
    """Allow global flags after the subcommand.

    `argparse` only accepts global args before the subcommand. We normalize
    `repograph cycles --root X ...` into `repograph --root X cycles ...`.
    """
    if not argv:
        return argv

    out = list(argv)
    for flag in ("--config", "--root", "--request-id"):
        if flag in out:
            i = out.index(flag)
            if i + 1 < len(out):
                val = out[i + 1]
                del out[i : i + 2]
                out = [flag, val, *out]
    return out


def _resolve_config(args: argparse.Namespace) -> RepographConfig:
    if args.config:
        cfg = load_config(Path(args.config))
        if args.root:
            cfg = replace(cfg, repo_root=Path(args.root).resolve())
    else:
        cfg = RepographConfig(repo_root=Path(args.root or ".").resolve())
    cfg = cfg.with_cli(args.include, args.exclude)
    if getattr(args, "max_depth", None) is not None:
        cfg = replace(cfg, max_cycle_depth=args.max_depth)
    if getattr(args, "no_verify", False):
        cfg = replace(cfg, verify_cycles=False)
    if getattr(args, "scan_only", False):
        cfg = replace(cfg, scan_only=True)
    if args.verbose:
        cfg = replace(cfg, verbose=True)
    return cfg


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _analyze(cfg: RepographConfig) -> GraphContext:
    file_map = scan_with_config(cfg)
    return build_graph(file_map, cfg)


def cmd_scan(cfg: RepographConfig) -> int:
    file_map = scan_with_config(cfg)
    _emit(
        {
            "root": str(cfg.repo_root),
            "count": len(file_map),
            "files": [
                {"rel_path": rel, "last_modified_ms": entry.last_modified_ms}
                for rel, entry in sorted(file_map.items())
            ],
        }
    )
    return 0


def cmd_graph(cfg: RepographConfig) -> int:
    context = _analyze(cfg)
    payload = context.as_dict()
    payload["self_imports"] = self_imports(context.graph)
    _emit(payload)
    return 0


def cmd_cycles(cfg: RepographConfig, strict: bool) -> int:
    context = _analyze(cfg)
    cycles = find_cycles(context, max_depth=cfg.max_cycle_depth, verify=cfg.verify_cycles)
    selfs = self_imports(context.graph)
    _emit(
        {
            "cycles": [list(c) for c in cycles],
            "self_imports": selfs,
            "occurrences": [
                o.as_dict() for o in context.occurrences if o.kind in {"import-cycle", "self-import"}
            ],
        }
    )
    if strict and (cycles or selfs):
        return 2
    return 0


def _run_command_with_observability(*, command_name: str, fn) -> int:
    started = time.perf_counter()
    log_event(_LOG, "cli.command.start", command=command_name)
    try:
        rc = fn()
    except Exception as exc:
        latency_ms = (time.perf_counter() - started) * 1000.0
        log_event(
            _LOG,
            "cli.command.error",
            command=command_name,
            error=str(exc),
            error_type=type(exc).__name__,
            latency_ms=round(latency_ms, 3),
        )
        raise

    latency_ms = (time.perf_counter() - started) * 1000.0
    log_event(
        _LOG,
        "cli.command.finish",
        command=command_name,
        latency_ms=round(latency_ms, 3),
        status="success" if rc == 0 else "failure",
        exit_code=rc,
    )
    return rc


def main(argv: list[str] | None = None) -> None:
    """Scan a repository, build its dependency graph and report cycles."""
    argv = _normalize_global_flags(argv if argv is not None else sys.argv[1:])
    p = argparse.ArgumentParser(
        prog="repograph", description="Repository file map, dependency graph and cycle report."
    )
    p.add_argument("--config", default=None, help="Path to a JSON or YAML repograph config.")
    p.add_argument("--root", default=None, help="Repository root (overrides repo_root from --config).")
    p.add_argument(
        "--request-id",
        default=None,
        help="Correlation/request identifier for all structured logs.",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--include",
        action="append",
        default=[],
        help="Include patterns, comma or space separated; each occurrence is one AND-group (repeatable).",
    )
    common.add_argument("--exclude", action="append", default=[], help="Exclude glob (repeatable).")
    common.add_argument("--verbose", action="store_true", help="Also report dynamic-usage findings.")

    sub = p.add_subparsers(dest="cmd", required=True)

    sc = sub.add_parser("scan", parents=[common], help="List the files selected by the include/exclude rules.")
    sc.add_argument("--scan-only", action="store_true", help="Do not read file contents.")

    sub.add_parser("graph", parents=[common], help="Build the module dependency graph.")

    cy = sub.add_parser("cycles", parents=[common], help="Report dependency cycles and self-imports.")
    cy.add_argument("--max-depth", type=int, default=None, help="Maximum cycle search depth.")
    cy.add_argument("--no-verify", action="store_true", help="Report cycles without confirming them.")
    cy.add_argument("--strict", action="store_true", help="Exit 2 when any cycle or self-import is found.")

    args = p.parse_args(argv)

    req_id = args.request_id or generate_request_id()
    set_request_id(req_id)
    log_event(_LOG, "cli.request.context", request_id=get_request_id(), command=args.cmd)

    cfg = _resolve_config(args)

    if args.cmd == "scan":
        rc = _run_command_with_observability(command_name=args.cmd, fn=lambda: cmd_scan(cfg))
    elif args.cmd == "graph":
        rc = _run_command_with_observability(command_name=args.cmd, fn=lambda: cmd_graph(cfg))
    elif args.cmd == "cycles":
        rc = _run_command_with_observability(
            command_name=args.cmd,
            fn=lambda: cmd_cycles(cfg, strict=args.strict),
        )
    else:
        raise RuntimeError("unreachable")

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
