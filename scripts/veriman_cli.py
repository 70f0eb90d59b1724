#!/usr/bin/env python3
"""thin wrapper around main.py with bound presets"""

from __future__ import annotations

import argparse
import os
import subprocess
import sys
from typing import Dict, List

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
PYTHON = sys.executable or "python3"


PROFILE_PRESETS: Dict[str, Dict[str, object]] = {
    "quick": {
        "description": "bound 2, short back-end timeout",
        "flags": ["--tx-bound", "2"],
        "env": {"VERIMAN_BACKEND_TIMEOUT": "120"},
    },
    "standard": {
        "description": "bound 5, default timeout",
        "flags": ["--tx-bound", "5"],
        "env": {"VERIMAN_BACKEND_TIMEOUT": "600"},
    },
    "deep": {
        "description": "bound 10, modular arithmetic, long timeout",
        "flags": ["--tx-bound", "10", "--modular-arithmetic"],
        "env": {"VERIMAN_BACKEND_TIMEOUT": "3600"},
    },
}


def build_command(args: argparse.Namespace) -> List[str]:
    cmd = [PYTHON, os.path.join(PROJECT_ROOT, "main.py"), "--config", args.config]
    cmd.extend(["--format", args.format])
    for predicate in args.predicate or []:
        cmd.extend(["--predicate", predicate])
    if args.no_cleanup:
        cmd.append("--no-cleanup")
    if args.verbose:
        cmd.append("--verbose")
    return cmd


def apply_profile_args(cmd: List[str], env: Dict[str, str], profile: str) -> None:
    preset = PROFILE_PRESETS.get(profile)
    if not preset:
        raise ValueError(f"Unknown profile '{profile}'")
    cmd.extend(preset.get("flags", []))
    env.update({k: str(v) for k, v in preset.get("env", {}).items()})


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="VeriMan runner with bound presets.")
    parser.add_argument("config", nargs="?", help="json configuration file")
    parser.add_argument("--profile", choices=list(PROFILE_PRESETS.keys()), default="standard", help="run profile")
    parser.add_argument("--format", "-f", choices=["text", "json", "sarif"], default="text", help="report format")
    parser.add_argument("--predicate", "-p", action="append", help="override predicates (repeatable)")
    parser.add_argument("--no-cleanup", action="store_true", help="keep the working directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug output")
    parser.add_argument("--dry-run", action="store_true", help="print command without executing")
    parser.add_argument("--list-profiles", action="store_true", help="show available profiles")
    return parser.parse_args(argv)


def list_profiles() -> None:
    print("Available profiles:")
    for name, preset in PROFILE_PRESETS.items():
        print(f"  {name:<9} {preset.get('description', '')}")


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.list_profiles:
        list_profiles()
        return 0
    if not args.config:
        raise SystemExit("error: config path required unless --list-profiles is used")

    env = os.environ.copy()
    cmd = build_command(args)
    apply_profile_args(cmd, env, args.profile)

    if args.dry_run:
        print("Command:", " ".join(cmd))
        print("Env overrides:", {k: env[k] for k in ("VERIMAN_BACKEND_TIMEOUT",) if k in env})
        return 0

    print(f"[veriman-cli] Running ({args.profile} profile):", " ".join(cmd), file=sys.stderr)
    return subprocess.run(cmd, env=env).returncode


if __name__ == "__main__":
    sys.exit(main())
