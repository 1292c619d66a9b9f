"""CLI command for listing paths whose every hash attempt failed."""
from __future__ import annotations

import argparse
from argparse import _SubParsersAction
from typing import Optional, Sequence

from .common import add_common_arguments, load_settings, open_ledger


def add_parser(subparsers: _SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "failed",
        help="List paths whose hashing failed",
        description="List every path whose observations all have a null hash.",
    )
    add_common_arguments(parser)
    parser.set_defaults(handler=run_from_args)
    return parser


def build_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog or "hashledger failed", description="List paths whose hashing failed")
    add_common_arguments(parser)
    return parser


def run_from_args(args: argparse.Namespace) -> int:
    cfg = load_settings(args)
    with open_ledger(cfg, args) as ledger:
        paths = ledger.get_failed_file_paths()
    for path in paths:
        print(path)
    if not args.quiet:
        print(f"{len(paths):,} failed paths")
    return 0


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return run_from_args(args)


__all__ = ["add_parser", "build_parser", "run_cli", "run_from_args"]
