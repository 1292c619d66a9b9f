"""CLI command for listing duplicate groups."""
from __future__ import annotations

import argparse
from argparse import _SubParsersAction
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from ..filters import compile_filters
from .common import add_common_arguments, load_settings, open_ledger


def _fmt_ms(value: Optional[int]) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat(timespec="seconds")


def _configure_parser(parser: argparse.ArgumentParser) -> None:
    add_common_arguments(parser)
    parser.add_argument("--filter", action="append", help="Group filter clause, e.g. \"FileCount > 2\" (may repeat)")
    parser.add_argument("--limit", type=int, default=100, help="Maximum groups to list (-1 for all)")
    parser.add_argument("--all", action="store_true", help="Include single-file groups")
    parser.add_argument("--allow-raw-filters", action="store_true", help="Pass clauses that do not parse through as raw SQL (trusted input only)")


def add_parser(subparsers: _SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "groups",
        help="List duplicate groups",
        description="List (hash, algorithm) groups recorded in the ledger, optionally filtered.",
    )
    _configure_parser(parser)
    parser.set_defaults(handler=run_from_args)
    return parser


def build_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog or "hashledger groups", description="List duplicate groups")
    _configure_parser(parser)
    return parser


def run_from_args(args: argparse.Namespace) -> int:
    cfg = load_settings(args)
    clauses: List[str] = [] if args.all else ["FileCount > 1"]
    clauses.extend(args.filter or [])
    compiled = compile_filters(clauses, "group", allow_raw=args.allow_raw_filters, log_cb=print)

    with open_ledger(cfg, args) as ledger:
        groups = ledger.get_file_hashes(args.limit, compiled)

    print("\n" + "=" * 70)
    print(f"DUPLICATE GROUPS ({len(groups):,} shown)")
    print("=" * 70)
    for i, group in enumerate(groups, 1):
        size_mb = (group.max_file_size or 0) / (1024**2)
        print(f"\n#{i} - {group.file_count} files × {size_mb:.2f} MB | {group.algorithm} {group.hash[:16]}...")
        print(f"    Processed: {_fmt_ms(group.min_processed_at)} .. {_fmt_ms(group.max_processed_at)}")
        for path in group.file_paths:
            print(f"      - {path}")
    return 0


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return run_from_args(args)


__all__ = ["add_parser", "build_parser", "run_cli", "run_from_args"]
