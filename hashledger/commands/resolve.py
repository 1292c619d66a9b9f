"""CLI command for moving or copying duplicate files out of place."""
from __future__ import annotations

import argparse
from argparse import _SubParsersAction
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from ..config import OrderRule, PreserveRule, ResolverConfig
from ..resolver import DuplicateResolver
from .common import add_common_arguments, load_settings, open_ledger


def _configure_parser(parser: argparse.ArgumentParser) -> None:
    add_common_arguments(parser)
    parser.add_argument("--destination", help="Folder that receives relocated duplicates (mirrors source paths)")
    parser.add_argument("--algorithm", help="Only resolve groups hashed with this algorithm")
    parser.add_argument("--preserve-by", choices=[r.value for r in PreserveRule], help="Which group member stays in place")
    parser.add_argument("--order-by", choices=[r.value for r in OrderRule], help="Order in which groups are processed")
    parser.add_argument("--descending", action="store_true", default=None, help="Process groups in descending order")
    parser.add_argument("--row-filter", action="append", help="Per-file filter clause, e.g. \"FilePath LIKE 'C:%%'\" (may repeat)")
    parser.add_argument("--group-filter", action="append", help="Per-group filter clause, e.g. \"FileCount > 2\" (may repeat)")
    parser.add_argument("--max-files", type=int, help="Stop after relocating this many files (-1 for no limit)")
    parser.add_argument("--copy", action="store_true", default=None, help="Copy duplicates instead of moving them")
    parser.add_argument("--halt-on-error", action="store_true", default=None, help="Stop the run at the first relocation error")
    parser.add_argument("--reprocess", action="store_true", default=None, help="Include paths already recorded as moved")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Plan relocations without touching disk or ledger")
    parser.add_argument("--allow-raw-filters", action="store_true", default=None, help="Pass clauses that do not parse through as raw SQL (trusted input only)")


def add_parser(subparsers: _SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "resolve",
        help="Relocate duplicate files",
        description="Keep one file per duplicate group and move (or copy) the rest under a destination folder.",
    )
    _configure_parser(parser)
    parser.set_defaults(handler=run_from_args)
    return parser


def build_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog or "hashledger resolve", description="Relocate duplicate files")
    _configure_parser(parser)
    return parser


def resolver_config_from_args(base: ResolverConfig, args: argparse.Namespace) -> ResolverConfig:
    updates: Dict[str, Any] = {}
    # Only a destination typed on the command line is taken relative to the cwd.
    if args.destination:
        updates["destination"] = str(Path(args.destination).expanduser().resolve())
    elif base.destination:
        updates["destination"] = str(Path(base.destination).expanduser())
    for arg_name, field_name in (
        ("algorithm", "algorithm"),
        ("preserve_by", "preserve_by"),
        ("order_by", "order_by"),
        ("descending", "descending"),
        ("max_files", "max_files"),
        ("copy", "copy_files"),
        ("halt_on_error", "halt_on_error"),
        ("reprocess", "reprocess"),
        ("dry_run", "dry_run"),
        ("allow_raw_filters", "allow_raw_filters"),
    ):
        value = getattr(args, arg_name, None)
        if value is not None:
            updates[field_name] = value
    if args.row_filter:
        updates["row_filters"] = list(base.row_filters) + list(args.row_filter)
    if args.group_filter:
        updates["group_filters"] = list(base.group_filters) + list(args.group_filter)
    return ResolverConfig(**{**base.model_dump(), **updates})


def run_from_args(args: argparse.Namespace) -> int:
    cfg = load_settings(args)
    resolver_cfg = resolver_config_from_args(cfg.resolver, args)
    if not resolver_cfg.destination:
        raise ValueError("No destination configured. Provide --destination or set resolver.destination.")

    with open_ledger(cfg, args) as ledger:
        resolver = DuplicateResolver(ledger, resolver_cfg, quiet=args.quiet)
        stats = resolver.run()

    relocated_mb = stats.bytes_relocated / float(1024**2)
    print("\n" + "=" * 70)
    print("DUPLICATE RESOLUTION SUMMARY" + (" (DRY RUN)" if resolver_cfg.dry_run else ""))
    print("=" * 70)
    print(f"Duplicate groups:      {stats.groups_seen:>10,}")
    print(f"Groups modified:       {stats.groups_modified:>10,}")
    print(f"Files relocated:       {stats.files_relocated:>10,}")
    print(f"Files missing:         {stats.files_missing:>10,}")
    print(f"Files failed:          {stats.files_failed:>10,}")
    print(f"Data relocated:        {relocated_mb:>10.2f} MB")
    if stats.budget_exhausted:
        print(f"Stopped at max files:  {resolver_cfg.max_files:>10,}")
    print("=" * 70)
    if stats.errors:
        print("\nErrors encountered (showing up to 5):")
        for err in stats.errors[:5]:
            print(f"  - {err}")
        if len(stats.errors) > 5:
            print(f"  - ... {len(stats.errors) - 5} more issues")
    return 0


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return run_from_args(args)


__all__ = ["add_parser", "build_parser", "resolver_config_from_args", "run_cli", "run_from_args"]
