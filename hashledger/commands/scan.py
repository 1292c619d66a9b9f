"""CLI command for hashing filesystem roots into the ledger."""
from __future__ import annotations

import argparse
from argparse import _SubParsersAction
from typing import Optional, Sequence

from ..config import ScannerConfig
from ..scan import rehash_failed, scan_root
from .common import add_common_arguments, load_settings, open_ledger


def _configure_parser(parser: argparse.ArgumentParser) -> None:
    add_common_arguments(parser)
    parser.add_argument("--root", action="append", help="Root path to scan (may repeat; adds to configured roots)")
    parser.add_argument("--algorithm", help="Hash algorithm (default from config, SHA256)")
    parser.add_argument("--max-retries", type=int, help="Retries per file on transient I/O errors")
    parser.add_argument("--reprocess-failed", action="store_true", help="Re-hash paths whose every attempt failed")


def add_parser(subparsers: _SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "scan",
        help="Hash filesystem roots into the ledger",
        description="Walk configured roots and record a hash observation for every file not yet in the ledger.",
    )
    _configure_parser(parser)
    parser.set_defaults(handler=run_from_args)
    return parser


def build_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog or "hashledger scan", description="Hash filesystem roots into the ledger")
    _configure_parser(parser)
    return parser


def run_from_args(args: argparse.Namespace) -> int:
    cfg = load_settings(args)
    updates = {}
    if args.algorithm:
        updates["algorithm"] = args.algorithm
    if args.max_retries is not None:
        updates["max_retries"] = args.max_retries
    scanner_cfg = ScannerConfig(**{**cfg.scanner.model_dump(), **updates})

    roots = list(cfg.roots)
    if args.root:
        roots.extend(args.root)
    if not roots and not args.reprocess_failed:
        raise ValueError("No root paths configured. Provide --root or set roots in the config file.")

    with open_ledger(cfg, args) as ledger:
        for root in roots:
            print(f"[RUN] scanning root: {root}")
            stats = scan_root(root, ledger, scanner_cfg, quiet=args.quiet)
            print(
                f"  hashed={stats.hashed:,} skipped={stats.skipped_existing:,} "
                f"failed={stats.failed:,} retries={stats.retries:,}"
            )
        if args.reprocess_failed:
            stats = rehash_failed(ledger, scanner_cfg, quiet=args.quiet)
            print(f"[RUN] reprocessed failed paths: hashed={stats.hashed:,} still failing={stats.failed:,}")
    return 0


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return run_from_args(args)


__all__ = ["add_parser", "build_parser", "run_cli", "run_from_args"]
