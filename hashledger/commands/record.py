"""CLI command for recording a single file hash."""
from __future__ import annotations

import argparse
from argparse import _SubParsersAction
from pathlib import Path
from typing import Optional, Sequence

from ..config import ScannerConfig
from ..scan import ScanStats, hash_with_retries
from .common import add_common_arguments, load_settings, open_ledger


def _configure_parser(parser: argparse.ArgumentParser) -> None:
    add_common_arguments(parser)
    parser.add_argument("path", help="File to record")
    parser.add_argument("--hash", dest="file_hash", help="Known digest (computed from the file when omitted)")
    parser.add_argument("--algorithm", help="Hash algorithm (default from config, SHA256)")
    parser.add_argument("--size", type=int, help="File size in bytes (read from disk when omitted)")


def add_parser(subparsers: _SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "record",
        help="Record one file hash in the ledger",
        description="Record a hash observation for a single path; existing observations are left untouched.",
    )
    _configure_parser(parser)
    parser.set_defaults(handler=run_from_args)
    return parser


def build_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog or "hashledger record", description="Record one file hash in the ledger")
    _configure_parser(parser)
    return parser


def run_from_args(args: argparse.Namespace) -> int:
    cfg = load_settings(args)
    scanner_cfg = cfg.scanner
    if args.algorithm:
        scanner_cfg = ScannerConfig(**{**scanner_cfg.model_dump(), "algorithm": args.algorithm})

    path = Path(args.path).resolve()
    size = args.size
    if size is None and path.exists():
        size = path.stat().st_size

    digest = args.file_hash
    if digest is None:
        digest = hash_with_retries(path, scanner_cfg, ScanStats(), print)

    with open_ledger(cfg, args) as ledger:
        recorded = ledger.log_file_hash(digest, scanner_cfg.algorithm, path, size)

    if not recorded:
        print(f"Already recorded: {path}")
    elif digest is None:
        print(f"Recorded failed attempt: {path}")
    else:
        print(f"Recorded {scanner_cfg.algorithm} {digest} {path}")
    return 0


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return run_from_args(args)


__all__ = ["add_parser", "build_parser", "run_cli", "run_from_args"]
