"""Arguments and setup shared by every subcommand."""
from __future__ import annotations

import argparse
from pathlib import Path

from ..config import HashLedgerConfig, load_config
from ..ledger import HashLedger

DEFAULT_CONFIG = "config/hashledger.yaml"


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="Ledger configuration file (defaults apply when missing)")
    parser.add_argument("--db", help="Explicit path to the ledger SQLite database")
    parser.add_argument("--quiet", action="store_true", help="Suppress progress log lines")


def load_settings(args: argparse.Namespace) -> HashLedgerConfig:
    cfg = load_config(Path(args.config))
    if getattr(args, "db", None):
        cfg.db.path = args.db
    return cfg


def open_ledger(cfg: HashLedgerConfig, args: argparse.Namespace) -> HashLedger:
    return HashLedger(cfg.db, quiet=getattr(args, "quiet", False))
