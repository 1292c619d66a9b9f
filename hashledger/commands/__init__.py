"""Command registration for the hashledger CLI."""
from __future__ import annotations

from typing import Iterable

from . import export, failed, groups, record, resolve, scan

COMMAND_MODULES: Iterable = (scan, record, groups, failed, resolve, export)

__all__ = ["COMMAND_MODULES"]
