"""
Shared fixtures for ledger and resolver tests.
Every ledger lives in its own temporary directory.
"""
from pathlib import Path
from typing import Callable

import pytest

from hashledger.config import LedgerConfig
from hashledger.ledger import HashLedger


@pytest.fixture
def ledger_config(tmp_path) -> LedgerConfig:
    return LedgerConfig(path=str(tmp_path / "db" / "ledger.db"))


@pytest.fixture
def ledger(ledger_config):
    """Fresh ledger, closed after the test."""
    with HashLedger(ledger_config, quiet=True) as db:
        yield db


@pytest.fixture
def make_file(tmp_path) -> Callable[..., Path]:
    """Create a file under tmp_path/files and return its absolute path."""
    root = tmp_path / "files"

    def _make(relative: str, content: bytes = b"duplicate content") -> Path:
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path.resolve()

    return _make

