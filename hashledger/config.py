from __future__ import annotations
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
import yaml

from .algorithms import normalize_algorithm


class PreserveRule(str, Enum):
    EARLIEST_PROCESSED = "EarliestProcessed"
    LONGEST_PATH = "LongestPath"
    SHORTEST_PATH = "ShortestPath"
    LONGEST_NAME = "LongestName"


class OrderRule(str, Enum):
    FILE_PATHS = "FilePaths"
    EARLIEST_PROCESSED = "EarliestProcessed"
    LATEST_PROCESSED = "LatestProcessed"


class LedgerConfig(BaseModel):
    path: str = "data/hashledger.db"
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"
    busy_timeout_ms: int = 5000


class ScannerConfig(BaseModel):
    algorithm: str = "SHA256"
    chunk_bytes: int = 1024 * 1024
    max_retries: int = 3
    retry_delay_seconds: float = 0.5
    include_ext: List[str] = Field(default_factory=list)
    exclude_paths: List[str] = Field(default_factory=list)

    @field_validator("algorithm")
    @classmethod
    def _check_algorithm(cls, value: str) -> str:
        return normalize_algorithm(value)


class ResolverConfig(BaseModel):
    destination: Optional[str] = None
    algorithm: str = "SHA256"
    preserve_by: PreserveRule = PreserveRule.EARLIEST_PROCESSED
    order_by: OrderRule = OrderRule.FILE_PATHS
    descending: bool = False
    row_filters: List[str] = Field(default_factory=list)
    group_filters: List[str] = Field(default_factory=list)
    max_files: int = -1  # -1 = unlimited
    copy_files: bool = False
    halt_on_error: bool = False
    reprocess: bool = False
    dry_run: bool = False
    allow_raw_filters: bool = False

    @field_validator("algorithm")
    @classmethod
    def _check_algorithm(cls, value: str) -> str:
        return normalize_algorithm(value)

    @field_validator("max_files")
    @classmethod
    def _check_max_files(cls, value: int) -> int:
        if value < -1:
            raise ValueError("max_files must be -1 (unlimited) or a non-negative count")
        return value


class HashLedgerConfig(BaseModel):
    roots: List[str] = Field(default_factory=list)
    db: LedgerConfig = Field(default_factory=LedgerConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)


def load_config(path: Optional[Path]) -> HashLedgerConfig:
    """Load a YAML config file; a missing file yields the defaults."""
    if path is None or not Path(path).exists():
        return HashLedgerConfig()
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return HashLedgerConfig(**data)
