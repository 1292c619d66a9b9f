from __future__ import annotations
import ntpath
import posixpath
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class DuplicateGroup:
    hash: str
    algorithm: str
    file_paths: List[str]
    file_count: int
    max_file_size: Optional[int]
    min_processed_at: Optional[int]
    max_processed_at: Optional[int]
    record_count: int = 0

    @property
    def actionable(self) -> bool:
        return self.file_count > 1

    @classmethod
    def from_row(cls, row) -> "DuplicateGroup":
        paths = row["FilePaths"].split("\n") if row["FilePaths"] else []
        return cls(
            hash=row["Hash"],
            algorithm=row["AlgorithmName"],
            file_paths=sorted(set(paths)),
            file_count=int(row["FileCount"]),
            max_file_size=row["MaxFileSize"],
            min_processed_at=row["MinProcessedAt"],
            max_processed_at=row["MaxProcessedAt"],
            record_count=int(row["RecordCount"]),
        )


@dataclass
class GroupMember:
    file_hash_id: int
    file_path: str
    file_size: Optional[int]
    processed_at: int

    @property
    def path_length(self) -> int:
        return len(self.file_path)

    @property
    def name_length(self) -> int:
        # Ledgers may hold Windows paths even when read on POSIX.
        if "\\" in self.file_path:
            return len(ntpath.basename(self.file_path))
        return len(posixpath.basename(self.file_path))


@dataclass
class MovedRecord:
    moved_file_id: int
    hash: Optional[str]
    algorithm: Optional[str]
    source_path: str
    destination_path: Optional[str]
    timestamp: int

    @property
    def failed(self) -> bool:
        return self.destination_path is None


@dataclass
class RelocationOutcome:
    source: str
    destination: Optional[str]
    status: str  # moved | copied | planned | missing | failed
    error: Optional[str] = None


@dataclass
class ResolveStats:
    groups_seen: int = 0
    groups_modified: int = 0
    files_relocated: int = 0
    files_missing: int = 0
    files_failed: int = 0
    bytes_relocated: int = 0
    budget_exhausted: bool = False
    errors: List[str] = field(default_factory=list)
    groups: List[Dict] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "groups_seen": self.groups_seen,
            "groups_modified": self.groups_modified,
            "files_relocated": self.files_relocated,
            "files_missing": self.files_missing,
            "files_failed": self.files_failed,
            "bytes_relocated": self.bytes_relocated,
            "budget_exhausted": self.budget_exhausted,
        }


@dataclass
class HashObservation:
    file_hash_id: int
    hash: Optional[str]
    algorithm: str
    file_path: str
    file_size: Optional[int]
    processed_at: int

    @property
    def failed(self) -> bool:
        return self.hash is None
