"""
Durable ledger of file hash observations.

The ledger keeps one live ``FileHash`` row per path, a write-once
``MovedFile`` log of relocations, and the ``DeduplicatedFile`` view that
groups live rows by (hash, algorithm).
"""
from __future__ import annotations
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .algorithms import SUPPORTED_ALGORITHMS, normalize_algorithm
from .config import LedgerConfig
from .db import connect, migrate
from .filters import CompiledFilter
from .models import DuplicateGroup, HashObservation, MovedRecord
from .util import LogCallback, make_logger, now_ms


def classify_error(exc: BaseException) -> str:
    """Map a storage exception onto a coarse, user-facing category."""
    if isinstance(exc, sqlite3.IntegrityError):
        return "constraint"
    if isinstance(exc, PermissionError):
        return "permission"
    if isinstance(exc, FileNotFoundError):
        return "missing"
    msg = str(exc).lower()
    if "locked" in msg or "busy" in msg:
        return "locked"
    if "readonly" in msg or "read-only" in msg or "permission" in msg or "access" in msg:
        return "permission"
    if "unable to open" in msg or "no such file" in msg:
        return "missing"
    if "malformed" in msg or "not a database" in msg:
        return "corrupt"
    return "storage"


class LedgerError(RuntimeError):
    """A storage operation failed; carries the operation, path and error category."""

    def __init__(self, operation: str, path: Optional[str], message: str, kind: str = "storage") -> None:
        self.operation = operation
        self.path = path
        self.kind = kind
        target = f" for {path}" if path else ""
        super().__init__(f"{operation} failed{target} [{kind}]: {message}")

    @classmethod
    def wrap(cls, operation: str, path: Optional[str], exc: BaseException) -> "LedgerError":
        return cls(operation, path, str(exc), classify_error(exc))


class UnknownFileError(LedgerError):
    """The path has no live observation in the ledger."""


class HashLedger:
    """
    Connects to (creating if needed) a hash ledger database.

    Construction ensures the schema and the algorithm registry; any failure
    there raises `LedgerError` and no ledger object is produced.
    """

    def __init__(self, config: LedgerConfig, log_cb: Optional[LogCallback] = None, quiet: bool = False) -> None:
        self._config = config
        self._db_path = Path(config.path)
        self._log = make_logger(log_cb, quiet)
        self._algorithm_ids: Dict[str, int] = {}
        self._con: Optional[sqlite3.Connection] = None
        try:
            self.ensure_schema()
            self.ensure_algorithms()
        except LedgerError:
            self.close()
            raise

    def __enter__(self) -> "HashLedger":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def connection(self) -> sqlite3.Connection:
        if self._con is None:
            raise LedgerError("Connection", str(self._db_path), "ledger is closed")
        return self._con

    def close(self) -> None:
        if self._con is None:
            return
        if self._con.in_transaction:
            self._log("[WARN] Closing ledger with an open transaction; rolling back.")
            self._con.rollback()
        self._con.close()
        self._con = None

    @contextmanager
    def _storage_errors(self, operation: str, path: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            if self._con is not None and self._con.in_transaction:
                self._con.rollback()
            raise LedgerError.wrap(operation, path, exc) from exc

    def query(self, operation: str, sql: str, params: Optional[Dict[str, object]] = None) -> List[sqlite3.Row]:
        """Run a read-only, parameterised query with ledger error wrapping."""
        with self._storage_errors(operation):
            return self.connection.execute(sql, params or {}).fetchall()

    # --- schema -----------------------------------------------------------

    def ensure_schema(self) -> None:
        """Create tables, indexes and the view when absent. Idempotent."""
        try:
            if self._con is None:
                self._con = connect(self._config)
            migrate(self._con)
        except (sqlite3.Error, OSError) as exc:
            error = LedgerError.wrap("EnsureSchema", str(self._db_path), exc)
            # SQLite reports an unwritable folder as "unable to open database file".
            parent = self._db_path.parent
            if error.kind == "missing" and parent.is_dir() and not os.access(parent, os.W_OK):
                error = LedgerError("EnsureSchema", str(self._db_path), str(exc), "permission")
            raise error from exc

    def ensure_algorithms(self) -> None:
        """Register every supported algorithm name. Idempotent."""
        for name in SUPPORTED_ALGORITHMS:
            self._register_algorithm(name)

    def _register_algorithm(self, name: str) -> int:
        con = self.connection
        with self._storage_errors("EnsureAlgorithms", name):
            row = con.execute("SELECT AlgorithmId FROM Algorithm WHERE AlgorithmName = ?", (name,)).fetchone()
            if row is not None:
                self._algorithm_ids[name] = row["AlgorithmId"]
                return row["AlgorithmId"]
            try:
                cur = con.execute("INSERT INTO Algorithm (AlgorithmName) VALUES (?)", (name,))
                con.commit()
                algorithm_id = cur.lastrowid
            except sqlite3.IntegrityError:
                # Another writer registered the same name first.
                con.rollback()
                row = con.execute("SELECT AlgorithmId FROM Algorithm WHERE AlgorithmName = ?", (name,)).fetchone()
                algorithm_id = row["AlgorithmId"]
        self._algorithm_ids[name] = algorithm_id
        return algorithm_id

    def get_algorithm_id(self, algorithm: str) -> int:
        name = normalize_algorithm(algorithm)
        if name in self._algorithm_ids:
            return self._algorithm_ids[name]
        return self._register_algorithm(name)

    # --- observations -----------------------------------------------------

    def file_exists_in_database(self, file_path: str | Path) -> bool:
        path = str(file_path)
        with self._storage_errors("FileExistsInDatabase", path):
            row = self.connection.execute("SELECT 1 FROM FileHash WHERE FilePath = ? LIMIT 1", (path,)).fetchone()
        return row is not None

    def log_file_hash(
        self,
        file_hash: Optional[str],
        algorithm: str,
        file_path: str | Path,
        file_size: Optional[int],
        processed_at: Optional[int] = None,
    ) -> bool:
        """
        Record an observation for `file_path`.

        A null `file_hash` records a failed attempt. Returns False (and writes
        nothing) when the path already has a live observation.
        """
        path = str(file_path)
        algorithm_id = self.get_algorithm_id(algorithm)
        params = {
            "hash": file_hash,
            "algorithm_id": algorithm_id,
            "path": path,
            "size": file_size,
            "ts": now_ms() if processed_at is None else int(processed_at),
        }
        con = self.connection
        with self._storage_errors("LogFileHash", path):
            cur = con.execute(
                """
                INSERT INTO FileHash (Hash, AlgorithmId, FilePath, FileSize, ProcessedAt)
                SELECT :hash, :algorithm_id, :path, :size, :ts
                WHERE NOT EXISTS (SELECT 1 FROM FileHash WHERE FilePath = :path)
                """,
                params,
            )
            con.commit()
        return cur.rowcount > 0

    def log_reprocessed_file_hash(
        self,
        file_hash: Optional[str],
        algorithm: str,
        file_path: str | Path,
        file_size: Optional[int],
        processed_at: Optional[int] = None,
    ) -> bool:
        """
        Replace the failed observations of `file_path` with a new one.

        Only paths whose every observation has a null hash qualify; returns
        False without writing anything otherwise.
        """
        path = str(file_path)
        algorithm_id = self.get_algorithm_id(algorithm)
        con = self.connection
        with self._storage_errors("LogReprocessedFileHash", path):
            row = con.execute(
                "SELECT COUNT(*) AS total, COUNT(Hash) AS succeeded FROM FileHash WHERE FilePath = ?",
                (path,),
            ).fetchone()
            if row["succeeded"] > 0:
                return False
            con.execute("DELETE FROM FileHash WHERE FilePath = ? AND Hash IS NULL", (path,))
            con.execute(
                "INSERT INTO FileHash (Hash, AlgorithmId, FilePath, FileSize, ProcessedAt) VALUES (?, ?, ?, ?, ?)",
                (file_hash, algorithm_id, path, file_size, now_ms() if processed_at is None else int(processed_at)),
            )
            con.commit()
        return True

    def get_observations(self, file_path: str | Path) -> List[HashObservation]:
        path = str(file_path)
        with self._storage_errors("GetObservations", path):
            rows = self.connection.execute(
                """
                SELECT fh.FileHashId, fh.Hash, a.AlgorithmName, fh.FilePath, fh.FileSize, fh.ProcessedAt
                FROM FileHash fh
                JOIN Algorithm a ON a.AlgorithmId = fh.AlgorithmId
                WHERE fh.FilePath = ?
                ORDER BY fh.FileHashId
                """,
                (path,),
            ).fetchall()
        return [
            HashObservation(r["FileHashId"], r["Hash"], r["AlgorithmName"], r["FilePath"], r["FileSize"], r["ProcessedAt"])
            for r in rows
        ]

    def get_failed_file_paths(self) -> List[str]:
        """Paths whose only observations are failed (null-hash) attempts."""
        with self._storage_errors("GetFailedFilePaths"):
            rows = self.connection.execute(
                """
                SELECT FilePath
                FROM FileHash
                GROUP BY FilePath
                HAVING COUNT(Hash) = 0
                ORDER BY FilePath
                """
            ).fetchall()
        return [r["FilePath"] for r in rows]

    # --- duplicate groups ---------------------------------------------------

    def get_file_hashes(self, limit: int = -1, filters: Optional[CompiledFilter] = None) -> List[DuplicateGroup]:
        """
        Rows of the DeduplicatedFile view, constrained by a group-scope
        compiled filter. `limit == -1` returns every row.

        This is a general accessor: single-file groups are included unless
        the filter excludes them (e.g. ``FileCount > 1``).
        """
        if limit < -1:
            raise ValueError("limit must be -1 (no cap) or a non-negative count")
        sql = (
            "SELECT Hash, AlgorithmId, AlgorithmName, FilePaths, FileCount, MaxFileSize,"
            " MinProcessedAt, MaxProcessedAt, RecordCount FROM DeduplicatedFile"
        )
        params: Dict[str, object] = {}
        if filters:
            sql += " WHERE " + filters.sql
            params.update(filters.params)
        sql += " ORDER BY Hash, AlgorithmName"
        if limit != -1:
            sql += " LIMIT :limit"
            params["limit"] = limit
        with self._storage_errors("GetFileHashes"):
            rows = self.connection.execute(sql, params).fetchall()
        return [DuplicateGroup.from_row(r) for r in rows]

    # --- moves --------------------------------------------------------------

    def log_moved_file(
        self,
        file_hash: Optional[str],
        algorithm: str,
        source_path: str | Path,
        destination_path: Optional[str | Path],
        timestamp: Optional[int] = None,
    ) -> int:
        """
        Record a relocation of `source_path` and drop its live observation.

        A null `destination_path` records a failed relocation. Returns the new
        MovedFileId. Raises UnknownFileError if the source is not in the ledger.
        """
        source = str(source_path)
        if not self.file_exists_in_database(source):
            raise UnknownFileError("LogMovedFile", source, "source path has no live observation", "missing")
        algorithm_id = self.get_algorithm_id(algorithm)
        destination = None if destination_path is None else str(destination_path)
        con = self.connection
        with self._storage_errors("LogMovedFile", source):
            cur = con.execute(
                "INSERT INTO MovedFile (Hash, AlgorithmId, SourcePath, DestinationPath, Timestamp) VALUES (?, ?, ?, ?, ?)",
                (file_hash, algorithm_id, source, destination, now_ms() if timestamp is None else int(timestamp)),
            )
            con.commit()
        moved_id = cur.lastrowid

        # The MovedFile row is authoritative; a stale FileHash row is only a warning.
        try:
            con.execute("DELETE FROM FileHash WHERE FilePath = ?", (source,))
            con.commit()
        except sqlite3.Error as exc:
            if con.in_transaction:
                con.rollback()
            self._log(f"[WARN] MovedFile {moved_id} recorded but FileHash row for {source} was not removed: {exc}")
        return moved_id

    def get_moved_files(self, source_path: Optional[str | Path] = None) -> List[MovedRecord]:
        sql = """
            SELECT mf.MovedFileId, mf.Hash, a.AlgorithmName, mf.SourcePath, mf.DestinationPath, mf.Timestamp
            FROM MovedFile mf
            LEFT JOIN Algorithm a ON a.AlgorithmId = mf.AlgorithmId
        """
        params: tuple = ()
        if source_path is not None:
            sql += " WHERE mf.SourcePath = ?"
            params = (str(source_path),)
        sql += " ORDER BY mf.MovedFileId"
        with self._storage_errors("GetMovedFiles", None if source_path is None else str(source_path)):
            rows = self.connection.execute(sql, params).fetchall()
        return [
            MovedRecord(r["MovedFileId"], r["Hash"], r["AlgorithmName"], r["SourcePath"], r["DestinationPath"], r["Timestamp"])
            for r in rows
        ]
