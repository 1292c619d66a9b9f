from __future__ import annotations
import sqlite3
from pathlib import Path

from .config import LedgerConfig

DDL = r"""
CREATE TABLE IF NOT EXISTS Algorithm (
  AlgorithmId INTEGER PRIMARY KEY,
  AlgorithmName TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS FileHash (
  FileHashId INTEGER PRIMARY KEY,
  Hash TEXT NULL,
  AlgorithmId INTEGER NOT NULL REFERENCES Algorithm(AlgorithmId),
  FilePath TEXT NOT NULL,
  FileSize INTEGER,
  ProcessedAt INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS MovedFile (
  MovedFileId INTEGER PRIMARY KEY,
  Hash TEXT,
  AlgorithmId INTEGER REFERENCES Algorithm(AlgorithmId),
  SourcePath TEXT NOT NULL,
  DestinationPath TEXT NULL,
  Timestamp INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS IX_FileHash_Hash_AlgorithmId ON FileHash(Hash, AlgorithmId);
CREATE INDEX IF NOT EXISTS IX_FileHash_FilePath ON FileHash(FilePath);
CREATE INDEX IF NOT EXISTS IX_FileHash_Hash_AlgorithmId_FilePath ON FileHash(Hash, AlgorithmId, FilePath);
CREATE INDEX IF NOT EXISTS IX_MovedFile_SourcePath ON MovedFile(SourcePath);
CREATE INDEX IF NOT EXISTS IX_MovedFile_Hash_AlgorithmId ON MovedFile(Hash, AlgorithmId);
CREATE VIEW IF NOT EXISTS DeduplicatedFile AS
SELECT
  fh.Hash AS Hash,
  fh.AlgorithmId AS AlgorithmId,
  a.AlgorithmName AS AlgorithmName,
  GROUP_CONCAT(fh.FilePath, char(10)) AS FilePaths,
  COUNT(DISTINCT fh.FilePath) AS FileCount,
  MAX(fh.FileSize) AS MaxFileSize,
  MIN(fh.ProcessedAt) AS MinProcessedAt,
  MAX(fh.ProcessedAt) AS MaxProcessedAt,
  COUNT(*) AS RecordCount
FROM FileHash fh
JOIN Algorithm a ON a.AlgorithmId = fh.AlgorithmId
WHERE fh.Hash IS NOT NULL
  AND NOT EXISTS (SELECT 1 FROM MovedFile mf WHERE mf.SourcePath = fh.FilePath)
GROUP BY fh.Hash, fh.AlgorithmId;
"""

_JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}
_SYNCHRONOUS = {"OFF", "NORMAL", "FULL", "EXTRA"}


def connect(cfg: LedgerConfig) -> sqlite3.Connection:
    journal_mode = cfg.journal_mode.upper()
    synchronous = cfg.synchronous.upper()
    if journal_mode not in _JOURNAL_MODES:
        raise ValueError(f"Unsupported journal_mode: {cfg.journal_mode}")
    if synchronous not in _SYNCHRONOUS:
        raise ValueError(f"Unsupported synchronous setting: {cfg.synchronous}")

    db_path = Path(cfg.path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(str(db_path))
    try:
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute(f"PRAGMA journal_mode={journal_mode};")
        con.execute(f"PRAGMA synchronous={synchronous};")
        con.execute(f"PRAGMA busy_timeout={int(cfg.busy_timeout_ms)};")
    except sqlite3.Error:
        con.close()
        raise
    return con


def migrate(con: sqlite3.Connection) -> None:
    con.executescript(DDL)
    con.commit()
