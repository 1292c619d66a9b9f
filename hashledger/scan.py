# hashledger/scan.py
from __future__ import annotations
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .algorithms import new_hasher
from .config import ScannerConfig
from .ledger import HashLedger
from .util import LogCallback, ProgressCallback, emit, hash_file, make_logger


@dataclass
class ScanStats:
    total_candidates: int = 0
    hashed: int = 0
    skipped_existing: int = 0
    failed: int = 0
    retries: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "total_candidates": self.total_candidates,
            "hashed": self.hashed,
            "skipped_existing": self.skipped_existing,
            "failed": self.failed,
            "retries": self.retries,
        }


def should_skip_path(p: Path, excludes: List[str]) -> bool:
    s = str(p)
    for pat in excludes:
        if pat and pat in s:
            return True
    return False


def hash_with_retries(
    path: Path,
    cfg: ScannerConfig,
    stats: ScanStats,
    emit_log: LogCallback,
) -> Optional[str]:
    """Hash `path`, retrying transient I/O errors; None after the last failure."""
    attempts = max(1, cfg.max_retries + 1)
    for attempt in range(1, attempts + 1):
        try:
            return hash_file(path, cfg.algorithm, cfg.chunk_bytes)
        except OSError as exc:
            if attempt == attempts:
                emit_log(f"[ERROR] Failed to hash {path} after {attempts} attempts: {exc}")
                return None
            stats.retries += 1
            emit_log(f"[WARN] Attempt {attempt}/{attempts} failed for {path}: {exc}; retrying")
            time.sleep(cfg.retry_delay_seconds)
    return None


def _file_size(path: Path) -> Optional[int]:
    try:
        return path.stat().st_size
    except OSError:
        return None


def enumerate_files(root: Path, cfg: ScannerConfig, emit_log: LogCallback) -> List[Path]:
    include = {e.lower() for e in cfg.include_ext} if cfg.include_ext else None
    excludes = cfg.exclude_paths or []
    files: List[Path] = []

    def on_error(exc: OSError) -> None:
        emit_log(f"[WARN] Cannot list {exc.filename}: {exc}")

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        dpath = Path(dirpath)
        if should_skip_path(dpath, excludes):
            dirnames[:] = []
            continue
        dirnames.sort()
        for name in sorted(filenames):
            p = dpath / name
            if include and p.suffix.lower() not in include:
                continue
            if should_skip_path(p, excludes):
                continue
            files.append(p)
    return files


def scan_root(
    root: str | Path,
    ledger: HashLedger,
    cfg: ScannerConfig,
    progress_cb: Optional[ProgressCallback] = None,
    log_cb: Optional[LogCallback] = None,
    quiet: bool = False,
) -> ScanStats:
    """Hash every file under `root` that the ledger has not seen yet."""
    new_hasher(cfg.algorithm)  # fail before any I/O for non-computable algorithms
    emit_log = make_logger(log_cb, quiet)
    stats = ScanStats()
    root_path = Path(root).resolve()
    if not root_path.exists():
        emit_log(f"[WARN] Root does not exist: {root}")
        emit(progress_cb, "error", 0, 0, "Root path missing")
        return stats

    emit(progress_cb, "enumerating", 0, 0, "Walking directories...")
    emit_log(f"[SCAN] Starting scan: root={root_path}, algorithm={cfg.algorithm}")
    files = enumerate_files(root_path, cfg, emit_log)
    stats.total_candidates = len(files)
    emit_log(f"[INFO] {root_path}: {stats.total_candidates:,} candidate files")

    for i, path in enumerate(files, 1):
        if ledger.file_exists_in_database(path):
            stats.skipped_existing += 1
        else:
            digest = hash_with_retries(path, cfg, stats, emit_log)
            ledger.log_file_hash(digest, cfg.algorithm, path, _file_size(path))
            if digest is None:
                stats.failed += 1
            else:
                stats.hashed += 1
        emit(progress_cb, "hash", i, stats.total_candidates, str(path))

    emit_log(
        f"[SCAN] Done | hashed={stats.hashed:,} skipped={stats.skipped_existing:,} "
        f"failed={stats.failed:,} retries={stats.retries:,}"
    )
    emit(progress_cb, "done", stats.hashed, stats.total_candidates, "Scan complete")
    return stats


def rehash_failed(
    ledger: HashLedger,
    cfg: ScannerConfig,
    progress_cb: Optional[ProgressCallback] = None,
    log_cb: Optional[LogCallback] = None,
    quiet: bool = False,
) -> ScanStats:
    """Retry every path whose observations are all failures."""
    new_hasher(cfg.algorithm)
    emit_log = make_logger(log_cb, quiet)
    stats = ScanStats()
    failed_paths = ledger.get_failed_file_paths()
    stats.total_candidates = len(failed_paths)
    if not failed_paths:
        emit_log("[SCAN] No failed paths to reprocess")
        return stats

    emit_log(f"[SCAN] Reprocessing {len(failed_paths):,} failed paths")
    for i, raw_path in enumerate(failed_paths, 1):
        path = Path(raw_path)
        if not path.exists():
            emit_log(f"[WARN] Failed path no longer exists: {raw_path}")
            stats.failed += 1
            continue
        digest = hash_with_retries(path, cfg, stats, emit_log)
        if digest is None:
            stats.failed += 1
        elif ledger.log_reprocessed_file_hash(digest, cfg.algorithm, raw_path, _file_size(path)):
            stats.hashed += 1
        else:
            stats.skipped_existing += 1
        emit(progress_cb, "rehash", i, stats.total_candidates, raw_path)
    emit_log(f"[SCAN] Reprocess done | hashed={stats.hashed:,} still_failed={stats.failed:,}")
    return stats
