# hashledger/resolver.py
"""
Duplicate resolution:
1. Enumerate (hash, algorithm) groups with more than one live file
2. Keep one member per group according to the preserve rule
3. Move (or copy) the rest under a destination root that mirrors each
   file's absolute path, and record every attempt in the ledger
"""
from __future__ import annotations
import re
import shutil
import sqlite3
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Optional, Sequence

from .algorithms import normalize_algorithm
from .config import OrderRule, PreserveRule, ResolverConfig
from .filters import compile_filters
from .ledger import HashLedger
from .models import GroupMember, RelocationOutcome, ResolveStats
from .util import LogCallback, ProgressCallback, emit, make_logger

_WINDOWS_PATH_RE = re.compile(r"^(?:[A-Za-z]:[\\/]|\\\\)")

_ORDER_COLUMNS: Dict[OrderRule, str] = {
    OrderRule.FILE_PATHS: "FilePaths",
    OrderRule.EARLIEST_PROCESSED: "MinProcessedAt",
    OrderRule.LATEST_PROCESSED: "MaxProcessedAt",
}

_NOT_MOVED_SQL = " AND NOT EXISTS (SELECT 1 FROM MovedFile mf WHERE mf.SourcePath = fh.FilePath)"


class RelocationError(RuntimeError):
    """A move or copy failed while the resolver was set to halt on errors."""

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(message)


def mirror_destination(source: str, destination_root: Path) -> Path:
    """
    Map an absolute source path under `destination_root`.

    Windows drives become a per-volume folder (``C:\\a\\b.txt`` ->
    ``<root>/C_/a/b.txt``, ``\\\\srv\\share\\x`` -> ``<root>/srv_share/x``);
    POSIX paths are mirrored directly below the root.
    """
    if _WINDOWS_PATH_RE.match(source):
        pure: PurePosixPath | PureWindowsPath = PureWindowsPath(source)
        volume = re.sub(r"[\\/:]+", "_", pure.drive.strip("\\/"))
    else:
        pure = PurePosixPath(source)
        volume = ""
    if not pure.is_absolute():
        raise ValueError(f"Source path is not absolute: {source}")
    parts = pure.parts[1:]
    if not parts or any(part in ("..", ".") for part in parts):
        raise ValueError(f"Source path cannot be mirrored safely: {source}")

    target = Path(destination_root)
    if volume:
        target = target / volume
    return target.joinpath(*parts)


def free_destination(path: Path) -> Path:
    """Return `path`, or the first `<stem>_<n><suffix>` sibling that does not exist."""
    if not path.exists() and not path.is_symlink():
        return path
    n = 1
    while True:
        candidate = path.with_name(f"{path.stem}_{n}{path.suffix}")
        if not candidate.exists() and not candidate.is_symlink():
            return candidate
        n += 1


def select_keeper(members: Sequence[GroupMember], rule: PreserveRule | str) -> GroupMember:
    """Pick the member to keep; ties go to the earliest member in `members`."""
    if not members:
        raise ValueError("Cannot select a keeper from an empty group")
    rule = PreserveRule(rule)
    if rule is PreserveRule.EARLIEST_PROCESSED:
        return min(members, key=lambda m: m.processed_at)
    if rule is PreserveRule.LONGEST_PATH:
        return max(members, key=lambda m: m.path_length)
    if rule is PreserveRule.SHORTEST_PATH:
        return min(members, key=lambda m: m.path_length)
    return max(members, key=lambda m: m.name_length)


class DuplicateResolver:
    """
    Resolves duplicate groups recorded in a `HashLedger`.

    Configuration problems (missing or relative destination, unsupported
    algorithm, unsafe filters) raise before any file or database I/O.
    """

    def __init__(
        self,
        ledger: HashLedger,
        config: ResolverConfig,
        progress_cb: Optional[ProgressCallback] = None,
        log_cb: Optional[LogCallback] = None,
        quiet: bool = False,
    ) -> None:
        if not config.destination:
            raise ValueError("A destination folder is required to resolve duplicates")
        destination = Path(config.destination).expanduser()
        if not destination.is_absolute():
            raise ValueError(f"Destination must be an absolute path: {config.destination}")

        self._ledger = ledger
        self._config = config
        self._destination = destination
        self._algorithm = normalize_algorithm(config.algorithm)
        self._progress_cb = progress_cb
        self._log = make_logger(log_cb, quiet)
        self._row_filter = compile_filters(
            config.row_filters, "row", allow_raw=config.allow_raw_filters, log_cb=self._log
        )
        self._group_filter = compile_filters(
            config.group_filters, "group", allow_raw=config.allow_raw_filters, log_cb=self._log
        )
        self._mode = "copy" if config.copy_files else "move"

    def _moved_sql(self) -> str:
        return "" if self._config.reprocess else _NOT_MOVED_SQL

    def candidate_groups(self) -> List[sqlite3.Row]:
        count_column = "RecordCount" if self._config.reprocess else "FileCount"
        order_column = _ORDER_COLUMNS[OrderRule(self._config.order_by)]
        direction = "DESC" if self._config.descending else "ASC"
        sql = (
            """
            SELECT * FROM (
                SELECT m.Hash AS Hash,
                       m.AlgorithmId AS AlgorithmId,
                       m.AlgorithmName AS AlgorithmName,
                       GROUP_CONCAT(m.FilePath, char(10)) AS FilePaths,
                       COUNT(DISTINCT m.FilePath) AS FileCount,
                       MAX(m.FileSize) AS MaxFileSize,
                       MIN(m.ProcessedAt) AS MinProcessedAt,
                       MAX(m.ProcessedAt) AS MaxProcessedAt,
                       COUNT(*) AS RecordCount
                FROM (
                    SELECT fh.Hash, fh.AlgorithmId, a.AlgorithmName, fh.FilePath, fh.FileSize, fh.ProcessedAt
                    FROM FileHash fh
                    JOIN Algorithm a ON a.AlgorithmId = fh.AlgorithmId
                    WHERE fh.Hash IS NOT NULL
                      AND a.AlgorithmName = :algorithm
            """
            + self._moved_sql()
            + self._row_filter.and_sql()
            # Members are concatenated in path order.
            + """
                    ORDER BY fh.FilePath, fh.FileHashId
                ) m
                GROUP BY m.Hash, m.AlgorithmId
            ) g
            WHERE g.""" + count_column + " > 1"
            + self._group_filter.and_sql()
            + f" ORDER BY g.{order_column} {direction}, g.Hash"
        )
        params: Dict[str, Any] = {"algorithm": self._algorithm}
        params.update(self._row_filter.params)
        params.update(self._group_filter.params)
        return self._ledger.query("ResolveDuplicates.Groups", sql, params)

    def group_members(self, group: sqlite3.Row) -> List[GroupMember]:
        sql = (
            """
            SELECT fh.FileHashId, fh.FilePath, fh.FileSize, fh.ProcessedAt
            FROM FileHash fh
            JOIN Algorithm a ON a.AlgorithmId = fh.AlgorithmId
            WHERE fh.Hash = :hash
              AND fh.AlgorithmId = :algorithm_id
            """
            + self._moved_sql()
            + self._row_filter.and_sql()
            + " ORDER BY fh.FilePath, fh.FileHashId"
        )
        params: Dict[str, Any] = {"hash": group["Hash"], "algorithm_id": group["AlgorithmId"]}
        params.update(self._row_filter.params)
        members: List[GroupMember] = []
        seen = set()
        for row in self._ledger.query("ResolveDuplicates.Members", sql, params):
            if row["FilePath"] in seen:
                continue
            seen.add(row["FilePath"])
            members.append(GroupMember(row["FileHashId"], row["FilePath"], row["FileSize"], row["ProcessedAt"]))
        return members

    def _budget_left(self, stats: ResolveStats) -> bool:
        limit = self._config.max_files
        return limit == -1 or stats.files_relocated < limit

    def run(self) -> ResolveStats:
        cfg = self._config
        stats = ResolveStats()

        emit(self._progress_cb, "start", 0, 0, "Finding duplicate groups...")
        self._log(
            f"[RESOLVE] Starting duplicate resolution (mode={self._mode}{', dry-run' if cfg.dry_run else ''}) "
            f"| algorithm={self._algorithm} | preserve={PreserveRule(cfg.preserve_by).value} "
            f"| destination={self._destination}"
        )

        groups = self.candidate_groups()
        stats.groups_seen = len(groups)
        if not groups:
            self._log("[RESOLVE] No duplicate groups found.")
            emit(self._progress_cb, "done", 0, 0, "No duplicate groups")
            return stats
        self._log(f"[INFO] {len(groups):,} duplicate groups to process")

        for index, group in enumerate(groups, 1):
            if not self._budget_left(stats):
                stats.budget_exhausted = True
                break
            members = self.group_members(group)
            if len(members) <= 1:
                continue

            existing = [m for m in members if Path(m.file_path).exists()]
            keeper = select_keeper(existing or members, cfg.preserve_by)
            plan: Dict[str, Any] = {
                "hash": group["Hash"],
                "algorithm": group["AlgorithmName"],
                "keeper": keeper.file_path,
                "outcomes": [],
            }

            for member in members:
                if member is keeper:
                    continue
                if not self._budget_left(stats):
                    stats.budget_exhausted = True
                    break
                outcome = self._relocate(group, member, stats)
                plan["outcomes"].append(outcome)
                emit(
                    self._progress_cb,
                    "resolve",
                    index,
                    len(groups),
                    f"{outcome.status}: {outcome.source}",
                )

            if any(o.status in ("moved", "copied", "planned") for o in plan["outcomes"]):
                stats.groups_modified += 1
            stats.groups.append(plan)

        if stats.budget_exhausted:
            self._log(f"[RESOLVE] Stopped after reaching max_files={cfg.max_files}")
        self._log(
            f"[RESOLVE] Done | groups={stats.groups_seen:,} modified={stats.groups_modified:,} "
            f"relocated={stats.files_relocated:,} missing={stats.files_missing:,} failed={stats.files_failed:,}"
        )
        emit(self._progress_cb, "done", stats.files_relocated, stats.files_relocated, "Duplicate resolution complete")
        return stats

    def _relocate(self, group: sqlite3.Row, member: GroupMember, stats: ResolveStats) -> RelocationOutcome:
        cfg = self._config
        source = Path(member.file_path)
        if not source.exists():
            stats.files_missing += 1
            self._log(f"[WARN] File missing on disk, skipping: {member.file_path}")
            return RelocationOutcome(member.file_path, None, "missing")

        try:
            target = free_destination(mirror_destination(member.file_path, self._destination))
            if not cfg.dry_run:
                target.parent.mkdir(parents=True, exist_ok=True)
                if cfg.copy_files:
                    shutil.copy2(source, target)
                else:
                    shutil.move(str(source), str(target))
        except (OSError, ValueError) as exc:
            return self._record_failure(group, member, exc, stats)

        stats.files_relocated += 1
        stats.bytes_relocated += int(member.file_size or 0)
        if cfg.dry_run:
            self._log(f"[RESOLVE] Would {self._mode} {member.file_path} -> {target}")
            return RelocationOutcome(member.file_path, str(target), "planned")

        self._ledger.log_moved_file(group["Hash"], group["AlgorithmName"], member.file_path, target)
        status = "copied" if cfg.copy_files else "moved"
        self._log(f"[RESOLVE] {status.capitalize()} {member.file_path} -> {target}")
        return RelocationOutcome(member.file_path, str(target), status)

    def _record_failure(
        self,
        group: sqlite3.Row,
        member: GroupMember,
        exc: BaseException,
        stats: ResolveStats,
    ) -> RelocationOutcome:
        message = f"Failed to {self._mode} {member.file_path}: {exc}"
        stats.files_failed += 1
        stats.errors.append(message)
        self._log(f"[ERROR] {message}")
        if not self._config.dry_run:
            # Null destination marks the source as handled so it is not retried this run.
            self._ledger.log_moved_file(group["Hash"], group["AlgorithmName"], member.file_path, None)
        if self._config.halt_on_error:
            raise RelocationError(member.file_path, message) from exc
        return RelocationOutcome(member.file_path, None, "failed", str(exc))
