from __future__ import annotations
from pathlib import Path
from typing import Dict

import duckdb

EXPORT_TABLES = ("Algorithm", "FileHash", "MovedFile", "DeduplicatedFile")


def _quote(value: str) -> str:
    # DuckDB doesn't support parameter placeholders for ATTACH/COPY targets.
    return value.replace("'", "''")


def export_ledger(db_path: Path, out_dir: Path) -> Dict[str, Path]:
    """Write the ledger tables and the duplicate view to Parquet files via DuckDB."""
    db_path = Path(db_path)
    if not db_path.exists():
        raise FileNotFoundError(f"Ledger database not found: {db_path}")
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)

    written: Dict[str, Path] = {}
    con = duckdb.connect(database=":memory:")
    try:
        con.execute(f"ATTACH DATABASE '{_quote(str(db_path))}' AS ledger (TYPE SQLITE, READ_ONLY);")
        for table in EXPORT_TABLES:
            target = out / f"{table}.parquet"
            con.execute(
                f"COPY (SELECT * FROM ledger.{table}) TO '{_quote(str(target))}' (FORMAT PARQUET, OVERWRITE TRUE);"
            )
            written[table] = target
    finally:
        con.close()
    return written
