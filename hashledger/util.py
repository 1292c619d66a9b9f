from __future__ import annotations
from pathlib import Path
import time
from typing import Callable, Optional

from .algorithms import new_hasher

ProgressCallback = Callable[[str, int, int, str], None]
LogCallback = Callable[[str], None]


def now_ms() -> int:
    """Current time as Unix milliseconds, the ledger's timestamp unit."""
    return int(time.time() * 1000)


def emit(cb: Optional[Callable[..., None]], *args, **kwargs) -> None:
    # Reporting callbacks must never break a run.
    if not cb:
        return
    try:
        cb(*args, **kwargs)
    except Exception:
        pass


def make_logger(log_cb: Optional[LogCallback] = None, quiet: bool = False) -> LogCallback:
    def emit_log(message: str) -> None:
        if not quiet:
            print(message)
        emit(log_cb, message)

    return emit_log


def hash_file(path: Path, algorithm: str = "SHA256", chunk_size: int = 1024 * 1024) -> str:
    h = new_hasher(algorithm)
    # Buffered I/O tends to perform better across platforms
    with open(path, "rb") as f:
        while True:
            b = f.read(chunk_size)
            if not b:
                break
            h.update(b)
    return h.hexdigest().upper()
