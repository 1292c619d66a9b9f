"""Hash ledger: record file hashes and resolve duplicate files."""
from .ledger import HashLedger, LedgerError, UnknownFileError
from .resolver import DuplicateResolver, RelocationError

__version__ = "0.1.0"

__all__ = [
    "DuplicateResolver",
    "HashLedger",
    "LedgerError",
    "RelocationError",
    "UnknownFileError",
    "__version__",
]
