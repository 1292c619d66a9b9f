"""Registry of the hash algorithms the ledger understands."""
from __future__ import annotations
import hashlib
from typing import Any, Dict, Tuple

import blake3

SUPPORTED_ALGORITHMS: Tuple[str, ...] = (
    "SHA1",
    "SHA256",
    "SHA384",
    "SHA512",
    "MD5",
    "RIPEMD160",
    "MACTripleDES",
    "BLAKE3",
)

_CANONICAL: Dict[str, str] = {name.upper(): name for name in SUPPORTED_ALGORITHMS}

# Names as hashlib knows them. MACTripleDES is a keyed MAC kept for ledgers
# written by other tools; it cannot be computed from file content alone.
_HASHLIB_NAMES: Dict[str, str] = {
    "SHA1": "sha1",
    "SHA256": "sha256",
    "SHA384": "sha384",
    "SHA512": "sha512",
    "MD5": "md5",
    "RIPEMD160": "ripemd160",
}


class UnsupportedAlgorithmError(ValueError):
    """Raised for algorithm names outside the supported set."""


def is_supported(name: str) -> bool:
    return isinstance(name, str) and name.strip().upper() in _CANONICAL


def normalize_algorithm(name: str) -> str:
    """Return the canonical spelling of `name` or raise UnsupportedAlgorithmError."""
    if not is_supported(name):
        raise UnsupportedAlgorithmError(
            f"Unsupported hash algorithm: {name!r} (expected one of {', '.join(SUPPORTED_ALGORITHMS)})"
        )
    return _CANONICAL[name.strip().upper()]


def new_hasher(name: str) -> Any:
    """Create a streaming hasher object for a supported algorithm."""
    canonical = normalize_algorithm(name)
    if canonical == "BLAKE3":
        return blake3.blake3()
    hashlib_name = _HASHLIB_NAMES.get(canonical)
    if hashlib_name is None:
        raise UnsupportedAlgorithmError(f"{canonical} cannot be computed from file content")
    try:
        return hashlib.new(hashlib_name)
    except ValueError as exc:
        raise UnsupportedAlgorithmError(
            f"{canonical} is not available in this Python build: {exc}"
        ) from exc
