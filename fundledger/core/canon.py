# fundledger/core/canon.py
import hashlib
from typing import Any

try:
    import jcs
except ImportError:
    raise ImportError("Please install jcs: pip install jcs")


def canonical_json(obj: Any) -> bytes:
    """
    Produce deterministic UTF-8 bytes according to RFC 8785 (JSON Canonicalization Scheme).
    Returns bytes ready for hashing.
    """
    return jcs.canonicalize(obj)


def canonical_json_str(obj: Any) -> str:
    """Same as above, but returns string (stored in SQLite / exported as JSONL)."""
    return canonical_json(obj).decode("utf-8")


def chain_hash(prev_hash: str, payload: Any) -> str:
    """hex(sha256(prev_hash || canonical_json(payload))); links each event to its predecessor."""
    digest = hashlib.sha256()
    digest.update(prev_hash.encode("ascii"))
    digest.update(canonical_json(payload))
    return digest.hexdigest()


