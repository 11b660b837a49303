from __future__ import annotations

import hashlib
import json
from typing import Any


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()

def canonical(obj: Any) -> bytes:
    """Canonical JSON serialization for deterministic hashing."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")

# Domain-separated hashing (prevents structural collisions)
def h_block(block_header: dict) -> str:
    """Hash a complete block header (prev+height+payload+signer+sig)."""
    return sha256(b"BLOCK\x00" + canonical(block_header))

def h_record(record: dict) -> str:
    """Hash manuscript metadata (binds provenance events to record contents)."""
    return sha256(b"MANUSCRIPT\x00" + canonical(record))

def h_genesis() -> str:
    return h_block({"genesis": True})
