from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from manuscript_ledger import MIN_SCHEMA_VERSION, SUPPORTED_SCHEMAS

from .hashing import h_block, h_genesis
from .signing import b64d, verify_payload

logger = logging.getLogger(__name__)

# Any zero-argument callable returning the current chain height.
HeightSource = Callable[[], int]


class SchemaDowngradeError(Exception):
    """Raised when a payload has an unsupported or older schema."""
    pass


class ManualHeight:
    """Settable height counter that never moves backwards."""

    def __init__(self, start: int = 0):
        if start < 0:
            raise ValueError("height cannot be negative")
        self._height = start

    def __call__(self) -> int:
        return self._height

    def advance(self, blocks: int = 1) -> int:
        if blocks < 0:
            raise ValueError("height cannot decrease")
        self._height += blocks
        return self._height

    def set(self, height: int) -> None:
        if height < self._height:
            raise ValueError(f"height cannot decrease ({self._height} -> {height})")
        self._height = height


class ProvenanceLedger:
    """
    Append-only provenance trail for registry mutations.

    - Hash-chained blocks (tamper evident)
    - Each block carries its chain height (1-based, monotonically increasing)
    - Payloads are Ed25519-signed when the actor has a key
    Block schema:
      {
        "prev_hash": "...",
        "height": 7,
        "payload": {...},
        "signer": {"id": "alice", "ed25519_pub_pem_b64": "..."},
        "sig": "<b64>" | null,
        "block_hash": "..."
      }

    The file is created by the first append; reading a missing file yields
    an empty chain.
    """
    def __init__(self, path: str):
        self.path = path

    def _read_blocks(self) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        if not os.path.exists(self.path):
            return blocks
        with open(self.path, "rb") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                blocks.append(json.loads(line))
        return blocks

    @property
    def blocks(self) -> List[Dict[str, Any]]:
        return self._read_blocks()

    @property
    def height(self) -> int:
        return len(self._read_blocks())

    def current_height(self) -> int:
        """HeightSource adapter: the chain height is the number of appended blocks."""
        return self.height

    def tip_hash(self) -> str:
        blocks = self._read_blocks()
        return blocks[-1]["block_hash"] if blocks else h_genesis()

    def check_schema(self, payload: Dict[str, Any]) -> None:
        """Raise SchemaDowngradeError for payloads this ledger refuses to append."""
        schema = payload.get("schema")
        if schema and schema not in SUPPORTED_SCHEMAS:
            raise SchemaDowngradeError(
                f"Unsupported schema '{schema}'. Supported: {SUPPORTED_SCHEMAS}"
            )
        if schema and schema < MIN_SCHEMA_VERSION:
            raise SchemaDowngradeError(
                f"Schema '{schema}' older than minimum required '{MIN_SCHEMA_VERSION}'"
            )

    def append(self, payload: Dict[str, Any], signer: Dict[str, str], sig_b64: Optional[str] = None) -> Dict[str, Any]:
        # Schema validation: prevent downgrade attacks
        self.check_schema(payload)

        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        blocks = self._read_blocks()
        prev = blocks[-1]["block_hash"] if blocks else h_genesis()
        block_header = {
            "prev_hash": prev,
            "height": len(blocks) + 1,
            "payload": payload,
            "signer": signer,
            "sig": sig_b64,
        }
        block_hash = h_block(block_header)
        block = {**block_header, "block_hash": block_hash}
        with open(self.path, "ab") as f:
            f.write(json.dumps(block, sort_keys=True, separators=(",", ":")).encode("utf-8") + b"\n")
        logger.debug("Appended %s at height %d", payload.get("kind"), block["height"])
        return block

    def verify(self) -> bool:
        prev = h_genesis()
        for expected_height, b in enumerate(self._read_blocks(), start=1):
            payload = b["payload"]
            signer = b["signer"]
            sig = b.get("sig")

            block_header = {
                "prev_hash": prev,
                "height": expected_height,
                "payload": payload,
                "signer": signer,
                "sig": sig,
            }
            if b["prev_hash"] != prev or b.get("height") != expected_height:
                logger.warning("Chain break at height %d", expected_height)
                return False
            if b["block_hash"] != h_block(block_header):
                logger.warning("Block hash mismatch at height %d", expected_height)
                return False

            if sig:
                pub_b64 = signer.get("ed25519_pub_pem_b64")
                if not pub_b64 or not verify_payload(b64d(pub_b64), payload, sig):
                    logger.warning("Bad signature at height %d", expected_height)
                    return False
            prev = b["block_hash"]
        return True

    def find_by(self, key: str, value: Any) -> List[Dict[str, Any]]:
        out = []
        for b in self._read_blocks():
            p = b["payload"]
            if isinstance(p, dict) and p.get(key) == value:
                out.append(b)
        return out

    def all_payloads(self) -> List[Dict[str, Any]]:
        return [b["payload"] for b in self._read_blocks()]
