"""SHA-256 helpers shared by the artifact store, the stages and the ledger.

Everything hashed as structured data goes through ``canonical_json_bytes``
first, so the same values always produce the same digest regardless of
dict ordering.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

_READ_BLOCK = 1 << 20


def canonical_json_bytes(obj: Any) -> bytes:
    """Compact, key-sorted, ASCII-only JSON encoding of *obj*."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True).encode()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Digest a file without loading it whole; artifacts can be large jars."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        while block := fh.read(_READ_BLOCK):
            digest.update(block)
    return digest.hexdigest()


def _stage_digest(stage_id: str, role: str, values: dict[str, Any]) -> str:
    return sha256_hex(canonical_json_bytes({"stage_id": stage_id, role: values}))


def compute_input_hash(stage_id: str, inputs: dict[str, Any]) -> str:
    """Digest of what a stage was asked to do."""
    return _stage_digest(stage_id, "inputs", inputs)


def compute_output_hash(stage_id: str, outputs: dict[str, Any]) -> str:
    """Digest of what a stage reported back."""
    return _stage_digest(stage_id, "outputs", outputs)


def compute_entry_hash(entry: dict[str, Any]) -> str:
    """Seal of a ledger entry: every field except ``entry_hash`` itself."""
    unsealed = dict(entry)
    unsealed.pop("entry_hash", None)
    return sha256_hex(canonical_json_bytes(unsealed))
