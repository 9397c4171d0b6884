"""
Cryptographic Hashing Utilities — SHA-256 payload hashing for audit trails.
"""
import enum
import hashlib
import json
from decimal import Decimal


def _canonical(value):
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value)


def generate_hash(data: dict) -> str:
    """SHA-256 of a dictionary (sorted keys; Decimals and enums normalized)."""
    canonical = json.dumps(data, sort_keys=True, default=_canonical).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def generate_chain_hash(current_data: dict, previous_hash: str = "") -> str:
    """SHA-256(previous_hash + hash(current_payload)); links entries into a chain."""
    current_hash = generate_hash(current_data)
    return hashlib.sha256(f"{previous_hash}{current_hash}".encode("utf-8")).hexdigest()
