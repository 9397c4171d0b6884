"""
Validators — Solana address and subject id checks for inbound requests and config.
"""
import re

from solders.pubkey import Pubkey


def validate_solana_address(address: str | None) -> bool:
    """Valid base58 32-byte public key (e.g. a treasury wallet)."""
    if not address:
        return False
    try:
        Pubkey.from_string(address.strip())
    except ValueError:
        return False
    return True


def validate_subject_id(subject_id: str | None) -> bool:
    """Chat account or group id: optional leading '-' then digits, or a @username."""
    if not subject_id:
        return False
    return bool(re.match(r"^(-?\d{1,20}|@?[A-Za-z0-9_]{3,64})$", subject_id.strip()))
