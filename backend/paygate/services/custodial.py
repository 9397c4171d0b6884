"""
Custodial Addresses — one fresh Solana key pair per payment session.
"""
import base64
from typing import Tuple

from solders.keypair import Keypair


class CustodialSecret:
    """Spending capability for a custodial address.

    Holds the raw 64-byte secret in a mutable buffer so it can be zeroed once
    the session is settled. Never renders its contents in repr/str.
    """

    __slots__ = ("_raw",)

    def __init__(self, raw: bytes):
        self._raw = bytearray(raw)

    def reveal(self) -> bytes:
        if not self._raw or not any(self._raw):
            raise ValueError("Custodial secret has been wiped")
        return bytes(self._raw)

    def wipe(self):
        for i in range(len(self._raw)):
            self._raw[i] = 0
        self._raw = bytearray()

    @property
    def wiped(self) -> bool:
        return not self._raw

    def to_storage(self) -> str:
        """Base64 form for the durable (access-controlled) copy only."""
        return base64.b64encode(self.reveal()).decode("ascii")

    @classmethod
    def from_storage(cls, encoded: str) -> "CustodialSecret":
        return cls(base64.b64decode(encoded))

    def __repr__(self) -> str:
        return "CustodialSecret(<redacted>)" if not self.wiped else "CustodialSecret(<wiped>)"

    __str__ = __repr__


def mint_custodial_address() -> Tuple[str, CustodialSecret]:
    """Generate a new key pair. Returns (base58 public address, secret)."""
    keypair = Keypair()
    return str(keypair.pubkey()), CustodialSecret(bytes(keypair))


def keypair_from_secret(secret: CustodialSecret) -> Keypair:
    """Rebuild the signing key pair from stored secret material."""
    return Keypair.from_bytes(secret.reveal())
