"""
Ledger Client — narrow async interface the engine consumes, plus the Solana RPC implementation.
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from paygate.errors import RetryableLedgerError, TransferDropped
from paygate.services.custodial import CustodialSecret, keypair_from_secret

logger = logging.getLogger("paygate.ledger")

LAMPORTS_PER_SOL = Decimal(1_000_000_000)
SOL_QUANTUM = Decimal("0.000000001")

_CONFIRMED = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)


def lamports_to_sol(lamports: int) -> Decimal:
    return (Decimal(lamports) / LAMPORTS_PER_SOL).quantize(SOL_QUANTUM)


def sol_to_lamports(amount: Decimal) -> int:
    return int((amount * LAMPORTS_PER_SOL).to_integral_value())


@dataclass(frozen=True)
class TransferShape:
    """A prospective transfer; enough to price it and to build it."""
    source: str
    destination: str
    amount: Decimal


class Ledger(Protocol):
    async def get_balance(self, address: str) -> Decimal: ...

    async def get_recent_incoming_ref(self, address: str) -> Optional[str]: ...

    async def estimate_fee(self, shape: TransferShape) -> Decimal: ...

    async def get_minimum_balance(self) -> Decimal: ...

    async def submit(self, shape: TransferShape, signer: CustodialSecret) -> str: ...

    async def confirm(self, ref: str) -> None: ...


class SolanaLedger:
    """Solana JSON-RPC ledger at `confirmed` commitment.

    Every call is bounded by `timeout`; confirmation waits are bounded by
    `confirmation_timeout`. Transport failures surface as RetryableLedgerError.
    """

    def __init__(self, rpc_url: str, timeout: float = 10.0, confirmation_timeout: float = 60.0):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.confirmation_timeout = confirmation_timeout
        self._client = AsyncClient(rpc_url, commitment=Confirmed, timeout=timeout)
        # Blockhash validity per submitted signature, used when confirming
        self._last_valid_heights: dict[str, int] = {}
        self._rent_exempt_minimum: Optional[Decimal] = None

    async def close(self):
        await self._client.close()

    async def _call(self, what: str, coro, timeout: Optional[float] = None):
        try:
            return await asyncio.wait_for(coro, timeout or self.timeout)
        except asyncio.TimeoutError as e:
            raise RetryableLedgerError(f"{what}: timed out") from e
        except (httpx.HTTPError, SolanaRpcException) as e:
            raise RetryableLedgerError(f"{what}: {e}") from e

    async def get_balance(self, address: str) -> Decimal:
        resp = await self._call("getBalance", self._client.get_balance(Pubkey.from_string(address)))
        return lamports_to_sol(resp.value)

    async def get_recent_incoming_ref(self, address: str) -> Optional[str]:
        resp = await self._call(
            "getSignaturesForAddress",
            self._client.get_signatures_for_address(Pubkey.from_string(address), limit=10),
        )
        # Newest first; a fresh custodial address only ever receives deposits
        for status in resp.value:
            if status.err is None:
                return str(status.signature)
        return None

    def _build_message(self, shape: TransferShape, blockhash) -> Message:
        source = Pubkey.from_string(shape.source)
        instruction = transfer(
            TransferParams(
                from_pubkey=source,
                to_pubkey=Pubkey.from_string(shape.destination),
                lamports=sol_to_lamports(shape.amount),
            )
        )
        return Message.new_with_blockhash([instruction], source, blockhash)

    async def estimate_fee(self, shape: TransferShape) -> Decimal:
        latest = await self._call("getLatestBlockhash", self._client.get_latest_blockhash())
        message = self._build_message(shape, latest.value.blockhash)
        resp = await self._call("getFeeForMessage", self._client.get_fee_for_message(message))
        if resp.value is None:
            raise RetryableLedgerError("getFeeForMessage: blockhash not found, fee unavailable")
        return lamports_to_sol(resp.value)

    async def submit(self, shape: TransferShape, signer: CustodialSecret) -> str:
        keypair = keypair_from_secret(signer)
        if str(keypair.pubkey()) != shape.source:
            raise ValueError("Signer does not own the transfer source address")

        latest = await self._call("getLatestBlockhash", self._client.get_latest_blockhash())
        message = self._build_message(shape, latest.value.blockhash)
        tx = Transaction([keypair], message, latest.value.blockhash)

        resp = await self._call("sendTransaction", self._client.send_transaction(tx))
        signature = str(resp.value)
        self._last_valid_heights[signature] = latest.value.last_valid_block_height
        logger.info(f"Submitted transfer {signature} ({shape.amount} SOL → {shape.destination})")
        return signature

    async def get_minimum_balance(self) -> Decimal:
        """Rent-exempt minimum for a data-less system account; fixed per cluster."""
        if self._rent_exempt_minimum is None:
            resp = await self._call(
                "getMinimumBalanceForRentExemption",
                self._client.get_minimum_balance_for_rent_exemption(0),
            )
            self._rent_exempt_minimum = lamports_to_sol(resp.value)
        return self._rent_exempt_minimum

    async def _signature_status(self, signature: Signature):
        resp = await self._call(
            "getSignatureStatuses",
            self._client.get_signature_statuses([signature], search_transaction_history=True),
        )
        return resp.value[0]

    async def confirm(self, ref: str) -> None:
        """Wait for `confirmed`; raise TransferDropped if the transfer can never land."""
        signature = Signature.from_string(ref)
        try:
            resp = await self._call(
                "confirmTransaction",
                self._client.confirm_transaction(
                    signature,
                    commitment=Confirmed,
                    last_valid_block_height=self._last_valid_heights.get(ref),
                ),
                timeout=self.confirmation_timeout,
            )
            status = resp.value[0]
        except UnconfirmedTxError as e:
            raise RetryableLedgerError(f"confirmTransaction: {ref} not confirmed ({e})") from e
        except TransactionExpiredBlockheightExceededError as e:
            # Polling can miss a landing in the last valid block; ask once more
            status = await self._signature_status(signature)
            if status is None:
                self._last_valid_heights.pop(ref, None)
                raise TransferDropped(f"{ref} expired before landing") from e
            if status.err is None and status.confirmation_status not in _CONFIRMED:
                raise RetryableLedgerError(f"confirmTransaction: {ref} seen but not yet confirmed") from e

        self._last_valid_heights.pop(ref, None)
        if status is not None and status.err is not None:
            raise TransferDropped(f"{ref} failed on chain: {status.err}")
