"""
Payment Detector — classifies a session's custodial balance as unpaid, partially paid or paid.
"""
import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from paygate.errors import ConfigurationError, InconsistentLedgerRead, NotFound
from paygate.models.enums import SessionStatus
from paygate.services.ledger import Ledger
from paygate.services.retrier import BackoffRetrier
from paygate.services.session_store import SessionStore

logger = logging.getLogger("paygate.payment_detector")


class CheckStatus(str, enum.Enum):
    PAID = "paid"
    INSUFFICIENT = "insufficient"
    EXPIRED = "expired"
    NOT_FOUND = "notFound"


@dataclass(frozen=True)
class PaymentCheck:
    status: CheckStatus
    expected_amount: Optional[Decimal] = None
    partial_balance: Optional[Decimal] = None
    proof_ref: Optional[str] = None

    @property
    def shortfall(self) -> Optional[Decimal]:
        if self.status != CheckStatus.INSUFFICIENT or self.expected_amount is None:
            return None
        return max(self.expected_amount - (self.partial_balance or Decimal(0)), Decimal(0))


class PaymentDetector:
    """Polls the ledger on demand; once a session is paid the answer is cached."""

    def __init__(self, store: SessionStore, ledger: Optional[Ledger], retrier: BackoffRetrier):
        self.store = store
        self.ledger = ledger
        self.retrier = retrier

    async def check_payment(self, session_id: str) -> PaymentCheck:
        try:
            session = self.store.get(session_id)
        except NotFound:
            settled = await self.store.recall_settled(session_id)
            if settled is None:
                return PaymentCheck(CheckStatus.NOT_FOUND)
            session = settled

        if session.is_expired(self.store.clock()):
            # Removal is left to the expiry sweep
            return PaymentCheck(CheckStatus.EXPIRED, expected_amount=session.expected_amount)

        if session.status in (SessionStatus.PAID, SessionStatus.SETTLED):
            return PaymentCheck(
                CheckStatus.PAID,
                expected_amount=session.expected_amount,
                proof_ref=session.inbound_proof_ref,
            )

        if self.ledger is None:
            raise ConfigurationError("SOLANA_RPC_URL is not set")

        address = session.custodial_address
        balance = await self.retrier.execute(lambda: self.ledger.get_balance(address))
        logger.info(f"Balance of {address}: {balance} SOL (expected: {session.expected_amount})")

        if balance < session.expected_amount:
            return PaymentCheck(
                CheckStatus.INSUFFICIENT,
                expected_amount=session.expected_amount,
                partial_balance=balance,
            )

        proof_ref = await self.retrier.execute(lambda: self.ledger.get_recent_incoming_ref(address))
        if not proof_ref:
            logger.error(f"Funded address {address} has no deposit transaction (session {session_id})")
            raise InconsistentLedgerRead(
                f"Balance {balance} SOL at {address} but no deposit transaction found"
            )

        try:
            session = await self.store.mark_paid(session_id, proof_ref)
        except NotFound:
            # Swept between the balance read and the transition
            return PaymentCheck(CheckStatus.NOT_FOUND)

        return PaymentCheck(
            CheckStatus.PAID,
            expected_amount=session.expected_amount,
            proof_ref=session.inbound_proof_ref,
        )
