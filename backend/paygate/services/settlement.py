"""
Settlement Sweeper — moves a paid session's custodial balance to the treasury, exactly once.

Amount sent = balance - estimated fee - margin, where the margin is a small
safety amount plus the ledger's rent-exempt minimum. The network refuses a
transfer that leaves the source funded but below that minimum.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from paygate.errors import (
    ConfigurationError,
    InsufficientForFee,
    NotFound,
    NotPayable,
    NothingLeftAfterFees,
    NothingToTransfer,
    RetryableLedgerError,
    TransferDropped,
)
from paygate.models.enums import SessionStatus
from paygate.models.payment_session import PaymentSession
from paygate.services.ledger import Ledger, TransferShape
from paygate.services.retrier import BackoffRetrier
from paygate.services.session_store import SessionStore

logger = logging.getLogger("paygate.settlement")


@dataclass(frozen=True)
class SettlementResult:
    session_id: str
    proof_ref: str
    amount_sent: Optional[Decimal] = None
    fee: Optional[Decimal] = None


@dataclass(frozen=True)
class TransferPlan:
    balance: Decimal
    fee: Decimal
    margin: Decimal
    amount: Decimal


def plan_transfer(balance: Decimal, fee: Decimal, margin: Decimal) -> TransferPlan:
    """Split a balance into amount/fee/margin, or fail before anything is submitted."""
    if balance <= 0:
        raise NothingToTransfer(f"No funds to transfer (balance={balance})")
    if balance < fee + margin:
        raise InsufficientForFee(f"Balance {balance} below fee {fee} + margin {margin}")
    amount = balance - fee - margin
    if amount <= 0:
        raise NothingLeftAfterFees(f"Nothing left after fee {fee} + margin {margin} (balance={balance})")
    return TransferPlan(balance=balance, fee=fee, margin=margin, amount=amount)


class SettlementSweeper:
    """Sweeps a paid session once.

    The margin held back is `safety_margin` plus the ledger's minimum balance,
    so the source never drops from rent-exempt to rent-paying. A submitted
    sweep is pinned on the session before it is confirmed; later attempts,
    in this call or a later one, confirm that signature instead of building
    a new transfer.
    """

    def __init__(
        self,
        store: SessionStore,
        ledger: Optional[Ledger],
        retrier: BackoffRetrier,
        treasury_address: str,
        safety_margin: Decimal = Decimal("0.000005"),
    ):
        self.store = store
        self.ledger = ledger
        self.retrier = retrier
        self.treasury_address = treasury_address
        self.safety_margin = safety_margin

    async def _payable(self, session_id: str) -> PaymentSession:
        try:
            return self.store.get(session_id)
        except NotFound:
            settled = await self.store.recall_settled(session_id)
            if settled is None:
                raise NotPayable(f"Session {session_id} not found")
            return settled

    async def settle(self, session_id: str) -> SettlementResult:
        session = await self._payable(session_id)
        if session.status == SessionStatus.SETTLED:
            return SettlementResult(session_id, session.outbound_proof_ref)
        if self.ledger is None:
            raise ConfigurationError("SOLANA_RPC_URL is not set")

        async with self.store.settlement_guard(session_id):
            # Another caller may have finished while we waited
            session = await self._payable(session_id)
            if session.status == SessionStatus.SETTLED:
                return SettlementResult(session_id, session.outbound_proof_ref)
            if session.status != SessionStatus.PAID:
                raise NotPayable(f"Session {session_id} is {session.status.value}, not paid")

            plans: dict[str, TransferPlan] = {}

            async def attempt() -> SettlementResult:
                return await self._transfer(session, plans)

            result = await self.retrier.execute(attempt)
            await self.store.mark_settled(session_id, result.proof_ref)
            return result

    async def _transfer(self, session: PaymentSession, plans: dict) -> SettlementResult:
        ref = session.outbound_proof_ref
        if ref is not None:
            try:
                await self.ledger.confirm(ref)
            except TransferDropped as e:
                logger.warning(f"Session {session.session_id}: in-flight sweep {ref} will not land ({e})")
                await self.store.clear_submission(session.session_id, ref)
            else:
                plan = plans.get(ref)
                if plan is None:
                    return SettlementResult(session.session_id, ref)
                return SettlementResult(session.session_id, ref, plan.amount, plan.fee)

        signer = session.custodial_secret
        if signer is None:
            raise NotPayable(f"Session {session.session_id} has no spending credential")

        source = session.custodial_address
        balance = await self.ledger.get_balance(source)
        if balance <= 0:
            raise NothingToTransfer(f"No funds to transfer (balance={balance})")

        fee = await self.ledger.estimate_fee(TransferShape(source, self.treasury_address, balance))
        reserve = await self.ledger.get_minimum_balance()
        plan = plan_transfer(balance, fee, self.safety_margin + reserve)

        ref = await self.ledger.submit(TransferShape(source, self.treasury_address, plan.amount), signer)
        plans[ref] = plan
        await self.store.record_submission(session.session_id, ref)
        logger.info(
            f"Sweeping session {session.session_id}: {plan.amount} SOL to treasury "
            f"(balance {plan.balance}, fee {plan.fee}, margin {plan.margin}), tx {ref}"
        )

        try:
            await self.ledger.confirm(ref)
        except TransferDropped as e:
            await self.store.clear_submission(session.session_id, ref)
            raise RetryableLedgerError(f"Sweep {ref} dropped before confirmation: {e}") from e
        return SettlementResult(session.session_id, ref, plan.amount, plan.fee)
