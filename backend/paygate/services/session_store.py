"""
Session Store — in-process registry of live payment sessions.

Owns creation, lookup, status transitions and the expiry sweep. Every
transition on a session runs under that session's lock; ledger I/O and
durable writes happen outside it.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional, Tuple

from paygate.errors import ConfigurationError, InvalidTransition, NotFound
from paygate.models.enums import SessionKind, SessionStatus, can_transition
from paygate.models.payment_session import PaymentSession
from paygate.services.custodial import CustodialSecret, mint_custodial_address
from paygate.services.durable_store import DurableStore
from paygate.services.pricing import PriceTable

logger = logging.getLogger("paygate.session_store")


class SessionStore:
    def __init__(
        self,
        durable: DurableStore,
        prices: PriceTable,
        treasury_address: Optional[str],
        ledger_endpoint: Optional[str],
        validity: timedelta = timedelta(minutes=30),
        settled_retention: timedelta = timedelta(minutes=60),
        clock: Callable[[], datetime] = datetime.utcnow,
        minter: Callable[[], Tuple[str, CustodialSecret]] = mint_custodial_address,
    ):
        self._durable = durable
        self.prices = prices
        self.treasury_address = treasury_address
        self.ledger_endpoint = ledger_endpoint
        self.validity = validity
        self.settled_retention = settled_retention
        self.clock = clock
        self._minter = minter

        self._sessions: dict[str, PaymentSession] = {}
        self._addresses: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._settle_locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _lock(self, session_id: str) -> asyncio.Lock:
        return self._locks.setdefault(session_id, asyncio.Lock())

    def settlement_guard(self, session_id: str) -> asyncio.Lock:
        """Serializes settlement attempts on one session."""
        return self._settle_locks.setdefault(session_id, asyncio.Lock())

    def _mint_unique(self) -> Tuple[str, CustodialSecret]:
        while True:
            address, secret = self._minter()
            if address not in self._addresses:
                return address, secret
            secret.wipe()
            logger.warning("Minted address collided with a live session; minting again")

    # ─── Create / read ───────────────────────────────────────────────

    async def create(
        self,
        subject_id: str,
        kind: SessionKind,
        price_override: Optional[Decimal] = None,
        discount_percent: Optional[Decimal] = None,
    ) -> PaymentSession:
        if not self.treasury_address:
            raise ConfigurationError("TREASURY_ADDRESS is not set")
        if not self.ledger_endpoint:
            raise ConfigurationError("SOLANA_RPC_URL is not set")

        kind = SessionKind(kind)
        base, discount, expected = self.prices.quote(kind, price_override, discount_percent)
        address, secret = self._mint_unique()
        now = self.clock()

        session = PaymentSession(
            session_id=str(uuid.uuid4()),
            subject_id=str(subject_id),
            kind=kind,
            expected_amount=expected,
            base_amount=base,
            discount_percent=discount,
            custodial_address=address,
            custodial_secret=secret,
            created_at=now,
            expires_at=now + self.validity,
        )

        try:
            await asyncio.to_thread(self._durable.persist, session)
        except Exception as e:
            secret.wipe()
            logger.error(f"Failed to persist payment session {session.session_id}: {e}")
            raise

        self._sessions[session.session_id] = session
        self._addresses.add(address)

        logger.info(
            f"Created {kind.value} payment session {session.session_id} for {subject_id} "
            f"({expected} SOL → {address}, expires {session.expires_at.isoformat()})"
        )
        return session

    def get(self, session_id: str) -> PaymentSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFound(session_id)
        return session

    def snapshot(self) -> list[dict]:
        return [s.public_view() for s in list(self._sessions.values())]

    def restore(self, sessions: Iterable[PaymentSession]) -> int:
        """Re-insert open sessions loaded from the durable store after a restart."""
        restored = 0
        for session in sessions:
            if session.session_id in self._sessions:
                continue
            if session.status not in (SessionStatus.PENDING, SessionStatus.PAID):
                continue
            self._sessions[session.session_id] = session
            self._addresses.add(session.custodial_address)
            restored += 1
        if restored:
            logger.info(f"Restored {restored} open payment sessions from durable store")
        return restored

    # ─── Transitions ─────────────────────────────────────────────────

    async def mark_paid(self, session_id: str, proof_ref: str) -> PaymentSession:
        """pending → paid. Already paid or settled is a successful no-op."""
        async with self._lock(session_id):
            session = self.get(session_id)
            if session.status in (SessionStatus.PAID, SessionStatus.SETTLED):
                return session
            if not can_transition(session.status, SessionStatus.PAID):
                raise InvalidTransition(session_id, session.status.value, SessionStatus.PAID.value)
            session.status = SessionStatus.PAID
            session.inbound_proof_ref = proof_ref

        logger.info(f"Session {session_id} marked paid (deposit {proof_ref})")
        await asyncio.to_thread(self._durable.update_status, session_id, SessionStatus.PAID, proof_ref)
        return session

    async def mark_settled(self, session_id: str, proof_ref: str) -> PaymentSession:
        """paid → settled, then drops the custodial secret from memory."""
        async with self._lock(session_id):
            session = self.get(session_id)
            if session.status == SessionStatus.SETTLED and session.outbound_proof_ref == proof_ref:
                return session
            if session.status != SessionStatus.PAID:
                raise InvalidTransition(session_id, session.status.value, SessionStatus.SETTLED.value)
            session.status = SessionStatus.SETTLED
            session.outbound_proof_ref = proof_ref
            session.settled_at = self.clock()
            if session.custodial_secret is not None:
                session.custodial_secret.wipe()
                session.custodial_secret = None

        logger.info(f"Session {session_id} settled (sweep {proof_ref})")
        await asyncio.to_thread(self._durable.update_status, session_id, SessionStatus.SETTLED, proof_ref)
        return session

    async def record_submission(self, session_id: str, proof_ref: str) -> PaymentSession:
        """Pin a submitted sweep on a paid session so later attempts confirm it instead of resending."""
        async with self._lock(session_id):
            session = self.get(session_id)
            if session.status != SessionStatus.PAID:
                raise InvalidTransition(session_id, session.status.value, SessionStatus.SETTLED.value)
            session.outbound_proof_ref = proof_ref

        await self._write_submission(session_id, proof_ref)
        return session

    async def clear_submission(self, session_id: str, proof_ref: str) -> PaymentSession:
        """Forget an in-flight sweep that the ledger reports will never land."""
        async with self._lock(session_id):
            session = self.get(session_id)
            if session.status != SessionStatus.PAID or session.outbound_proof_ref != proof_ref:
                return session
            session.outbound_proof_ref = None

        logger.warning(f"Session {session_id}: sweep {proof_ref} dropped, a new one may be built")
        await self._write_submission(session_id, None)
        return session

    async def _write_submission(self, session_id: str, proof_ref: Optional[str]):
        # The registry already holds the ref; a failed write only weakens crash recovery
        try:
            await asyncio.to_thread(self._durable.record_submission, session_id, proof_ref)
        except Exception:
            logger.exception(f"Failed to record in-flight sweep {proof_ref} for session {session_id}")

    async def recall_settled(self, session_id: str) -> Optional[PaymentSession]:
        """Settled session by id, from the registry or, once evicted, from the durable copy."""
        session = self._sessions.get(session_id)
        if session is None:
            session = await asyncio.to_thread(self._durable.load, session_id)
        if session is None or session.status != SessionStatus.SETTLED:
            return None
        return session

    async def sweep_expired(self) -> list[str]:
        """Remove pending sessions past their expiry, then evict long-settled ones. Paid sessions stay."""
        now = self.clock()
        expired: list[PaymentSession] = []

        for session_id in list(self._sessions):
            candidate = self._sessions.get(session_id)
            if candidate is None or not candidate.is_expired(now):
                continue

            async with self._lock(session_id):
                # Re-read under the lock: a concurrent mark_paid may have won
                session = self._sessions.get(session_id)
                if session is None or not session.is_expired(now):
                    continue
                session.status = SessionStatus.EXPIRED
                del self._sessions[session_id]
                self._addresses.discard(session.custodial_address)
                if session.custodial_secret is not None:
                    session.custodial_secret.wipe()
                    session.custodial_secret = None
                expired.append(session)

            self._locks.pop(session_id, None)
            self._settle_locks.pop(session_id, None)

        for session in expired:
            try:
                await asyncio.to_thread(self._durable.update_status, session.session_id, SessionStatus.EXPIRED)
            except Exception:
                logger.exception(f"Failed to record expiry of session {session.session_id}")

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired payment sessions")

        await self._evict_settled(now)
        return [s.session_id for s in expired]

    async def _evict_settled(self, now: datetime):
        """Drop settled sessions past the retention window; their durable copy answers from then on."""
        evicted = 0
        for session_id in list(self._sessions):
            candidate = self._sessions.get(session_id)
            if candidate is None or candidate.settled_at is None:
                continue
            if now - candidate.settled_at <= self.settled_retention:
                continue

            async with self._lock(session_id):
                session = self._sessions.pop(session_id, None)
                if session is None:
                    continue
                self._addresses.discard(session.custodial_address)

            self._locks.pop(session_id, None)
            self._settle_locks.pop(session_id, None)
            evicted += 1

        if evicted:
            logger.info(f"Evicted {evicted} settled payment sessions from memory")
