"""
Durable Store — SQL copy of every payment session plus its audit trail.

The in-process registry decides; this store is written after each decision
for crash recovery and audit. Rows are never deleted.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy.orm import sessionmaker

from paygate.models.enums import SessionKind, SessionStatus
from paygate.models.payment_session import PaymentSession
from paygate.models.session import PaymentSessionRecord
from paygate.services.audit_service import AuditService
from paygate.services.custodial import CustodialSecret

logger = logging.getLogger("paygate.durable_store")

STATUS_ACTIONS = {
    SessionStatus.PAID: "PAYMENT_DETECTED",
    SessionStatus.SETTLED: "FUNDS_SETTLED",
    SessionStatus.EXPIRED: "SESSION_EXPIRED",
}


class DurableStore(Protocol):
    def persist(self, session: PaymentSession) -> None: ...

    def update_status(self, session_id: str, status: SessionStatus, proof_ref: Optional[str] = None) -> None: ...

    def record_submission(self, session_id: str, proof_ref: Optional[str]) -> None: ...

    def load(self, session_id: str) -> Optional[PaymentSession]: ...

    def load_open(self) -> list[PaymentSession]: ...


class SqlDurableStore:
    """SQLAlchemy-backed DurableStore with a hash-chained audit log."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def persist(self, session: PaymentSession) -> None:
        db = self._session_factory()
        try:
            db.add(PaymentSessionRecord(
                id=session.session_id,
                subject_id=session.subject_id,
                kind=session.kind.value,
                base_amount=session.base_amount if session.base_amount is not None else session.expected_amount,
                discount_percent=session.discount_percent,
                expected_amount=session.expected_amount,
                custodial_address=session.custodial_address,
                custodial_secret=session.custodial_secret.to_storage(),
                status=session.status.value,
                created_at=session.created_at,
                expires_at=session.expires_at,
            ))
            db.commit()

            AuditService.log(
                db, session.session_id, "SESSION_CREATED",
                payload={
                    "subject_id": session.subject_id,
                    "kind": session.kind,
                    "amount": session.expected_amount,
                    "address": session.custodial_address,
                },
                metadata={"expires_at": session.expires_at.isoformat()},
            )
        finally:
            db.close()

    def update_status(self, session_id: str, status: SessionStatus, proof_ref: Optional[str] = None) -> None:
        db = self._session_factory()
        try:
            record = db.get(PaymentSessionRecord, session_id)
            if record is None:
                logger.warning(f"No durable record for session {session_id}; status {status.value} not written")
                return

            record.status = status.value
            if status == SessionStatus.PAID:
                record.inbound_proof_ref = proof_ref
            elif status == SessionStatus.SETTLED:
                record.outbound_proof_ref = proof_ref
            record.updated_at = datetime.utcnow()
            db.commit()

            AuditService.log(
                db, session_id, STATUS_ACTIONS.get(status, status.value.upper()),
                payload={"status": status, "proof_ref": proof_ref},
            )
        finally:
            db.close()

    def record_submission(self, session_id: str, proof_ref: Optional[str]) -> None:
        """Record (or clear, with None) the sweep signature in flight on a paid session."""
        db = self._session_factory()
        try:
            record = db.get(PaymentSessionRecord, session_id)
            if record is None:
                logger.warning(f"No durable record for session {session_id}; sweep {proof_ref} not written")
                return

            dropped = record.outbound_proof_ref
            record.outbound_proof_ref = proof_ref
            record.updated_at = datetime.utcnow()
            db.commit()

            if proof_ref is not None:
                AuditService.log(db, session_id, "SETTLEMENT_SUBMITTED", payload={"proof_ref": proof_ref})
            else:
                AuditService.log(db, session_id, "SETTLEMENT_DROPPED", payload={"proof_ref": dropped})
        finally:
            db.close()

    def load(self, session_id: str) -> Optional[PaymentSession]:
        db = self._session_factory()
        try:
            record = db.get(PaymentSessionRecord, session_id)
            return _to_session(record) if record is not None else None
        finally:
            db.close()

    def load_open(self) -> list[PaymentSession]:
        """Pending and paid sessions; used to rebuild the registry after a restart."""
        db = self._session_factory()
        try:
            records = (
                db.query(PaymentSessionRecord)
                .filter(PaymentSessionRecord.status.in_([SessionStatus.PENDING.value, SessionStatus.PAID.value]))
                .all()
            )
            return [_to_session(r) for r in records]
        finally:
            db.close()


def _to_session(record: PaymentSessionRecord) -> PaymentSession:
    status = SessionStatus(record.status)
    is_open = status in (SessionStatus.PENDING, SessionStatus.PAID)
    return PaymentSession(
        session_id=record.id,
        subject_id=record.subject_id,
        kind=SessionKind(record.kind),
        expected_amount=Decimal(record.expected_amount),
        base_amount=Decimal(record.base_amount),
        discount_percent=Decimal(record.discount_percent or 0),
        custodial_address=record.custodial_address,
        # Only open sessions may still spend from their address
        custodial_secret=CustodialSecret.from_storage(record.custodial_secret) if is_open else None,
        created_at=record.created_at,
        expires_at=record.expires_at,
        status=status,
        inbound_proof_ref=record.inbound_proof_ref,
        outbound_proof_ref=record.outbound_proof_ref,
        settled_at=record.updated_at if status == SessionStatus.SETTLED else None,
    )
