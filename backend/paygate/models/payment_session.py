"""
In-process payment session — the live record the engine decides on.
The ORM row in `session.py` is its eventually consistent durable copy.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from paygate.models.enums import SessionKind, SessionStatus

if TYPE_CHECKING:
    from paygate.services.custodial import CustodialSecret


@dataclass
class PaymentSession:
    session_id: str
    subject_id: str
    kind: SessionKind
    expected_amount: Decimal
    custodial_address: str
    custodial_secret: Optional["CustodialSecret"]
    created_at: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.PENDING
    base_amount: Optional[Decimal] = None
    discount_percent: Decimal = Decimal(0)
    inbound_proof_ref: Optional[str] = None
    outbound_proof_ref: Optional[str] = None   # sweep signature; set while in flight, before settled
    settled_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.status == SessionStatus.PENDING and now > self.expires_at

    def public_view(self) -> dict:
        """Fields safe to hand to callers and logs."""
        return {
            "session_id": self.session_id,
            "subject_id": self.subject_id,
            "kind": self.kind.value,
            "address": self.custodial_address,
            "amount": self.expected_amount,
            "status": self.status.value,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "inbound_proof_ref": self.inbound_proof_ref,
            "outbound_proof_ref": self.outbound_proof_ref,
        }
