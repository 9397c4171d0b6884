"""
Payment Session Model — Durable copy of every payment session.
Maps to the 'payment_sessions' table. Rows are never deleted; they form the audit trail.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Numeric, Text

from paygate.database import Base


class PaymentSessionRecord(Base):
    __tablename__ = "payment_sessions"

    id = Column(String(36), primary_key=True, index=True)
    subject_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(16), nullable=False)       # individual | group

    base_amount = Column(Numeric(20, 9), nullable=False)
    discount_percent = Column(Numeric(5, 2), default=0)
    expected_amount = Column(Numeric(20, 9), nullable=False)   # SOL

    custodial_address = Column(String(64), unique=True, nullable=False, index=True)
    custodial_secret = Column(Text, nullable=False)  # base64; access-controlled store

    status = Column(String(16), default="pending")
    # Statuses: pending → paid → settled, or pending → expired

    inbound_proof_ref = Column(String(128))    # deposit signature
    outbound_proof_ref = Column(String(128))   # treasury sweep signature

    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
