"""
Audit Log Model — Immutable, tamper-evident audit trail.
Every session transition is SHA-256 hashed and timestamped.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey

from paygate.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    session_id = Column(String(36), ForeignKey("payment_sessions.id"), nullable=False, index=True)

    action = Column(String(50), nullable=False)
    # Actions: SESSION_CREATED, PAYMENT_DETECTED, FUNDS_SETTLED, SESSION_EXPIRED

    payload_hash = Column(String(64))       # SHA-256 hash of the action payload
    previous_hash = Column(String(64))      # Hash chain for tamper detection

    log_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.utcnow)
