"""
Pydantic Schemas — Request & Response models for API validation.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, List
from pydantic import BaseModel, Field

from paygate.models.enums import SessionKind


# ──────────────── Payment Session ────────────────

class SessionCreateRequest(BaseModel):
    subject_id: str = Field(..., description="Paying account id or group chat id")
    kind: SessionKind = Field(SessionKind.INDIVIDUAL, description="individual or group")
    referral: bool = Field(False, description="Apply the referral discount")


class SessionCreateResponse(BaseModel):
    session_id: str
    address: str
    amount: Decimal
    expires_at: datetime
    message: str = "Send the exact amount to the address before it expires"


class SessionStatusResponse(BaseModel):
    session_id: str
    subject_id: str
    kind: str
    address: str
    amount: Decimal
    status: str
    created_at: datetime
    expires_at: datetime
    inbound_proof_ref: Optional[str] = None
    outbound_proof_ref: Optional[str] = None


class PaymentCheckResponse(BaseModel):
    session_id: str
    status: str   # paid | insufficient | expired | notFound
    partial_balance: Optional[Decimal] = None
    shortfall: Optional[Decimal] = None
    proof_ref: Optional[str] = None
    message: str = ""


class SettlementResponse(BaseModel):
    session_id: str
    proof_ref: str
    amount_sent: Optional[Decimal] = None
    fee: Optional[Decimal] = None


# ──────────────── Admin / Audit ────────────────

class AuditLogEntry(BaseModel):
    id: int
    session_id: str
    action: str
    payload_hash: Optional[str] = None
    previous_hash: Optional[str] = None
    timestamp: datetime
    log_metadata: Optional[Dict] = None

    class Config:
        from_attributes = True


class ChainVerificationResponse(BaseModel):
    valid: bool
    total_entries: int
    broken_at: Optional[int] = None
    message: Optional[str] = None


class SweepResponse(BaseModel):
    removed: List[str]
    live_sessions: int


# ──────────────── Generic ────────────────

class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    live_sessions: int
    ledger: str
    uptime_seconds: float
