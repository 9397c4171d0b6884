"""
Admin Routes — Live session registry and audit trail access.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from paygate.database import get_session_factory
from paygate.schemas.schemas import AuditLogEntry, ChainVerificationResponse, SweepResponse
from paygate.services.audit_service import AuditService
from paygate.services.payment_engine import PaymentEngine
from paygate.routes.deps import get_engine

router = APIRouter(prefix="/api/admin", tags=["Admin"])


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@router.get("/sessions")
def list_sessions(engine: PaymentEngine = Depends(get_engine)):
    """Every session currently held in memory."""
    sessions = engine.store.snapshot()
    return {"total": len(sessions), "sessions": sessions}


@router.post("/sweep", response_model=SweepResponse)
async def sweep_now(engine: PaymentEngine = Depends(get_engine)):
    """Run one expiry sweep immediately."""
    removed = await engine.sweep_expired()
    return SweepResponse(removed=removed, live_sessions=len(engine.store))


@router.get("/audit/{session_id}", response_model=list[AuditLogEntry])
def get_audit_trail(session_id: str, db: Session = Depends(get_db)):
    """Full hash-chained audit trail of a session."""
    return AuditService.get_trail(db, session_id)


@router.get("/audit/{session_id}/verify", response_model=ChainVerificationResponse)
def verify_audit_trail(session_id: str, db: Session = Depends(get_db)):
    """Verify the audit chain of a session is unbroken."""
    return AuditService.verify_chain(db, session_id)
