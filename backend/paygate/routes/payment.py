"""
Payment Routes — Subscription payment sessions.
Handles: session creation, payment checks, treasury settlement.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from paygate.errors import (
    ConfigurationError,
    InconsistentLedgerRead,
    NotFound,
    NotPayable,
    SettlementError,
)
from paygate.schemas.schemas import (
    SessionCreateRequest, SessionCreateResponse, SessionStatusResponse,
    PaymentCheckResponse, SettlementResponse,
)
from paygate.services.payment_detector import CheckStatus
from paygate.services.payment_engine import PaymentEngine
from paygate.services.retrier import RETRYABLE_ERRORS
from paygate.routes.deps import get_engine
from paygate.utils.rate_limiter import rate_limit
from paygate.utils.validators import validate_subject_id

logger = logging.getLogger("paygate.routes.payment")

router = APIRouter(prefix="/api/payment", tags=["Payment"])


@router.post("/session", response_model=SessionCreateResponse)
async def create_session(
    payload: SessionCreateRequest,
    engine: PaymentEngine = Depends(get_engine),
    _throttle: bool = Depends(rate_limit(requests=5, window=60, scope="create")),
):
    """Open a payment session with a fresh deposit address."""
    if not validate_subject_id(payload.subject_id):
        raise HTTPException(status_code=422, detail="Invalid subject id")

    try:
        session = await engine.create_session(payload.subject_id, payload.kind, referral=payload.referral)
    except ConfigurationError as e:
        logger.error(f"Cannot create session: {e}")
        raise HTTPException(status_code=503, detail="Payments are not configured")

    return SessionCreateResponse(
        session_id=session.session_id,
        address=session.custodial_address,
        amount=session.expected_amount,
        expires_at=session.expires_at,
    )


@router.get("/session/{session_id}", response_model=SessionStatusResponse)
def get_session(session_id: str, engine: PaymentEngine = Depends(get_engine)):
    """Public view of a live session."""
    try:
        session = engine.store.get(session_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionStatusResponse(**session.public_view())


@router.post("/session/{session_id}/check", response_model=PaymentCheckResponse)
async def check_payment(session_id: str, engine: PaymentEngine = Depends(get_engine)):
    """Check whether the deposit has arrived."""
    try:
        result = await engine.check_payment(session_id)
    except ConfigurationError as e:
        logger.error(f"Cannot check payment for {session_id}: {e}")
        raise HTTPException(status_code=503, detail="Payments are not configured")
    except RETRYABLE_ERRORS as e:
        logger.warning(f"Payment check for {session_id} failed after retries: {e}")
        raise HTTPException(status_code=503, detail="Ledger unavailable, try again shortly")
    except InconsistentLedgerRead as e:
        logger.error(f"Payment check for {session_id}: {e}")
        raise HTTPException(status_code=503, detail="Payment seen but not yet verifiable, try again shortly")

    response = PaymentCheckResponse(
        session_id=session_id,
        status=result.status.value,
        partial_balance=result.partial_balance,
        shortfall=result.shortfall,
        proof_ref=result.proof_ref,
    )
    if result.status == CheckStatus.PAID:
        response.message = "Payment received"
    elif result.status == CheckStatus.INSUFFICIENT:
        response.message = f"Payment not complete: {result.shortfall} SOL still missing"
    elif result.status == CheckStatus.EXPIRED:
        response.message = "Session expired. Please start a new payment session."
    else:
        response.message = "Session not found. Please start a new payment session."
    return response


@router.post("/session/{session_id}/settle", response_model=SettlementResponse)
async def settle(session_id: str, engine: PaymentEngine = Depends(get_engine)):
    """Sweep a paid session's deposit to the treasury."""
    try:
        result = await engine.settle(session_id)
    except ConfigurationError as e:
        logger.error(f"Cannot settle {session_id}: {e}")
        raise HTTPException(status_code=503, detail="Payments are not configured")
    except NotPayable as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SettlementError as e:
        # Operator has been alerted; the payer's side already succeeded
        raise HTTPException(status_code=502, detail=f"Settlement failed: {type(e).__name__}")
    except RETRYABLE_ERRORS as e:
        logger.error(f"Settlement of {session_id} exhausted retries: {e}")
        raise HTTPException(status_code=503, detail="Ledger unavailable, settlement can be retried")

    return SettlementResponse(
        session_id=result.session_id,
        proof_ref=result.proof_ref,
        amount_sent=result.amount_sent,
        fee=result.fee,
    )
