"""
Route dependencies.
"""
from fastapi import HTTPException, Request

from paygate.services.payment_engine import PaymentEngine


def get_engine(request: Request) -> PaymentEngine:
    """FastAPI dependency: the engine wired at startup."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Payment engine not ready")
    return engine
