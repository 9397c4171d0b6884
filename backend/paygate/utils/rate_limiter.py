"""
Memory-based fixed-window rate limiter for session creation and ledger-backed checks.
Each minted session costs a durable write and a key pair, so callers are throttled per client.
"""
import time
from fastapi import Request, HTTPException
from typing import Dict, Tuple

# In-memory storage: {(scope, client): (window_start, count)}
_rate_limit_store: Dict[Tuple[str, str], Tuple[float, int]] = {}


def rate_limit(requests: int, window: int, scope: str = "default"):
    """
    Dependency for rate limiting.
    Example: Depends(rate_limit(requests=5, window=60, scope="create"))
    """
    def limiter(request: Request):
        key = (scope, request.client.host if request.client else "unknown")
        now = time.time()

        window_start, count = _rate_limit_store.get(key, (now, 0))

        # Reset window if expired
        if now - window_start > window:
            window_start, count = now, 0

        if count >= requests:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Try again in {int(window - (now - window_start))} seconds."
            )

        _rate_limit_store[key] = (window_start, count + 1)
        return True

    return limiter


def reset_rate_limits():
    _rate_limit_store.clear()
