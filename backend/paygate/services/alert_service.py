"""
Operator Alert Service — raises the alarm when treasury funds are stranded on a custodial address.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from paygate.models.payment_session import PaymentSession

logger = logging.getLogger("paygate.alerts")


class OperatorAlertService:
    """Logs at CRITICAL and, if configured, posts the alert to a webhook."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def stranded_funds(self, session: PaymentSession, error: Exception) -> Dict[str, Any]:
        alert = {
            "event": "SETTLEMENT_FAILED",
            "session_id": session.session_id,
            "subject_id": session.subject_id,
            "address": session.custodial_address,
            "amount": str(session.expected_amount),
            "error": f"{type(error).__name__}: {error}",
            "timestamp": datetime.utcnow().isoformat(),
        }
        logger.critical(
            f"Funds stranded on {session.custodial_address} (session {session.session_id}): {alert['error']}"
        )

        if not self.webhook_url:
            alert["delivered"] = False
            return alert

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.webhook_url, json=alert)
                resp.raise_for_status()
            alert["delivered"] = True
        except httpx.HTTPError as e:
            logger.error(f"Operator webhook delivery failed: {e}")
            alert["delivered"] = False
        return alert
