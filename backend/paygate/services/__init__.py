from paygate.services.retrier import BackoffRetrier
from paygate.services.session_store import SessionStore
from paygate.services.payment_detector import PaymentDetector, PaymentCheck, CheckStatus
from paygate.services.settlement import SettlementSweeper, SettlementResult
from paygate.services.expiry_timer import ExpirySweepTimer
from paygate.services.audit_service import AuditService
from paygate.services.payment_engine import PaymentEngine, build_engine

__all__ = [
    "BackoffRetrier", "SessionStore", "PaymentDetector", "PaymentCheck", "CheckStatus",
    "SettlementSweeper", "SettlementResult", "ExpirySweepTimer", "AuditService",
    "PaymentEngine", "build_engine",
]
