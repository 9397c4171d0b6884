from paygate.models.enums import SessionKind, SessionStatus
from paygate.models.session import PaymentSessionRecord
from paygate.models.audit import AuditLog

__all__ = ["SessionKind", "SessionStatus", "PaymentSessionRecord", "AuditLog"]
