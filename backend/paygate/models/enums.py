"""
Session enums shared by the ORM records, the in-process registry and the API.
"""
import enum


class SessionKind(str, enum.Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class SessionStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    SETTLED = "settled"
    EXPIRED = "expired"


# Allowed forward moves; settled and expired are terminal.
TRANSITIONS = {
    SessionStatus.PENDING: {SessionStatus.PAID, SessionStatus.EXPIRED},
    SessionStatus.PAID: {SessionStatus.SETTLED},
    SessionStatus.SETTLED: set(),
    SessionStatus.EXPIRED: set(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS[current]
