"""
Error Taxonomy — Exceptions raised by the payment engine.

Detection outcomes ("not paid yet", "expired") are reported as values by the
detector; these classes cover the cases a caller has to handle explicitly.
"""


class PaymentGateError(Exception):
    """Base class for every engine error."""


class ConfigurationError(PaymentGateError):
    """Treasury address or ledger endpoint missing."""


class NotFound(PaymentGateError):
    """No live session with this id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class Expired(PaymentGateError):
    """Session validity window elapsed before payment."""


class InsufficientPayment(PaymentGateError):
    """Deposit below the expected amount; recoverable by sending more."""


class InvalidTransition(PaymentGateError):
    """A status change that would move a session backwards or sideways."""

    def __init__(self, session_id: str, current: str, target: str):
        super().__init__(f"Session {session_id}: cannot move from {current} to {target}")
        self.session_id = session_id
        self.current = current
        self.target = target


class NotPayable(PaymentGateError):
    """Settlement requested for a session that is missing or not paid."""


class InconsistentLedgerRead(PaymentGateError):
    """Balance covers the amount but no deposit transaction is visible."""


class RetryableLedgerError(PaymentGateError):
    """Transient ledger failure (network, timeout, unconfirmed transaction)."""


class TransferDropped(PaymentGateError):
    """A submitted transfer will never land: its blockhash expired or it failed on chain."""


class SettlementError(PaymentGateError):
    """Fatal settlement condition. Funds stay on the custodial address."""


class NothingToTransfer(SettlementError):
    pass


class InsufficientForFee(SettlementError):
    pass


class NothingLeftAfterFees(SettlementError):
    pass
