import os
import tempfile
from collections import Counter
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

# Keep logs and the default database out of the source tree
_TMP = tempfile.mkdtemp(prefix="paygate-tests-")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP, "logs"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP, 'paygate.db')}")

from paygate.errors import TransferDropped  # noqa: E402
from paygate.models.enums import SessionStatus  # noqa: E402
from paygate.services.pricing import PriceTable  # noqa: E402
from paygate.services.retrier import BackoffRetrier  # noqa: E402
from paygate.services.session_store import SessionStore  # noqa: E402
from paygate.services.payment_detector import PaymentDetector  # noqa: E402
from paygate.services.settlement import SettlementSweeper  # noqa: E402

TREASURY = "TreasuryWa11et1111111111111111111111111111"
T0 = datetime(2026, 1, 1, 12, 0, 0)


class FakeLedger:
    """In-memory ledger. Failures can be queued per method name."""

    rpc_url = "memory://ledger"

    def __init__(self):
        self.balances: dict[str, Decimal] = {}
        self.incoming: dict[str, str] = {}
        self.fee = Decimal("0.000005")
        self.minimum_balance = Decimal(0)
        self.calls = Counter()
        self.submitted = []
        self.confirmed = []
        self.failures: dict[str, list] = {}     # raised once each, in order
        self.outages: dict[str, Exception] = {}  # raised on every call
        self.dropping = 0                        # next N submissions never land
        self.dropped: set[str] = set()

    def _maybe_fail(self, method):
        self.calls[method] += 1
        if method in self.outages:
            raise self.outages[method]
        queued = self.failures.get(method)
        if queued:
            raise queued.pop(0)

    def deposit(self, address, amount, ref="deposit-sig-1"):
        self.balances[address] = self.balances.get(address, Decimal(0)) + Decimal(amount)
        self.incoming[address] = ref

    async def get_balance(self, address):
        self._maybe_fail("get_balance")
        return self.balances.get(address, Decimal(0))

    async def get_recent_incoming_ref(self, address):
        self._maybe_fail("get_recent_incoming_ref")
        return self.incoming.get(address)

    async def estimate_fee(self, shape):
        self._maybe_fail("estimate_fee")
        return self.fee

    async def get_minimum_balance(self):
        self._maybe_fail("get_minimum_balance")
        return self.minimum_balance

    async def submit(self, shape, signer):
        self._maybe_fail("submit")
        signer.reveal()
        ref = f"sweep-sig-{len(self.submitted) + 1}"
        self.submitted.append(shape)
        if self.dropping:
            self.dropping -= 1
            self.dropped.add(ref)
            return ref
        self.balances[shape.source] -= shape.amount + self.fee
        self.balances[shape.destination] = self.balances.get(shape.destination, Decimal(0)) + shape.amount
        return ref

    async def confirm(self, ref):
        self._maybe_fail("confirm")
        if ref in self.dropped:
            raise TransferDropped(f"{ref} expired before landing")
        self.confirmed.append(ref)


class MemoryDurableStore:
    def __init__(self):
        self.records: dict[str, dict] = {}
        self.history: list[tuple] = []
        self.fail_persist = False

    def persist(self, session):
        if self.fail_persist:
            raise RuntimeError("database unavailable")
        self.records[session.session_id] = {
            "status": session.status,
            "amount": session.expected_amount,
            "address": session.custodial_address,
            "secret": session.custodial_secret.to_storage(),
            "session": session,
        }

    def update_status(self, session_id, status, proof_ref=None):
        self.records[session_id]["status"] = status
        self.history.append((session_id, status, proof_ref))

    def record_submission(self, session_id, proof_ref):
        self.history.append((session_id, "submission", proof_ref))

    def load(self, session_id):
        record = self.records.get(session_id)
        return record["session"] if record else None

    def load_open(self):
        return [
            r["session"] for r in self.records.values()
            if r["status"] in (SessionStatus.PENDING, SessionStatus.PAID)
        ]


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def durable():
    return MemoryDurableStore()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def prices():
    return PriceTable(individual=Decimal("0.5"), group=Decimal("2.0"), referral_discount_percent=Decimal("20"))


@pytest.fixture
def store(durable, prices, clock):
    return SessionStore(durable, prices, treasury_address=TREASURY, ledger_endpoint=FakeLedger.rpc_url, clock=clock)


@pytest.fixture
def retrier():
    return BackoffRetrier(max_attempts=3, base_delay=0)


@pytest.fixture
def detector(store, ledger, retrier):
    return PaymentDetector(store, ledger, retrier)


@pytest.fixture
def sweeper(store, ledger, retrier):
    return SettlementSweeper(store, ledger, retrier, treasury_address=TREASURY, safety_margin=Decimal("0.000005"))
