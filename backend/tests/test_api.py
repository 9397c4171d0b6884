import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from paygate.config import Settings
from paygate.database import get_session_factory, init_db
from paygate.errors import InsufficientForFee
from paygate.main import app
from paygate.models.enums import SessionKind, SessionStatus
from paygate.models.payment_session import PaymentSession
from paygate.services.custodial import mint_custodial_address
from paygate.services.durable_store import SqlDurableStore
from paygate.services.payment_engine import build_engine
from paygate.utils.rate_limiter import reset_rate_limits

from conftest import TREASURY, FakeLedger, MemoryDurableStore


def make_settings(**overrides):
    values = dict(
        TREASURY_ADDRESS=TREASURY,
        SOLANA_RPC_URL="",
        RETRY_BASE_DELAY_SECONDS=0,
        EXPIRY_SWEEP_INTERVAL_SECONDS=3600,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def fake_ledger():
    return FakeLedger()


@pytest.fixture
def engine(fake_ledger):
    init_db()
    return build_engine(make_settings(), ledger=fake_ledger, durable=SqlDurableStore(get_session_factory()))


@pytest.fixture
def client(engine):
    reset_rate_limits()
    app.state.engine = engine
    with TestClient(app) as c:
        yield c
    app.state.engine = None


def create(client, **payload):
    body = {"subject_id": "123456", "kind": "individual"}
    body.update(payload)
    resp = client.post("/api/payment/session", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_create_and_check_unpaid(client):
    created = create(client)
    assert Decimal(str(created["amount"])) == Decimal("0.5")

    resp = client.post(f"/api/payment/session/{created['session_id']}/check")
    body = resp.json()
    assert body["status"] == "insufficient"
    assert Decimal(str(body["shortfall"])) == Decimal("0.5")
    assert "still missing" in body["message"]


def test_referral_and_group_pricing(client):
    assert Decimal(str(create(client, referral=True)["amount"])) == Decimal("0.4")
    assert Decimal(str(create(client, kind="group", subject_id="-100987")["amount"])) == Decimal("2.0")


def test_pay_then_settle(client, fake_ledger):
    created = create(client)
    fake_ledger.deposit(created["address"], Decimal("0.5"), ref="deposit-abc")

    check = client.post(f"/api/payment/session/{created['session_id']}/check").json()
    assert check["status"] == "paid"
    assert check["proof_ref"] == "deposit-abc"

    settled = client.post(f"/api/payment/session/{created['session_id']}/settle")
    assert settled.status_code == 200
    assert settled.json()["proof_ref"] == "sweep-sig-1"

    again = client.post(f"/api/payment/session/{created['session_id']}/settle")
    assert again.json()["proof_ref"] == "sweep-sig-1"
    assert len(fake_ledger.submitted) == 1

    status = client.get(f"/api/payment/session/{created['session_id']}").json()
    assert status["status"] == "settled"

    trail = client.get(f"/api/admin/audit/{created['session_id']}").json()
    assert [e["action"] for e in trail] == ["SESSION_CREATED", "PAYMENT_DETECTED", "FUNDS_SETTLED"]
    assert client.get(f"/api/admin/audit/{created['session_id']}/verify").json()["valid"] is True


def test_settle_unpaid_is_conflict(client):
    created = create(client)
    resp = client.post(f"/api/payment/session/{created['session_id']}/settle")
    assert resp.status_code == 409


def test_unknown_session(client):
    assert client.get("/api/payment/session/nope").status_code == 404
    assert client.post("/api/payment/session/nope/check").json()["status"] == "notFound"


def test_invalid_subject_rejected(client):
    resp = client.post("/api/payment/session", json={"subject_id": "bad id!", "kind": "individual"})
    assert resp.status_code == 422


def test_creation_is_rate_limited(client):
    for i in range(5):
        create(client, subject_id=str(1000 + i))
    resp = client.post("/api/payment/session", json={"subject_id": "2000", "kind": "individual"})
    assert resp.status_code == 429


def test_ledger_outage_is_503(client, fake_ledger):
    created = create(client)
    fake_ledger.outages["get_balance"] = ConnectionError("rpc unreachable")
    resp = client.post(f"/api/payment/session/{created['session_id']}/check")
    assert resp.status_code == 503


def test_admin_lists_live_sessions_without_secrets(client, engine):
    created = create(client)
    body = client.get("/api/admin/sessions").json()
    assert body["total"] == 1
    assert body["sessions"][0]["session_id"] == created["session_id"]
    stored = engine.store.get(created["session_id"]).custodial_secret.to_storage()
    assert stored not in str(body)


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["live_sessions"] == 0


def test_unconfigured_treasury_is_503(fake_ledger):
    reset_rate_limits()
    app.state.engine = build_engine(
        make_settings(TREASURY_ADDRESS=""), ledger=fake_ledger, durable=SqlDurableStore(get_session_factory())
    )
    try:
        with TestClient(app) as c:
            resp = c.post("/api/payment/session", json={"subject_id": "1", "kind": "individual"})
            assert resp.status_code == 503
    finally:
        app.state.engine = None


def test_fatal_settlement_alerts_operator(engine, fake_ledger, caplog):
    async def scenario():
        session = await engine.create_session("55", "individual")
        fake_ledger.deposit(session.custodial_address, Decimal("0.5"))
        await engine.check_payment(session.session_id)
        fake_ledger.balances[session.custodial_address] = Decimal("0.000001")
        with pytest.raises(InsufficientForFee):
            await engine.settle(session.session_id)
        return session

    session = asyncio.run(scenario())
    assert session.status == SessionStatus.PAID
    assert "Funds stranded" in caplog.text
    assert session.custodial_address in caplog.text


def restored_session(status, now):
    address, secret = mint_custodial_address()
    return PaymentSession(
        session_id=f"restored-{status.value}",
        subject_id="77",
        kind=SessionKind.INDIVIDUAL,
        expected_amount=Decimal("0.5"),
        custodial_address=address,
        custodial_secret=secret,
        created_at=now,
        expires_at=now + timedelta(minutes=30),
        status=status,
        inbound_proof_ref="deposit-old" if status == SessionStatus.PAID else None,
    )


def test_restored_sessions_without_ledger_are_503():
    reset_rate_limits()
    durable = MemoryDurableStore()
    engine = build_engine(make_settings(SOLANA_RPC_URL=""), ledger=None, durable=durable)
    now = engine.store.clock()
    engine.store.restore([
        restored_session(SessionStatus.PENDING, now),
        restored_session(SessionStatus.PAID, now),
    ])

    app.state.engine = engine
    try:
        with TestClient(app) as c:
            assert c.post("/api/payment/session/restored-pending/check").status_code == 503
            assert c.post("/api/payment/session/restored-paid/settle").status_code == 503
            assert c.post("/api/payment/session/restored-paid/check").json()["status"] == "paid"
    finally:
        app.state.engine = None
