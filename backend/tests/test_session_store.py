import asyncio
import logging
from datetime import timedelta
from decimal import Decimal

import pytest

from paygate.errors import ConfigurationError, InvalidTransition, NotFound
from paygate.models.enums import SessionKind, SessionStatus
from paygate.services.session_store import SessionStore

from conftest import TREASURY, T0


def test_create_individual_session(store, durable):
    session = asyncio.run(store.create("12345", SessionKind.INDIVIDUAL))

    assert session.expected_amount == Decimal("0.5")
    assert session.kind == SessionKind.INDIVIDUAL
    assert session.status == SessionStatus.PENDING
    assert session.created_at == T0
    assert session.expires_at == T0 + timedelta(minutes=30)
    assert store.get(session.session_id) is session
    assert durable.records[session.session_id]["status"] == SessionStatus.PENDING


def test_group_price_and_referral_discount(store):
    async def scenario():
        group = await store.create("-100200300", SessionKind.GROUP)
        referred = await store.create("777", "individual", discount_percent=Decimal("20"))
        custom = await store.create("778", SessionKind.INDIVIDUAL, price_override=Decimal("1.25"))
        return group, referred, custom

    group, referred, custom = asyncio.run(scenario())
    assert group.expected_amount == Decimal("2.0")
    assert referred.expected_amount == Decimal("0.4")
    assert referred.base_amount == Decimal("0.5")
    assert custom.expected_amount == Decimal("1.25")


def test_addresses_are_unique(store):
    async def scenario():
        return [await store.create(str(i), SessionKind.INDIVIDUAL) for i in range(20)]

    sessions = asyncio.run(scenario())
    assert len({s.custodial_address for s in sessions}) == 20


def test_create_requires_treasury_and_ledger(durable, prices, clock):
    no_treasury = SessionStore(durable, prices, treasury_address="", ledger_endpoint="memory://", clock=clock)
    no_ledger = SessionStore(durable, prices, treasury_address=TREASURY, ledger_endpoint=None, clock=clock)

    with pytest.raises(ConfigurationError):
        asyncio.run(no_treasury.create("1", SessionKind.INDIVIDUAL))
    with pytest.raises(ConfigurationError):
        asyncio.run(no_ledger.create("1", SessionKind.INDIVIDUAL))
    assert durable.records == {}


def test_persist_failure_leaves_registry_empty(store, durable):
    durable.fail_persist = True
    with pytest.raises(RuntimeError):
        asyncio.run(store.create("1", SessionKind.INDIVIDUAL))
    assert len(store) == 0


def test_get_unknown_session(store):
    with pytest.raises(NotFound):
        store.get("missing")


def test_mark_paid_is_idempotent(store, durable):
    async def scenario():
        session = await store.create("1", SessionKind.INDIVIDUAL)
        await store.mark_paid(session.session_id, "deposit-a")
        await store.mark_paid(session.session_id, "deposit-b")
        return session

    session = asyncio.run(scenario())
    assert session.status == SessionStatus.PAID
    assert session.inbound_proof_ref == "deposit-a"
    assert [h[1] for h in durable.history] == [SessionStatus.PAID]


def test_mark_settled_requires_paid(store):
    async def scenario():
        session = await store.create("1", SessionKind.INDIVIDUAL)
        await store.mark_settled(session.session_id, "sweep")

    with pytest.raises(InvalidTransition):
        asyncio.run(scenario())


def test_mark_settled_wipes_secret_and_repeats_safely(store, durable):
    async def scenario():
        session = await store.create("1", SessionKind.INDIVIDUAL)
        secret = session.custodial_secret
        await store.mark_paid(session.session_id, "deposit")
        await store.mark_settled(session.session_id, "sweep")
        await store.mark_settled(session.session_id, "sweep")
        with pytest.raises(InvalidTransition):
            await store.mark_settled(session.session_id, "another-sweep")
        return session, secret

    session, secret = asyncio.run(scenario())
    assert session.status == SessionStatus.SETTLED
    assert session.outbound_proof_ref == "sweep"
    assert session.custodial_secret is None
    assert secret.wiped
    assert [h[1] for h in durable.history] == [SessionStatus.PAID, SessionStatus.SETTLED]


def test_sweep_removes_expired_pending_only(store, durable, clock):
    async def scenario():
        pending = await store.create("1", SessionKind.INDIVIDUAL)
        paid = await store.create("2", SessionKind.INDIVIDUAL)
        settled = await store.create("3", SessionKind.INDIVIDUAL)
        await store.mark_paid(paid.session_id, "d2")
        await store.mark_paid(settled.session_id, "d3")
        await store.mark_settled(settled.session_id, "s3")

        clock.advance(minutes=31)
        removed = await store.sweep_expired()
        return pending, paid, settled, removed

    pending, paid, settled, removed = asyncio.run(scenario())
    assert removed == [pending.session_id]
    assert pending.session_id not in store
    assert store.get(paid.session_id).status == SessionStatus.PAID
    assert store.get(settled.session_id).status == SessionStatus.SETTLED
    assert durable.records[pending.session_id]["status"] == SessionStatus.EXPIRED


def test_sweep_keeps_sessions_inside_validity_window(store, clock):
    async def scenario():
        session = await store.create("1", SessionKind.INDIVIDUAL)
        clock.advance(minutes=29)
        return session, await store.sweep_expired()

    session, removed = asyncio.run(scenario())
    assert removed == []
    assert session.session_id in store


def test_sweep_yields_to_concurrent_mark_paid(store, clock):
    async def scenario():
        session = await store.create("1", SessionKind.INDIVIDUAL)
        clock.advance(minutes=31)

        lock = store._lock(session.session_id)
        await lock.acquire()
        paying = asyncio.create_task(store.mark_paid(session.session_id, "late-deposit"))
        sweeping = asyncio.create_task(store.sweep_expired())
        await asyncio.sleep(0)
        lock.release()

        await paying
        return session, await sweeping

    session, removed = asyncio.run(scenario())
    assert removed == []
    assert store.get(session.session_id).status == SessionStatus.PAID


def test_restore_reinserts_open_sessions(store, durable, prices, clock):
    async def scenario():
        a = await store.create("1", SessionKind.INDIVIDUAL)
        b = await store.create("2", SessionKind.GROUP)
        await store.mark_paid(b.session_id, "d")
        return a, b

    a, b = asyncio.run(scenario())
    fresh = SessionStore(durable, prices, TREASURY, "memory://", clock=clock)

    assert fresh.restore(durable.load_open()) == 2
    assert fresh.get(b.session_id).status == SessionStatus.PAID
    assert fresh.restore(durable.load_open()) == 0


def test_secret_never_logged(store, caplog):
    caplog.set_level(logging.DEBUG, logger="paygate")
    session = asyncio.run(store.create("1", SessionKind.INDIVIDUAL))

    stored = session.custodial_secret.to_storage()
    assert stored not in caplog.text
    assert "redacted" in repr(session)
    assert stored not in repr(session)


def test_settled_sessions_are_evicted_after_retention(store, clock):
    async def scenario():
        recent = await store.create("1", SessionKind.INDIVIDUAL)
        old = await store.create("2", SessionKind.INDIVIDUAL)
        for session in (recent, old):
            await store.mark_paid(session.session_id, f"d-{session.subject_id}")
        await store.mark_settled(old.session_id, "s-old")
        clock.advance(minutes=59)
        await store.mark_settled(recent.session_id, "s-recent")
        clock.advance(minutes=2)
        await store.sweep_expired()
        return recent, old, await store.recall_settled(old.session_id)

    recent, old, recalled = asyncio.run(scenario())
    assert old.session_id not in store
    assert old.session_id not in store._locks
    assert old.session_id not in store._settle_locks
    assert recent.session_id in store
    assert recalled.outbound_proof_ref == "s-old"
