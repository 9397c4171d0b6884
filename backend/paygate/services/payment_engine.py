"""
Payment Engine — caller-facing API over the session store, detector and sweeper.

Every call is safe to repeat: create returns a new session, check and settle
return the same answer once a decision has been recorded.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Optional

from paygate.config import Settings, get_settings
from paygate.errors import SettlementError
from paygate.models.enums import SessionKind
from paygate.models.payment_session import PaymentSession
from paygate.services.alert_service import OperatorAlertService
from paygate.services.durable_store import DurableStore, SqlDurableStore
from paygate.services.expiry_timer import ExpirySweepTimer
from paygate.services.ledger import Ledger, SolanaLedger
from paygate.services.payment_detector import PaymentCheck, PaymentDetector
from paygate.services.pricing import PriceTable
from paygate.services.retrier import BackoffRetrier
from paygate.services.session_store import SessionStore
from paygate.services.settlement import SettlementResult, SettlementSweeper

logger = logging.getLogger("paygate.engine")


class PaymentEngine:
    def __init__(
        self,
        store: SessionStore,
        detector: PaymentDetector,
        sweeper: SettlementSweeper,
        durable: DurableStore,
        timer: Optional[ExpirySweepTimer] = None,
        alerts: Optional[OperatorAlertService] = None,
        ledger: Optional[Ledger] = None,
    ):
        self.store = store
        self.detector = detector
        self.sweeper = sweeper
        self.durable = durable
        self.timer = timer
        self.alerts = alerts or OperatorAlertService()
        self.ledger = ledger

    async def create_session(
        self,
        subject_id: str,
        kind: SessionKind,
        referral: bool = False,
    ) -> PaymentSession:
        discount = self.store.prices.referral_discount_percent if referral else None
        return await self.store.create(subject_id, kind, discount_percent=discount)

    async def check_payment(self, session_id: str) -> PaymentCheck:
        return await self.detector.check_payment(session_id)

    async def settle(self, session_id: str) -> SettlementResult:
        try:
            return await self.sweeper.settle(session_id)
        except SettlementError as e:
            await self.alerts.stranded_funds(self.store.get(session_id), e)
            raise

    async def sweep_expired(self) -> list[str]:
        return await self.store.sweep_expired()

    async def recover(self) -> int:
        """Reload pending/paid sessions from the durable store."""
        sessions = await asyncio.to_thread(self.durable.load_open)
        return self.store.restore(sessions)

    def start(self):
        if self.timer is not None:
            self.timer.start()

    async def stop(self):
        if self.timer is not None:
            await self.timer.stop()
        close = getattr(self.ledger, "close", None)
        if close is not None:
            await close()


def build_engine(
    settings: Optional[Settings] = None,
    ledger: Optional[Ledger] = None,
    durable: Optional[DurableStore] = None,
) -> PaymentEngine:
    """Wire the engine from settings; collaborators may be injected."""
    settings = settings or get_settings()

    if ledger is None and settings.SOLANA_RPC_URL:
        ledger = SolanaLedger(
            settings.SOLANA_RPC_URL,
            timeout=settings.LEDGER_TIMEOUT_SECONDS,
            confirmation_timeout=settings.CONFIRMATION_TIMEOUT_SECONDS,
        )
    if durable is None:
        from paygate.database import get_session_factory
        durable = SqlDurableStore(get_session_factory())

    prices = PriceTable(
        individual=settings.INDIVIDUAL_PRICE,
        group=settings.GROUP_PRICE,
        referral_discount_percent=settings.REFERRAL_DISCOUNT_PERCENT,
    )
    retrier = BackoffRetrier(
        max_attempts=settings.RETRY_MAX_ATTEMPTS,
        base_delay=settings.RETRY_BASE_DELAY_SECONDS,
    )
    store = SessionStore(
        durable,
        prices,
        treasury_address=settings.TREASURY_ADDRESS,
        ledger_endpoint=getattr(ledger, "rpc_url", settings.SOLANA_RPC_URL) if ledger is not None else None,
        validity=timedelta(minutes=settings.SESSION_EXPIRY_MINUTES),
        settled_retention=timedelta(minutes=settings.SETTLED_RETENTION_MINUTES),
    )

    return PaymentEngine(
        store=store,
        detector=PaymentDetector(store, ledger, retrier),
        sweeper=SettlementSweeper(
            store, ledger, retrier,
            treasury_address=settings.TREASURY_ADDRESS,
            safety_margin=settings.SETTLEMENT_SAFETY_MARGIN,
        ),
        durable=durable,
        timer=ExpirySweepTimer(store, settings.EXPIRY_SWEEP_INTERVAL_SECONDS),
        alerts=OperatorAlertService(settings.OPERATOR_WEBHOOK_URL),
        ledger=ledger,
    )
