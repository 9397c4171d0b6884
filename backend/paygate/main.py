"""
Solana Payment Gate — FastAPI Application Entry Point

Aggregates routers, configures middleware, wires the payment engine and
starts the expiry sweep on startup.
"""
import logging
import time
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from paygate.config import get_settings
from paygate.database import init_db
from paygate.routes import payment_router, admin_router
from paygate.schemas.schemas import HealthResponse
from paygate.services.payment_engine import build_engine
from paygate.utils.logger import setup_logging
from paygate.utils.validators import validate_solana_address

settings = get_settings()
logger = logging.getLogger("paygate.main")

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Pay-per-period subscription gate settled in SOL. "
        "Mints one-time deposit addresses, detects payments and sweeps them to the treasury."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)
app.state.engine = None

# ─── Startup ─────────────────────────────────────────────────────────
BOOT_TIME = time.time()


@app.on_event("startup")
async def on_startup():
    """Initialize database tables, restore open sessions and start the expiry sweep."""
    setup_logging(settings.LOG_DIR, settings.DEBUG)

    if app.state.engine is None:
        init_db()
        app.state.engine = build_engine(settings)
        await app.state.engine.recover()

    if settings.TREASURY_ADDRESS and not validate_solana_address(settings.TREASURY_ADDRESS):
        logger.warning("TREASURY_ADDRESS is not a valid Solana address; settlements will fail")

    app.state.engine.start()

    logger.info(
        f"\n{'='*60}\n"
        f"  {settings.APP_NAME} v{settings.APP_VERSION}\n"
        f"  TIME: {datetime.now().isoformat()}\n"
        f"  LEDGER: {'[OK] Configured' if settings.SOLANA_RPC_URL else '[!] Missing SOLANA_RPC_URL'}\n"
        f"  TREASURY: {'[OK] Configured' if settings.TREASURY_ADDRESS else '[!] Missing TREASURY_ADDRESS'}\n"
        f"  DATABASE: {settings.DATABASE_URL}\n"
        f"  DEBUG: {settings.DEBUG}\n"
        f"{'='*60}"
    )


@app.on_event("shutdown")
async def on_shutdown():
    if app.state.engine is not None:
        await app.state.engine.stop()


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({duration}ms)")

    return response


# ─── API Routers ─────────────────────────────────────────────────────
app.include_router(payment_router)
app.include_router(admin_router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health():
    engine = app.state.engine
    ready = engine is not None and engine.ledger is not None
    return HealthResponse(
        status="healthy" if ready else "degraded",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        live_sessions=len(engine.store) if engine is not None else 0,
        ledger="configured" if ready else "unconfigured",
        uptime_seconds=round(time.time() - BOOT_TIME, 1),
    )
