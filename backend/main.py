"""
FastAPI application entry point for the Patronly subscription service.
"""
import logging
import multiprocessing
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from patronly.config import settings
from patronly.errors import PatronlyError
from patronly.logging_config import setup_logging
from patronly.rate_limit import limiter
from patronly.routers import subscriptions, payments, earnings, admin
from patronly.services.poller import PollerRegistry
from patronly.services.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)

setup_logging()

# Responses that describe payment state must never be served from a cache
NO_STORE_PREFIXES = ("/api/payments", "/api/webhooks", "/api/withdrawals", "/api/earnings")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start housekeeping jobs on the primary worker; drain pollers on the way out."""
    logger.info(f"Starting Patronly API (provider={settings.PAYMENT_PROVIDER}, currency={settings.PAYMENT_CURRENCY})")

    current_process_name = multiprocessing.current_process().name
    is_master = current_process_name in ("MainProcess", "SpawnProcess-1")
    if is_master:
        start_scheduler()
    else:
        logger.info(f"Skipping background jobs on {current_process_name}")

    yield

    logger.info(f"Shutting down Patronly API, cancelling {len(app.state.pollers)} poller(s)")
    await app.state.pollers.shutdown()
    if is_master:
        stop_scheduler()


app = FastAPI(
    title="Patronly API",
    description="Creator subscriptions, payment reconciliation and payouts",
    version="0.1.0",
    lifespan=lifespan
)

# Running payment pollers, keyed by reference
app.state.pollers = PollerRegistry()

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(PatronlyError)
async def patronly_error_handler(request: Request, exc: PatronlyError):
    """Render domain errors as the same {"detail": ...} body HTTPException produces."""
    if exc.status_code >= 500:
        logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log each request with its status and how long it took."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)"
    )
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses, plus no-store on payment state."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    if request.url.path.startswith(NO_STORE_PREFIXES):
        response.headers["Cache-Control"] = "no-store"
    return response


app.include_router(subscriptions.router, tags=["subscriptions"])
app.include_router(payments.router, tags=["payments"])
app.include_router(earnings.router, tags=["earnings"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
