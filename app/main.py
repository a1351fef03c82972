"""
Loyalty Accrual - Main FastAPI Application
"""
from fastapi import FastAPI
from starlette.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.db.database import engine, Base, AsyncSessionLocal
from app.domain.services.accrual_client import AccrualClient
from app.domain.services.reconciliation import (
    OrderLease,
    PollPolicy,
    ReconciliationSupervisor,
)

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {"name": "Auth", "description": "Registration and login, bearer tokens."},
    {"name": "Orders", "description": "Upload order numbers and follow their accrual status."},
    {"name": "Balance", "description": "Points balance, withdrawals and withdrawal history."},
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "Loyalty points service. Uploaded orders are reconciled against the "
        "external accrual service in the background and credited once."
    ),
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


def build_supervisor() -> ReconciliationSupervisor:
    """Supervisor for this process, wired to the module-level engine"""
    policy = PollPolicy.from_settings()
    lease = OrderLease(
        ttl_seconds=int(policy.deadline_seconds) + settings.ACCRUAL_LEASE_MARGIN_SECONDS
    )
    return ReconciliationSupervisor(
        session_factory=AsyncSessionLocal,
        accrual_client=AccrualClient(),
        policy=policy,
        lease=lease,
    )


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables and start reconciliation"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    supervisor = build_supervisor()
    app.state.supervisor = supervisor

    if settings.RECONCILE_SWEEP_ON_STARTUP:
        # orders left NEW/PROCESSING by a previous process
        try:
            await supervisor.sweep()
        except Exception as e:
            logger.error(
                "Startup recovery sweep failed, the periodic sweep will retry",
                extra_data={"error": str(e)},
                exc_info=True,
            )


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    supervisor = getattr(app.state, "supervisor", None)
    if supervisor is not None:
        await supervisor.shutdown()
        await supervisor.accrual_client.aclose()

    from app.core.redis_client import close_redis
    await close_redis()
    # close pooled connections to avoid connection pool exhaustion
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description=(
        "Light check that the process is up. "
        "Does not check dependencies, so a DB or Redis outage does not trigger restarts."
    ),
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    """Liveness probe"""
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description=(
        "Checks DB, Redis and the Celery broker. "
        "status=healthy when everything answers, status=degraded (503) otherwise."
    ),
    responses={
        200: {
            "description": "All dependencies healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "db": "ok",
                        "redis": "ok",
                        "celery": "ok",
                        "reconciliation_in_flight": 3,
                    }
                }
            },
        },
        503: {"description": "At least one dependency unavailable"},
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    """Readiness probe"""
    from app.domain.services.health_service import check_readiness

    result = await check_readiness(getattr(app.state, "supervisor", None))
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
