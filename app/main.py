from contextlib import asynccontextmanager

import logfire
import sentry_sdk
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.config import settings
from app.database.database import (
    async_session,
    create_tables,
    engine,
    get_db,
    get_db_context,
)
from app.routes import (
    account_routes,
    admin_routes,
    order_routes,
    payment_routes,
    rider_routes,
    vendor_routes,
    wallet_routes,
    ws_routes,
)
from app.services.deadline_service import PreparationDeadlineMonitor
from app.services.notification_service import build_notification_sink
from app.services.payment_service import HmacPaymentProvider
from app.utils.cron_job import schedule_background_jobs
from app.utils.errors import FulfillmentError
from app.utils.limiter import limiter
from app.utils.logger_config import configure_production_logging, setup_logger


if settings.ENVIRONMENT == "production":
    configure_production_logging()

logger = setup_logger()


@asynccontextmanager
async def lifespan(application: FastAPI):
    logger.info("Initializing application...")

    if settings.AUTO_CREATE_TABLES:
        await create_tables()

    async with get_db_context() as db:
        await db.execute(text("SELECT 1"))
    logger.info("Database connection successful")

    scheduler = AsyncIOScheduler()
    notifier = build_notification_sink()
    monitor = PreparationDeadlineMonitor(scheduler, async_session, notifier)

    application.state.scheduler = scheduler
    application.state.notifier = notifier
    application.state.deadline_monitor = monitor
    application.state.payment_provider = HmacPaymentProvider()
    application.state.session_factory = async_session

    schedule_background_jobs(
        scheduler,
        async_session,
        notifier,
        minutes=settings.SETTLEMENT_RECONCILE_MINUTES,
    )
    scheduler.start()

    async with get_db_context() as db:
        await monitor.rearm_pending(db)

    logger.info(f"Scheduler running: {scheduler.running}")
    logger.info(f"Scheduled jobs: {len(scheduler.get_jobs())}")

    try:
        yield
    finally:
        logger.info("Shutting down scheduler...")
        scheduler.shutdown(wait=False)
        await notifier.close()
        await engine.dispose()
        logger.info("Cleanup complete")


if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )


app = FastAPI(
    title=settings.APP_NAME,
    lifespan=lifespan,
    debug=settings.DEBUG,
    summary="Order fulfillment and earnings settlement for the FoodDash marketplace.",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
    content = {"detail": exc.detail, "code": exc.code}
    vendor_ids = getattr(exc, "vendor_ids", None)
    if vendor_ids:
        content["vendor_ids"] = vendor_ids
    return JSONResponse(status_code=exc.status_code, content=content)


if settings.LOGFIRE_TOKEN:
    logfire.configure(
        token=settings.LOGFIRE_TOKEN,
        service_name=settings.APP_NAME,
        environment=settings.ENVIRONMENT,
    )
    logfire.instrument_fastapi(app=app)
    logfire.instrument_sqlalchemy(engine=engine)


app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/api/db", tags=["Health Status"])
async def check_db_health(db: AsyncSession = Depends(get_db)):
    """Check database connectivity"""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}


@app.get("/api/health", tags=["Health Status"])
def api_health_check() -> dict:
    """Check the status of the API"""
    return {"status": "OK", "message": "API up and running"}


app.include_router(account_routes.router)
app.include_router(vendor_routes.router)
app.include_router(rider_routes.router)
app.include_router(payment_routes.router)
app.include_router(order_routes.router)
app.include_router(wallet_routes.router)
app.include_router(admin_routes.router)
app.include_router(ws_routes.router)
