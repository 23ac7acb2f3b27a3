from sqlalchemy.ext.asyncio import async_sessionmaker

from app.services import settlement_service
from app.services.notification_service import NotificationSink
from app.utils.logger_config import setup_logger

logger = setup_logger()


async def reconcile_vendor_settlements(
    session_factory: async_sessionmaker, notifier: NotificationSink | None = None
):
    """
    Retry vendor settlements left pending or failed by earlier deliveries
    """
    logger.info("Starting settlement reconciliation job...")
    try:
        result = await settlement_service.reconcile_settlements(
            session_factory=session_factory, notifier=notifier
        )
        logger.info(f"Settlement reconciliation job completed: {result}")
    except Exception as e:
        logger.error(f"Error in reconcile_vendor_settlements: {str(e)}")


def schedule_background_jobs(
    scheduler, session_factory: async_sessionmaker, notifier=None, minutes: int = 10
):
    scheduler.add_job(
        reconcile_vendor_settlements,
        trigger="interval",
        minutes=minutes,
        kwargs={"session_factory": session_factory, "notifier": notifier},
        id="reconcile_settlements",
        replace_existing=True,
    )
