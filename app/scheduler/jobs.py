"""APScheduler jobs — incremental SteVe transaction sync every SYNC_INTERVAL_SECONDS."""

import logging
from datetime import timedelta

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import get_settings, get_odoo_config, get_steve_config
from app.core.exceptions import AppError
from app.infrastructure.database import session_scope
from app.infrastructure.odoo_api import OdooAPIClient
from app.infrastructure.steve_api import SteveAPIClient

settings = get_settings()
logger = logging.getLogger(__name__)
tz = pytz.timezone(settings.TIMEZONE)

scheduler = AsyncIOScheduler(timezone=tz)


async def transaction_sync_job():
    """Periodic job: pull stopped sessions from SteVe and bill them.

    Failures are logged and swallowed here; the watermark was not advanced,
    so the next tick retries the same window.
    """
    from app.application.services.transaction_sync_service import run_incremental

    steve = SteveAPIClient(get_steve_config())
    odoo = OdooAPIClient(get_odoo_config())
    slack = timedelta(seconds=settings.SYNC_SLACK_SECONDS)

    with session_scope() as db:
        try:
            result = await run_incremental(db, steve, odoo, slack=slack)
            logger.info(f"Transaction sync result: {result.model_dump(mode='json')}")
        except AppError as e:
            logger.error(f"Transaction sync failed: [{e.code}] {e.message} {e.details}")
        except Exception:
            logger.exception("Transaction sync crashed")


def start_scheduler():
    """Start the APScheduler with the transaction sync job."""
    scheduler.add_job(
        transaction_sync_job,
        trigger=IntervalTrigger(seconds=settings.SYNC_INTERVAL_SECONDS, timezone=tz),
        id="transaction_sync",
        name=f"SteVe transaction sync (every {settings.SYNC_INTERVAL_SECONDS}s)",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(f"Scheduler started — transaction sync every {settings.SYNC_INTERVAL_SECONDS}s ({settings.TIMEZONE})")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
