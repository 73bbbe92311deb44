"""
Background ingestion jobs.

Runs are started on the APScheduler background scheduler so that the
triggering request returns immediately. Each run gets its own cancellation
token, set by a timer once the run timeout elapses. Runs are not serialized:
overlapping runs each get their own ledger record and rely on the catalog's
atomic upserts.
"""

import threading
import uuid
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from catalog_ingest.sync.engine import IngestService, create_ingest_service_from_config
from catalog_ingest.utils.logging import get_logger

logger = get_logger(__name__)

# Global scheduler
scheduler = BackgroundScheduler()

ServiceFactory = Callable[[], IngestService]


def run_ingest(
    timeout_minutes: float = 30,
    service_factory: ServiceFactory = create_ingest_service_from_config,
) -> None:
    """Run one ingestion with a timeout; errors are logged, not raised."""
    cancel = threading.Event()
    timer = threading.Timer(timeout_minutes * 60, cancel.set)
    timer.daemon = True
    timer.start()

    service = None
    try:
        service = service_factory()
        run = service.run(cancel=cancel)
        logger.info(
            "Ingest job completed",
            run_id=run.id,
            status=run.status,
            books_upserted=run.books_upserted,
            authors_upserted=run.authors_upserted,
        )
    except Exception as e:
        logger.exception("Ingest job failed", error=str(e))
    finally:
        timer.cancel()
        if service is not None and hasattr(service.client, "close"):
            service.client.close()


def schedule_ingest_run(
    timeout_minutes: float = 30,
    service_factory: ServiceFactory = create_ingest_service_from_config,
) -> str:
    """
    Queue a one-off ingestion on the background scheduler.

    Returns:
        The scheduler job ID
    """
    job_id = f"ingest-{uuid.uuid4().hex[:8]}"
    scheduler.add_job(
        run_ingest,
        trigger='date',
        id=job_id,
        name='Catalog Ingest',
        kwargs={"timeout_minutes": timeout_minutes, "service_factory": service_factory},
    )
    logger.info("Ingest run scheduled", job_id=job_id)
    return job_id


def start_scheduler(interval_minutes: int = 0, timeout_minutes: float = 30) -> None:
    """
    Start the background scheduler.

    Args:
        interval_minutes: Periodic ingestion interval, 0 for trigger-only
        timeout_minutes: Timeout applied to each run
    """
    if interval_minutes > 0:
        scheduler.add_job(
            run_ingest,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id='ingest_job',
            name='Catalog Ingest (scheduled)',
            replace_existing=True,
            kwargs={"timeout_minutes": timeout_minutes},
        )

    if not scheduler.running:
        scheduler.start()

    if interval_minutes > 0:
        logger.info(f"Scheduler started with {interval_minutes} minute interval")
    else:
        logger.info("Scheduler started, ingestion runs on trigger only")


def shutdown_scheduler(wait: bool = False) -> None:
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("Scheduler shutdown")
