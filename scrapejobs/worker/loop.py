"""Polling pending-задач из scrape_tasks и передача их в очередь."""
import asyncio

from loguru import logger
from supabase import Client

from scrapejobs.config import Settings
from scrapejobs.database import fetch_pending_tasks
from scrapejobs.models.task import ScrapeJob
from scrapejobs.notifications.hub import Publisher
from scrapejobs.platforms.base import ScrapeAdapter
from scrapejobs.worker.processor import process_job
from scrapejobs.worker.queue import JobHandler, JobQueue


def create_job_handler(
    db: Client,
    adapter: ScrapeAdapter,
    settings: Settings,
    publisher: Publisher | None = None,
) -> JobHandler:
    """Обработчик заданий очереди с зависимостями воркера."""

    async def handle(job: ScrapeJob) -> None:
        await process_job(db, job, adapter, settings, publisher)

    return handle


async def enqueue_pending(db: Client, queue: JobQueue, limit: int = 10) -> int:
    """Один проход: pending задачи → задания очереди. Возвращает число новых."""
    rows = await fetch_pending_tasks(db, limit=limit)
    enqueued = 0
    for row in rows:
        if queue.enqueue(ScrapeJob.from_task_row(row)):
            enqueued += 1
    if enqueued:
        logger.info(f"Enqueued {enqueued} pending tasks")
    return enqueued


async def run_poller(
    db: Client,
    queue: JobQueue,
    settings: Settings,
    shutdown_event: asyncio.Event,
) -> None:
    """
    Основной polling-цикл.
    Берёт pending задачи и ставит их в очередь; дубликаты отсекает сама очередь.
    Останавливается по shutdown_event.
    """
    logger.info(f"Poller started (poll={settings.worker_poll_interval}s)")

    while not shutdown_event.is_set():
        try:
            await enqueue_pending(db, queue)
        except Exception as e:
            logger.exception(f"Error in poller loop: {e}")

        # Ждём poll_interval или shutdown
        try:
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=settings.worker_poll_interval,
            )
        except TimeoutError:
            pass  # Нормальный таймаут: продолжаем цикл

    logger.info("Poller shutting down")
