"""Точка входа: инициализация и запуск API, поллера и очереди заданий."""
import asyncio
import signal
import sys

import uvicorn
from loguru import logger
from supabase import create_client

from scrapejobs.api.app import create_app
from scrapejobs.config import Settings, load_settings
from scrapejobs.log_sink import create_supabase_sink
from scrapejobs.notifications.hub import NotificationHub
from scrapejobs.platforms.base import ScrapeAdapter
from scrapejobs.platforms.mock import MockScrapeAdapter
from scrapejobs.storage import ensure_bucket_exists
from scrapejobs.worker.loop import create_job_handler, run_poller
from scrapejobs.worker.queue import JobQueue


def create_adapter(settings: Settings) -> ScrapeAdapter:
    """Выбор адаптера по SCRAPER_BACKEND."""
    if settings.scraper_backend == "hikerapi":
        if not settings.hikerapi_token:
            raise ValueError("SCRAPER_BACKEND=hikerapi requires HIKERAPI_TOKEN")
        from scrapejobs.platforms.instagram.hiker_adapter import HikerScrapeAdapter

        logger.info("Using HikerAPI backend")
        return HikerScrapeAdapter(settings.hikerapi_token, settings)

    logger.info("Using mock scrape backend")
    return MockScrapeAdapter(step_delay=settings.mock_step_delay)


async def main() -> None:
    """Инициализация и запуск API + воркера."""
    settings = load_settings()

    # Логирование
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    if settings.log_level == "DEBUG":
        logger.add("logs/worker.log", rotation="100 MB", retention="7 days")

    logger.info("Starting scrape worker")

    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())

    # Персистить WARNING+ логи в Supabase
    logger.add(
        create_supabase_sink(db),
        level="WARNING",
        enqueue=True,
        serialize=False,
    )

    await ensure_bucket_exists(db, settings.exports_bucket)

    adapter = create_adapter(settings)
    hub = NotificationHub()
    queue = JobQueue(
        create_job_handler(db, adapter, settings, hub),
        max_concurrent=settings.worker_max_concurrent,
        max_attempts=settings.queue_max_attempts,
        retry_base_seconds=settings.queue_retry_base_seconds,
    )

    app = create_app(db, hub, queue, settings)
    config = uvicorn.Config(app, host="0.0.0.0", port=settings.api_port, log_level="warning")
    server = uvicorn.Server(config)

    # Graceful shutdown
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    logger.info(f"API server starting on port {settings.api_port}")

    async def _serve() -> None:
        serve_task = asyncio.create_task(server.serve())
        await shutdown_event.wait()
        server.should_exit = True
        await serve_task

    try:
        await asyncio.gather(
            _serve(),
            run_poller(db, queue, settings, shutdown_event),
            queue.run(shutdown_event),
        )
    finally:
        logger.info("Scrape worker stopped gracefully")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
