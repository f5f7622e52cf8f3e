"""
Слушать канал уведомлений и печатать события задач.

Использование:
    uv run python -m scrapejobs.cli.watch
    uv run python -m scrapejobs.cli.watch --task <task_id>
"""
import argparse
import asyncio
import signal
import sys

from loguru import logger

from scrapejobs.config import load_settings
from scrapejobs.exceptions import ChannelError
from scrapejobs.models.messages import (
    ErrorPayload,
    NotificationPayload,
    ScrapeUpdatePayload,
    TaskUpdatePayload,
)
from scrapejobs.notifications.channel import NotificationChannel
from scrapejobs.notifications.subscriptions import SubscriptionRegistry


def register_printers(registry: SubscriptionRegistry, task_id: str | None = None) -> None:
    """Подписать логирующие обработчики на все типы событий."""

    def matches(candidate: str | None) -> bool:
        return task_id is None or candidate == task_id

    def on_task(payload: TaskUpdatePayload) -> None:
        if matches(payload.task_id):
            extra = payload.error_message or payload.export_url or payload.challenge_type or ""
            logger.info(f"task {payload.task_id}: {payload.status} {extra}".rstrip())

    def on_scrape(payload: ScrapeUpdatePayload) -> None:
        if matches(payload.task_id):
            logger.info(f"task {payload.task_id}: {payload.progress}% of {payload.total_items}")

    def on_notification(payload: NotificationPayload) -> None:
        logger.log(payload.level.upper(), f"{payload.title}: {payload.message}")

    def on_error(payload: ErrorPayload) -> None:
        if matches(payload.task_id):
            logger.error(f"task {payload.task_id}: {payload.message}")

    registry.on_task_update(on_task)
    registry.on_scrape_update(on_scrape)
    registry.on_notification(on_notification)
    registry.on_error(on_error)


async def watch(task_id: str | None = None) -> None:
    settings = load_settings()
    registry = SubscriptionRegistry(NotificationChannel.from_settings(settings))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    register_printers(registry, task_id)
    try:
        await registry.connect()
    except ChannelError as e:
        # Канал сам повторит подключение с backoff
        logger.warning(f"Server unavailable, waiting for reconnect: {e}")
    try:
        await stop.wait()
    finally:
        await registry.disconnect()


def main() -> None:
    parser = argparse.ArgumentParser(description="Поток событий задач скрапинга")
    parser.add_argument("--task", default=None, help="Показывать только эту задачу")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="INFO")

    asyncio.run(watch(task_id=args.task))


if __name__ == "__main__":
    main()
