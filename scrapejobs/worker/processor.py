"""Обработка одного задания: машина состояний задачи скрапинга.

pending → processing → completed | failed | rate_limited | challenge_required

Каждый переход сначала пишется в scrape_tasks, затем публикуется в канал
уведомлений. Публикация не транзакционна с записью: её сбой только логируется.
"""
import asyncio
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from supabase import Client

from scrapejobs.config import Settings
from scrapejobs.database import (
    get_task,
    insert_result_item,
    sanitize_error,
    update_task_status,
)
from scrapejobs.exceptions import (
    RateLimitedError,
    ScrapeJobError,
    TaskFailedError,
    TaskNotFoundError,
)
from scrapejobs.models.messages import (
    ErrorMessage,
    ErrorPayload,
    Message,
    NotificationMessage,
    NotificationPayload,
    ScrapeUpdateMessage,
    ScrapeUpdatePayload,
    TaskUpdateMessage,
    TaskUpdatePayload,
)
from scrapejobs.models.task import ScrapedPost, ScrapeJob
from scrapejobs.notifications.hub import Publisher
from scrapejobs.platforms.base import (
    ChallengeRequired,
    RateLimited,
    ScrapeAdapter,
    ScrapeFailed,
    ScrapeSucceeded,
)
from scrapejobs.storage import build_export_url, encode_export, export_key, upload_export


async def _publish(publisher: Publisher | None, message: Message) -> None:
    if publisher is None:
        return
    try:
        await publisher.publish(message)
    except Exception as e:
        logger.warning(f"Failed to publish {message.kind}: {e}")


async def _transition(
    db: Client,
    publisher: Publisher | None,
    task_id: str,
    fields: dict[str, Any],
) -> None:
    """Записать переход в store, затем опубликовать task_update."""
    await update_task_status(db, task_id, fields)
    payload = TaskUpdatePayload.model_validate({"task_id": task_id, **fields})
    await _publish(publisher, TaskUpdateMessage(payload=payload))


class ProgressWriter:
    """
    Единственный писатель прогресса для задачи.
    Вызовы сериализуются через lock; значение ниже уже записанного отбрасывается,
    поэтому progress в store не убывает даже при конкурентных колбэках адаптера.
    """

    def __init__(self, db: Client, task_id: str, publisher: Publisher | None = None) -> None:
        self.db = db
        self.task_id = task_id
        self.publisher = publisher
        self.high_water = -1
        self._lock = asyncio.Lock()

    async def __call__(self, progress: int, total_items: int) -> None:
        progress = max(0, min(100, int(progress)))
        async with self._lock:
            if progress < self.high_water:
                logger.debug(
                    f"Task {self.task_id}: dropping stale progress {progress} < {self.high_water}"
                )
                return
            self.high_water = progress
            await update_task_status(self.db, self.task_id, {
                "progress": progress,
                "total_items": total_items,
            })
            await _publish(self.publisher, ScrapeUpdateMessage(
                payload=ScrapeUpdatePayload(
                    task_id=self.task_id, progress=progress, total_items=total_items,
                ),
            ))


def build_export_bundle(task_id: str, username: str, posts: list[ScrapedPost]) -> dict[str, Any]:
    """Артефакт экспорта завершённой задачи."""
    return {
        "taskId": task_id,
        "username": username,
        "scrapedAt": datetime.now(UTC).isoformat(),
        "totalPosts": len(posts),
        "posts": [
            {
                "id": p.id,
                "url": p.url,
                "caption": p.caption,
                "likesCount": p.likes_count,
                "commentsCount": p.comments_count,
            }
            for p in posts
        ],
    }


async def _complete(
    db: Client,
    job: ScrapeJob,
    posts: list[ScrapedPost],
    settings: Settings,
    publisher: Publisher | None,
) -> None:
    """Сохранить результаты, загрузить экспорт, перевести задачу в completed."""
    task_id = job.task_id

    # По одной строке на пост, без дедупликации
    for post in posts:
        await insert_result_item(db, task_id, post)

    bundle = build_export_bundle(task_id, job.source_identifier, posts)
    key = export_key(task_id)
    await upload_export(db, settings.exports_bucket, key, encode_export(bundle))
    export_url = build_export_url(settings, key)

    await _transition(db, publisher, task_id, {
        "status": "completed",
        "progress": 100,
        "total_items": len(posts),
        "export_url": export_url,
        "completed_at": datetime.now(UTC),
    })
    logger.info(f"Task {task_id} completed: {len(posts)} posts → {export_url}")


async def process_job(
    db: Client,
    job: ScrapeJob,
    adapter: ScrapeAdapter,
    settings: Settings,
    publisher: Publisher | None = None,
) -> None:
    """
    Одна попытка обработки задания.

    - Задача уже completed/failed (повторная доставка) → ничего не делаем.
    - challenge → challenge_required, без исключения.
    - rate limit → rate_limited + RateLimitedError (очередь может повторить).
    - ошибка адаптера → failed + TaskFailedError.
    - любое другое исключение → failed, исключение пробрасывается дальше.
    """
    task_id = job.task_id
    logger.debug(f"Processing task {task_id} for {job.source_identifier} (delivery {job.attempts})")

    task = await get_task(db, task_id)
    if task is None:
        raise TaskNotFoundError(task_id)
    if task.is_terminal:
        logger.info(f"Task {task_id} is already {task.status}, skipping redelivery")
        return

    # Повторная доставка стартует с rate_limited/challenge_required: поля прошлой попытки сбрасываются
    await _transition(db, publisher, task_id, {
        "status": "processing",
        "challenge_required": False,
        "challenge_type": None,
        "rate_limited": False,
        "rate_limit_reset_at": None,
        "error_message": None,
    })

    try:
        outcome = await adapter.scrape(
            job.source_identifier,
            ProgressWriter(db, task_id, publisher),
            **job.adapter_parameters,
        )

        match outcome:
            case ChallengeRequired(challenge_type=challenge_type):
                logger.info(f"Challenge required for task {task_id}: {challenge_type}")
                await _transition(db, publisher, task_id, {
                    "status": "challenge_required",
                    "challenge_required": True,
                    "challenge_type": challenge_type,
                })
                await _publish(publisher, NotificationMessage(payload=NotificationPayload(
                    title="Challenge required",
                    message=f"Resolve the {challenge_type} challenge for "
                            f"@{job.source_identifier} and retry the task",
                    level="warning",
                )))
                return

            case RateLimited(reset_at=reset_at):
                logger.info(f"Rate limited for task {task_id} until {reset_at}")
                await _transition(db, publisher, task_id, {
                    "status": "rate_limited",
                    "rate_limited": True,
                    "rate_limit_reset_at": reset_at,
                })
                await _publish(publisher, NotificationMessage(payload=NotificationPayload(
                    title="Rate limited",
                    message=f"Scraping @{job.source_identifier} paused until "
                            f"{reset_at.isoformat() if reset_at else 'the limit resets'}",
                    level="warning",
                )))
                raise RateLimitedError(task_id, reset_at)

            case ScrapeFailed(error=error):
                safe_error = sanitize_error(error)
                logger.error(f"Error scraping {job.source_identifier}: {safe_error}")
                await _transition(db, publisher, task_id, {
                    "status": "failed",
                    "error_message": safe_error,
                })
                raise TaskFailedError(task_id, safe_error)

            case ScrapeSucceeded(posts=posts):
                await _complete(db, job, posts, settings, publisher)

            case _:
                raise TypeError(f"Unknown scrape outcome: {outcome!r}")

    except ScrapeJobError:
        raise
    except Exception as e:
        error = sanitize_error(str(e)) or type(e).__name__
        logger.exception(f"Error processing task {task_id}: {error}")
        try:
            await _transition(db, publisher, task_id, {
                "status": "failed",
                "error_message": error,
            })
        except Exception as store_error:
            logger.error(f"Failed to mark task {task_id} as failed: {store_error}")
        await _publish(publisher, ErrorMessage(
            payload=ErrorPayload(message=error, task_id=task_id, code=type(e).__name__),
        ))
        raise
