"""CRUD-операции с Supabase для пайплайна задач."""
import asyncio
import re
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from supabase import Client

from scrapejobs.models.task import RESUMABLE_STATUSES, ScrapedPost, ScrapeTask

TASKS_TABLE = "scrape_tasks"
RESULTS_TABLE = "scrape_results"


async def run_in_thread(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Выполнить синхронный вызов Supabase в отдельном потоке."""
    return await asyncio.to_thread(func, *args, **kwargs)


def sanitize_error(error: str) -> str:
    """Убрать потенциальные креденшалы из сообщения об ошибке."""
    return re.sub(r"://[^@\s]+@", "://***:***@", error)


def _serialize(value: Any) -> Any:
    """datetime → ISO-строка, остальное как есть (postgrest принимает JSON)."""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


async def update_task_status(db: Client, task_id: str, fields: dict[str, Any]) -> None:
    """
    Частичное обновление строки задачи.
    updated_at выставляется всегда, даже если fields пуст.
    """
    data = {key: _serialize(value) for key, value in fields.items()}
    data["updated_at"] = datetime.now(UTC).isoformat()
    await run_in_thread(
        db.table(TASKS_TABLE).update(data).eq("id", task_id).execute
    )


async def get_task(db: Client, task_id: str) -> ScrapeTask | None:
    """Прочитать актуальное состояние задачи или None."""
    result = await run_in_thread(
        db.table(TASKS_TABLE).select("*").eq("id", task_id).limit(1).execute
    )
    if not result.data:
        return None
    return ScrapeTask.model_validate(result.data[0])


async def insert_result_item(db: Client, task_id: str, post: ScrapedPost) -> None:
    """Добавить один результат (append-only, без upsert)."""
    await run_in_thread(
        db.table(RESULTS_TABLE).insert({
            "task_id": task_id,
            "post_id": post.id,
            "post_url": post.url,
            "caption": post.caption,
            "likes_count": post.likes_count,
            "comments_count": post.comments_count,
        }).execute
    )


async def fetch_pending_tasks(db: Client, limit: int = 10) -> list[dict]:
    """Получить pending задачи в порядке создания."""
    result = await run_in_thread(
        db.table(TASKS_TABLE)
        .select("*")
        .eq("status", "pending")
        .order("created_at", desc=False)
        .limit(limit)
        .execute
    )
    if result.data:
        logger.debug(f"fetch_pending_tasks: {len(result.data)} tasks")
    return result.data


async def requeue_task(db: Client, task_id: str) -> bool:
    """
    Вернуть задачу в pending после challenge/rate limit (ручное действие оператора).
    Возвращает False, если задача не найдена или её статус не допускает повтор.
    """
    task = await get_task(db, task_id)
    if task is None:
        logger.warning(f"requeue_task: task {task_id} not found")
        return False
    if task.status not in RESUMABLE_STATUSES:
        logger.warning(f"requeue_task: task {task_id} is {task.status}, not resumable")
        return False

    await update_task_status(db, task_id, {
        "status": "pending",
        "challenge_required": False,
        "challenge_type": None,
        "rate_limited": False,
        "rate_limit_reset_at": None,
        "error_message": None,
    })
    logger.info(f"Task {task_id} requeued from {task.status}")
    return True
