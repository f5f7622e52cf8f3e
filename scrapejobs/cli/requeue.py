"""
Вернуть задачи в очередь после challenge или rate limit.

Использование:
    uv run python -m scrapejobs.cli.requeue <task_id> [<task_id> ...]
    uv run python -m scrapejobs.cli.requeue --status rate_limited   # все rate_limited
"""
import argparse
import asyncio
import sys

from loguru import logger
from supabase import create_client

from scrapejobs.config import load_settings
from scrapejobs.database import TASKS_TABLE, requeue_task, run_in_thread


async def requeue(task_ids: list[str], status: str | None = None) -> int:
    """Перевести задачи в pending. Возвращает число переведённых."""
    settings = load_settings()
    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())

    ids = list(task_ids)
    if status:
        result = await run_in_thread(
            db.table(TASKS_TABLE).select("id").eq("status", status).execute
        )
        ids.extend(row["id"] for row in result.data)

    if not ids:
        logger.info("Нет задач для повтора")
        return 0

    requeued = 0
    for task_id in ids:
        if await requeue_task(db, task_id):
            requeued += 1

    logger.info(
        f"Готово: {requeued}/{len(ids)} задач возвращено в pending. "
        f"Воркер заберёт их при следующем цикле."
    )
    return requeued


def main() -> None:
    parser = argparse.ArgumentParser(description="Повтор задач после challenge/rate limit")
    parser.add_argument("task_ids", nargs="*", help="ID задач")
    parser.add_argument(
        "--status", choices=["rate_limited", "challenge_required"], default=None,
        help="Вернуть все задачи с этим статусом",
    )
    args = parser.parse_args()
    if not args.task_ids and not args.status:
        parser.error("укажите task_id или --status")

    logger.remove()
    logger.add(sys.stderr, level="INFO")

    asyncio.run(requeue(args.task_ids, status=args.status))


if __name__ == "__main__":
    main()
