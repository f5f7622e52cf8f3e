"""Loguru sink для записи WARNING+ логов воркера в Supabase."""

from supabase import Client

LOGS_TABLE = "worker_logs"


def create_supabase_sink(db: Client):
    """Фабрика: вернуть sink-функцию, привязанную к db-клиенту."""

    def sink(message) -> None:
        record = message.record
        row = {
            "level": record["level"].name,
            "module": record["name"],
            "message": str(record["message"]),
        }
        # task_id приходит через logger.bind(task_id=...)
        task_id = record["extra"].get("task_id")
        if task_id:
            row["task_id"] = task_id
        try:
            db.table(LOGS_TABLE).insert(row).execute()
        except Exception:
            pass  # Ошибка логирования не должна ронять воркер

    return sink
