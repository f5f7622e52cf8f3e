"""Pydantic-модели задачи скрапинга, результата и задания очереди."""
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

TaskStatus = Literal[
    "pending",
    "processing",
    "completed",
    "failed",
    "rate_limited",
    "challenge_required",
]

# После этих статусов задача больше не изменяется
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

# Попытка завершена, но задачу можно вернуть в очередь вручную
RESUMABLE_STATUSES: frozenset[str] = frozenset({"rate_limited", "challenge_required"})


class ScrapeTask(BaseModel):
    """Задача из таблицы scrape_tasks."""

    id: str
    username: str
    status: TaskStatus = "pending"
    progress: int = Field(default=0, ge=0, le=100)
    total_items: int = 0
    payload: dict[str, Any] | None = None
    attempts: int = 0
    error_message: str | None = None
    challenge_required: bool = False
    challenge_type: str | None = None
    rate_limited: bool = False
    rate_limit_reset_at: datetime | None = None
    export_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ScrapedPost(BaseModel):
    """Пост, полученный адаптером."""

    id: str
    url: str
    caption: str = ""
    likes_count: int = 0
    comments_count: int = 0


class ScrapeJob(BaseModel):
    """Задание очереди: ссылка на задачу + параметры адаптера."""

    task_id: str
    source_identifier: str
    adapter_parameters: dict[str, Any] = {}
    attempts: int = 0  # Сколько раз задание уже доставлялось воркеру

    @classmethod
    def from_task_row(cls, row: dict[str, Any]) -> "ScrapeJob":
        """Собрать задание из строки scrape_tasks."""
        return cls(
            task_id=row["id"],
            source_identifier=row["username"],
            adapter_parameters=row.get("payload") or {},
        )
