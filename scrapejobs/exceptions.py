"""Исключения пайплайна задач и канала уведомлений."""
from datetime import datetime


class ScrapeJobError(Exception):
    """Общая ошибка обработки задания."""

    retryable: bool = False

    def __init__(self, task_id: str, message: str) -> None:
        self.task_id = task_id
        super().__init__(message)


class RetryableJobError(ScrapeJobError):
    """Ошибка, после которой очередь может повторить доставку."""

    retryable = True


class RateLimitedError(RetryableJobError):
    """Источник ограничил частоту запросов: повтор после reset_at."""

    def __init__(self, task_id: str, reset_at: datetime | None) -> None:
        self.reset_at = reset_at
        super().__init__(task_id, f"Rate limited until {reset_at.isoformat() if reset_at else 'unknown'}")


class TaskFailedError(ScrapeJobError):
    """Задача уже помечена failed: повтор бесполезен."""


class TaskNotFoundError(TaskFailedError):
    """Задачи нет в scrape_tasks."""

    def __init__(self, task_id: str) -> None:
        super().__init__(task_id, f"Task {task_id} not found")


class ChannelError(Exception):
    """Ошибка канала уведомлений."""


class ConnectionInProgressError(ChannelError):
    """Подключение уже выполняется: параллельный connect отклонён."""


class ChannelClosedError(ChannelError):
    """Канал закрыт до завершения подключения."""
