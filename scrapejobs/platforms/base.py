"""Базовый интерфейс адаптера скрапинга и варианты его результата."""
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from scrapejobs.models.task import ScrapedPost

# (progress 0-100, total_items): адаптер ждёт завершения перед следующим шагом
ProgressCallback = Callable[[int, int], Awaitable[None]]


@dataclass(frozen=True)
class ChallengeRequired:
    """Источник требует интерактивную проверку."""

    challenge_type: str


@dataclass(frozen=True)
class RateLimited:
    """Источник ограничил частоту запросов до reset_at."""

    reset_at: datetime | None


@dataclass(frozen=True)
class ScrapeFailed:
    error: str


@dataclass(frozen=True)
class ScrapeSucceeded:
    posts: list[ScrapedPost] = field(default_factory=list)


ScrapeOutcome = ChallengeRequired | RateLimited | ScrapeFailed | ScrapeSucceeded


class ScrapeAdapter(Protocol):
    """Общий интерфейс адаптера."""

    async def scrape(
        self,
        source: str,
        on_progress: ProgressCallback,
        **params: Any,
    ) -> ScrapeOutcome:
        """Скрапинг источника с отчётом о прогрессе."""
        ...
