"""Симуляция скрапинга для разработки и e2e-сценариев.

Поведение определяется именем источника:
- содержит "challenge" → требуется проверка (sms)
- содержит "ratelimit" → rate limit на час
- содержит "error" → ошибка адаптера
- иначе 10-29 постов, количество и счётчики детерминированы по имени
"""
import asyncio
import random
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger

from scrapejobs.models.task import ScrapedPost
from scrapejobs.platforms.base import (
    ChallengeRequired,
    ProgressCallback,
    RateLimited,
    ScrapeFailed,
    ScrapeOutcome,
    ScrapeSucceeded,
)

RATE_LIMIT_WINDOW = timedelta(hours=1)


class MockScrapeAdapter:
    """Детерминированный адаптер без обращения к внешнему источнику."""

    def __init__(self, step_delay: float = 0.2) -> None:
        self.step_delay = step_delay

    async def scrape(
        self,
        source: str,
        on_progress: ProgressCallback,
        **params: Any,
    ) -> ScrapeOutcome:
        logger.debug(f"[mock] Scraping {source} (params={params})")
        await asyncio.sleep(self.step_delay)

        if "challenge" in source:
            return ChallengeRequired(challenge_type="sms")
        if "ratelimit" in source:
            return RateLimited(reset_at=datetime.now(UTC) + RATE_LIMIT_WINDOW)
        if "error" in source:
            return ScrapeFailed(error="Instagram account not found or is private")

        rng = random.Random(source)
        total = int(params.get("max_posts") or rng.randint(10, 29))
        posts: list[ScrapedPost] = []

        for i in range(total):
            await asyncio.sleep(self.step_delay)
            posts.append(ScrapedPost(
                id=f"post_{source}_{i}",
                url=f"https://instagram.com/p/{source}_{i}",
                caption=f"Post {i + 1} by {source}",
                likes_count=rng.randint(0, 999),
                comments_count=rng.randint(0, 99),
            ))
            await on_progress(round((i + 1) / total * 100), total)

        return ScrapeSucceeded(posts=posts)
