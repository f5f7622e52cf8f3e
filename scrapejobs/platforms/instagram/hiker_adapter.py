"""Скрапинг постов Instagram через HikerAPI (SaaS-бэкенд)."""
import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from hikerapi import Client
from loguru import logger

from scrapejobs.config import Settings
from scrapejobs.models.task import ScrapedPost
from scrapejobs.platforms.base import (
    ChallengeRequired,
    ProgressCallback,
    RateLimited,
    ScrapeFailed,
    ScrapeOutcome,
    ScrapeSucceeded,
)
from scrapejobs.platforms.instagram.exceptions import (
    ChallengeRequiredError,
    HikerAPIError,
    HikerRateLimitError,
    InsufficientBalanceError,
    PrivateAccountError,
    ScraperError,
)

# Без Retry-After считаем, что лимит снимается через час
DEFAULT_RATE_LIMIT_WINDOW = timedelta(hours=1)
_CHALLENGE_MARKERS = ("challenge_required", "checkpoint_required")


def _response_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except Exception:
        return resp.text
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or resp.text)
    return resp.text


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class SafeHikerClient(Client):
    """Client с проверкой HTTP-статусов (базовый Client их игнорирует)."""

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, Any] | None = None,
    ) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v}
        resp: httpx.Response = self._client.request(
            method,
            path,
            headers=self._headers | (headers or {}),
            params=params,
            data=data,
            json=json,
            timeout=self._timeout,
        )
        if resp.status_code == 402:
            raise InsufficientBalanceError(
                f"HikerAPI: недостаточно средств (HTTP 402). {_response_detail(resp)}"
            )
        if resp.status_code == 429:
            raise HikerRateLimitError(_parse_retry_after(resp.headers.get("retry-after")))
        if resp.status_code >= 400:
            detail = _response_detail(resp)
            for marker in _CHALLENGE_MARKERS:
                if marker in detail:
                    raise ChallengeRequiredError(marker.removesuffix("_required"))
            raise HikerAPIError(resp.status_code, detail)

        if "json" in resp.headers.get("content-type", "").lower():
            return resp.json()
        return resp.content


def _hiker_media_to_post(media: dict[str, Any]) -> ScrapedPost:
    """Маппинг HikerAPI media dict → ScrapedPost."""
    code = media.get("code") or ""
    return ScrapedPost(
        id=str(media.get("pk", "")),
        url=f"https://www.instagram.com/p/{code}/" if code else "",
        caption=media.get("caption_text") or "",
        likes_count=media.get("like_count") or 0,
        comments_count=media.get("comment_count") or 0,
    )


class HikerScrapeAdapter:
    """Живой адаптер: пользователь → медиа постранично, прогресс после каждой страницы."""

    def __init__(self, token: str, settings: Settings, client: Client | None = None) -> None:
        self.cl = client or SafeHikerClient(token=token)
        self.settings = settings

    async def scrape(
        self,
        source: str,
        on_progress: ProgressCallback,
        **params: Any,
    ) -> ScrapeOutcome:
        limit = int(params.get("max_posts") or self.settings.posts_to_fetch)
        try:
            posts = await self._fetch_posts(source, limit, on_progress)
        except ChallengeRequiredError as e:
            logger.warning(f"[HikerAPI] Challenge for @{source}: {e.challenge_type}")
            return ChallengeRequired(challenge_type=e.challenge_type)
        except HikerRateLimitError as e:
            window = (
                timedelta(seconds=e.retry_after)
                if e.retry_after is not None
                else DEFAULT_RATE_LIMIT_WINDOW
            )
            logger.warning(f"[HikerAPI] Rate limited on @{source}, reset in {window}")
            return RateLimited(reset_at=datetime.now(UTC) + window)
        except PrivateAccountError:
            return ScrapeFailed(error=f"@{source} is private")
        except (InsufficientBalanceError, HikerAPIError, ScraperError) as e:
            return ScrapeFailed(error=str(e))

        logger.info(f"[HikerAPI] Scraped @{source}: {len(posts)} posts")
        return ScrapeSucceeded(posts=posts)

    async def _fetch_posts(
        self, username: str, limit: int, on_progress: ProgressCallback,
    ) -> list[ScrapedPost]:
        response = await asyncio.to_thread(self.cl.user_by_username_v2, username)
        user = response.get("user", {}) if isinstance(response, dict) else {}
        if not user or not user.get("pk"):
            raise ScraperError(f"@{username} not found via HikerAPI")
        if user.get("is_private"):
            raise PrivateAccountError(f"@{username} is private")

        user_id = str(user["pk"])
        total = min(limit, user.get("media_count") or limit)
        if total <= 0:
            await on_progress(100, 0)
            return []

        posts: list[ScrapedPost] = []
        cursor: str | None = None
        while len(posts) < total:
            chunk = await asyncio.to_thread(
                self.cl.user_medias_chunk_v1, user_id, end_cursor=cursor
            )
            medias: list[dict[str, Any]] = []
            cursor = None
            if isinstance(chunk, list) and chunk:
                medias = chunk[0] or []
                cursor = chunk[1] if len(chunk) > 1 else None

            for media in medias[: total - len(posts)]:
                posts.append(_hiker_media_to_post(media))
            await on_progress(round(len(posts) / total * 100), total)

            if not medias or not cursor:
                break

        # Медиа меньше, чем заявлено в профиле: закрываем прогресс
        if len(posts) < total:
            await on_progress(100, len(posts))
        return posts
