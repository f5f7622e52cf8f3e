"""Supabase Storage для экспортов завершённых задач."""
import asyncio
import json
from typing import Any

from loguru import logger
from supabase import Client

from scrapejobs.config import Settings
from scrapejobs.database import run_in_thread

EXPORT_CONTENT_TYPE = "application/json"
UPLOAD_MAX_RETRIES = 3
UPLOAD_RETRY_DELAY = 1.0  # секунды между попытками


def export_key(task_id: str) -> str:
    """Ключ объекта экспорта: зависит только от task_id (перезапись идемпотентна)."""
    return f"exports/{task_id}.json"


def build_export_url(settings: Settings, key: str) -> str:
    """Постоянный публичный URL объекта. Детерминирован конфигурацией."""
    if settings.exports_public_url:
        base = settings.exports_public_url.rstrip("/")
        return f"{base}/{settings.exports_bucket}/{key}"
    base = settings.supabase_url.rstrip("/")
    return f"{base}/storage/v1/object/public/{settings.exports_bucket}/{key}"


def encode_export(bundle: dict[str, Any]) -> bytes:
    return json.dumps(bundle, ensure_ascii=False, indent=2, default=str).encode()


def _is_eagain(exc: BaseException) -> bool:
    """Проверить, содержит ли исключение EAGAIN (Errno 11/35).

    SDK Storage оборачивает OSError в httpx/storage3 исключения,
    поэтому проверяем всю цепочку __cause__/__context__.
    """
    current: BaseException | None = exc
    while current is not None:
        if isinstance(current, OSError) and current.errno in (11, 35):
            return True
        current = current.__cause__ or current.__context__
    return "Resource temporarily unavailable" in str(exc)


async def upload_export(
    db: Client,
    bucket: str,
    key: str,
    data: bytes,
    content_type: str = EXPORT_CONTENT_TYPE,
) -> None:
    """
    Загрузить объект (upsert: повторная запись перезаписывает тот же ключ).
    Ретраит только EAGAIN, остальные ошибки пробрасываются.
    """
    for attempt in range(1, UPLOAD_MAX_RETRIES + 1):
        try:
            await run_in_thread(
                db.storage.from_(bucket).upload,
                key,
                data,
                {"content-type": content_type, "upsert": "true"},
            )
            logger.debug(f"[storage] Uploaded {key} ({len(data)} bytes)")
            return
        except Exception as e:
            if _is_eagain(e) and attempt < UPLOAD_MAX_RETRIES:
                logger.warning(
                    f"[storage] EAGAIN при загрузке ({key}), "
                    f"попытка {attempt}/{UPLOAD_MAX_RETRIES}"
                )
                await asyncio.sleep(UPLOAD_RETRY_DELAY * attempt)
                continue
            raise


async def ensure_bucket_exists(db: Client, bucket: str) -> None:
    """Создать публичный бакет экспортов, если его ещё нет."""
    try:
        await run_in_thread(db.storage.get_bucket, bucket)
        logger.info(f"[storage] Bucket {bucket} exists")
    except Exception:
        logger.info(f"[storage] Creating bucket {bucket}...")
        await run_in_thread(db.storage.create_bucket, bucket, options={"public": True})
        logger.info(f"[storage] Bucket {bucket} created")
