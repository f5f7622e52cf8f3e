"""Конфигурация воркера и канала уведомлений из переменных окружения."""
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Настройки: парсятся из env или .env файла."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Supabase (status store + storage для экспортов)
    supabase_url: str
    supabase_service_key: SecretStr

    # Экспорт результатов
    exports_bucket: str = "scrape-exports"
    exports_public_url: str = ""  # Переопределение базового публичного URL (CDN, локальный S3)

    # Бэкенд скрапера
    scraper_backend: Literal["mock", "hikerapi"] = "mock"
    hikerapi_token: str = ""
    posts_to_fetch: int = 25
    mock_step_delay: float = 0.2  # Пауза между «постами» в симуляции (секунды)

    # Очередь и воркер
    worker_poll_interval: int = 10
    worker_max_concurrent: int = 2
    queue_max_attempts: int = 3
    queue_retry_base_seconds: float = 60.0

    # Канал уведомлений (клиентская сторона)
    ws_url: str = "ws://localhost:8001/ws"
    ws_api_key: SecretStr = SecretStr("")
    ws_reconnect_attempts: int = 5
    ws_reconnect_delay: float = 1.0  # Базовая задержка, секунды

    # API
    api_port: int = Field(
        default=8001,
        validation_alias=AliasChoices("API_PORT", "PORT"),
    )

    log_level: str = "INFO"


def load_settings() -> Settings:
    """Создать Settings из переменных окружения (.env файла).

    Фабричная функция: обходит ограничение pyright, который не знает,
    что pydantic-settings заполняет обязательные поля из окружения.
    """
    return Settings.model_validate({})
