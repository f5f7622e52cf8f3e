"""Общие фикстуры и хелперы для тестов API."""
from unittest.mock import MagicMock

from scrapejobs.notifications.hub import NotificationHub


def make_settings(api_key: str = ""):
    """Создать мок Settings; пустой ключ: WebSocket без авторизации."""
    settings = MagicMock()
    settings.ws_api_key.get_secret_value.return_value = api_key
    return settings


def make_queue(size: int = 0, in_flight: int = 0, retries: int = 0):
    """Создать мок JobQueue."""
    queue = MagicMock()
    queue.size = size
    queue.in_flight = in_flight
    queue.scheduled_retries = retries
    return queue


def make_app(hub=None, queue=None, settings=None):
    """Создать FastAPI app с моками."""
    from scrapejobs.api.app import create_app

    return create_app(
        db=MagicMock(),
        hub=hub or NotificationHub(),
        queue=queue or make_queue(),
        settings=settings or make_settings(),
    )
