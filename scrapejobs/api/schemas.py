"""Pydantic-схемы для API воркера."""
from typing import Literal

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Ответ healthcheck."""

    status: Literal["ok", "degraded"]
    tasks_processing: int
    tasks_pending: int
    queue_size: int
    jobs_in_flight: int
    scheduled_retries: int
    notification_clients: int
