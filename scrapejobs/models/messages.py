"""Сообщения канала уведомлений: закрытый набор типов с типизированным payload."""
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from scrapejobs.models.task import TaskStatus


class MessageKind(StrEnum):
    TASK_UPDATE = "task_update"
    SCRAPE_UPDATE = "scrape_update"
    NOTIFICATION = "notification"
    ERROR = "error"


def _now() -> datetime:
    return datetime.now(UTC)


class TaskUpdatePayload(BaseModel):
    """Снимок состояния задачи после перехода статуса."""

    model_config = ConfigDict(extra="ignore")

    task_id: str
    status: TaskStatus
    progress: int | None = None
    total_items: int | None = None
    error_message: str | None = None
    challenge_type: str | None = None
    rate_limit_reset_at: datetime | None = None
    export_url: str | None = None
    completed_at: datetime | None = None


class ScrapeUpdatePayload(BaseModel):
    """Инкремент прогресса скрапинга."""

    model_config = ConfigDict(extra="ignore")

    task_id: str
    progress: int
    total_items: int


class NotificationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    message: str = ""
    level: Literal["info", "success", "warning", "error"] = "info"


class ErrorPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str
    task_id: str | None = None
    code: str | None = None


class TaskUpdateMessage(BaseModel):
    kind: Literal["task_update"] = "task_update"
    payload: TaskUpdatePayload
    timestamp: datetime = Field(default_factory=_now)


class ScrapeUpdateMessage(BaseModel):
    kind: Literal["scrape_update"] = "scrape_update"
    payload: ScrapeUpdatePayload
    timestamp: datetime = Field(default_factory=_now)


class NotificationMessage(BaseModel):
    kind: Literal["notification"] = "notification"
    payload: NotificationPayload
    timestamp: datetime = Field(default_factory=_now)


class ErrorMessage(BaseModel):
    kind: Literal["error"] = "error"
    payload: ErrorPayload
    timestamp: datetime = Field(default_factory=_now)


Message = Annotated[
    TaskUpdateMessage | ScrapeUpdateMessage | NotificationMessage | ErrorMessage,
    Field(discriminator="kind"),
]

_message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(raw: str | bytes) -> Message:
    """Разобрать входящий кадр. Бросает pydantic.ValidationError на мусоре."""
    return _message_adapter.validate_json(raw)


def build_message(kind: MessageKind | str, payload: dict[str, Any]) -> Message:
    """Собрать типизированное сообщение из kind и сырого payload."""
    return _message_adapter.validate_python({"kind": str(kind), "payload": payload})


def dump_message(message: Message) -> str:
    """Сериализовать сообщение в JSON-кадр."""
    return message.model_dump_json()
