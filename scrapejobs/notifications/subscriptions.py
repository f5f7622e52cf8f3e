"""Типизированные подписки на события канала уведомлений."""
from collections.abc import Callable
from typing import Any

from scrapejobs.models.messages import (
    ErrorMessage,
    ErrorPayload,
    Message,
    MessageKind,
    NotificationMessage,
    NotificationPayload,
    ScrapeUpdateMessage,
    ScrapeUpdatePayload,
    TaskUpdateMessage,
    TaskUpdatePayload,
)
from scrapejobs.notifications.channel import MessageHandler, NotificationChannel

Unsubscribe = Callable[[], None]


class SubscriptionRegistry:
    """
    Подписки поверх NotificationChannel.

    subscribe() возвращает функцию отписки; её повторный вызов: no-op.
    last_message хранит последнее сообщение любого типа независимо от подписок.
    """

    def __init__(self, channel: NotificationChannel) -> None:
        self._channel = channel
        self._last_message: Message | None = None
        self._attach()

    @property
    def channel(self) -> NotificationChannel:
        return self._channel

    @property
    def is_connected(self) -> bool:
        return self._channel.is_connected

    @property
    def last_message(self) -> Message | None:
        return self._last_message

    def _remember(self, message: Message) -> None:
        self._last_message = message

    def _attach(self) -> None:
        for kind in MessageKind:
            self._channel.on(kind, self._remember)

    async def connect(self) -> None:
        """Подключить канал. После disconnect() отслеживание last_message восстанавливается."""
        self._attach()
        await self._channel.connect()

    async def disconnect(self) -> None:
        await self._channel.disconnect()

    def close(self) -> None:
        """Снять собственные обработчики реестра (подписки вызывающих не трогаются)."""
        for kind in MessageKind:
            self._channel.off(kind, self._remember)

    def subscribe(self, kind: MessageKind | str, handler: MessageHandler) -> Unsubscribe:
        kind = MessageKind(kind)
        self._channel.on(kind, handler)

        def unsubscribe() -> None:
            self._channel.off(kind, handler)

        return unsubscribe

    def on_task_update(self, handler: Callable[[TaskUpdatePayload], Any]) -> Unsubscribe:
        def wrapped(message: Message) -> Any:
            if isinstance(message, TaskUpdateMessage):
                return handler(message.payload)
            return None

        return self.subscribe(MessageKind.TASK_UPDATE, wrapped)

    def on_scrape_update(self, handler: Callable[[ScrapeUpdatePayload], Any]) -> Unsubscribe:
        def wrapped(message: Message) -> Any:
            if isinstance(message, ScrapeUpdateMessage):
                return handler(message.payload)
            return None

        return self.subscribe(MessageKind.SCRAPE_UPDATE, wrapped)

    def on_notification(self, handler: Callable[[NotificationPayload], Any]) -> Unsubscribe:
        def wrapped(message: Message) -> Any:
            if isinstance(message, NotificationMessage):
                return handler(message.payload)
            return None

        return self.subscribe(MessageKind.NOTIFICATION, wrapped)

    def on_error(self, handler: Callable[[ErrorPayload], Any]) -> Unsubscribe:
        def wrapped(message: Message) -> Any:
            if isinstance(message, ErrorMessage):
                return handler(message.payload)
            return None

        return self.subscribe(MessageKind.ERROR, wrapped)
