"""Клиентский канал уведомлений поверх WebSocket.

Одно соединение на экземпляр: disconnected → connecting → connected.
При неожиданном закрытии: переподключение с экспоненциальной задержкой
base_delay * 2^(attempt-1), не больше max_reconnect_attempts попыток подряд.
Обработчики вызываются последовательно в задаче чтения соединения.
"""
import asyncio
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import StrEnum
from typing import Any, Protocol, assert_never

import httpx
from loguru import logger
from pydantic import ValidationError
from websockets.asyncio.client import connect as ws_connect

from scrapejobs.config import Settings
from scrapejobs.exceptions import ChannelClosedError, ChannelError, ConnectionInProgressError
from scrapejobs.models.messages import (
    ErrorMessage,
    Message,
    MessageKind,
    NotificationMessage,
    ScrapeUpdateMessage,
    TaskUpdateMessage,
    dump_message,
    parse_message,
)

MessageHandler = Callable[[Message], Any]


class Transport(Protocol):
    """Минимальный интерфейс соединения (websockets ClientConnection или фейк в тестах)."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


ConnectFactory = Callable[[str], Awaitable[Transport]]


class ChannelState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def message_kind(message: Message) -> MessageKind:
    match message:
        case TaskUpdateMessage():
            return MessageKind.TASK_UPDATE
        case ScrapeUpdateMessage():
            return MessageKind.SCRAPE_UPDATE
        case NotificationMessage():
            return MessageKind.NOTIFICATION
        case ErrorMessage():
            return MessageKind.ERROR
        case _:
            assert_never(message)


async def _default_connect(url: str) -> Transport:
    return await ws_connect(url)


class NotificationChannel:
    """Постоянное дуплексное соединение с автопереподключением и диспетчеризацией по kind."""

    def __init__(
        self,
        url: str,
        *,
        max_reconnect_attempts: int = 5,
        base_delay: float = 1.0,
        connect_factory: ConnectFactory | None = None,
    ) -> None:
        self.url = url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.base_delay = base_delay
        self.reconnect_attempts = 0
        self._connect_factory = connect_factory or _default_connect
        self._state = ChannelState.DISCONNECTED
        self._ws: Transport | None = None
        self._handlers: dict[MessageKind, set[MessageHandler]] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        # Увеличивается при disconnect(); запоздавшие connect/reader сверяют его
        self._generation = 0

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "NotificationChannel":
        """Канал на ws_url; api_key (если задан) передаётся query-параметром."""
        url = httpx.URL(settings.ws_url)
        api_key = settings.ws_api_key.get_secret_value()
        if api_key:
            url = url.copy_merge_params({"api_key": api_key})
        return cls(
            str(url),
            max_reconnect_attempts=settings.ws_reconnect_attempts,
            base_delay=settings.ws_reconnect_delay,
            **kwargs,
        )

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ChannelState.CONNECTED

    def reconnect_delay(self, attempt: int) -> float:
        """Задержка перед попыткой attempt (нумерация с 1)."""
        return self.base_delay * 2 ** (attempt - 1)

    async def connect(self) -> None:
        """
        Открыть соединение.
        Уже подключены → сразу выходим. Подключение в процессе → ConnectionInProgressError.
        Неудачный handshake → ChannelError, следующая попытка планируется по политике переподключения.
        """
        if self._state is ChannelState.CONNECTED:
            return
        if self._state is ChannelState.CONNECTING:
            raise ConnectionInProgressError("Connection already in progress")

        self._state = ChannelState.CONNECTING
        generation = self._generation
        try:
            ws = await self._connect_factory(self.url)
        except Exception as e:
            logger.error(f"[ws] Connection to {self.url} failed: {e}")
            if generation == self._generation:
                self._state = ChannelState.DISCONNECTED
                self._schedule_reconnect()
            raise ChannelError(f"Failed to connect to {self.url}: {e}") from e

        if generation != self._generation:
            # disconnect() во время подключения: соединение больше не нужно
            await self._close_quietly(ws)
            raise ChannelClosedError("Channel was disconnected while connecting")

        self._ws = ws
        self._state = ChannelState.CONNECTED
        self.reconnect_attempts = 0
        self._reader_task = asyncio.create_task(self._read_loop(ws, generation))
        logger.info(f"[ws] Connected to {self.url}")

    async def disconnect(self) -> None:
        """Полный teardown: закрыть соединение, снять все обработчики, сбросить счётчик."""
        self._generation += 1
        ws = self._ws
        self._ws = None
        self._state = ChannelState.DISCONNECTED
        self._handlers.clear()
        self.reconnect_attempts = 0

        current = asyncio.current_task()
        if self._reconnect_task is not None and self._reconnect_task is not current:
            self._reconnect_task.cancel()
        self._reconnect_task = None

        if ws is not None:
            await self._close_quietly(ws)

        if self._reader_task is not None and self._reader_task is not current:
            self._reader_task.cancel()
        self._reader_task = None
        logger.info("[ws] Disconnected")

    def on(self, kind: MessageKind | str, handler: MessageHandler) -> None:
        self._handlers.setdefault(MessageKind(kind), set()).add(handler)

    def off(self, kind: MessageKind | str, handler: MessageHandler) -> None:
        """Снять обработчик. Неизвестный или уже снятый: no-op."""
        kind = MessageKind(kind)
        handlers = self._handlers.get(kind)
        if not handlers:
            return
        handlers.discard(handler)
        if not handlers:
            del self._handlers[kind]

    def handler_count(self, kind: MessageKind | str) -> int:
        return len(self._handlers.get(MessageKind(kind), ()))

    async def send(self, message: Message) -> bool:
        """Отправить сообщение, если соединение открыто. Без буферизации: иначе drop."""
        ws = self._ws
        if self._state is not ChannelState.CONNECTED or ws is None:
            logger.warning(f"[ws] Not connected, {message.kind} message dropped")
            return False
        try:
            await ws.send(dump_message(message))
        except Exception as e:
            logger.warning(f"[ws] Failed to send {message.kind} message: {e}")
            return False
        return True

    async def _read_loop(self, ws: Transport, generation: int) -> None:
        try:
            async for raw in ws:
                await self._handle_frame(raw)
        except Exception as e:
            logger.warning(f"[ws] Connection error: {e}")

        if generation != self._generation:
            return

        self._ws = None
        self._state = ChannelState.DISCONNECTED
        self._reader_task = None
        logger.info("[ws] Connection closed")
        self._schedule_reconnect()

    async def _handle_frame(self, raw: str | bytes) -> None:
        try:
            message = parse_message(raw)
        except ValidationError as e:
            logger.error(f"[ws] Failed to parse message: {e.error_count()} errors, dropped")
            return
        await self._dispatch(message)

    async def _dispatch(self, message: Message) -> None:
        kind = message_kind(message)
        for handler in list(self._handlers.get(kind, ())):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"[ws] Error in handler for {kind}")

    def _schedule_reconnect(self) -> None:
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(
                f"[ws] Max reconnection attempts ({self.max_reconnect_attempts}) reached, "
                "call connect() to retry"
            )
            return
        current = asyncio.current_task()
        if self._reconnect_task is not None and self._reconnect_task is not current:
            self._reconnect_task.cancel()
        self.reconnect_attempts += 1
        delay = self.reconnect_delay(self.reconnect_attempts)
        logger.info(
            f"[ws] Attempting to reconnect in {delay:.1f}s "
            f"(attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})"
        )
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay, self._generation)
        )

    async def _reconnect_after(self, delay: float, generation: int) -> None:
        await asyncio.sleep(delay)
        if generation != self._generation or self._state is not ChannelState.DISCONNECTED:
            return
        try:
            await self.connect()
        except ChannelError as e:
            # Следующую попытку уже запланировал connect()
            logger.debug(f"[ws] Reconnection failed: {e}")

    @staticmethod
    async def _close_quietly(ws: Transport) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"[ws] Error while closing connection: {e}")
