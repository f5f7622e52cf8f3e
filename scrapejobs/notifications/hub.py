"""Серверная сторона уведомлений: рассылка сообщений подключённым WebSocket-клиентам."""
import asyncio
from typing import Protocol

from fastapi import WebSocket
from loguru import logger

from scrapejobs.models.messages import Message, dump_message

# Зависший клиент не должен задерживать переходы состояния воркера
SEND_TIMEOUT_SECONDS = 5.0


class Publisher(Protocol):
    """Получатель переходов состояния от воркера."""

    async def publish(self, message: Message) -> None:
        ...


class NotificationHub:
    """Набор активных WebSocket-соединений + fan-out одного кадра всем."""

    def __init__(self, send_timeout: float = SEND_TIMEOUT_SECONDS) -> None:
        self._clients: set[WebSocket] = set()
        self.send_timeout = send_timeout

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def register(self, websocket: WebSocket) -> None:
        self._clients.add(websocket)
        logger.debug(f"[hub] Client connected ({len(self._clients)} total)")

    def unregister(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        logger.debug(f"[hub] Client disconnected ({len(self._clients)} total)")

    async def publish(self, message: Message) -> None:
        """
        Отправить сообщение всем клиентам параллельно.
        Соединения с ошибкой или не уложившиеся в send_timeout удаляются.
        """
        if not self._clients:
            return
        frame = dump_message(message)
        clients = list(self._clients)
        results = await asyncio.gather(
            *(asyncio.wait_for(ws.send_text(frame), self.send_timeout) for ws in clients),
            return_exceptions=True,
        )
        for websocket, result in zip(clients, results, strict=True):
            if isinstance(result, BaseException):
                logger.debug(f"[hub] Dropping client after send error: {result!r}")
                self._clients.discard(websocket)
