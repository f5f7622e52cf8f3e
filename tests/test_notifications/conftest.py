"""Фейковый WebSocket-транспорт и фикстуры для тестов канала уведомлений."""
import asyncio

import pytest

_DROP = object()


class FakeTransport:
    """Соединение: входящие кадры кладёт тест, исходящие копятся в sent."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def feed(self, raw: str | bytes) -> None:
        self._incoming.put_nowait(raw)

    def drop(self) -> None:
        """Разорвать соединение со стороны сервера."""
        self._incoming.put_nowait(_DROP)

    def __aiter__(self) -> "FakeTransport":
        return self

    async def __anext__(self) -> str | bytes:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        if item is _DROP:
            raise ConnectionResetError("connection lost")
        return item


class FakeServer:
    """connect_factory: выдаёт FakeTransport, может отказывать или задерживать handshake."""

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []
        self.calls = 0
        self.failures = 0
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str) -> FakeTransport:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError("refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]



@pytest.fixture
def server() -> FakeServer:
    return FakeServer()
