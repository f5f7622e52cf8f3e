"""Тесты клиентского канала уведомлений на фейковом транспорте."""
import asyncio
import json
from unittest.mock import MagicMock

import pytest
from pydantic import SecretStr

from scrapejobs.exceptions import ChannelClosedError, ChannelError, ConnectionInProgressError
from scrapejobs.models.messages import (
    MessageKind,
    NotificationMessage,
    NotificationPayload,
    TaskUpdateMessage,
    TaskUpdatePayload,
    dump_message,
)
from scrapejobs.notifications.channel import ChannelState, NotificationChannel
from tests.test_notifications.conftest import FakeServer


async def _settle(rounds: int = 10) -> None:
    """Дать отработать задачам чтения и обработчикам."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.002)


def _task_update_frame(task_id: str = "task-1", status: str = "processing") -> str:
    return dump_message(TaskUpdateMessage(payload=TaskUpdatePayload(task_id=task_id, status=status)))


def _notification_frame(title: str = "Hello") -> str:
    return dump_message(NotificationMessage(payload=NotificationPayload(title=title)))


@pytest.fixture
async def channel(server: FakeServer):
    ch = NotificationChannel(
        "ws://test/ws", max_reconnect_attempts=5, base_delay=0.001, connect_factory=server,
    )
    yield ch
    await ch.disconnect()


class TestConnect:
    """Жизненный цикл подключения."""

    async def test_connect_opens_connection(self, channel: NotificationChannel, server: FakeServer) -> None:
        assert channel.state is ChannelState.DISCONNECTED

        await channel.connect()

        assert channel.state is ChannelState.CONNECTED
        assert channel.is_connected
        assert server.calls == 1

    async def test_connect_when_connected_is_noop(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        await channel.connect()
        await channel.connect()

        assert server.calls == 1
        assert channel.is_connected

    async def test_concurrent_connect_rejected(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        server.gate = asyncio.Event()
        first = asyncio.create_task(channel.connect())
        await _settle()
        assert channel.state is ChannelState.CONNECTING

        with pytest.raises(ConnectionInProgressError):
            await channel.connect()

        server.gate.set()
        await first
        assert channel.is_connected
        assert server.calls == 1

    async def test_failed_connect_raises_and_retries(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        """Отказ handshake: ChannelError вызывающему, затем автоматическое переподключение."""
        server.failures = 1

        with pytest.raises(ChannelError):
            await channel.connect()

        assert channel.state is ChannelState.DISCONNECTED
        assert channel.reconnect_attempts == 1
        await _wait_until(lambda: channel.is_connected)
        assert server.calls == 2
        assert channel.reconnect_attempts == 0

    async def test_failed_connect_gives_up_after_max_attempts(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        server.failures = 100

        with pytest.raises(ChannelError):
            await channel.connect()
        await _wait_until(lambda: server.calls == 6)
        await asyncio.sleep(0.05)

        assert server.calls == 6
        assert channel.reconnect_attempts == 5
        assert channel.state is ChannelState.DISCONNECTED

    async def test_no_retry_when_disconnected_after_failure(self, server: FakeServer) -> None:
        ch = NotificationChannel("ws://test/ws", base_delay=0.05, connect_factory=server)
        server.failures = 1
        with pytest.raises(ChannelError):
            await ch.connect()

        await ch.disconnect()
        await asyncio.sleep(0.1)

        assert server.calls == 1
        assert ch.state is ChannelState.DISCONNECTED

    async def test_connect_after_failure_succeeds(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        server.failures = 1
        with pytest.raises(ChannelError):
            await channel.connect()

        await channel.connect()

        assert channel.is_connected

    async def test_disconnect_during_connect(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        """Соединение, открывшееся после disconnect(), закрывается и не используется."""
        server.gate = asyncio.Event()
        pending = asyncio.create_task(channel.connect())
        await _settle()

        await channel.disconnect()
        server.gate.set()

        with pytest.raises(ChannelClosedError):
            await pending
        assert channel.state is ChannelState.DISCONNECTED
        assert server.last.closed is True
        assert await channel.send(_build_notification()) is False

    def test_from_settings_adds_api_key(self) -> None:
        settings = MagicMock()
        settings.ws_url = "ws://localhost:8001/ws"
        settings.ws_api_key = SecretStr("secret")
        settings.ws_reconnect_attempts = 3
        settings.ws_reconnect_delay = 2.0

        ch = NotificationChannel.from_settings(settings)

        assert ch.url == "ws://localhost:8001/ws?api_key=secret"
        assert ch.max_reconnect_attempts == 3
        assert ch.base_delay == 2.0

    def test_from_settings_without_api_key(self) -> None:
        settings = MagicMock()
        settings.ws_url = "ws://localhost:8001/ws"
        settings.ws_api_key = SecretStr("")
        settings.ws_reconnect_attempts = 5
        settings.ws_reconnect_delay = 1.0

        assert NotificationChannel.from_settings(settings).url == "ws://localhost:8001/ws"


def _build_notification() -> NotificationMessage:
    return NotificationMessage(payload=NotificationPayload(title="ping"))


class TestDispatch:
    """Маршрутизация входящих сообщений по kind."""

    async def test_handlers_receive_matching_kind(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        task_updates: list = []
        notifications: list = []
        channel.on(MessageKind.TASK_UPDATE, task_updates.append)
        channel.on("notification", notifications.append)
        await channel.connect()

        server.last.feed(_task_update_frame(status="completed"))
        await _settle()

        assert len(task_updates) == 1
        assert task_updates[0].payload.status == "completed"
        assert notifications == []

    async def test_failing_handler_does_not_stop_others(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        received: list = []

        def broken(message) -> None:
            raise RuntimeError("handler bug")

        channel.on(MessageKind.TASK_UPDATE, broken)
        channel.on(MessageKind.TASK_UPDATE, received.append)
        await channel.connect()

        server.last.feed(_task_update_frame())
        server.last.feed(_task_update_frame(status="completed"))
        await _settle()

        assert len(received) == 2
        assert channel.is_connected

    async def test_async_handler_awaited(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        received: list = []

        async def handler(message) -> None:
            await asyncio.sleep(0)
            received.append(message)

        channel.on(MessageKind.NOTIFICATION, handler)
        await channel.connect()

        server.last.feed(_notification_frame())
        await _settle()

        assert [m.payload.title for m in received] == ["Hello"]

    @pytest.mark.parametrize("frame", [
        "not json at all",
        json.dumps({"kind": "heartbeat", "payload": {}}),
        json.dumps({"kind": "scrape_update", "payload": {"title": "wrong shape"}}),
        json.dumps({"payload": {"task_id": "t"}}),
    ])
    async def test_malformed_frame_dropped(
        self, channel: NotificationChannel, server: FakeServer, frame: str,
    ) -> None:
        received: list = []
        for kind in MessageKind:
            channel.on(kind, received.append)
        await channel.connect()

        server.last.feed(frame)
        server.last.feed(_task_update_frame())
        await _settle()

        assert len(received) == 1
        assert channel.is_connected

    async def test_off_removes_handler(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        received: list = []
        channel.on(MessageKind.TASK_UPDATE, received.append)
        channel.off(MessageKind.TASK_UPDATE, received.append)
        # Повторное снятие и снятие незарегистрированного: no-op
        channel.off(MessageKind.TASK_UPDATE, received.append)
        channel.off(MessageKind.ERROR, received.append)
        await channel.connect()

        server.last.feed(_task_update_frame())
        await _settle()

        assert received == []
        assert channel.handler_count(MessageKind.TASK_UPDATE) == 0


class TestSend:
    """Исходящие сообщения."""

    async def test_send_when_connected(self, channel: NotificationChannel, server: FakeServer) -> None:
        await channel.connect()

        assert await channel.send(_build_notification()) is True

        frame = json.loads(server.last.sent[0])
        assert frame["kind"] == "notification"
        assert frame["payload"]["title"] == "ping"

    async def test_send_when_disconnected_dropped(self, channel: NotificationChannel) -> None:
        assert await channel.send(_build_notification()) is False

    async def test_send_not_buffered_for_later(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        await channel.send(_build_notification())
        await channel.connect()

        assert server.last.sent == []


class TestReconnect:
    """Автопереподключение после неожиданного закрытия."""

    def test_delay_sequence(self) -> None:
        ch = NotificationChannel("ws://test/ws", base_delay=1.0)
        assert [ch.reconnect_delay(a) for a in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    async def test_reconnects_after_drop(self, channel: NotificationChannel, server: FakeServer) -> None:
        received: list = []
        channel.on(MessageKind.TASK_UPDATE, received.append)
        await channel.connect()

        server.last.drop()
        await _wait_until(lambda: server.calls == 2 and channel.is_connected)

        assert channel.reconnect_attempts == 0
        # Обработчики сохраняются между переподключениями
        server.last.feed(_task_update_frame())
        await _settle()
        assert len(received) == 1

    async def test_server_close_triggers_reconnect(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        await channel.connect()

        server.last._incoming.put_nowait(None)
        await _wait_until(lambda: server.calls == 2 and channel.is_connected)

    async def test_gives_up_after_max_attempts(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        delays: list[float] = []
        original = channel.reconnect_delay

        def spy(attempt: int) -> float:
            delay = original(attempt)
            delays.append(delay)
            return delay

        channel.reconnect_delay = spy
        await channel.connect()
        server.failures = 100

        server.last.drop()
        await _wait_until(lambda: server.calls == 6)
        await asyncio.sleep(0.05)

        assert server.calls == 6
        assert channel.reconnect_attempts == 5
        assert channel.state is ChannelState.DISCONNECTED
        assert delays == pytest.approx([0.001, 0.002, 0.004, 0.008, 0.016])

    async def test_manual_connect_after_giving_up(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        await channel.connect()
        server.failures = 5
        server.last.drop()
        await _wait_until(lambda: server.calls == 6)
        await asyncio.sleep(0.02)

        await channel.connect()

        assert channel.is_connected
        assert channel.reconnect_attempts == 0


class TestDisconnect:
    """Полный teardown."""

    async def test_disconnect_closes_and_clears(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        channel.on(MessageKind.TASK_UPDATE, lambda m: None)
        await channel.connect()
        transport = server.last

        await channel.disconnect()

        assert transport.closed is True
        assert channel.state is ChannelState.DISCONNECTED
        assert channel.handler_count(MessageKind.TASK_UPDATE) == 0
        assert channel.reconnect_attempts == 0

    async def test_no_reconnect_after_disconnect(
        self, channel: NotificationChannel, server: FakeServer,
    ) -> None:
        await channel.connect()
        await channel.disconnect()
        await asyncio.sleep(0.02)

        assert server.calls == 1
        assert channel.state is ChannelState.DISCONNECTED

    async def test_disconnect_cancels_pending_reconnect(self, server: FakeServer) -> None:
        ch = NotificationChannel("ws://test/ws", base_delay=0.05, connect_factory=server)
        await ch.connect()

        server.last.drop()
        await _wait_until(lambda: ch.reconnect_attempts == 1)
        await ch.disconnect()
        await asyncio.sleep(0.1)

        assert server.calls == 1
        assert ch.reconnect_attempts == 0

    async def test_disconnect_when_never_connected(self, channel: NotificationChannel) -> None:
        await channel.disconnect()
        assert channel.state is ChannelState.DISCONNECTED
