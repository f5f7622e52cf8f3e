"""FastAPI-приложение воркера: healthcheck и WebSocket-эндпоинт уведомлений."""
import hmac

from fastapi import FastAPI, Response, WebSocket, WebSocketDisconnect, status
from loguru import logger
from postgrest.types import CountMethod
from pydantic import ValidationError
from supabase import Client

from scrapejobs.api.schemas import HealthResponse
from scrapejobs.config import Settings
from scrapejobs.database import TASKS_TABLE, run_in_thread
from scrapejobs.models.messages import ErrorMessage, ErrorPayload, dump_message, parse_message
from scrapejobs.notifications.hub import NotificationHub
from scrapejobs.worker.queue import JobQueue


def create_app(
    db: Client,
    hub: NotificationHub,
    queue: JobQueue,
    settings: Settings,
) -> FastAPI:
    """Создать FastAPI-приложение с зависимостями."""
    app = FastAPI(title="Scrape Jobs API", version="0.1.0")

    app.state.db = db
    app.state.hub = hub
    app.state.queue = queue
    app.state.settings = settings

    def _api_key_valid(candidate: str | None) -> bool:
        expected = settings.ws_api_key.get_secret_value()
        if not expected:
            return True
        return candidate is not None and hmac.compare_digest(candidate, expected)

    @app.get("/api/health", response_model=HealthResponse)
    async def health(response: Response) -> HealthResponse:
        """Healthcheck: без авторизации."""
        try:
            processing = await run_in_thread(
                db.table(TASKS_TABLE)
                .select("id", count=CountMethod.exact)
                .eq("status", "processing")
                .execute
            )
            pending = await run_in_thread(
                db.table(TASKS_TABLE)
                .select("id", count=CountMethod.exact)
                .eq("status", "pending")
                .execute
            )
            tasks_processing = processing.count or 0
            tasks_pending = pending.count or 0
            health_status = "ok"
        except Exception:
            response.status_code = 503
            tasks_processing = -1
            tasks_pending = -1
            health_status = "degraded"

        return HealthResponse(
            status=health_status,
            tasks_processing=tasks_processing,
            tasks_pending=tasks_pending,
            queue_size=queue.size,
            jobs_in_flight=queue.in_flight,
            scheduled_retries=queue.scheduled_retries,
            notification_clients=hub.client_count,
        )

    @app.websocket("/ws")
    async def notifications(websocket: WebSocket) -> None:
        """Поток уведомлений. Входящие кадры валидируются, невалидные получают error."""
        if not _api_key_valid(websocket.query_params.get("api_key")):
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        hub.register(websocket)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = parse_message(raw)
                except ValidationError:
                    await websocket.send_text(dump_message(ErrorMessage(
                        payload=ErrorPayload(message="Malformed message", code="bad_message"),
                    )))
                    continue
                logger.debug(f"[ws] Received {message.kind} from client")
        except WebSocketDisconnect:
            pass
        finally:
            hub.unregister(websocket)

    return app
