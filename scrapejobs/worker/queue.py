"""In-process очередь заданий с воркер-слотами и повторной доставкой."""
import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from loguru import logger

from scrapejobs.exceptions import RateLimitedError, TaskFailedError
from scrapejobs.models.task import ScrapeJob

JobHandler = Callable[[ScrapeJob], Awaitable[None]]

SHUTDOWN_TIMEOUT = 30.0


def get_backoff_seconds(attempts: int, base: float) -> float:
    """
    Экспоненциальный backoff для повторной доставки.
    base=60: attempt 1 → 60с, attempt 2 → 180с, attempt 3 → 540с.
    """
    return base * (3 ** max(0, attempts - 1))


class JobQueue:
    """
    Очередь заданий: N слотов, каждый обрабатывает одно задание до конца.

    Одна задача (task_id) не может быть в очереди или в обработке дважды.
    Упавшее задание доставляется повторно с backoff, пока attempts < max_attempts;
    TaskFailedError не повторяется: задача уже в терминальном статусе.
    """

    def __init__(
        self,
        handler: JobHandler,
        max_concurrent: int = 2,
        max_attempts: int = 3,
        retry_base_seconds: float = 60.0,
    ) -> None:
        self._handler = handler
        self.max_concurrent = max_concurrent
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self._queue: asyncio.Queue[ScrapeJob] = asyncio.Queue()
        # В очереди, в обработке или ждут повторной доставки
        self._known_ids: set[str] = set()
        self._in_flight: set[str] = set()
        self._retry_tasks: set[asyncio.Task[None]] = set()
        self._busy_slots: set[asyncio.Task[None]] = set()
        self._closing = False

    @property
    def size(self) -> int:
        return self._queue.qsize()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def scheduled_retries(self) -> int:
        return len(self._retry_tasks)

    def enqueue(self, job: ScrapeJob) -> bool:
        """Поставить задание в очередь. False: задача уже известна очереди."""
        if self._closing:
            logger.warning(f"Queue is closing, job {job.task_id} rejected")
            return False
        if job.task_id in self._known_ids:
            return False
        self._known_ids.add(job.task_id)
        self._queue.put_nowait(job)
        logger.debug(f"Enqueued task {job.task_id} (queue size {self._queue.qsize()})")
        return True

    def retry_delay(self, job: ScrapeJob, error: BaseException) -> float:
        """Задержка перед повтором; для rate limit: не раньше reset_at."""
        delay = get_backoff_seconds(job.attempts, self.retry_base_seconds)
        if isinstance(error, RateLimitedError) and error.reset_at is not None:
            until_reset = (error.reset_at - datetime.now(UTC)).total_seconds()
            delay = max(delay, until_reset)
        return delay

    async def deliver(self, job: ScrapeJob) -> None:
        """Одна доставка задания обработчику с применением политики повторов."""
        job = job.model_copy(update={"attempts": job.attempts + 1})
        task_id = job.task_id
        self._in_flight.add(task_id)
        try:
            with logger.contextualize(task_id=task_id):
                await self._handler(job)
        except TaskFailedError as e:
            logger.warning(f"Task {task_id} failed permanently: {e}")
            self._known_ids.discard(task_id)
        except Exception as e:
            if job.attempts < self.max_attempts and not self._closing:
                delay = self.retry_delay(job, e)
                logger.info(
                    f"Task {task_id} retry in {delay:.0f}s "
                    f"(attempt {job.attempts}/{self.max_attempts}): {e}"
                )
                self._schedule_retry(job, delay)
            else:
                logger.error(f"Task {task_id} exhausted {job.attempts} attempts: {e}")
                self._known_ids.discard(task_id)
        else:
            self._known_ids.discard(task_id)
        finally:
            self._in_flight.discard(task_id)

    def _schedule_retry(self, job: ScrapeJob, delay: float) -> None:
        t = asyncio.create_task(self._redeliver(job, delay))
        self._retry_tasks.add(t)
        t.add_done_callback(self._retry_tasks.discard)

    async def _redeliver(self, job: ScrapeJob, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._closing:
            self._known_ids.discard(job.task_id)
            return
        self._queue.put_nowait(job)

    async def _slot(self, index: int) -> None:
        current = asyncio.current_task()
        while not self._closing:
            job = await self._queue.get()
            if current is not None:
                self._busy_slots.add(current)
            try:
                await self.deliver(job)
            finally:
                if current is not None:
                    self._busy_slots.discard(current)
                self._queue.task_done()

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Запустить слоты и работать до shutdown_event, затем дождаться активных заданий."""
        slots = [
            asyncio.create_task(self._slot(i), name=f"job-slot-{i}")
            for i in range(self.max_concurrent)
        ]
        logger.info(f"Job queue started ({self.max_concurrent} slots, max_attempts={self.max_attempts})")

        await shutdown_event.wait()
        self._closing = True

        for t in self._retry_tasks:
            t.cancel()

        idle = [s for s in slots if s not in self._busy_slots]
        for s in idle:
            s.cancel()

        busy = [s for s in slots if s in self._busy_slots]
        if busy:
            logger.info(f"Waiting for {len(busy)} active jobs to finish...")
            _, pending = await asyncio.wait(busy, timeout=SHUTDOWN_TIMEOUT)
            if pending:
                logger.warning(f"Cancelling {len(pending)} jobs that didn't finish in {SHUTDOWN_TIMEOUT:.0f}s")
                for s in pending:
                    s.cancel()

        await asyncio.gather(*slots, *self._retry_tasks, return_exceptions=True)
        logger.info("Job queue stopped")
