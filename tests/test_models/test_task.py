"""Тесты моделей задачи и задания очереди."""
import pytest
from pydantic import ValidationError

from scrapejobs.models.task import ScrapeJob, ScrapeTask


class TestScrapeTask:
    def test_defaults(self) -> None:
        task = ScrapeTask(id="task-1", username="testuser")

        assert task.status == "pending"
        assert task.progress == 0
        assert task.export_url is None
        assert task.is_terminal is False

    @pytest.mark.parametrize(("status", "terminal"), [
        ("pending", False),
        ("processing", False),
        ("rate_limited", False),
        ("challenge_required", False),
        ("completed", True),
        ("failed", True),
    ])
    def test_is_terminal(self, status: str, terminal: bool) -> None:
        assert ScrapeTask(id="t", username="u", status=status).is_terminal is terminal

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ScrapeTask(id="t", username="u", status="paused")

    @pytest.mark.parametrize("progress", [-1, 101])
    def test_progress_bounds(self, progress: int) -> None:
        with pytest.raises(ValidationError):
            ScrapeTask(id="t", username="u", progress=progress)

    def test_null_payload_from_db(self) -> None:
        task = ScrapeTask.model_validate({"id": "t", "username": "u", "payload": None})
        assert task.payload is None


class TestScrapeJob:
    def test_from_task_row(self) -> None:
        job = ScrapeJob.from_task_row({
            "id": "task-1",
            "username": "testuser",
            "status": "pending",
            "payload": {"max_posts": 10},
        })

        assert job.task_id == "task-1"
        assert job.source_identifier == "testuser"
        assert job.adapter_parameters == {"max_posts": 10}
        assert job.attempts == 0

    def test_from_task_row_without_payload(self) -> None:
        job = ScrapeJob.from_task_row({"id": "task-1", "username": "testuser", "payload": None})
        assert job.adapter_parameters == {}
