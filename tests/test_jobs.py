"""Tests for the job tracker."""

import asyncio
import json

import httpx
import pytest

from agent_board.core import chat as chat_mod
from agent_board.core.errors import NotFoundError, ValidationError
from agent_board.core.jobs import JobTracker, get_job
from agent_board.db.models import REFINEMENT_PLACEHOLDER
from agent_board.integrations.runtime import AgentRuntimeClient

REFINEMENT = "### Summary\nFix the login redirect.\n\n### Acceptance Criteria\n- [ ] works"


@pytest.fixture
def tracker(board, runtime):
    return JobTracker(board, runtime)


@pytest.fixture
def offline_tracker(board, offline_runtime):
    return JobTracker(board, offline_runtime)


def _create(board, **fields):
    return board.create("Fix login bug", assignee="worker-code", **fields)


def _ready(board):
    """A refined task sitting in todo."""
    task = _create(board)
    board.update(task.id, {"refinement": REFINEMENT})

    async def advance():
        for status in ("refinement", "pending_approval", "todo"):
            await board.move(task.id, status)

    asyncio.run(advance())
    return board.get(task.id)


def _chat(board, task_id):
    return [m.content for m in chat_mod.list_messages(board.db, task_id)]


class TestStart:
    def test_refinement_dispatch(self, board, tracker, spawn_requests):
        task = _create(board, description="Users bounce back to /login")
        record = asyncio.run(tracker.start(task.id, "refinement"))

        assert record.status == "spawning"
        assert record.session_key == "sess-1"
        assert record.agent_id == "worker-code"
        assert record.started_at is not None
        assert "Fix login bug" in record.prompt
        assert board.get(task.id).refinement == REFINEMENT_PLACEHOLDER
        assert _chat(board, task.id) == ["⏳ Analyzing task and generating refinement..."]

        body = json.loads(spawn_requests[0].content)
        assert body["agentId"] == "worker-code"
        assert body["label"] == "refinement:fix-login-bug"
        assert body["timeoutSeconds"] == 900

    def test_prompt_includes_chat_transcript(self, board, tracker):
        task = _create(board)
        board.chat(task.id, "Please keep the session cookie")
        record = asyncio.run(tracker.start(task.id, "refinement"))
        assert "[User]: Please keep the session cookie" in record.prompt

    def test_agent_falls_back_to_default(self, board, runtime):
        tracker = JobTracker(board, runtime, default_agent="worker-general")
        task = board.create("Unassigned")
        record = asyncio.run(tracker.start(task.id, "refinement"))
        assert record.agent_id == "worker-general"

    def test_explicit_prompt_and_agent(self, board, tracker, spawn_requests):
        task = _create(board)
        record = asyncio.run(tracker.start(task.id, "refinement", agent_id="other", prompt="Custom"))
        assert record.agent_id == "other"
        assert record.prompt == "Custom"
        assert json.loads(spawn_requests[0].content)["task"] == "Custom"

    def test_unconfigured_runtime_leaves_job_pending(self, board, offline_tracker):
        task = _create(board)
        record = asyncio.run(offline_tracker.start(task.id, "refinement"))
        assert record.status == "pending"
        assert record.session_key is None

    def test_execution_requires_refinement(self, board, tracker):
        task = _create(board)
        with pytest.raises(ValidationError, match="refined"):
            asyncio.run(tracker.start(task.id, "execution"))
        assert get_job(board.db, task.id, "execution") is None

    def test_placeholder_does_not_count_as_refined(self, board, tracker):
        task = _create(board)
        asyncio.run(tracker.start(task.id, "refinement"))
        with pytest.raises(ValidationError):
            asyncio.run(tracker.start(task.id, "execution"))

    def test_execution_moves_todo_to_in_progress(self, board, tracker):
        task = _ready(board)
        record = asyncio.run(tracker.start(task.id, "execution"))
        assert record.status == "spawning"
        assert board.get(task.id).status == "in_progress"
        assert _chat(board, task.id) == ["🚀 Starting execution..."]

    def test_second_start_supersedes(self, board, tracker):
        task = _create(board)
        first = asyncio.run(tracker.start(task.id, "refinement"))
        second = asyncio.run(tracker.start(task.id, "refinement", agent_id="other"))

        assert second.session_key == "sess-2"
        assert second.agent_id == "other"
        assert second.started_at >= first.started_at
        assert second.version > first.version
        assert len(tracker.list_jobs(job_type="refinement")) == 1

    def test_runtime_failure_is_recorded(self, board, bus):
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="down"))
        )
        tracker = JobTracker(board, AgentRuntimeClient("http://runtime.test", http_client=http))
        task = _create(board)

        record = asyncio.run(tracker.start(task.id, "refinement"))

        assert record.status == "error"
        assert "500" in record.error
        assert record.completed_at is not None
        assert _chat(board, task.id)[-1].startswith("❌ Could not dispatch refinement")

    def test_unknown_job_type(self, board, tracker):
        task = _create(board)
        with pytest.raises(ValidationError):
            asyncio.run(tracker.start(task.id, "deployment"))

    def test_missing_task(self, tracker):
        with pytest.raises(NotFoundError):
            asyncio.run(tracker.start("nope", "refinement"))


class TestPollAndAcknowledge:
    def test_poll_without_record_is_idle(self, board, tracker):
        task = _create(board)
        record = tracker.poll(task.id, "execution")
        assert record.status == "idle"
        assert record.task_id == task.id

    def test_poll_is_read_only(self, board, tracker):
        task = _create(board)
        started = asyncio.run(tracker.start(task.id, "refinement"))
        polled = tracker.poll(task.id, "refinement")
        assert polled.version == started.version
        assert polled.started_at == started.started_at

    def test_acknowledge_marks_running(self, board, tracker):
        task = _create(board)
        started = asyncio.run(tracker.start(task.id, "refinement"))
        record = tracker.acknowledge(task.id, "refinement", session_key="sess-live")
        assert record.status == "running"
        assert record.session_key == "sess-live"
        assert record.started_at == started.started_at

    def test_acknowledge_finished_job_rejected(self, board, tracker):
        task = _create(board)
        asyncio.run(tracker.start(task.id, "refinement"))
        asyncio.run(tracker.complete(task.id, "refinement", result=REFINEMENT))
        with pytest.raises(ValidationError):
            tracker.acknowledge(task.id, "refinement")

    def test_list_jobs_filters(self, board, offline_tracker):
        first = _create(board)
        second = board.create("Another")
        asyncio.run(offline_tracker.start(first.id, "refinement"))
        asyncio.run(offline_tracker.start(second.id, "refinement"))
        offline_tracker.acknowledge(second.id, "refinement")

        pending = offline_tracker.list_jobs(status="pending")
        assert [r.task_id for r in pending] == [first.id]
        assert len(offline_tracker.list_jobs(job_type="refinement")) == 2
        with pytest.raises(ValidationError):
            offline_tracker.list_jobs(status="sleeping")


class TestComplete:
    def test_refinement_success(self, board, bus, tracker):
        events = []
        bus.subscribe(events.append)
        task = _create(board)
        asyncio.run(tracker.start(task.id, "refinement"))

        record = asyncio.run(tracker.complete(task.id, "refinement", result=REFINEMENT))

        assert record.status == "done"
        assert record.completed_at is not None
        assert board.get(task.id).refinement == REFINEMENT
        assert board.get(task.id).is_refined
        assert _chat(board, task.id)[-1] == "✅ Refinement complete."
        assert events[-1].type == "task:updated"

    def test_refinement_requires_content(self, board, tracker):
        task = _create(board)
        asyncio.run(tracker.start(task.id, "refinement"))
        with pytest.raises(ValidationError):
            asyncio.run(tracker.complete(task.id, "refinement", result="  "))
        assert tracker.poll(task.id, "refinement").status == "spawning"

    def test_execution_success_then_repeat_is_noop(self, board, tracker):
        task = _ready(board)
        asyncio.run(tracker.start(task.id, "execution"))

        record = asyncio.run(tracker.complete(task.id, "execution", result="Fixed redirect"))
        assert record.status == "done"
        assert record.summary == "Fixed redirect"
        assert board.get(task.id).status == "review"

        asyncio.run(board.move(task.id, "done"))
        repeat = asyncio.run(tracker.complete(task.id, "execution", result="Fixed redirect"))
        assert repeat.status == "done"
        assert repeat.version == record.version
        assert board.get(task.id).status == "done"
        assert _chat(board, task.id).count("✅ Execution complete: Fixed redirect") == 1

    def test_execution_outside_in_progress_keeps_status(self, board, tracker):
        task = _ready(board)
        asyncio.run(tracker.start(task.id, "execution"))
        asyncio.run(board.move(task.id, "review"))
        asyncio.run(tracker.complete(task.id, "execution", result="Done"))
        assert board.get(task.id).status == "review"

    def test_error_report(self, board, tracker):
        task = _ready(board)
        asyncio.run(tracker.start(task.id, "execution"))

        record = asyncio.run(tracker.complete(task.id, "execution", error="tests failed"))

        assert record.status == "error"
        assert record.error == "tests failed"
        assert board.get(task.id).status == "in_progress"
        assert _chat(board, task.id)[-1] == "❌ Execution failed: tests failed"

    def test_missing_record(self, board, tracker):
        task = _create(board)
        with pytest.raises(NotFoundError):
            asyncio.run(tracker.complete(task.id, "execution", result="x"))

    def test_missing_task(self, tracker):
        with pytest.raises(NotFoundError):
            asyncio.run(tracker.complete("nope", "refinement", result="x"))
