"""Tests for workflow triggers fired by task moves."""

import asyncio

import pytest

from agent_board.config import Config
from agent_board.core.context import build_context
from agent_board.core.dispatcher import WorkflowDispatcher
from agent_board.db.models import Task


@pytest.fixture
def opened():
    """Task IDs passed to the pull request opener."""
    return []


@pytest.fixture
def ctx(db, bus, offline_runtime, opened, tmp_path):
    async def open_pull_request(task_id):
        opened.append(task_id)

    return build_context(
        Config(db_path=tmp_path / "unused.db", sweep_seconds=0),
        db=db,
        bus=bus,
        runtime=offline_runtime,
        pull_requests=open_pull_request,
    )


def _move_through(ctx, task_id, *statuses):
    async def run():
        for status in statuses:
            await ctx.board.move(task_id, status)
        await ctx.dispatcher.drain()

    asyncio.run(run())


def _refined(ctx, **fields):
    task = ctx.board.create("Fix login bug", **fields)
    ctx.board.update(task.id, {"refinement": "### Summary\nDo it"})
    return task


class TestTriggersFor:
    @pytest.mark.parametrize(
        "task, expected",
        [
            (Task(id="t", title="t", status="refinement", assignee="a"), ["refinement"]),
            (Task(id="t", title="t", status="refinement"), []),
            (Task(id="t", title="t", status="todo"), ["execution"]),
            (Task(id="t", title="t", status="done", branch="fix/login"), ["pull_request"]),
            (Task(id="t", title="t", status="done"), []),
            (Task(id="t", title="t", status="review", branch="fix/login"), []),
        ],
    )
    def test_triggers(self, task, expected):
        assert WorkflowDispatcher.triggers_for(task) == expected


class TestDispatch:
    def test_refinement_with_assignee_creates_pending_job(self, ctx):
        task = ctx.board.create("Fix login bug", assignee="worker-code")
        assert task.status == "backlog"

        _move_through(ctx, task.id, "refinement")

        assert ctx.board.get(task.id).status == "refinement"
        record = ctx.jobs.poll(task.id, "refinement")
        assert record.status == "pending"
        assert record.agent_id == "worker-code"

    def test_refinement_without_assignee_starts_nothing(self, ctx):
        task = ctx.board.create("Fix login bug")
        _move_through(ctx, task.id, "refinement")
        assert ctx.jobs.poll(task.id, "refinement").status == "idle"

    def test_todo_starts_execution(self, ctx):
        task = _refined(ctx)
        _move_through(ctx, task.id, "refinement", "pending_approval", "todo")

        record = ctx.jobs.poll(task.id, "execution")
        assert record.status == "pending"
        assert record.agent_id == "worker-code"
        assert ctx.board.get(task.id).status == "in_progress"

    def test_done_without_branch_skips_pull_request(self, ctx, opened):
        task = _refined(ctx)
        _move_through(
            ctx, task.id, "refinement", "pending_approval", "todo", "in_progress", "review", "done"
        )
        assert ctx.board.get(task.id).status == "done"
        assert opened == []

    def test_done_with_branch_opens_pull_request(self, ctx, opened):
        task = _refined(ctx, branch="fix/login")
        _move_through(
            ctx, task.id, "refinement", "pending_approval", "todo", "in_progress", "review", "done"
        )
        assert opened == [task.id]

    def test_move_returns_before_trigger_finishes(self, ctx):
        task = ctx.board.create("Fix login bug", assignee="worker-code")

        async def run():
            moved = await ctx.board.move(task.id, "refinement")
            in_flight = ctx.dispatcher.pending
            await ctx.dispatcher.drain()
            return moved, in_flight

        moved, in_flight = asyncio.run(run())
        assert moved.status == "refinement"
        assert in_flight == 1
        assert ctx.dispatcher.pending == 0

    def test_rapid_moves_skip_stale_trigger(self, ctx):
        task = _refined(ctx, assignee="worker-code")
        _move_through(ctx, task.id, "refinement", "pending_approval", "todo")

        current = ctx.board.get(task.id)
        assert current.refinement == "### Summary\nDo it"
        assert current.status == "in_progress"
        assert ctx.jobs.poll(task.id, "refinement").status == "idle"
        assert ctx.jobs.poll(task.id, "execution").status == "pending"
        assert ctx.dispatcher.recent_failures() == []

    def test_trigger_for_deleted_task_is_skipped(self, ctx):
        task = ctx.board.create("Fix login bug", assignee="worker-code")

        async def run():
            await ctx.board.move(task.id, "refinement")
            ctx.board.delete(task.id)
            await ctx.dispatcher.drain()

        asyncio.run(run())
        assert ctx.dispatcher.recent_failures() == []
        assert ctx.jobs.list_jobs() == []


class TestFailures:
    def test_failed_trigger_is_recorded(self, db, bus, offline_runtime, tmp_path):
        async def broken(task_id):
            raise RuntimeError("gh not installed")

        ctx = build_context(
            Config(db_path=tmp_path / "unused.db"),
            db=db,
            bus=bus,
            runtime=offline_runtime,
            pull_requests=broken,
        )
        task = _refined(ctx, branch="fix/login")
        _move_through(
            ctx, task.id, "refinement", "pending_approval", "todo", "in_progress", "review", "done"
        )

        assert ctx.board.get(task.id).status == "done"
        failures = ctx.dispatcher.recent_failures()
        assert len(failures) == 1
        assert failures[0].trigger == "pull_request"
        assert failures[0].task_id == task.id
        assert failures[0].error == "gh not installed"

    def test_failure_list_is_bounded(self):
        dispatcher = WorkflowDispatcher(tracker=None, max_failures=2)

        async def fail(n):
            raise ValueError(f"failure {n}")

        async def run():
            for n in range(3):
                dispatcher._schedule("pull_request", f"t{n}", fail(n))
            await dispatcher.drain()

        asyncio.run(run())
        assert [f.error for f in dispatcher.recent_failures()] == ["failure 1", "failure 2"]
