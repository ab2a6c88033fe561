"""Tests for task storage operations."""

import pytest

from agent_board.core import chat as chat_mod
from agent_board.core import tasks as tasks_mod
from agent_board.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from agent_board.core.jobs import get_job, replace_job
from agent_board.core.workflow import TransitionGuard
from agent_board.db.models import TASK_STATUSES, JobRecord, utcnow

GUARD = TransitionGuard()


def _advance(db, task_id, *statuses):
    for status in statuses:
        tasks_mod.move_task(db, task_id, status, GUARD)


class TestSlugify:
    def test_basic(self):
        assert tasks_mod.slugify("Hello World") == "hello-world"

    def test_special_chars(self):
        assert tasks_mod.slugify("Auth: Login & Signup!") == "auth-login-signup"

    def test_truncation(self):
        assert len(tasks_mod.slugify("a" * 100)) <= 60

    def test_empty_title_falls_back(self, db):
        task = tasks_mod.create_task(db, "!!!")
        assert task.id == "task"


class TestTaskCRUD:
    def test_create_task_defaults(self, db):
        task = tasks_mod.create_task(db, "Fix login bug")
        assert task.id == "fix-login-bug"
        assert task.status == "backlog"
        assert task.priority == "medium"
        assert task.labels == []
        assert task.version == 1
        assert task.created_at is not None

    def test_create_duplicate_gets_suffix(self, db):
        t1 = tasks_mod.create_task(db, "Fix login bug")
        t2 = tasks_mod.create_task(db, "Fix login bug")
        assert t1.id == "fix-login-bug"
        assert t2.id == "fix-login-bug-2"

    def test_create_requires_title(self, db):
        with pytest.raises(ValidationError):
            tasks_mod.create_task(db, "   ")

    def test_create_rejects_bad_priority(self, db):
        with pytest.raises(ValidationError):
            tasks_mod.create_task(db, "Task", priority="urgent")

    def test_create_rejects_bad_status(self, db):
        with pytest.raises(ValidationError):
            tasks_mod.create_task(db, "Task", status="archived")

    def test_get_nonexistent_task(self, db):
        assert tasks_mod.get_task(db, "nonexistent") is None

    def test_list_filters(self, db):
        tasks_mod.create_task(db, "One", assignee="alice", labels=["ui", "bug"])
        tasks_mod.create_task(db, "Two", assignee="bob", labels=["ui"], priority="high")
        tasks_mod.create_task(db, "Three", project_id="api")

        assert len(tasks_mod.list_tasks(db)) == 3
        assert [t.id for t in tasks_mod.list_tasks(db, assignee="alice")] == ["one"]
        assert [t.id for t in tasks_mod.list_tasks(db, priority="high")] == ["two"]
        assert [t.id for t in tasks_mod.list_tasks(db, project_id="api")] == ["three"]
        assert {t.id for t in tasks_mod.list_tasks(db, labels=["ui"])} == {"one", "two"}
        assert [t.id for t in tasks_mod.list_tasks(db, labels=["ui", "bug"])] == ["one"]

    def test_list_orders_by_sort_order(self, db):
        tasks_mod.create_task(db, "Later", sort_order=5)
        tasks_mod.create_task(db, "Sooner", sort_order=1)
        assert [t.id for t in tasks_mod.list_tasks(db)] == ["sooner", "later"]

    def test_tasks_by_status_keeps_empty_columns(self, db):
        tasks_mod.create_task(db, "Task")
        columns = tasks_mod.tasks_by_status(db)
        assert list(columns) == list(TASK_STATUSES)
        assert [t.id for t in columns["backlog"]] == ["task"]
        assert columns["done"] == []

    def test_stats(self, db):
        tasks_mod.create_task(db, "A", assignee="alice", priority="high")
        tasks_mod.create_task(db, "B", assignee="alice")
        stats = tasks_mod.task_stats(db)
        assert stats["total"] == 2
        assert stats["by_status"]["backlog"] == 2
        assert stats["by_priority"]["high"] == 1
        assert stats["by_assignee"] == {"alice": 2}


class TestUpdate:
    def test_update_fields(self, db):
        tasks_mod.create_task(db, "Task")
        task = tasks_mod.update_task(db, "task", {"title": "Renamed", "labels": ["x"]})
        assert task.title == "Renamed"
        assert task.labels == ["x"]
        assert task.version == 2

    def test_update_logs_events(self, db):
        tasks_mod.create_task(db, "Task")
        tasks_mod.update_task(db, "task", {"priority": "critical"})
        events = tasks_mod.get_task_events(db, "task")
        assert [e.event_type for e in events] == ["created", "priority_changed"]
        assert events[1].old_value == "medium"
        assert events[1].new_value == "critical"

    def test_status_cannot_be_patched(self, db):
        tasks_mod.create_task(db, "Task")
        with pytest.raises(ValidationError):
            tasks_mod.update_task(db, "task", {"status": "done"})
        assert tasks_mod.get_task(db, "task").status == "backlog"

    def test_unknown_field_rejected(self, db):
        tasks_mod.create_task(db, "Task")
        with pytest.raises(ValidationError):
            tasks_mod.update_task(db, "task", {"color": "red"})

    def test_update_missing_task(self, db):
        assert tasks_mod.update_task(db, "nope", {"title": "x"}) is None

    def test_stale_write_conflicts(self, db):
        stale = tasks_mod.create_task(db, "Task")
        tasks_mod.update_task(db, "task", {"title": "Newer"})
        with pytest.raises(ConflictError):
            tasks_mod._compare_and_swap(db, stale, {"title": "Older"})
        assert tasks_mod.get_task(db, "task").title == "Newer"


class TestMove:
    def test_forward_step(self, db):
        tasks_mod.create_task(db, "Task")
        task = tasks_mod.move_task(db, "task", "refinement", GUARD)
        assert task.status == "refinement"
        assert task.version == 2

    def test_full_pipeline(self, db):
        tasks_mod.create_task(db, "Task")
        _advance(db, "task", *TASK_STATUSES[1:])
        assert tasks_mod.get_task(db, "task").status == "done"

    def test_invalid_transition_leaves_status(self, db):
        tasks_mod.create_task(db, "Task")
        with pytest.raises(InvalidTransitionError):
            tasks_mod.move_task(db, "task", "done", GUARD)
        task = tasks_mod.get_task(db, "task")
        assert task.status == "backlog"
        assert task.version == 1

    def test_unknown_status_rejected(self, db):
        tasks_mod.create_task(db, "Task")
        with pytest.raises(ValidationError):
            tasks_mod.move_task(db, "task", "archived", GUARD)

    def test_move_missing_task(self, db):
        assert tasks_mod.move_task(db, "nope", "refinement", GUARD) is None

    def test_move_logs_status_change(self, db):
        tasks_mod.create_task(db, "Task")
        tasks_mod.move_task(db, "task", "refinement", GUARD)
        event = tasks_mod.get_task_events(db, "task")[-1]
        assert event.event_type == "status_changed"
        assert (event.old_value, event.new_value) == ("backlog", "refinement")

    def test_move_with_sort_order(self, db):
        tasks_mod.create_task(db, "Task")
        task = tasks_mod.move_task(db, "task", "refinement", GUARD, sort_order=3)
        assert task.sort_order == 3


class TestAssignAndPR:
    def test_assign(self, db):
        tasks_mod.create_task(db, "Task")
        task = tasks_mod.assign_task(db, "task", "worker-code")
        assert task.assignee == "worker-code"

    def test_assign_requires_agent(self, db):
        tasks_mod.create_task(db, "Task")
        with pytest.raises(ValidationError):
            tasks_mod.assign_task(db, "task", "")

    def test_link_pr(self, db):
        tasks_mod.create_task(db, "Task")
        task = tasks_mod.link_pr(db, "task", "https://github.com/acme/app/pull/42")
        assert task.pr_url == "https://github.com/acme/app/pull/42"
        assert task.pr_status == "open"

    def test_link_gitlab_mr(self, db):
        tasks_mod.create_task(db, "Task")
        url = "https://gitlab.com/acme/app/-/merge_requests/7"
        assert tasks_mod.link_pr(db, "task", url).pr_url == url

    def test_link_pr_rejects_other_urls(self, db):
        tasks_mod.create_task(db, "Task")
        with pytest.raises(ValidationError):
            tasks_mod.link_pr(db, "task", "https://example.com/not-a-pr")


class TestComments:
    def test_add_and_list(self, db):
        tasks_mod.create_task(db, "Task")
        tasks_mod.add_comment(db, "task", "alice", "first")
        tasks_mod.add_comment(db, "task", "bob", "second")
        comments = tasks_mod.list_comments(db, "task")
        assert [c.content for c in comments] == ["first", "second"]
        assert comments[0].author == "alice"

    def test_comment_on_missing_task(self, db):
        with pytest.raises(NotFoundError):
            tasks_mod.add_comment(db, "nope", "alice", "hi")

    def test_empty_comment_rejected(self, db):
        tasks_mod.create_task(db, "Task")
        with pytest.raises(ValidationError):
            tasks_mod.add_comment(db, "task", "alice", "  ")


class TestDelete:
    def test_delete_cascades(self, db):
        tasks_mod.create_task(db, "Task")
        tasks_mod.add_comment(db, "task", "alice", "hi")
        chat_mod.append_message(db, "task", "hello")
        replace_job(db, JobRecord("task", "refinement", started_at=utcnow()))

        assert tasks_mod.delete_task(db, "task") is True
        assert tasks_mod.get_task(db, "task") is None
        assert tasks_mod.list_comments(db, "task") == []
        assert chat_mod.list_messages(db, "task") == []
        assert tasks_mod.get_task_events(db, "task") == []
        assert get_job(db, "task", "refinement") is None

    def test_delete_missing(self, db):
        assert tasks_mod.delete_task(db, "nope") is False


class TestChat:
    def test_append_keeps_order(self, db):
        tasks_mod.create_task(db, "Task")
        chat_mod.append_message(db, "task", "question?")
        chat_mod.append_message(db, "task", "answer", role="agent", agent_id="worker-code")
        messages = chat_mod.list_messages(db, "task")
        assert [m.content for m in messages] == ["question?", "answer"]
        assert messages[1].agent_id == "worker-code"

    def test_invalid_role(self, db):
        tasks_mod.create_task(db, "Task")
        with pytest.raises(ValidationError):
            chat_mod.append_message(db, "task", "hi", role="system")

    def test_missing_task(self, db):
        with pytest.raises(NotFoundError):
            chat_mod.append_message(db, "nope", "hi")

    def test_format_transcript(self, db):
        tasks_mod.create_task(db, "Task")
        chat_mod.append_message(db, "task", "Use OAuth", attachments=["shot.png"])
        chat_mod.append_message(db, "task", "Noted", role="agent", agent_id="worker-code")
        text = chat_mod.format_transcript(chat_mod.list_messages(db, "task"))
        assert text == "[User]: Use OAuth (1 attachment(s))\n[worker-code]: Noted"
