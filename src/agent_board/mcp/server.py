"""MCP server exposing board and job callback tools to agents."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import Context, FastMCP

from agent_board.config import get_config
from agent_board.core.context import BoardContext, build_context
from agent_board.core.errors import BoardError
from agent_board.core.serialize import comment_dict, event_dict, job_dict, task_dict


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[BoardContext]:
    """Build the board services on startup, close them on shutdown."""
    ctx = build_context(get_config(), journal=True)
    try:
        yield ctx
    finally:
        await ctx.aclose()


mcp = FastMCP("agent-board", lifespan=app_lifespan)


def _ctx(ctx: Context) -> BoardContext:
    """Extract BoardContext from MCP Context."""
    return ctx.request_context.lifespan_context


# ── Task Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
def list_tasks(
    ctx: Context,
    status: str | None = None,
    assignee: str | None = None,
    project: str | None = None,
) -> list[dict]:
    """List tasks, optionally filtered by status, assignee and project."""
    board = _ctx(ctx).board
    tasks = board.list_tasks(status=status, assignee=assignee, project_id=project)
    return [task_dict(t) for t in tasks]


@mcp.tool()
def get_task(ctx: Context, task_id: str) -> dict:
    """Get full details of a task including comments and history."""
    board = _ctx(ctx).board
    try:
        td = task_dict(board.get(task_id))
    except BoardError as e:
        return {"error": str(e)}
    td["comments"] = [comment_dict(c) for c in board.comments(task_id)]
    td["events"] = [event_dict(e) for e in board.history(task_id)]
    return td


@mcp.tool()
def create_task(
    ctx: Context,
    title: str,
    description: str = "",
    priority: str = "medium",
    assignee: str | None = None,
    project: str | None = None,
    labels: list[str] | None = None,
) -> dict:
    """Create a task in the backlog. Priority: critical, high, medium or low."""
    try:
        task = _ctx(ctx).board.create(
            title,
            description=description,
            priority=priority,
            assignee=assignee,
            project_id=project,
            labels=labels,
        )
    except BoardError as e:
        return {"error": str(e)}
    return task_dict(task)


@mcp.tool()
async def move_task(ctx: Context, task_id: str, status: str) -> dict:
    """Move a task to the next pipeline column.

    Moving to 'refinement' (with an assignee) starts a refinement job,
    moving to 'todo' starts execution, and moving to 'done' opens a PR
    for the task's branch.
    """
    try:
        task = await _ctx(ctx).board.move(task_id, status)
    except BoardError as e:
        return {"error": str(e)}
    return task_dict(task)


@mcp.tool()
def add_comment(ctx: Context, task_id: str, content: str, author: str = "agent") -> dict:
    """Add a comment to a task."""
    try:
        comment = _ctx(ctx).board.add_comment(task_id, author, content)
    except BoardError as e:
        return {"error": str(e)}
    return comment_dict(comment)


# ── Job Callback Tools ────────────────────────────────────────────────────────


@mcp.tool()
def list_pending_jobs(ctx: Context, job_type: str | None = None) -> list[dict]:
    """List jobs waiting for an agent to pick them up, including their prompts."""
    try:
        records = _ctx(ctx).jobs.list_jobs(status="pending", job_type=job_type)
    except BoardError as e:
        return [{"error": str(e)}]
    return [job_dict(r) for r in records]


@mcp.tool()
def acknowledge_job(
    ctx: Context,
    task_id: str,
    job_type: str,
    session_key: str | None = None,
    agent_id: str | None = None,
) -> dict:
    """Report that a refinement or execution job is now running."""
    try:
        record = _ctx(ctx).jobs.acknowledge(
            task_id, job_type, session_key=session_key, agent_id=agent_id
        )
    except BoardError as e:
        return {"error": str(e)}
    return job_dict(record)


@mcp.tool()
async def complete_refinement(
    ctx: Context, task_id: str, refinement: str, agent_id: str | None = None
) -> dict:
    """Submit the finished refinement (markdown) for a task."""
    try:
        record = await _ctx(ctx).jobs.complete(
            task_id, "refinement", result=refinement, agent_id=agent_id
        )
    except BoardError as e:
        return {"error": str(e)}
    return job_dict(record)


@mcp.tool()
async def complete_execution(
    ctx: Context, task_id: str, summary: str, agent_id: str | None = None
) -> dict:
    """Report that execution finished. Moves the task to review."""
    try:
        record = await _ctx(ctx).jobs.complete(
            task_id, "execution", result=summary, agent_id=agent_id
        )
    except BoardError as e:
        return {"error": str(e)}
    return job_dict(record)


@mcp.tool()
async def report_job_failure(
    ctx: Context, task_id: str, job_type: str, error: str, agent_id: str | None = None
) -> dict:
    """Report that a refinement or execution job failed."""
    if not error:
        return {"error": "An error message is required"}
    try:
        record = await _ctx(ctx).jobs.complete(task_id, job_type, error=error, agent_id=agent_id)
    except BoardError as e:
        return {"error": str(e)}
    return job_dict(record)
