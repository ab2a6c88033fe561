"""CLI entry point for the agent board."""

import asyncio
import json
import sys

import click

from agent_board.config import get_config
from agent_board.core.context import BoardContext, build_context
from agent_board.core.errors import BoardError
from agent_board.core.serialize import job_dict, task_dict
from agent_board.db.models import JOB_STATUSES, JOB_TYPES, PRIORITIES, TASK_STATUSES
from agent_board.integrations.git import GitError


def _run(action):
    """Run ``action(ctx)`` against a fresh context and wait for triggered work."""

    async def runner():
        ctx = build_context(get_config(), journal=True)
        try:
            result = action(ctx)
            if asyncio.iscoroutine(result):
                result = await result
            await ctx.dispatcher.drain()
            for failure in ctx.dispatcher.recent_failures():
                click.echo(
                    f"Warning: {failure.trigger} trigger for {failure.task_id} failed: {failure.error}",
                    err=True,
                )
            return result
        finally:
            await ctx.aclose()

    try:
        return asyncio.run(runner())
    except (BoardError, GitError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
def main():
    """board - Agent Board CLI"""
    pass


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage tasks."""
    pass


@task_group.command("add")
@click.argument("title")
@click.option("--description", "-d", default="", help="Task description")
@click.option("--priority", "-p", default="medium", type=click.Choice(PRIORITIES))
@click.option("--assignee", "-a", default=None, help="Agent ID to assign")
@click.option("--project", default=None, help="Project ID")
@click.option("--branch", default=None, help="Git branch the work lands on")
@click.option("--label", "labels", multiple=True, help="Label (repeatable)")
@click.option("--status", default="backlog", type=click.Choice(TASK_STATUSES))
def task_add(title, description, priority, assignee, project, branch, labels, status):
    """Create a new task."""
    task = _run(lambda ctx: ctx.board.create(
        title,
        description=description,
        priority=priority,
        assignee=assignee,
        project_id=project,
        branch=branch,
        labels=list(labels),
        status=status,
    ))
    click.echo(f"Created task: {task.id}")
    click.echo(f"  Title: {task.title}")
    click.echo(f"  Priority: {task.priority}")
    click.echo(f"  Status: {task.status}")
    if task.assignee:
        click.echo(f"  Assignee: {task.assignee}")


@task_group.command("list")
@click.option("--status", default=None, type=click.Choice(TASK_STATUSES), help="Filter by status")
@click.option("--assignee", default=None, help="Filter by assignee")
@click.option("--priority", default=None, type=click.Choice(PRIORITIES))
@click.option("--label", "labels", multiple=True, help="Require label (repeatable)")
@click.option("--project", default=None, help="Filter by project")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_list(status, assignee, priority, labels, project, json_output):
    """List tasks."""
    tasks = _run(lambda ctx: ctx.board.list_tasks(
        status=status,
        assignee=assignee,
        priority=priority,
        labels=list(labels) or None,
        project_id=project,
    ))

    if json_output:
        click.echo(json.dumps([task_dict(t) for t in tasks], indent=2))
        return

    if not tasks:
        click.echo("No tasks found.")
        return

    status_icons = {
        "backlog": "·",
        "refinement": "?",
        "pending_approval": "…",
        "todo": "○",
        "in_progress": "●",
        "review": "◐",
        "done": "✓",
    }
    for task in tasks:
        icon = status_icons.get(task.status, "?")
        who = f" @{task.assignee}" if task.assignee else ""
        labels_text = f" [{', '.join(task.labels)}]" if task.labels else ""
        click.echo(f"  {icon} {task.priority:<8} {task.id}: {task.title} ({task.status}){who}{labels_text}")


@task_group.command("show")
@click.argument("task_id")
def task_show(task_id):
    """Show task details."""

    def gather(ctx: BoardContext):
        return (
            ctx.board.get(task_id),
            ctx.board.comments(task_id),
            ctx.board.history(task_id),
            [ctx.jobs.poll(task_id, job_type) for job_type in JOB_TYPES],
        )

    task, comments, events, jobs = _run(gather)

    click.echo(f"Task: {task.id}")
    click.echo(f"  Title: {task.title}")
    click.echo(f"  Status: {task.status}")
    click.echo(f"  Priority: {task.priority}")
    if task.assignee:
        click.echo(f"  Assignee: {task.assignee}")
    if task.project_id:
        click.echo(f"  Project: {task.project_id}")
    if task.branch:
        click.echo(f"  Branch: {task.branch}")
    if task.pr_url:
        click.echo(f"  PR: {task.pr_url} ({task.pr_status})")
    if task.labels:
        click.echo(f"  Labels: {', '.join(task.labels)}")
    if task.description:
        click.echo(f"  Description: {task.description}")
    if task.refinement:
        click.echo("  Refinement:")
        for line in task.refinement.splitlines():
            click.echo(f"    {line}")
    for job in jobs:
        if job.status != "idle":
            click.echo(f"  {job.job_type.capitalize()} job: {job.status} (attempt {job.attempt})")
    if comments:
        click.echo("  Comments:")
        for c in comments:
            click.echo(f"    [{c.created_at}] {c.author}: {c.content}")
    if events:
        click.echo("  History:")
        for e in events:
            click.echo(f"    [{e.created_at}] {e.event_type}: {e.old_value} -> {e.new_value}")


@task_group.command("move")
@click.argument("task_id")
@click.argument("status", type=click.Choice(TASK_STATUSES))
def task_move(task_id, status):
    """Move a task to another column, starting any triggered job."""
    task = _run(lambda ctx: ctx.board.move(task_id, status))
    click.echo(f"Moved {task.id} to {task.status}")


@task_group.command("assign")
@click.argument("task_id")
@click.argument("agent_id")
def task_assign(task_id, agent_id):
    """Assign a task to an agent."""
    task = _run(lambda ctx: ctx.board.assign(task_id, agent_id))
    click.echo(f"Assigned {task.id} to {task.assignee}")


@task_group.command("comment")
@click.argument("task_id")
@click.argument("content")
@click.option("--author", default="user", help="Comment author")
def task_comment(task_id, content, author):
    """Add a comment to a task."""
    _run(lambda ctx: ctx.board.add_comment(task_id, author, content))
    click.echo(f"Comment added to {task_id}")


@task_group.command("link-pr")
@click.argument("task_id")
@click.argument("pr_url")
def task_link_pr(task_id, pr_url):
    """Attach a pull request URL to a task."""
    task = _run(lambda ctx: ctx.board.link_pr(task_id, pr_url))
    click.echo(f"Linked {task.pr_url} to {task.id}")


@task_group.command("delete")
@click.argument("task_id")
@click.confirmation_option(prompt="Delete this task and all of its history?")
def task_delete(task_id):
    """Delete a task with its comments, chat and jobs."""
    if not _run(lambda ctx: ctx.board.delete(task_id)):
        click.echo(f"Task not found: {task_id}", err=True)
        sys.exit(1)
    click.echo(f"Deleted task: {task_id}")


# ── Job Commands ──────────────────────────────────────────────────────────────


@main.group("job")
def job_group():
    """Manage refinement and execution jobs."""
    pass


@job_group.command("start")
@click.argument("task_id")
@click.argument("job_type", type=click.Choice(JOB_TYPES))
@click.option("--agent", default=None, help="Agent ID (defaults to the assignee)")
@click.option("--prompt", default=None, help="Override the generated prompt")
def job_start(task_id, job_type, agent, prompt):
    """Start a job for a task and dispatch it to the runtime."""
    record = _run(lambda ctx: ctx.jobs.start(task_id, job_type, agent_id=agent, prompt=prompt))
    click.echo(f"{job_type.capitalize()} job for {task_id}: {record.status}")
    if record.error:
        click.echo(f"  Error: {record.error}", err=True)


@job_group.command("status")
@click.argument("task_id")
@click.argument("job_type", type=click.Choice(JOB_TYPES))
def job_status(task_id, job_type):
    """Show the current job record as JSON."""
    record = _run(lambda ctx: ctx.jobs.poll(task_id, job_type))
    click.echo(json.dumps(job_dict(record), indent=2))


@job_group.command("complete")
@click.argument("task_id")
@click.argument("job_type", type=click.Choice(JOB_TYPES))
@click.option("--result", default=None, help="Refinement text or execution summary")
@click.option("--error", default=None, help="Report the job as failed")
@click.option("--agent", default=None, help="Reporting agent ID")
def job_complete(task_id, job_type, result, error, agent):
    """Record the outcome of a job."""
    record = _run(
        lambda ctx: ctx.jobs.complete(task_id, job_type, result=result, error=error, agent_id=agent)
    )
    click.echo(f"{job_type.capitalize()} job for {task_id}: {record.status}")


@job_group.command("list")
@click.option("--status", default=None, type=click.Choice(JOB_STATUSES))
@click.option("--type", "job_type", default=None, type=click.Choice(JOB_TYPES))
def job_list(status, job_type):
    """List job records."""
    records = _run(lambda ctx: ctx.jobs.list_jobs(status=status, job_type=job_type))
    if not records:
        click.echo("No jobs found.")
        return
    for r in records:
        agent = f" @{r.agent_id}" if r.agent_id else ""
        click.echo(f"  {r.task_id} {r.job_type}: {r.status}{agent} (attempt {r.attempt}, started {r.started_at})")


# ── Recovery ─────────────────────────────────────────────────────────────────


@main.command("recover")
@click.option("--dry-run", is_flag=True, help="Only list stuck jobs")
def recover(dry_run):
    """Requeue jobs stuck in an active status."""
    if dry_run:
        stuck = _run(lambda ctx: ctx.scanner.scan())
        if not stuck:
            click.echo("No stuck jobs.")
            return
        for s in stuck:
            click.echo(f"  {s.task_id} {s.job_type}: {s.record.status} since {s.record.started_at}")
        return

    recovered = _run(lambda ctx: ctx.sweeper.sweep_once())
    if not recovered:
        click.echo("No stuck jobs.")
        return
    for r in recovered:
        action = "Requeued" if r.status == "pending" else "Gave up on"
        click.echo(f"  {action} {r.task_id} {r.job_type} (was {r.previous_status})")
    click.echo(f"Recovered {len(recovered)} job(s)")


# ── Server Commands ──────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
def serve(host, port):
    """Run the HTTP API with the recovery sweeper."""
    from agent_board.web.app import run_server

    click.echo(f"Starting agent board at http://{host}:{port}")
    run_server(host=host, port=port)


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from agent_board.mcp.server import mcp
    from agent_board.mcp import prompts  # noqa: F401 - registers prompts

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
