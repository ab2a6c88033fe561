"""MCP prompt templates for common board workflows."""

from agent_board.mcp.server import mcp


@mcp.prompt()
def pick_up_work(agent_id: str) -> str:
    """Generate a prompt for an agent heartbeat that picks up pending jobs."""
    return (
        f"You are agent '{agent_id}' checking the board for work.\n\n"
        f"1. Use list_pending_jobs to find jobs waiting for an agent\n"
        f"2. Take the oldest one and call acknowledge_job with your agent id\n"
        f"3. Follow the job's prompt exactly\n"
        f"4. When finished, call complete_refinement or complete_execution\n"
        f"5. If you cannot finish, call report_job_failure with a short reason\n\n"
        f"Take at most one job per run."
    )


@mcp.prompt()
def board_report(project: str | None = None) -> str:
    """Generate a prompt for a board status report."""
    scope = f"the '{project}' project" if project else "the whole board"
    return (
        f"Please generate a status report for {scope}.\n\n"
        f"Use the list_tasks tool to get all tasks, then provide:\n"
        f"1. How many tasks sit in each column\n"
        f"2. Tasks currently in progress and who owns them\n"
        f"3. Tasks waiting in review or pending approval\n"
        f"4. Recommended next tasks to move forward"
    )


@mcp.prompt()
def review_task(task_id: str) -> str:
    """Generate a prompt to review the work done for a task."""
    return (
        f"Please review the work done for task '{task_id}'.\n\n"
        f"Use get_task to read the refinement, comments and history.\n"
        f"Then provide:\n"
        f"1. Whether each acceptance criterion in the refinement is met\n"
        f"2. Any issues or concerns\n"
        f"3. Whether it is ready to move to done\n\n"
        f"Record your verdict with add_comment."
    )
