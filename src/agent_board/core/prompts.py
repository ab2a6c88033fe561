"""Prompt construction for delegated refinement and execution jobs."""

from agent_board.db.models import Task


def build_refinement_prompt(task: Task, transcript: str = "") -> str:
    """Build the prompt asking an agent to refine a task."""
    parts = []
    parts.append("You are refining a task for the development board.")
    parts.append(f"\n**Task:** {task.title}")
    parts.append(f"Task ID: {task.id}")
    parts.append(f"**Description:** {task.description or 'No description'}")
    parts.append(f"**Priority:** {task.priority}")
    parts.append(f"**Project:** {task.project_id or 'None'}")

    if task.is_refined:
        parts.append(f"\n**Previous Refinement:**\n{task.refinement}")

    if transcript:
        parts.append(f"\n**Conversation:**\n{transcript}")

    parts.append(
        "\nProduce a structured refinement in markdown with:\n"
        "### Summary\n"
        "### Acceptance Criteria (checkbox list)\n"
        "### Technical Approach\n"
        "### Edge Cases\n"
        "### Estimated Effort"
    )
    parts.append(
        "\n## Completion\n"
        f"When finished, report the full markdown back with the `complete_refinement` tool "
        f"(task_id='{task.id}'). If you cannot finish, call `report_job_failure` with the reason.\n"
        "Be concise and specific."
    )
    return "\n".join(parts)


def build_execution_prompt(task: Task, transcript: str = "") -> str:
    """Build the prompt asking an agent to implement a refined task."""
    parts = []
    parts.append("You are executing a development task. Complete the implementation as described.")
    parts.append(f"\n**Task:** {task.title}")
    parts.append(f"Task ID: {task.id}")
    parts.append(f"**Project:** {task.project_id or 'Unknown'}")
    parts.append(f"**Priority:** {task.priority}")
    parts.append(f"**Branch:** {task.branch or 'None assigned'}")
    parts.append(f"\n**Refinement / Requirements:**\n{task.refinement}")

    if task.description:
        parts.append(f"\n**Original Description:**\n{task.description}")

    if transcript:
        parts.append(f"\n**Conversation:**\n{transcript}")

    parts.append(
        "\n## Instructions\n"
        "1. Implement the task according to the refinement/requirements above\n"
        "2. Write clean, well-structured code following project conventions\n"
        "3. Run tests/linting if applicable\n"
        f"4. When done, call `complete_execution` with task_id='{task.id}' and a brief summary of changes\n"
        "5. If you cannot finish, call `report_job_failure` with the reason"
    )
    return "\n".join(parts)


def build_prompt(job_type: str, task: Task, transcript: str = "") -> str:
    if job_type == "refinement":
        return build_refinement_prompt(task, transcript)
    return build_execution_prompt(task, transcript)
