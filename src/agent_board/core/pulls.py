"""Opens a pull request for a finished task's branch."""

import logging

from agent_board.config import Config
from agent_board.core.board import Board
from agent_board.core.errors import ValidationError
from agent_board.db.models import Task
from agent_board.integrations import git as git_mod

logger = logging.getLogger(__name__)


def pull_request_body(task: Task) -> str:
    parts = [f"Closes task `{task.id}`."]
    if task.description:
        parts.append(f"## Description\n\n{task.description}")
    if task.is_refined:
        parts.append(f"## Refinement\n\n{task.refinement}")
    return "\n\n".join(parts)


class PullRequestOpener:
    def __init__(self, board: Board, config: Config):
        self.board = board
        self.config = config

    async def __call__(self, task_id: str) -> Task:
        return await self.open(task_id)

    async def open(self, task_id: str) -> Task:
        """Push the task's branch, open a PR for it and link it to the task.

        A task that already has a PR linked is returned unchanged.
        """
        task = self.board.get(task_id)
        if not task.branch:
            raise ValidationError(f"Task '{task_id}' has no branch")
        if task.pr_url:
            logger.info("Task %s already has PR %s", task_id, task.pr_url)
            return task

        repo = self.config.repo_for_project(task.project_id)
        remote = await git_mod.get_remote(repo)
        if remote is None:
            raise git_mod.GitError(f"Repository at {repo} has no GitHub or GitLab origin")

        await git_mod.push_branch(repo, task.branch)
        url = await git_mod.create_pull_request(
            repo,
            remote.provider,
            task.branch,
            title=task.title,
            body=pull_request_body(task),
            base=self.config.pr_base_branch,
        )
        logger.info("Opened PR for %s: %s", task_id, url)
        return self.board.link_pr(task_id, url)
