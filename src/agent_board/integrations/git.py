"""Git and pull-request CLI wrappers."""

import asyncio
import re
from dataclasses import dataclass
from pathlib import Path


class GitError(Exception):
    """Raised when a git or gh command fails."""


@dataclass
class RemoteInfo:
    provider: str
    owner: str
    repo: str


_SSH_REMOTE = re.compile(r"git@(github|gitlab)\.com:(.+?)/(.+?)(?:\.git)?$")
_HTTPS_REMOTE = re.compile(r"https?://(github|gitlab)\.com/(.+?)/(.+?)(?:\.git)?$")


async def run_command(
    cmd: list[str],
    cwd: str | Path | None = None,
    input_text: str | None = None,
    timeout: float = 30.0,
) -> str:
    """Run a command and return stdout. Raises GitError on failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdin=asyncio.subprocess.PIPE if input_text is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise GitError(f"{cmd[0]} not found") from e

    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(input_text.encode() if input_text is not None else None),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise GitError(f"{' '.join(cmd[:3])} timed out after {timeout:.0f}s") from e

    if proc.returncode != 0:
        raise GitError(f"{' '.join(cmd[:3])} failed: {stderr.decode().strip()}")
    return stdout.decode().strip()


async def run_git(args: list[str], cwd: str | Path | None = None) -> str:
    return await run_command(["git"] + args, cwd=cwd)


def parse_remote(url: str) -> RemoteInfo | None:
    """Parse a GitHub/GitLab remote URL in SSH or HTTPS form."""
    match = _SSH_REMOTE.match(url) or _HTTPS_REMOTE.match(url)
    if not match:
        return None
    return RemoteInfo(provider=match.group(1), owner=match.group(2), repo=match.group(3))


async def get_remote(cwd: str | Path) -> RemoteInfo | None:
    url = await run_git(["remote", "get-url", "origin"], cwd=cwd)
    return parse_remote(url)


async def push_branch(cwd: str | Path, branch: str) -> str:
    """Push a branch to origin, setting upstream."""
    return await run_git(["push", "-u", "origin", branch], cwd=cwd)


_URL = re.compile(r"https?://\S+")


async def create_pull_request(
    cwd: str | Path,
    provider: str,
    branch: str,
    title: str,
    body: str,
    base: str = "main",
) -> str:
    """Open a pull/merge request for ``branch``; returns its URL.

    An already-open request for the branch is looked up and returned.
    """
    if provider == "github":
        try:
            output = await run_command(
                ["gh", "pr", "create", "--base", base, "--head", branch,
                 "--title", title, "--body-file", "-"],
                cwd=cwd, input_text=body,
            )
        except GitError as e:
            if "already exists" not in str(e):
                raise
            output = await run_command(
                ["gh", "pr", "view", branch, "--json", "url", "-q", ".url"], cwd=cwd
            )
    elif provider == "gitlab":
        try:
            output = await run_command(
                ["glab", "mr", "create", "--source-branch", branch, "--target-branch", base,
                 "--title", title, "--description", body, "--yes"],
                cwd=cwd,
            )
        except GitError as e:
            if "already exists" not in str(e):
                raise
            output = await run_command(["glab", "mr", "view", branch, "--web=false"], cwd=cwd)
    else:
        raise GitError(f"Unsupported provider: {provider}")

    match = _URL.search(output)
    if not match:
        raise GitError(f"Could not find a pull request URL in output: {output[:200]}")
    return match.group(0)
