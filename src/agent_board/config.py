"""Configuration loading from environment variables."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path


def _parse_project_paths(raw: str) -> dict[str, Path]:
    """Parse ``proj=/path,other=/path`` into a mapping."""
    paths = {}
    for item in raw.split(","):
        if "=" not in item:
            continue
        project, path = item.split("=", 1)
        if project.strip() and path.strip():
            paths[project.strip()] = Path(path.strip())
    return paths


def _read_gateway_file(path: Path) -> tuple[str | None, str | None]:
    """Read the runtime gateway URL and token from an openclaw.json file."""
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError):
        return None, None
    gateway = data.get("gateway") or {}
    token = (gateway.get("auth") or {}).get("token")
    if not token:
        return None, None
    port = gateway.get("port") or 18789
    return f"http://localhost:{port}", token


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".agent_board" / "board.db")
    repo_path: Path = field(default_factory=lambda: Path.cwd())
    project_paths: dict[str, Path] = field(default_factory=dict)
    runtime_url: str | None = None
    runtime_token: str | None = None
    runtime_spawn_path: str = "/api/v1/sessions/spawn"
    runtime_timeout: float = 10.0
    job_timeout_seconds: int = 900
    default_agent: str = "worker-code"
    stale_minutes: float = 5.0
    sweep_seconds: float = 60.0
    max_attempts: int = 3
    relay_seconds: float = 1.0
    keepalive_seconds: float = 30.0
    transitions: str = "linear"
    pr_base_branch: str = "main"
    log_level: str = "INFO"
    upload_dir: Path | None = None

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("BOARD_DB_PATH"):
            config.db_path = Path(db)

        if repo := os.environ.get("BOARD_REPO_PATH"):
            config.repo_path = Path(repo)

        if paths := os.environ.get("BOARD_PROJECT_PATHS"):
            config.project_paths = _parse_project_paths(paths)

        config.runtime_url = os.environ.get("BOARD_RUNTIME_URL")
        config.runtime_token = os.environ.get("BOARD_RUNTIME_TOKEN")
        if not config.runtime_url and not config.runtime_token:
            gateway_file = os.environ.get(
                "BOARD_GATEWAY_FILE", str(Path.home() / ".openclaw" / "openclaw.json")
            )
            config.runtime_url, config.runtime_token = _read_gateway_file(Path(gateway_file))

        if spawn_path := os.environ.get("BOARD_RUNTIME_SPAWN_PATH"):
            config.runtime_spawn_path = spawn_path

        if timeout := os.environ.get("BOARD_RUNTIME_TIMEOUT"):
            config.runtime_timeout = float(timeout)

        if job_timeout := os.environ.get("BOARD_JOB_TIMEOUT"):
            config.job_timeout_seconds = int(job_timeout)

        if agent := os.environ.get("BOARD_DEFAULT_AGENT"):
            config.default_agent = agent

        if stale := os.environ.get("BOARD_STALE_MINUTES"):
            config.stale_minutes = float(stale)

        if sweep := os.environ.get("BOARD_SWEEP_SECONDS"):
            config.sweep_seconds = float(sweep)

        if attempts := os.environ.get("BOARD_MAX_ATTEMPTS"):
            config.max_attempts = int(attempts)

        if relay := os.environ.get("BOARD_RELAY_SECONDS"):
            config.relay_seconds = float(relay)

        if keepalive := os.environ.get("BOARD_KEEPALIVE_SECONDS"):
            config.keepalive_seconds = float(keepalive)

        if transitions := os.environ.get("BOARD_TRANSITIONS"):
            config.transitions = transitions

        if base := os.environ.get("BOARD_PR_BASE"):
            config.pr_base_branch = base

        if uploads := os.environ.get("BOARD_UPLOAD_DIR"):
            config.upload_dir = Path(uploads)

        if level := os.environ.get("BOARD_LOG_LEVEL"):
            config.log_level = level.upper()

        return config

    def repo_for_project(self, project_id: str | None) -> Path:
        """Resolve the local checkout used for a task's project."""
        if project_id and project_id in self.project_paths:
            return self.project_paths[project_id]
        return self.repo_path

    def uploads_path(self) -> Path:
        """Directory for chat attachments, next to the database by default."""
        return self.upload_dir or self.db_path.parent / "uploads"


def get_config() -> Config:
    return Config.from_env()
