"""HTTP API for the agent board."""

import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette
from starlette.endpoints import HTTPEndpoint
from starlette.requests import Request
from starlette.responses import FileResponse, JSONResponse
from starlette.routing import Route

from agent_board.config import Config, get_config
from agent_board.core import uploads as uploads_mod
from agent_board.core.context import BoardContext, build_context
from agent_board.core.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from agent_board.core.serialize import (
    chat_dict,
    comment_dict,
    event_dict,
    job_dict,
    task_dict,
)
from agent_board.db.models import JOB_TYPES
from agent_board.integrations.git import GitError
from agent_board.integrations.runtime import AgentRuntimeClient
from agent_board.web.events import api_events

logger = logging.getLogger(__name__)


def _ctx(request: Request) -> BoardContext:
    return request.app.state.ctx


async def _body(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON") from None
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


# ── Tasks ─────────────────────────────────────────────────────────────────────


async def api_list_tasks(request: Request):
    board = _ctx(request).board
    params = request.query_params
    if params.get("groupBy") == "status":
        columns = board.list_by_status(project_id=params.get("project"))
        return JSONResponse(
            {status: [task_dict(t) for t in tasks] for status, tasks in columns.items()}
        )
    tasks = board.list_tasks(
        status=params.get("status"),
        assignee=params.get("assignee"),
        priority=params.get("priority"),
        labels=params.getlist("label") or None,
        project_id=params.get("project"),
    )
    return JSONResponse([task_dict(t) for t in tasks])


async def api_create_task(request: Request):
    data = await _body(request)
    task = _ctx(request).board.create(
        data.get("title", ""),
        description=data.get("description", ""),
        priority=data.get("priority", "medium"),
        assignee=data.get("assignee"),
        project_id=data.get("project_id"),
        branch=data.get("branch"),
        labels=data.get("labels"),
        status=data.get("status", "backlog"),
        sort_order=data.get("sort_order", 0),
    )
    return JSONResponse(task_dict(task), status_code=201)


async def api_get_task(request: Request):
    ctx = _ctx(request)
    task_id = request.path_params["task_id"]
    td = task_dict(ctx.board.get(task_id))
    td["comments"] = [comment_dict(c) for c in ctx.board.comments(task_id)]
    td["events"] = [event_dict(e) for e in ctx.board.history(task_id)]
    td["jobs"] = {job_type: job_dict(ctx.jobs.poll(task_id, job_type)) for job_type in JOB_TYPES}
    return JSONResponse(td)


async def api_update_task(request: Request):
    data = await _body(request)
    task = _ctx(request).board.update(request.path_params["task_id"], data)
    return JSONResponse(task_dict(task))


async def api_delete_task(request: Request):
    task_id = request.path_params["task_id"]
    if not _ctx(request).board.delete(task_id):
        raise NotFoundError(f"Task not found: {task_id}")
    return JSONResponse({"deleted": task_id})


async def api_move_task(request: Request):
    data = await _body(request)
    if not data.get("status"):
        raise ValidationError("status is required")
    task = await _ctx(request).board.move(
        request.path_params["task_id"], data["status"], sort_order=data.get("sort_order")
    )
    return JSONResponse(task_dict(task))


async def api_assign_task(request: Request):
    data = await _body(request)
    task = _ctx(request).board.assign(request.path_params["task_id"], data.get("agent_id"))
    return JSONResponse(task_dict(task))


async def api_link_pr(request: Request):
    data = await _body(request)
    task = _ctx(request).board.link_pr(request.path_params["task_id"], data.get("pr_url"))
    return JSONResponse(task_dict(task))


async def api_create_pr(request: Request):
    opener = _ctx(request).dispatcher.pull_requests
    if opener is None:
        raise ValidationError("Pull request creation is not configured")
    task = await opener(request.path_params["task_id"])
    return JSONResponse(task_dict(task))


# ── Comments & chat ───────────────────────────────────────────────────────────


async def api_comments(request: Request):
    board = _ctx(request).board
    task_id = request.path_params["task_id"]
    if request.method == "GET":
        return JSONResponse([comment_dict(c) for c in board.comments(task_id)])
    data = await _body(request)
    comment = board.add_comment(task_id, data.get("author", "user"), data.get("content", ""))
    return JSONResponse(comment_dict(comment), status_code=201)


async def api_chat(request: Request):
    board = _ctx(request).board
    task_id = request.path_params["task_id"]
    if request.method == "GET":
        return JSONResponse([chat_dict(m) for m in board.transcript(task_id)])
    data = await _body(request)
    message = board.chat(
        task_id,
        data.get("content", ""),
        role=data.get("role", "user"),
        agent_id=data.get("agent_id"),
        attachments=data.get("attachments"),
    )
    return JSONResponse(chat_dict(message), status_code=201)


async def api_chat_upload(request: Request):
    """Store the raw request body as an attachment for the task's chat."""
    ctx = _ctx(request)
    task = ctx.board.get(request.path_params["task_id"])
    name = request.query_params.get("filename") or request.headers.get("x-filename")
    attachment = uploads_mod.save_attachment(
        ctx.config.uploads_path(), task.id, await request.body(), name
    )
    return JSONResponse(
        {"filename": attachment.filename, "path": attachment.path, "size": attachment.size},
        status_code=201,
    )


async def api_chat_attachment(request: Request):
    ctx = _ctx(request)
    path = uploads_mod.attachment_path(
        ctx.config.uploads_path(),
        request.path_params["task_id"],
        request.path_params["filename"],
    )
    return FileResponse(path)


# ── Jobs ──────────────────────────────────────────────────────────────────────


class JobEndpoint(HTTPEndpoint):
    """GET polls, POST starts and PUT completes one job type of a task."""

    job_type = ""
    result_key = "result"

    async def get(self, request: Request):
        record = _ctx(request).jobs.poll(request.path_params["task_id"], self.job_type)
        return JSONResponse(job_dict(record))

    async def post(self, request: Request):
        data = await _body(request) if await request.body() else {}
        record = await _ctx(request).jobs.start(
            request.path_params["task_id"],
            self.job_type,
            agent_id=data.get("agentId"),
            prompt=data.get("prompt"),
        )
        return JSONResponse(job_dict(record), status_code=202)

    async def put(self, request: Request):
        data = await _body(request)
        record = await _ctx(request).jobs.complete(
            request.path_params["task_id"],
            self.job_type,
            result=data.get(self.result_key) or data.get("result"),
            error=data.get("error"),
            agent_id=data.get("agentId"),
        )
        return JSONResponse(job_dict(record))


class RefineEndpoint(JobEndpoint):
    job_type = "refinement"
    result_key = "refinement"


class ExecuteEndpoint(JobEndpoint):
    job_type = "execution"
    result_key = "summary"


def _ack_handler(job_type: str) -> Callable[[Request], Awaitable[JSONResponse]]:
    async def handler(request: Request):
        data = await _body(request) if await request.body() else {}
        record = _ctx(request).jobs.acknowledge(
            request.path_params["task_id"],
            job_type,
            session_key=data.get("sessionKey"),
            agent_id=data.get("agentId"),
        )
        return JSONResponse(job_dict(record))

    return handler


async def api_list_jobs(request: Request):
    records = _ctx(request).jobs.list_jobs(
        status=request.query_params.get("status"),
        job_type=request.query_params.get("type"),
    )
    return JSONResponse([job_dict(r) for r in records])


async def api_recover(request: Request):
    ctx = _ctx(request)
    if request.method == "GET":
        stuck = ctx.scanner.scan()
        return JSONResponse({
            "stuck": [job_dict(s.record) for s in stuck],
            "count": len(stuck),
        })
    recovered = ctx.sweeper.sweep_once()
    return JSONResponse({
        "recovered": [
            {
                "taskId": r.task_id,
                "jobType": r.job_type,
                "previousStatus": r.previous_status,
                "status": r.status,
            }
            for r in recovered
        ],
        "count": len(recovered),
    })


# ── Board ─────────────────────────────────────────────────────────────────────


async def api_stats(request: Request):
    ctx = _ctx(request)
    stats = ctx.board.stats()
    stats["connections"] = ctx.bus.connection_count
    return JSONResponse(stats)


async def api_trigger_failures(request: Request):
    failures = _ctx(request).dispatcher.recent_failures()
    return JSONResponse([
        {
            "trigger": f.trigger,
            "task_id": f.task_id,
            "error": f.error,
            "failed_at": f.failed_at.isoformat(),
        }
        for f in failures
    ])


# ── Errors ────────────────────────────────────────────────────────────────────


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        return JSONResponse({"error": str(exc)}, status_code=status_code)

    return handler


EXCEPTION_HANDLERS = {
    NotFoundError: _error_handler(404),
    ValidationError: _error_handler(400),
    ConflictError: _error_handler(409),
    GitError: _error_handler(502),
}


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(
    config: Config | None = None,
    runtime: AgentRuntimeClient | None = None,
    pull_requests: Callable[[str], Awaitable[object]] | None = None,
) -> Starlette:
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: Starlette):
        ctx = build_context(config, runtime=runtime, pull_requests=pull_requests)
        app.state.ctx = ctx
        if config.sweep_seconds > 0:
            ctx.sweeper.start()
        if config.relay_seconds > 0:
            ctx.relay.start()
        try:
            yield
        finally:
            await ctx.aclose()

    routes = [
        Route("/api/tasks", api_list_tasks, methods=["GET"]),
        Route("/api/tasks", api_create_task, methods=["POST"]),
        Route("/api/tasks/recover", api_recover, methods=["GET", "POST"]),
        Route("/api/tasks/{task_id}", api_get_task, methods=["GET"]),
        Route("/api/tasks/{task_id}", api_update_task, methods=["PATCH"]),
        Route("/api/tasks/{task_id}", api_delete_task, methods=["DELETE"]),
        Route("/api/tasks/{task_id}/move", api_move_task, methods=["POST"]),
        Route("/api/tasks/{task_id}/assign", api_assign_task, methods=["POST"]),
        Route("/api/tasks/{task_id}/link-pr", api_link_pr, methods=["POST"]),
        Route("/api/tasks/{task_id}/create-pr", api_create_pr, methods=["POST"]),
        Route("/api/tasks/{task_id}/comments", api_comments, methods=["GET", "POST"]),
        Route("/api/tasks/{task_id}/chat", api_chat, methods=["GET", "POST"]),
        Route("/api/tasks/{task_id}/chat/upload", api_chat_upload, methods=["POST"]),
        Route(
            "/api/tasks/{task_id}/chat/upload/{filename}", api_chat_attachment, methods=["GET"]
        ),
        Route("/api/tasks/{task_id}/refine", RefineEndpoint),
        Route("/api/tasks/{task_id}/refine/ack", _ack_handler("refinement"), methods=["POST"]),
        Route("/api/tasks/{task_id}/execute", ExecuteEndpoint),
        Route("/api/tasks/{task_id}/execute/ack", _ack_handler("execution"), methods=["POST"]),
        Route("/api/jobs", api_list_jobs),
        Route("/api/stats", api_stats),
        Route("/api/triggers/failures", api_trigger_failures),
        Route("/api/events", api_events),
    ]
    return Starlette(routes=routes, exception_handlers=EXCEPTION_HANDLERS, lifespan=lifespan)


def run_server(host: str = "127.0.0.1", port: int = 8787, config: Config | None = None):
    config = config or get_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(config)
    logger.info("Serving agent board on http://%s:%d", host, port)
    uvicorn.run(app, host=host, port=port)
