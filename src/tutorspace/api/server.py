"""
FastAPI server for the tutor workspace HTTP API.

Exposes file operations, command execution, dev server control, learner
progress tracking and a websocket stream of workspace and dev server events.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .. import __version__
from ..config.schema import TutorspaceSettings
from ..errors import WorkspaceError
from ..events import Subscription
from ..logging_config import get_logger
from ..progress import StepStatus
from ..runtime import Runtime

logger = get_logger(__name__)


# Request Models
class WriteFileRequest(BaseModel):
    """Request to overwrite (or create) a file."""

    path: str
    content: str


class CreateFileRequest(BaseModel):
    """Request to create a new file."""

    path: str
    content: str = ""


class ExecuteRequest(BaseModel):
    """Request to run a single allow-listed command."""

    command: str
    working_dir: str = ""


class StepProgressRequest(BaseModel):
    """Request to record a course step's status (snake_case or camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    module_id: str = Field(min_length=1)
    step_id: str = Field(min_length=1)
    status: StepStatus
    code_snapshot: str | None = None
    git_commit: str | None = None


class GitCommitRequest(BaseModel):
    """Request to record a learner commit (snake_case or camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    commit_hash: str = Field(min_length=1)
    commit_message: str = Field(min_length=1)
    files_changed: list[str] = Field(default_factory=list)
    step_context: str | None = None


def _http_error(error: WorkspaceError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)


async def _forward(websocket: WebSocket, subscription: Subscription, event_type: str) -> None:
    async for event in subscription:
        await websocket.send_json({"type": event_type, "data": event.to_dict()})


async def _wait_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


def create_app(runtime: Runtime | None = None, settings: TutorspaceSettings | None = None) -> FastAPI:  # noqa: C901
    """
    Create FastAPI application.

    Args:
        runtime: Optional runtime instance (the app owns and starts one if None)
        settings: Settings for the owned runtime (ignored when runtime is given)

    Returns:
        Configured FastAPI app
    """
    owns_runtime = runtime is None
    rt = runtime or Runtime(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if owns_runtime:
            await rt.start()
        try:
            yield
        finally:
            if owns_runtime:
                await rt.shutdown()

    app = FastAPI(
        title="tutorspace API",
        description="Sandboxed workspace, terminal and dev server for the coding tutor",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = rt

    app.add_middleware(
        CORSMiddleware,
        allow_origins=rt.settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # File endpoints are plain functions: FastAPI runs them in its threadpool

    @app.get("/api/files/tree")
    def get_file_tree() -> list[dict[str, Any]]:
        """Get the filtered workspace tree."""
        return [node.to_dict() for node in rt.file_store.get_file_tree()]

    @app.get("/api/files/list")
    def list_directory(dir: str = "") -> dict[str, Any]:  # noqa: A002
        """
        List one directory level (no ignore rules).

        Args:
            dir: Directory relative to the workspace root

        Returns:
            Dict with files
        """
        try:
            return {"files": rt.file_store.list_directory(dir)}
        except WorkspaceError as e:
            raise _http_error(e) from e

    @app.get("/api/files")
    def read_file(path: str) -> dict[str, str]:
        """
        Read a text file.

        Args:
            path: File path relative to the workspace root

        Returns:
            Dict with path and content
        """
        try:
            return {"path": path, "content": rt.file_store.read_file(path)}
        except WorkspaceError as e:
            raise _http_error(e) from e

    @app.put("/api/files")
    def write_file(request: WriteFileRequest) -> dict[str, Any]:
        """Write a file, creating parent directories."""
        try:
            written = rt.file_store.write_file(request.path, request.content)
        except WorkspaceError as e:
            raise _http_error(e) from e

        return {"success": True, "path": written}

    @app.post("/api/files")
    def create_file(request: CreateFileRequest) -> dict[str, Any]:
        """Create a file that must not exist yet."""
        try:
            created = rt.file_store.create_file(request.path, request.content)
        except WorkspaceError as e:
            raise _http_error(e) from e

        return {"success": True, "path": created}

    @app.delete("/api/files")
    def delete_file(path: str) -> dict[str, Any]:
        """Delete a regular file."""
        try:
            deleted = rt.file_store.delete_file(path)
        except WorkspaceError as e:
            raise _http_error(e) from e

        return {"success": True, "path": deleted}

    @app.post("/api/terminal/execute")
    async def execute_command(request: ExecuteRequest) -> dict[str, Any]:
        """
        Run an allow-listed command in the workspace.

        Args:
            request: Command and working directory

        Returns:
            Command result (nonzero exit codes are not errors)
        """
        try:
            result = await rt.runner.execute(request.command, request.working_dir)
        except WorkspaceError as e:
            raise _http_error(e) from e

        return result.to_dict()

    @app.get("/api/terminal/pwd")
    async def get_working_directory() -> dict[str, str]:
        """Get the workspace root."""
        return {"pwd": str(rt.workspace_root), "relative_path": rt.workspace_root.name}

    @app.post("/api/dev-server/start")
    async def start_dev_server() -> dict[str, Any]:
        """Start the dev server and wait for readiness."""
        return (await rt.dev_server.start()).to_dict()

    @app.post("/api/dev-server/stop")
    async def stop_dev_server() -> dict[str, Any]:
        """Stop the dev server."""
        return (await rt.dev_server.stop()).to_dict()

    @app.post("/api/dev-server/restart")
    async def restart_dev_server() -> dict[str, Any]:
        """Restart the dev server."""
        return (await rt.dev_server.restart()).to_dict()

    @app.get("/api/dev-server/status")
    async def dev_server_status() -> dict[str, Any]:
        """Get dev server status."""
        return rt.dev_server.get_status().to_dict()

    @app.get("/api/dev-server/output")
    async def dev_server_output(lines: int = 50) -> dict[str, Any]:
        """Get the most recent dev server output lines."""
        return {"lines": rt.dev_server.recent_output(lines)}

    @app.get("/api/project/status")
    def project_status() -> dict[str, Any]:
        """Get learner project status."""
        return rt.projects.get_project_status()

    @app.post("/api/project/init")
    async def initialize_project() -> dict[str, Any]:
        """Scaffold the learner project."""
        return await rt.projects.initialize_project()

    @app.get("/api/progress/current")
    def current_progress() -> dict[str, Any]:
        """Get the most recently started step and step counts."""
        try:
            return rt.progress.get_current()
        except WorkspaceError as e:
            raise _http_error(e) from e

    @app.post("/api/progress/step")
    def record_step(request: StepProgressRequest) -> dict[str, Any]:
        """
        Record a course step's status.

        Args:
            request: Module, step, status and optional snapshot/commit

        Returns:
            Dict with success and the stored progress
        """
        try:
            step = rt.progress.record_step(
                request.module_id,
                request.step_id,
                request.status,
                code_snapshot=request.code_snapshot,
                git_commit=request.git_commit,
            )
        except WorkspaceError as e:
            raise _http_error(e) from e

        return {"success": True, "progress": step.to_dict()}

    @app.post("/api/progress/git-commit")
    def record_git_commit(request: GitCommitRequest) -> dict[str, Any]:
        """Record a learner commit (duplicates are ignored)."""
        try:
            recorded = rt.progress.record_commit(
                request.commit_hash,
                request.commit_message,
                files_changed=request.files_changed,
                step_context=request.step_context,
            )
        except WorkspaceError as e:
            raise _http_error(e) from e

        return {"success": True, "recorded": recorded}

    @app.get("/api/progress/stats")
    def progress_stats(limit: int = 0) -> dict[str, Any]:
        """Get step counts and recent commits."""
        try:
            return rt.progress.get_stats(limit if limit > 0 else rt.settings.progress.recent_commits_limit)
        except WorkspaceError as e:
            raise _http_error(e) from e

    @app.websocket("/ws/events")
    async def events_stream(websocket: WebSocket) -> None:
        """Stream file change and dev server events to one client."""
        file_events = rt.watcher.subscribe()
        dev_events = rt.dev_server.subscribe()

        await websocket.accept()
        logger.debug("Event stream client connected")

        disconnect = asyncio.create_task(_wait_disconnect(websocket))
        tasks = [
            asyncio.create_task(_forward(websocket, file_events, "fileChanged")),
            asyncio.create_task(_forward(websocket, dev_events, "devServer")),
            disconnect,
        ]

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            file_events.close()
            dev_events.close()

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.debug(f"Event stream ended: {task.exception()}")

        if disconnect not in done:
            await websocket.close()

        logger.debug("Event stream client disconnected")

    @app.get("/api/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "workspace": str(rt.workspace_root),
            "watching": rt.watcher.is_watching,
            "dev_server": rt.dev_server.get_status().to_dict(),
        }

    return app


def start_server(settings: TutorspaceSettings | None = None) -> None:
    """
    Start the tutorspace API server.

    Args:
        settings: Configuration (loaded from env/YAML if None)
    """
    import uvicorn

    settings = settings or TutorspaceSettings()
    app = create_app(settings=settings)

    logger.info(f"Starting tutorspace API server on {settings.api.host}:{settings.api.port}")

    uvicorn.run(app, host=settings.api.host, port=settings.api.port, log_level=settings.general.log_level.lower())
