"""
API Server

HTTP endpoints the migration dashboard calls for interactive replication
operations. Long-running work can also be queued as jobs; both paths end
in the same handlers.
"""

import logging
import time
from threading import Thread
from typing import Dict, List, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from migrate_executor import __version__
from migrate_executor.azure_migrate.errors import ItemNotFoundError, MigrateError, PreconditionError, RemoteApiError
from migrate_executor.config import API_SERVER_HOST, LOG_LEVEL
from migrate_executor.models import MachineDiskOverrides, TargetConfig

logger = logging.getLogger(__name__)


class EnableReplicationRequest(BaseModel):
    """Request to enable replication for a group."""
    group_id: str
    target_config: TargetConfig
    machine_disks: Optional[List[MachineDiskOverrides]] = None


class TestMigrateRequest(BaseModel):
    """Request to start a test migration."""
    network_id: Optional[str] = None
    subnet_name: Optional[str] = None


class TestMigrateCleanupRequest(BaseModel):
    comments: Optional[str] = None


class MigrateRequest(BaseModel):
    """Request to start the final migration."""
    perform_shutdown: bool = True


def _error_response(status_code: int, exc: Exception, **extra) -> JSONResponse:
    content = {"detail": str(exc)}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def create_app(executor) -> FastAPI:
    """Build the FastAPI application bound to one executor."""
    app = FastAPI(
        title="Migrate Executor API",
        description="Azure Migrate replication operations for the migration dashboard",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PreconditionError)
    async def precondition_handler(request: Request, exc: PreconditionError):
        return _error_response(409, exc, current_status=exc.current_status,
                               required_statuses=exc.required_statuses)

    @app.exception_handler(RemoteApiError)
    async def remote_error_handler(request: Request, exc: RemoteApiError):
        logger.error(f"Azure API error on {request.url.path}: {exc}")
        return _error_response(502, exc, remote_status=exc.status_code, error_code=exc.error_code)

    @app.exception_handler(MigrateError)
    async def migrate_error_handler(request: Request, exc: MigrateError):
        # AuthError -> 401, ConfigurationError -> 412
        return _error_response(exc.status_code or 500, exc, error_code=exc.error_code)

    @app.exception_handler(ItemNotFoundError)
    async def not_found_handler(request: Request, exc: ItemNotFoundError):
        return _error_response(404, exc)

    @app.exception_handler(ValueError)
    async def bad_request_handler(request: Request, exc: ValueError):
        return _error_response(400, exc)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error": str(exc)}
        )

    router = APIRouter(prefix="/api/replication", tags=["replication"])

    @router.get("/infrastructure")
    def get_infrastructure():
        """Resolved Site Recovery topology behind the migrate project."""
        return executor.discover_infrastructure()

    @router.post("/infrastructure/clear-cache")
    def clear_infrastructure_cache():
        executor.clear_infrastructure_cache()
        return {"success": True}

    @router.get("/discovered-machines")
    def list_discovered_machines():
        return executor.list_discovered_machines()

    @router.post("/enable")
    def enable_replication(request: EnableReplicationRequest):
        """
        Enable replication for every machine in a group.

        Per-machine failures are reported in `errors`; the call itself only
        fails when the group or the infrastructure is unusable.
        """
        result = executor.enable_for_group(request.group_id, request.target_config, request.machine_disks)
        return result.model_dump()

    @router.get("/items")
    def list_items():
        return executor.get_all()

    @router.get("/stats")
    def get_stats():
        return executor.get_stats()

    @router.get("/items/{item_id}")
    def get_item(item_id: str):
        return executor.get_by_id(item_id)

    @router.get("/items/{item_id}/details")
    def get_item_details(item_id: str):
        return executor.lifecycle.get_detailed_status(item_id)

    @router.post("/items/{item_id}/test-migrate")
    def test_migrate(item_id: str, request: Optional[TestMigrateRequest] = None):
        request = request or TestMigrateRequest()
        return executor.lifecycle.test_migrate(item_id, request.network_id, request.subnet_name)

    @router.post("/items/{item_id}/test-migrate-cleanup")
    def test_migrate_cleanup(item_id: str, request: Optional[TestMigrateCleanupRequest] = None):
        request = request or TestMigrateCleanupRequest()
        return executor.lifecycle.test_migrate_cleanup(item_id, request.comments)

    @router.post("/items/{item_id}/migrate")
    def migrate(item_id: str, request: Optional[MigrateRequest] = None):
        request = request or MigrateRequest()
        return executor.lifecycle.migrate(item_id, request.perform_shutdown)

    @router.post("/items/{item_id}/complete")
    def complete_migration(item_id: str):
        return executor.lifecycle.complete_migration(item_id)

    @router.post("/items/{item_id}/resync")
    def resync(item_id: str):
        return executor.lifecycle.resync(item_id)

    @router.post("/items/{item_id}/cancel")
    def cancel(item_id: str):
        return executor.lifecycle.cancel(item_id)

    @router.delete("/items/{item_id}")
    def delete_item(item_id: str, disable_remote: bool = True):
        return executor.lifecycle.delete(item_id, disable_remote)

    @router.get("/jobs")
    def list_jobs():
        """Recent Site Recovery jobs in the vault."""
        return executor.lifecycle.get_jobs()

    @router.post("/jobs/{job_id}/restart")
    def restart_job(job_id: str):
        return executor.lifecycle.restart_job(job_id)

    app.include_router(router)

    @app.get("/api/health")
    def health() -> Dict:
        """Executor heartbeat."""
        return {
            "status": "ok",
            "version": __version__,
            "uptime_seconds": int(time.time() - executor.startup_time.timestamp()),
            "poll_count": executor.poll_count,
            "jobs_processed": executor.jobs_processed,
            "last_poll_time": executor.last_poll_time.isoformat() if executor.last_poll_time else None,
            "last_poll_error": executor.last_poll_error,
            "reconciliation_running": executor.loop.is_running(),
        }

    return app


class APIServer:
    """HTTP API server for replication operations"""

    def __init__(self, executor, port: int):
        self.executor = executor
        self.port = port
        self.app = create_app(executor)
        self.server = None
        self.thread = None

    def start(self):
        """Start the API server in a background thread"""
        try:
            config = uvicorn.Config(self.app, host=API_SERVER_HOST, port=self.port, log_level=LOG_LEVEL.lower())
            self.server = uvicorn.Server(config)
            self.thread = Thread(target=self.server.run, name="api-server", daemon=True)
            self.thread.start()
            self.executor.log(f"API server started on http://{API_SERVER_HOST}:{self.port}")
            self.executor.log(f"Available endpoints:")
            self.executor.log(f"  GET  /api/health")
            self.executor.log(f"  GET  /api/replication/infrastructure")
            self.executor.log(f"  POST /api/replication/enable")
            self.executor.log(f"  GET  /api/replication/items")
            self.executor.log(f"  POST /api/replication/items/{{id}}/test-migrate")
            self.executor.log(f"  POST /api/replication/items/{{id}}/migrate")
            self.executor.log(f"  GET  /api/replication/jobs")
        except Exception as e:
            self.executor.log(f"Failed to start API server: {e}", "ERROR")
            raise

    def stop(self):
        """Stop the API server"""
        if self.server:
            self.server.should_exit = True
            if self.thread:
                self.thread.join(timeout=5)
            self.executor.log("API server stopped")
