"""HTTP surface of the health reporter."""

import logging
import threading

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..utils.health import HealthReporter
from .models import HealthResponse

logger = logging.getLogger(__name__)


def create_app(reporter: HealthReporter) -> FastAPI:
    """Build the app; healthy and degraded both answer 200.

    Only a dead process counts as unhealthy, and callers see that as a
    refused connection rather than a response body.
    """
    app = FastAPI(title="surrealdb-backup health", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.reporter = reporter

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        error = "Not Found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": error})

    @app.get("/health", response_model=HealthResponse)
    def health(request: Request) -> HealthResponse:
        # Sync handler: status() stats files, so it runs in the threadpool
        return HealthResponse(**request.app.state.reporter.status())

    return app


def run_health_server(reporter: HealthReporter, host: str = "0.0.0.0", port: int = 8080) -> None:
    """Serve the health endpoint in the foreground."""
    logger.info(f"Starting health check server on {host}:{port}")
    uvicorn.run(create_app(reporter), host=host, port=port, log_config=None, access_log=False)


def start_health_server_thread(reporter: HealthReporter, host: str = "0.0.0.0", port: int = 8080) -> threading.Thread:
    """Serve the health endpoint from a daemon thread.

    Keeps /health answering while the calling thread is busy with a backup.
    """
    config = uvicorn.Config(create_app(reporter), host=host, port=port, log_config=None, access_log=False)
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="health-server", daemon=True)
    thread.start()
    logger.info(f"Health check server thread started on {host}:{port}")
    return thread
