"""
FastAPI application factory.

Local control plane for a running CronService. The agent runtime owns the
service (it supplies the execution backend and event sinks) and mounts this
app next to it:

    service = CronService.create(backend, enqueue_system_event=..., request_heartbeat_now=...)
    await serve(service, host="127.0.0.1", port=8000)

Authentication: when API_AUTH_ENABLED=true, every /cron endpoint requires an
X-API-Key header matching API_KEY. /health is never authenticated.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from src import __version__
from src.cron.errors import CorruptStoreError, JobNotFoundError, ValidationError
from src.cron.service import CronService

from .dependencies.auth import verify_api_key
from .routers import cron


logger = logging.getLogger(__name__)

tags_metadata = [
    {
        "name": "cron",
        "description": "Cron job management - create, update, remove, list, and run scheduled agent jobs",
    },
]


def create_app(service: CronService) -> FastAPI:
    """
    Build the API for a CronService.

    The app's lifespan starts the service on startup and stops it on
    shutdown.

    Args:
        service: The service to expose

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        yield
        service.stop()

    app = FastAPI(
        title="Agent Cron API",
        lifespan=lifespan,
        description="""
## Agent Cron API

Local-only control plane for the agent cron scheduler.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require an
`X-API-Key` header matching the `API_KEY` environment variable.

### Usage
```bash
curl -X POST http://localhost:8000/cron/jobs \\
  -H "Content-Type: application/json" \\
  -d '{"name": "ping", "schedule": {"kind": "every", "everyMs": 60000},
       "payload": {"kind": "systemEvent", "text": "ping"}}'
```
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=tags_metadata,
    )
    app.state.cron_service = service

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "errors": exc.errors},
        )

    @app.exception_handler(JobNotFoundError)
    async def job_not_found_handler(request: Request, exc: JobNotFoundError):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": str(exc)},
        )

    @app.exception_handler(CorruptStoreError)
    async def corrupt_store_handler(request: Request, exc: CorruptStoreError):
        logger.error(str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": str(exc)},
        )

    # Health check - NO authentication (operational endpoint)
    @app.get("/health")
    async def health_check():
        """Health check endpoint. Not authenticated."""
        return {"status": "ok", "version": __version__}

    app.include_router(
        cron.router,
        prefix="/cron",
        tags=["cron"],
        dependencies=[Depends(verify_api_key)],
    )

    return app


async def serve(service: CronService, host: str = "127.0.0.1", port: int = 8000) -> None:
    """
    Serve the control plane on the current event loop until shutdown.

    Loads .env first so API_AUTH_ENABLED/API_KEY can live there.
    """
    load_dotenv()
    config = uvicorn.Config(create_app(service), host=host, port=port, log_level="info")
    await uvicorn.Server(config).serve()
