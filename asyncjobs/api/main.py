"""
FastAPI application entry point.

Admin server for the asyncjobs scheduler: create, inspect, re-run and
cancel jobs, and check on the self-chaining scheduler.

Optional API key authentication (API_AUTH_ENABLED / API_KEY).
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI

from asyncjobs import __version__
from asyncjobs.infra import setup_logging

from ._scheduler_state import (
    init_scheduler_service,
    shutdown_scheduler_service,
)
from .dependencies.auth import verify_api_key
from .routers import jobs, scheduler


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: load .env, configure logging, create the scheduler service
    and run a scheduling pass for jobs queued before the restart.
    Shutdown: stop the service.
    """
    load_dotenv()
    setup_logging(
        os.getenv("LOG_LEVEL", "INFO").upper(),
        log_dir=os.getenv("ASYNCJOBS_LOG_DIR", "logs"),
    )

    service = init_scheduler_service()
    service.start()

    yield

    shutdown_scheduler_service()


# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "jobs",
        "description": "Job management - create, list, re-run, cancel and delete jobs",
    },
    {
        "name": "scheduler",
        "description": "Scheduler status and manual scheduling passes",
    },
]

app = FastAPI(
    title="asyncjobs Admin API",
    lifespan=lifespan,
    description="""
## asyncjobs Admin API

Management surface for a durable, at-least-once job scheduler.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require an
`X-API-Key` header matching the `API_KEY` environment variable.

### Usage
```bash
ASYNCJOBS_RUNNABLES="reports.Nightly=myapp.reports:NightlyReport" \\
  uvicorn asyncjobs.api.main:app --host 127.0.0.1 --port 8000

curl -X POST http://localhost:8000/jobs \\
  -H "Content-Type: application/json" \\
  -d '{"runnable_type": "reports.Nightly", "maximum_retries": 3}'
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


# Health check - NO authentication
@app.get("/health")
async def health_check():
    """Health check endpoint. Not authenticated."""
    return {"status": "ok", "version": __version__}


auth_dependency = [Depends(verify_api_key)]

app.include_router(
    jobs.router, prefix="/jobs", tags=["jobs"], dependencies=auth_dependency
)
app.include_router(
    scheduler.router, prefix="/scheduler", tags=["scheduler"], dependencies=auth_dependency
)


def main() -> None:
    import uvicorn

    load_dotenv()
    uvicorn.run(
        app,
        host=os.getenv("ASYNCJOBS_HOST", "127.0.0.1"),
        port=int(os.getenv("ASYNCJOBS_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
