"""tasksync FastAPI application: live task read model over HTTP."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tasksync import config
from tasksync.models import ReadModel
from tasksync.observability import initialize as initialize_observability, shutdown as shutdown_observability
from tasksync.project_manager import ProjectNotFoundError, create_task_sync_service
from tasksync.routers.reports import reports_router
from tasksync.routers.sync import sync_router
from tasksync.routers.tasks import tasks_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("tasksync")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("tasksync starting up")
    initialize_observability(app)
    app.state.read_model = None

    try:
        service = create_task_sync_service()
    except ProjectNotFoundError as e:
        logger.error(f"{e}; task endpoints will return 503")
        service = None

    if service is not None:
        app.state.task_service = service

        def _store_read_model(model: ReadModel) -> None:
            app.state.read_model = model

        await service.watch(_store_read_model)

    yield

    logger.info("tasksync shutting down")
    if service is not None:
        await service.aclose()
    shutdown_observability(app)


app = FastAPI(
    title="tasksync API",
    description="Live read model and mutation API for a JSON task store",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tasks_router)
app.include_router(sync_router)
app.include_router(reports_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    service = getattr(app.state, "task_service", None)
    return {
        "status": "ok",
        "project": str(service.repository.tasks_path) if service else None,
        "watcher": "running" if service and service.is_watching else "stopped",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tasksync.main:app", host=config.HOST, port=config.PORT, log_level="info")
