import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_config
from .logs import configure_logging
from .models import HealthResponse
from .orchestrator import Orchestrator, get_orchestrator
from .routes import router
from .seed import seed_database

__version__ = "0.1.0"

orchestrator_config = get_config()
configure_logging(orchestrator_config)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("[api] Starting Tube Orchestrator")

    validation = orchestrator_config.validate_config()
    for warning in validation["warnings"]:
        logger.warning(f"[config] {warning}")
    if not validation["valid"]:
        for error in validation["errors"]:
            logger.error(f"[config] {error}")
        raise RuntimeError("Orchestrator configuration validation failed")

    orchestrator = get_orchestrator()
    if orchestrator_config.get("seed.enabled", True):
        seed_database(orchestrator.db)
    # No worker is running yet, so anything still Processing belongs to a previous process
    orchestrator.recover_interrupted()
    if orchestrator_config.get("worker.requeue_pending_on_startup", True):
        orchestrator.requeue_pending()

    shutdown = asyncio.Event()
    worker_task = asyncio.create_task(orchestrator.run(shutdown))
    app.state.shutdown = shutdown

    yield

    logger.info("[api] Shutting down Tube Orchestrator")
    shutdown.set()
    orchestrator.queue.close()
    await worker_task


app = FastAPI(
    title="Tube Orchestrator",
    description="Job orchestration engine for AI video generation",
    version=__version__,
    lifespan=lifespan
)

cors_origins = orchestrator_config.get("cors.allow_origins", [])
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=orchestrator_config.get("cors.allow_credentials", False),
        allow_methods=orchestrator_config.get("cors.allow_methods", []) or ["*"],
        allow_headers=orchestrator_config.get("cors.allow_headers", []) or ["*"],
    )
    logger.info("[api] CORS enabled with configuration")

app.include_router(router, prefix="/api/v1")


@app.get("/healthz", response_model=HealthResponse)
async def health_check(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Health check endpoint"""
    return HealthResponse(
        version=__version__,
        services={
            "queue_depth": orchestrator.queue.qsize(),
            "queue_capacity": orchestrator.queue.capacity,
            "queue_closed": orchestrator.queue.closed,
            "current_job_id": orchestrator.current_job_id,
        },
    )
