import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import api_router
from app.background.scheduler import shutdown_scheduler, start_scheduler
from app.core.config import get_settings
from app.core.db import init_database, test_database_connection
from app.services.portpro.portpro_client import PortProClient, PortProConfigurationError

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("[LIFESPAN] Starting application initialization...")
    app.state.db_initialized = False
    app.state.db_error = None

    async def initialize_database():
        """Initialize database in background - non-blocking for health checks."""
        try:
            if not await test_database_connection():
                app.state.db_error = "Database connection failed"
                logger.error(f"[LIFESPAN] {app.state.db_error}")
                return
            await asyncio.wait_for(init_database(), timeout=30.0)
            app.state.db_initialized = True
            logger.info("[LIFESPAN] Database initialization complete")
        except asyncio.TimeoutError:
            app.state.db_error = "Database initialization timed out after 30s"
            logger.error(f"[LIFESPAN] {app.state.db_error}")
        except Exception as e:
            app.state.db_error = str(e)
            logger.error(f"[LIFESPAN] Error initializing database: {e}", exc_info=True)

    db_task = asyncio.create_task(initialize_database())

    # One HTTP connection pool shared by every PortPro call
    http_client = httpx.AsyncClient(timeout=settings.portpro_request_timeout_seconds)
    try:
        app.state.portpro_client = PortProClient.from_settings(settings, http_client=http_client)
    except PortProConfigurationError as e:
        logger.warning(f"[LIFESPAN] PortPro sync unavailable: {e}")
        app.state.portpro_client = None

    if app.state.portpro_client is not None:
        try:
            start_scheduler(app.state.portpro_client)
        except Exception as e:
            logger.warning(f"[LIFESPAN] Error starting scheduler: {e}")

    logger.info("[LIFESPAN] Application startup complete - ready to accept requests")

    yield

    logger.info("[LIFESPAN] Shutting down...")
    shutdown_scheduler()
    db_task.cancel()
    await http_client.aclose()
    logger.info("[LIFESPAN] Shutdown complete")


app = FastAPI(
    title=settings.project_name,
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "Upstash-Signature", "X-Hub-Signature"],
)

app.include_router(api_router, prefix="/api")


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    return {"status": "ok", "environment": settings.environment}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict:
    """Readiness check - only returns ok when database is ready."""
    if not getattr(app.state, "db_initialized", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "database_ready": False, "error": getattr(app.state, "db_error", None)},
        )
    return {"status": "ready", "database_ready": True}
