"""QuestBoard FastAPI application."""

import asyncio
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.config import get_settings
from questboard.database import close_db, get_db, init_db
from questboard.errors import ExternalServiceError, QuestBoardError
from questboard.logging_config import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    get_logger,
)
from questboard.redis import close_redis, init_redis
from questboard.schemas import HealthResponse
from questboard.services.expiry_scheduler import scheduler_loop
from questboard.verification.pipeline import ProofVerificationPipeline
from questboard.verification.vk_cache import (
    InMemoryVerificationKeyCache,
    RedisVerificationKeyCache,
    VerificationKeyCache,
)

logger = get_logger(__name__)


async def _build_vk_cache() -> VerificationKeyCache:
    settings = get_settings()
    if settings.redis_enabled:
        redis = await init_redis(settings.redis_url)
        if redis is not None:
            return RedisVerificationKeyCache(redis, ttl_seconds=settings.vk_cache_ttl_seconds)
    return InMemoryVerificationKeyCache()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: DB, Redis, pipeline and expiry sweep."""
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name=settings.service_name,
    )

    logger.info("starting_database_init")
    await init_db()

    vk_cache = await _build_vk_cache()
    app.state.pipeline = ProofVerificationPipeline.from_settings(settings, vk_cache)

    stop_event = asyncio.Event()
    sweeper = asyncio.create_task(
        scheduler_loop(stop_event, settings.expiry_sweep_interval_seconds)
    )

    logger.info("application_started", version=settings.service_version)
    yield

    logger.info("shutting_down")
    stop_event.set()
    await sweeper
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


app = FastAPI(
    title="QuestBoard",
    description="Bounty quests with escrowed rewards and zk-email proof verification",
    version=get_settings().service_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in get_settings().cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    bind_request_context(request_id, path=request.url.path)
    try:
        response = await call_next(request)
    finally:
        clear_request_context()
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(QuestBoardError)
async def questboard_error_handler(request: Request, exc: QuestBoardError):
    if isinstance(exc, ExternalServiceError):
        logger.warning(
            "external_service_failed",
            error_type=exc.error_type,
            message=exc.message,
            attempts=exc.attempts,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "type": "internal_error",
                "message": "An unexpected error occurred",
                "details": {},
            }
        },
    )


# --- Routers ---
from questboard.routes.claims import router as claims_router  # noqa: E402
from questboard.routes.proofs import router as proofs_router  # noqa: E402
from questboard.routes.quests import router as quests_router  # noqa: E402
from questboard.routes.tags import router as tags_router  # noqa: E402
from questboard.routes.users import router as users_router  # noqa: E402

app.include_router(quests_router)
app.include_router(claims_router)
app.include_router(users_router)
app.include_router(tags_router)
app.include_router(proofs_router)


@app.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check endpoint."""
    settings = get_settings()
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.error("health_database_failed", error=str(e))
        database = "unavailable"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        service=settings.service_name,
        version=settings.service_version,
        database=database,
    )
