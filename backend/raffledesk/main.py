import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from raffledesk.config import settings
from raffledesk.core.exceptions import AppError
from raffledesk.core.logging import setup_logging
from raffledesk.core.middleware import setup_middleware

logger = logging.getLogger(__name__)

_tables_created = False


async def ensure_tables():
    """Create DB tables if they haven't been created yet."""
    global _tables_created
    if _tables_created:
        return
    from raffledesk.db.engine import engine
    from raffledesk.db.base import Base
    import raffledesk.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    _tables_created = True


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging()
    await ensure_tables()

    # With Celery, beat runs the sweep; otherwise run it in-process
    if not settings.redis_enabled:
        from raffledesk.services.timeout_supervisor import start_sweeper
        await start_sweeper()

    yield

    if not settings.redis_enabled:
        from raffledesk.services.timeout_supervisor import stop_sweeper
        await stop_sweeper()


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.error_code},
        headers=exc.headers,
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Raffledesk API",
        version="0.1.0",
        description="Raffle lifecycle and draw service",
        debug=settings.APP_DEBUG,
        lifespan=lifespan,
    )

    setup_middleware(app)
    app.add_exception_handler(AppError, app_error_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    from raffledesk.api.v1 import router as api_v1_router
    app.include_router(api_v1_router, prefix="/api/v1")

    return app


app = create_app()
