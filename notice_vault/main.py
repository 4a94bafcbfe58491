"""Legal Notice Vault — FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from notice_vault.api.routes import access_router, documents_router
from notice_vault.core.config import settings
from notice_vault.core.database import create_db_engine, make_session_factory
from notice_vault.core.logging import init_logging
from notice_vault.services.blob_store import LocalBlobStore
from notice_vault.services.encrypted_storage import STORAGE_SUBDIR
from notice_vault.services.errors import NoticeVaultError

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _run_migrations() -> None:
    """Apply pending Alembic migrations on startup."""
    from alembic import command
    from alembic.config import Config as AlembicConfig

    cfg = AlembicConfig("alembic.ini")
    cfg.set_main_option("sqlalchemy.url", settings.database_url)
    command.upgrade(cfg, "head")
    logger.info("Alembic migrations applied.")


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Own the engine for the lifetime of the process."""
    engine = create_db_engine(settings.database_url)
    application.state.engine = engine
    application.state.session_factory = make_session_factory(engine)

    if settings.run_migrations_on_startup:
        # Bounded so a dead database cannot hang startup
        try:
            await asyncio.wait_for(
                asyncio.get_running_loop().run_in_executor(None, _run_migrations),
                timeout=15,
            )
        except Exception as exc:
            logger.warning("DB migration skipped: %s", exc)

    try:
        yield
    finally:
        engine.dispose()
        logger.info("Database engine disposed.")


app = FastAPI(title="Legal Notice Vault", version=VERSION, lifespan=lifespan)
init_logging(app)


@app.exception_handler(NoticeVaultError)
async def notice_vault_error_handler(request: Request, exc: NoticeVaultError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.__class__.__name__, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc)},
    )


# ── Routers ──────────────────────────────────────────────────────────
app.include_router(documents_router)
app.include_router(access_router)


@app.get("/health")
def health(request: Request):
    """Health check with service status details."""
    from redis import Redis
    from sqlalchemy import text

    result = {
        "status": "healthy",
        "version": VERSION,
        "database": "disconnected",
        "redis": "disconnected",
        "storage": "unwritable",
    }

    # Check database
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        result["database"] = "connected"
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        result["status"] = "degraded"

    # Check Redis
    try:
        r = Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        result["redis"] = "connected"
    except Exception as exc:
        logger.warning("Redis health check failed: %s", exc)
        result["status"] = "degraded"

    # Check encrypted storage volume
    if LocalBlobStore(str(Path(settings.disk_mount_path) / STORAGE_SUBDIR)).is_writable():
        result["storage"] = "writable"
    else:
        result["status"] = "degraded"

    return result
