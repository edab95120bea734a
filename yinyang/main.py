import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from yinyang.api.routes import KEY_HEADER, THRESHOLD_MOD_HEADER, router
from yinyang.config import Settings, settings
from yinyang.db.connection import run_migrations
from yinyang.repositories.config_repository import ConfigRepository
from yinyang.repositories.input_cache_repository import InputCacheRepository
from yinyang.repositories.request_ledger import RequestLedger
from yinyang.services.analysis_service import AnalysisService
from yinyang.services.blob_store import BlobStore
from yinyang.services.dispatch import DispatchQueue
from yinyang.services.input_cache import InputDedupCache


def _configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def wire_state(app: FastAPI, config: Settings) -> None:
    """Build the repositories and services for config and hang them on app.state."""
    run_migrations(config.DB_PATH)
    blob_store = BlobStore(config.BLOB_DIR, config.STORAGE_BASE_URL)
    app.state.settings = config
    app.state.blob_store = blob_store
    app.state.ledger = RequestLedger(config.DB_PATH)
    app.state.analysis_service = AnalysisService(
        ledger=app.state.ledger,
        input_cache=InputDedupCache(
            InputCacheRepository(config.DB_PATH), blob_store, timeout=config.HTTP_TIMEOUT_SECONDS
        ),
        config_repository=ConfigRepository(config.DB_PATH),
        dispatch=DispatchQueue(config.DB_PATH),
        settings=config,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _configure_logging()
    logger = logging.getLogger(__name__)
    logger.info(
        "Yinyang analyzer starting | db=%s | blobs=%s | port=%s",
        settings.DB_PATH,
        settings.BLOB_DIR,
        settings.PORT,
    )
    wire_state(app, settings)
    yield
    logger.info("Yinyang analyzer shutting down")


def create_app() -> FastAPI:
    app = FastAPI(title="Yinyang Analyzer", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[KEY_HEADER, THRESHOLD_MOD_HEADER, "Content-Type"],
    )

    app.include_router(router)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logging.getLogger(__name__).exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Internal server error"},
        )

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("yinyang.main:app", host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL)
