import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from atlas_submittals.config import settings
from atlas_submittals.exceptions import ConfigError, DataSourceError, UnknownDatasetError, UnknownProjectError
from atlas_submittals.api.middleware import add_request_id, enforce_body_size, log_requests
from atlas_submittals.api.deps import get_ingestion_service, set_ingestion_service
from atlas_submittals.api.routers import analytics, datasets
from atlas_submittals.services.ingestion import IngestionService

# Configure logging
logging.basicConfig(level=getattr(logging, settings.logging.level.upper(), logging.INFO))
logger = logging.getLogger("atlas_submittals.api")


async def _refresh_loop(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            svc = get_ingestion_service()
            summaries = await asyncio.to_thread(svc.refresh_stale)
            if summaries:
                logger.debug("periodic refresh", extra={"datasets": [s.dataset for s in summaries]})
        except Exception:
            logger.exception("periodic refresh failed")


def create_app(
    service: Optional[IngestionService] = None,
    refresh_interval: Optional[float] = None,
) -> FastAPI:
    """
    Factory to build the FastAPI application.
    An explicit service replaces the shared one (tests pass a service over tmp_path);
    refresh_interval <= 0 disables the periodic refresh task.
    """
    if service is not None:
        set_ingestion_service(service)
    interval = settings.ingestion.refresh_interval_seconds if refresh_interval is None else refresh_interval

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(_refresh_loop(interval)) if interval and interval > 0 else None
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(title=settings.app.name, version=settings.app.version, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Custom Middleware
    app.middleware("http")(add_request_id)
    app.middleware("http")(enforce_body_size)
    if settings.logging.log_requests:
        app.middleware("http")(log_requests)

    app.include_router(datasets.router)
    app.include_router(analytics.router)

    @app.get("/health")
    def health():
        return {"status": "ok", "version": settings.app.version}

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        from starlette.exceptions import HTTPException as StarletteHTTPException
        if isinstance(exc, StarletteHTTPException):
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        rid = getattr(request.state, "request_id", None)
        logger.exception("Unhandled error", extra={"path": str(request.url), "request_id": rid})
        payload = {"error": "internal_error", "detail": "Unexpected server error"}
        if rid:
            payload["request_id"] = rid
        return JSONResponse(status_code=500, content=payload)

    @app.exception_handler(DataSourceError)
    async def datasource_exception_handler(request: Request, exc: DataSourceError):
        rid = getattr(request.state, "request_id", None)
        payload = {"error": "invalid_source", "detail": str(exc)}
        if rid:
            payload["request_id"] = rid
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(ConfigError)
    async def config_exception_handler(request: Request, exc: ConfigError):
        status = 404 if isinstance(exc, (UnknownDatasetError, UnknownProjectError)) else 409
        return JSONResponse(status_code=status, content={"error": "config_error", "detail": str(exc)})

    return app


# Module-level app for uvicorn entrypoint
app = create_app()
