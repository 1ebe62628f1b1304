"""
Main FastAPI application
"""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import time
from prometheus_client import make_asgi_app
import uuid

from boxoffice.config import Settings, settings as default_settings
from boxoffice.core.container import ServiceContainer, build_container
from boxoffice.core.database import init_db
from boxoffice.core.exceptions import BoxOfficeException
from boxoffice.core.logging import setup_logging
from boxoffice.core.metrics import REQUEST_COUNT, REQUEST_DURATION
from boxoffice.api.v1.api import api_router
from boxoffice.api.v1.endpoints import websocket

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    """
    settings: Settings = app.state.settings
    owns_container = app.state.container is None

    # Startup
    if owns_container:
        setup_logging(settings)
        app.state.container = build_container(settings)
    container: ServiceContainer = app.state.container
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if container.engine is not None:
        await init_db(container.engine)
        logger.info("Database schema ready")

    recovered = await container.orders.recover_incomplete_orders()
    if recovered:
        logger.warning(f"Recovered {recovered} incomplete order sagas")

    if settings.HOLD_SWEEP_ENABLED:
        container.sweeper.start()

    yield

    # Shutdown
    logger.info("Shutting down application")
    if owns_container:
        await container.close()
    else:
        await container.sweeper.stop()


def _error_body(code: str, message: str, details: Optional[dict] = None) -> dict:
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details or {}
        }
    }


def create_app(container: Optional[ServiceContainer] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application; a prebuilt container replaces the one made at startup
    """
    settings = settings or (container.settings if container is not None else default_settings)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Box office: seat holds, orders, tickets and venue check-in",
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        """
        Track request metrics and add request ID
        """
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Route templates keep label cardinality bounded
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()
        REQUEST_DURATION.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(duration)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration)
        return response

    @app.exception_handler(BoxOfficeException)
    async def boxoffice_exception_handler(request: Request, exc: BoxOfficeException):
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}", extra={"details": exc.details})
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(_error_body(exc.code, exc.message, exc.details))
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=jsonable_encoder(
                _error_body("VALIDATION_ERROR", "Request validation failed", {"errors": exc.errors()})
            )
        )

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        reference = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        logger.error(f"Internal server error [{reference}]: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "INTERNAL_ERROR",
                "An internal server error occurred",
                {"support_reference": reference}
            )
        )

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.APP_ENV,
            "api_docs": "/docs" if settings.DEBUG else None
        }

    app.include_router(api_router, prefix=settings.API_PREFIX)
    app.include_router(websocket.router, prefix="/ws", tags=["WebSocket"])

    if settings.PROMETHEUS_ENABLED:
        app.mount("/metrics", make_asgi_app())

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "boxoffice.main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        reload=default_settings.DEBUG,
        log_level=default_settings.LOG_LEVEL.lower()
    )
