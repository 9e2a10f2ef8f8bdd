from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, settings
from exceptions import PicketError, RateLimitError
from schemas import ErrorResponse
from middleware import RequestContextMiddleware
from routers import health, image_proxy
from security.governor import RequestGovernor
from utils.logging import get_logger, setup_logging
from utils.url_fetch import PinnedFetcher

logger = get_logger("main")

# Errors must never be cached by the browser or a CDN
ERROR_HEADERS = {"Cache-Control": "no-store"}

HTTP_ERROR_MESSAGES = {
    404: "Not found",
    405: "Method not allowed",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: configure logging. Shutdown: close connections."""
    # --- Startup ---
    setup_logging(app.state.settings.log_level)
    logger.info("Picket starting")

    yield

    # --- Shutdown ---
    # Uvicorn's --timeout-graceful-shutdown handles connection draining.
    await app.state.governor.close()
    logger.info("Picket shutting down")


async def picket_error_handler(request: Request, exc: PicketError):
    headers = dict(ERROR_HEADERS)
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.details.get("retry_after", 60))

    logger.info(
        f"Request rejected: {exc.error_code}",
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "context": {"status": exc.status_code, **exc.details},
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message).model_dump(),
        headers=headers,
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    headers = dict(ERROR_HEADERS)
    if exc.headers:
        headers.update(exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=HTTP_ERROR_MESSAGES.get(exc.status_code, str(exc.detail))
        ).model_dump(),
        headers=headers,
    )


def create_app(config: Settings | None = None) -> FastAPI:
    """Build the application with its own governor and fetcher.

    The governor holds the rate and concurrency counters, so every app
    instance starts from zero. ``config`` is kept on ``app.state.settings``
    for the lifespan and the response builder.
    """
    config = config or settings

    app = FastAPI(
        title="Picket",
        description="Safe Remote Image Proxy",
        version=health.VERSION,
        lifespan=lifespan,
    )

    app.state.settings = config
    app.state.governor = RequestGovernor.from_settings(config)
    app.state.fetcher = PinnedFetcher(
        max_redirects=config.max_redirects,
        timeout=config.fetch_timeout_seconds,
        max_bytes=config.max_image_size_bytes,
        user_agent=config.user_agent,
    )

    origins = [o.strip() for o in config.allowed_origins.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(PicketError, picket_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    app.include_router(health.router)
    app.include_router(image_proxy.router)

    return app


app = create_app()
