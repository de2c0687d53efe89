import logging
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dalle_mcp.cleanup import CleanupPolicy, DirectoryAccessError, scheduler
from dalle_mcp.client import ImageGenerationClient
from dalle_mcp.config import ServiceConfig, load_config
from dalle_mcp.log import configure_logging
from dalle_mcp.metrics import track_http_request
from dalle_mcp.ratelimit import RateLimitExceeded, image_limiter
from dalle_mcp.routes import router
from dalle_mcp.validation import ValidationError

logger = logging.getLogger("dalle_mcp.main")


def cleanup_policy(config: ServiceConfig) -> CleanupPolicy:
    return CleanupPolicy(
        retention=config.retention,
        max_files=config.image_max_count,
        dry_run=config.image_cleanup_dry_run,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.config is None:
        load_dotenv()
        app.state.config = load_config()
        configure_logging(
            app.state.config.log_level, app.state.config.log_to_file, app.state.config.log_file_path,
        )
    config = app.state.config

    app.state.client = ImageGenerationClient(config)
    image_limiter.limit = config.image_generation_rate_limit
    if not config.api_key:
        logger.warning("OPENAI_API_KEY environment variable not set")

    if config.image_cleanup_enabled:
        scheduler.schedule(config.output_dir, cleanup_policy(config), config.cleanup_interval)

    logger.info("OpenAI Image Generation MCP server ready on port %d", config.port)
    yield
    await scheduler.stop_all()


def create_app(config: ServiceConfig | None = None) -> FastAPI:
    """Build the HTTP app. Without ``config`` it is loaded from the environment at startup."""
    app = FastAPI(title="OpenAI Image Generation MCP", lifespan=lifespan)
    app.state.config = config

    @app.exception_handler(ValidationError)
    async def validation_error_handler(_request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": exc.message, "field": exc.field, "kind": exc.kind.value},
        )

    @app.exception_handler(HTTPException)
    async def http_error_handler(_request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail, "detail": exc.detail},
            headers=exc.headers,
        )

    @app.exception_handler(DirectoryAccessError)
    async def directory_error_handler(_request: Request, exc: DirectoryAccessError) -> JSONResponse:
        logger.error("Image directory unreadable: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(exc), "directory": exc.directory, "reason": exc.reason},
        )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        client = request.client.host if request.client else "unknown"
        logger.warning("Rate limit exceeded for %s on %s", client, request.url.path)
        retry_after = exc.retry_after
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": str(exc),
                "retryAfter": retry_after,
                "limit": exc.limit,
                "remaining": exc.remaining,
            },
            headers={"Retry-After": str(retry_after)},
        )

    @app.middleware("http")
    async def record_metrics(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        track_http_request(request.method, path, response.status_code, (time.perf_counter() - start) * 1000)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
