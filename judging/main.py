"""
judging/main.py
Application factory

create_app(settings) wires every process-wide component from one Settings
instance and keeps them on app.state:

    app.state.settings             Settings
    app.state.db                   Database (engine + session factory)
    app.state.token_verifier       TokenVerifier
    app.state.connection_manager   ConnectionManager (+ broadcast adapter)
    app.state.notifier             NotificationDispatcher
    app.state.limiter              slowapi Limiter

Run with: uvicorn judging.main:app   (or gunicorn -c deploy/gunicorn.conf.py)
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from judging import __version__
from judging.config import Settings
from judging.core.rate_limit import limiter
from judging.database import Database
from judging.errors import APIError, ErrorCode, get_error_summary, internal_error_response
from judging.realtime.connection_manager import ConnectionManager
from judging.realtime.redis_adapter import build_broadcast_adapter
from judging.realtime.ws_server import judging_websocket
from judging.routes import api_router
from judging.security import TokenVerifier
from judging.services.notification_service import NotificationDispatcher, database_sender

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()]
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting judging service...")
    try:
        await app.state.db.init()
        logger.info("Database connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect to database: {str(e)}")
        raise

    await app.state.connection_manager.start()
    await app.state.notifier.start()

    yield

    logger.info("Shutting down judging service...")
    await app.state.notifier.stop()
    await app.state.connection_manager.stop()
    await app.state.connection_manager.broadcast_adapter.close()
    await app.state.db.close()


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(loc)
    msg = first.get("msg", "Invalid value")
    return f"{field}: {msg}" if field else msg


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        logger.warning(f"API error on {request.url.path}: {exc.code} - {exc.message}")
        return exc.to_response()

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        details = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "error": _validation_message(exc),
                "code": ErrorCode.VALIDATION_ERROR,
                "details": details
            }
        )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Rate limit exceeded on {request.url.path}: {exc.detail}")
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "success": False,
                "error": f"Rate limit exceeded: {exc.detail}",
                "code": ErrorCode.RATE_LIMITED
            }
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(f"HTTP exception on {request.url.path}: {exc.detail}")
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            code = ErrorCode.NOT_FOUND
        elif exc.status_code >= 500:
            code = ErrorCode.INTERNAL_ERROR
        else:
            code = ErrorCode.INVALID_INPUT
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail), "code": code},
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        return internal_error_response(exc, context=request.url.path)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Judging & Trading API",
        description="Live judge consensus, over/under trading and settlement",
        version=__version__,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan
    )

    database = Database(settings.database_url)
    adapter = build_broadcast_adapter(settings.redis_url)

    app.state.settings = settings
    app.state.db = database
    app.state.token_verifier = TokenVerifier.from_settings(settings)
    app.state.connection_manager = ConnectionManager(adapter)
    app.state.notifier = NotificationDispatcher(database_sender(database.session_factory))

    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    logger.info(f"✓ Rate limiter configured (enabled={settings.rate_limit_enabled})")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(api_router)
    app.add_api_websocket_route("/ws/judging", judging_websocket)

    @app.get("/health", tags=["Health"])
    async def health_check():
        manager: ConnectionManager = app.state.connection_manager
        return {
            "status": "healthy",
            "environment": settings.environment,
            "broadcast": "redis" if settings.use_redis else "in-memory",
            "connections": manager.get_connection_count(),
            "relay": "running" if manager.relay_running else "stopped",
            "version": __version__
        }

    @app.get("/api/errors/health", tags=["Health"])
    async def error_handling_health():
        return get_error_summary()

    logger.info(f"✓ Judging service configured ({settings.environment})")
    return app


app = create_app()
