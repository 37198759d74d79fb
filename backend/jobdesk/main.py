import logging
import os
from dataclasses import dataclass

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from . import config
from .api import ai as ai_api
from .database import SessionLocal, init_db
from .services.ai_client import RetryingCompletionClient
from .services.key_reset_scheduler import ErrorCountResetScheduler
from .services.key_rotation import KeyRotationGateway
from .services.score_cache import DatabaseCacheStore, InMemoryCacheStore, ScoreResultCache
from .utils.error_handlers import AppError, create_error_response, get_error_message

logger = logging.getLogger(__name__)


@dataclass
class Services:
    gateway: KeyRotationGateway
    completion_client: RetryingCompletionClient
    score_cache: ScoreResultCache | None
    scheduler: ErrorCountResetScheduler | None = None


def build_services() -> Services:
    """Compose the process-wide gateway, completion client and score cache from config."""
    gateway = KeyRotationGateway.from_config(config.AI_API_KEYS, max_errors=config.AI_KEY_MAX_ERRORS)
    if not config.AI_API_KEYS:
        logger.warning("No AI API keys configured (AI_API_KEYS); AI endpoints will fall back to templates")

    client = RetryingCompletionClient(
        gateway,
        base_url=config.AI_BASE_URL,
        default_model=config.AI_MODEL,
        default_max_tokens=config.AI_MAX_TOKENS,
        default_temperature=config.AI_TEMPERATURE,
        default_max_attempts=config.AI_MAX_RETRIES,
        timeout_s=config.AI_TIMEOUT_S,
        log_payloads=config.AI_LOG_PAYLOADS,
    )

    if config.SCORE_CACHE_BACKEND == "memory":
        store = InMemoryCacheStore()
    else:
        store = DatabaseCacheStore(SessionLocal)
    cache = ScoreResultCache(store, ttl_s=config.SCORE_CACHE_TTL_S)

    scheduler = ErrorCountResetScheduler(gateway, interval_s=config.AI_KEY_RESET_INTERVAL_S)
    return Services(gateway=gateway, completion_client=client, score_cache=cache, scheduler=scheduler)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        """Render application errors as {success: false, error, details}."""
        if exc.status_code >= 500:
            logger.warning("%s: %s", type(exc).__name__, exc.message)
        return create_error_response(exc.status_code, exc.message, exc.details)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.detail,
                "status_code": exc.status_code,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": get_error_message("validation_error"),
                "details": [
                    {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
                    for e in exc.errors()
                ],
            },
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return create_error_response(400, str(exc) or get_error_message("validation_error"))

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("Database SQLAlchemyError: %s", exc)
        return create_error_response(500, get_error_message("database_error"))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        return create_error_response(500, get_error_message("server_error"))


def create_app(services: Services | None = None, *, admin_token: str | None = None) -> FastAPI:
    """
    Build the FastAPI app. Tests pass their own Services (mock transport, in-memory cache);
    production builds them from config on startup.
    """
    app = FastAPI(title="JobDesk AI Backend")
    app.include_router(ai_api.router)
    register_exception_handlers(app)

    app.state.admin_token = config.ADMIN_TOKEN if admin_token is None else admin_token
    svc = services or build_services()
    app.state.gateway = svc.gateway
    app.state.completion_client = svc.completion_client
    app.state.score_cache = svc.score_cache
    app.state.scheduler = svc.scheduler

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {
            "status": "Backend running",
            "service": "JobDesk AI Backend",
            "ai": svc.gateway.status(),
        }

    _default_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    _extra_origins = [
        origin.strip()
        for origin in os.getenv("FRONTEND_ORIGINS", "").split(",")
        if origin.strip()
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[*_default_origins, *_extra_origins],
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        if isinstance(getattr(svc.score_cache, "store", None), DatabaseCacheStore):
            try:
                init_db()
            except SQLAlchemyError as e:
                # The cache degrades to misses; scoring keeps working without it.
                logger.error("Score cache table init failed: %s", e)
        if svc.scheduler is not None:
            svc.scheduler.start()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        if svc.scheduler is not None:
            await svc.scheduler.stop()

    return app


app = create_app()
