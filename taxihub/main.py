import os
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pydantic import ValidationError as PydanticValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from .config import settings
from .db import Base, engine, db_health_check
from .errors import BookingError, ConflictError
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.bookings import router as bookings_router
from .routes.availability import router as availability_router
from .routes.calendar import router as calendar_router
from .routes.fleet import router as fleet_router
from .routes.users import router as users_router

logger = structlog.get_logger(__name__)

_LOC_SECTIONS = ("body", "query", "path", "header")


def first_validation_message(errors) -> str:
    """First schema issue as a single human readable line."""
    if not errors:
        return "Invalid input"
    err = errors[0]
    msg = str(err.get("msg") or "Invalid input")
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    field = ".".join(str(p) for p in err.get("loc", ()) if p not in _LOC_SECTIONS)
    if field and field not in msg:
        msg = f"{field}: {msg}"
    return msg


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message, **extra})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookingError)
    async def _booking_error(request: Request, exc: BookingError):
        if isinstance(exc, ConflictError):
            return _error(exc.status_code, exc.message, conflicts=exc.conflicts)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        return _error(400, first_validation_message(exc.errors()))

    @app.exception_handler(PydanticValidationError)
    async def _model_validation(request: Request, exc: PydanticValidationError):
        return _error(400, first_validation_message(exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        resp = _error(exc.status_code, str(exc.detail))
        if exc.headers:
            resp.headers.update(exc.headers)
        return resp

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error("unhandled_error", error=str(exc), exc_info=True)
        return _error(500, "Server error")


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(availability_router)
    app.include_router(bookings_router)
    app.include_router(calendar_router)
    app.include_router(fleet_router)
    app.include_router(users_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        logger.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("tables_created")

    @app.get("/health")
    def health():
        return {"ok": True, "status": "ok"}

    @app.get("/db-ping")
    def db_ping():
        try:
            db_health_check()
        except SQLAlchemyError as e:
            logger.warning("db_ping_failed", error=str(e))
            return _error(503, "Database unavailable")
        return {"ok": True}

    return app


app = create_app()
