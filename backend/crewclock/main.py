import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from crewclock.api.problem_details import PROBLEM_TYPE_SERVER, problem_details, request_id_for
from crewclock.api.routes_health import router as health_router
from crewclock.api.routes_metrics import router as metrics_router
from crewclock.api.routes_time_tracking import router as time_tracking_router
from crewclock.domain.errors import DomainError
from crewclock.infra.db import dispose_engine, get_session_factory
from crewclock.infra.logging import clear_log_context, configure_logging, update_log_context
from crewclock.infra.metrics import Metrics, configure_metrics
from crewclock.settings import Settings, settings

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("crewclock.request")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns the request id, echoes it back, and writes one access log line."""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        update_log_context(request_id=request_id, method=request.method, path=request.url.path)
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            latency_ms = int((time.perf_counter() - started) * 1000)
            access_logger.info("request", extra={"extra": {"status_code": status_code, "latency_ms": latency_ms}})
            clear_log_context()


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, metrics_client: Metrics) -> None:
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # Route templates keep label cardinality bounded.
            route_path = getattr(request.scope.get("route"), "path", "unmatched")
            self.metrics.record_http_latency(
                request.method, route_path, status_code, time.perf_counter() - started
            )
            if status_code >= 500:
                self.metrics.record_http_5xx(request.method, route_path)


def _validation_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location) or "body", "message": error.get("msg", "Invalid value")})
    return errors


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return problem_details(
            request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            errors=_validation_errors(exc),
        )

    @app.exception_handler(DomainError)
    async def handle_domain_error(request: Request, exc: DomainError):
        code = getattr(exc, "code", None)
        logger.info(
            "domain_error",
            extra={"extra": {"title": exc.title, "code": code, "status": exc.status, "path": request.url.path}},
        )
        return problem_details(
            request,
            status=exc.status,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors,
            type_=exc.type,
            code=code,
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return problem_details(
            request,
            status=exc.status_code,
            title=message,
            detail=message,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        request_id = request_id_for(request)
        update_log_context(request_id=request_id, method=request.method, path=request.url.path, status_code=500)
        logger.exception(
            "unhandled_exception",
            extra={"extra": {"request_id": request_id, "error_type": type(exc).__name__}},
        )
        return problem_details(
            request,
            status=500,
            title="Internal Server Error",
            detail="Unexpected error",
            type_=PROBLEM_TYPE_SERVER,
        )


def _cors_origins(app_settings: Settings) -> list[str]:
    if app_settings.cors_origins:
        return app_settings.cors_origins
    return ["http://localhost:3000"] if app_settings.app_env == "dev" else []


def create_app(app_settings: Settings) -> FastAPI:
    configure_logging()
    metrics_client = configure_metrics(app_settings.metrics_enabled)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.app_settings = app_settings
        if getattr(app.state, "metrics", None) is None:
            app.state.metrics = metrics_client
        if getattr(app.state, "db_session_factory", None) is None:
            app.state.db_session_factory = get_session_factory()
        logger.info("startup", extra={"extra": {"app_env": app_settings.app_env}})
        yield
        await dispose_engine()

    app = FastAPI(title="Crew Clock", version="1.0.0", lifespan=lifespan)
    app.add_middleware(MetricsMiddleware, metrics_client=metrics_client)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(app_settings),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(time_tracking_router)
    if app_settings.metrics_enabled:
        app.include_router(metrics_router)
    return app


app = create_app(settings)
