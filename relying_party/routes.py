from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api import auth_router, profile_router, public_router, service_router
from .auth import AccessControl
from .clock import Clock, utc_now
from .deps import ServiceContainer, get_services
from .errors import AppError, ErrorKind, ErrorResponse
from .logging_config import REDACTED, logger, sanitize_headers_for_log
from .policy import PolicyRegistry, build_registry
from .redis_client import close_redis, create_redis_client, ping_redis
from .sessions import SessionManager, SessionSweeper
from .settings import Settings, settings as default_settings
from .storage import (
    KeyValueStore,
    MemoryKeyValueStore,
    RedisKeyValueStore,
    ResilientKeyValueStore,
)
from .storage.records import increment_counter
from .verification import HttpPresentationVerifier, PresentationVerifier, VerificationGateway


def build_services(
    cfg: Settings,
    *,
    store: Optional[KeyValueStore] = None,
    verifier: Optional[PresentationVerifier] = None,
    registry: Optional[PolicyRegistry] = None,
    clock: Optional[Clock] = None,
) -> ServiceContainer:
    """
    Wire every component explicitly; callers (tests included) may inject
    their own store, verifier, registry or clock.
    """
    clock = clock or utc_now
    redis = None
    if store is None:
        if cfg.uses_redis:
            redis = create_redis_client(cfg.redis_url)
            store = ResilientKeyValueStore(
                RedisKeyValueStore(redis), MemoryKeyValueStore(clock=clock)
            )
        else:
            logger.info("Using process-local session store (SESSION_STORE=%s)", cfg.session_store)
            store = MemoryKeyValueStore(clock=clock)

    registry = registry or build_registry(cfg.policy_file)
    verifier = verifier or HttpPresentationVerifier(
        cfg.verifier_url,
        trusted_issuers=cfg.get_trusted_issuers(),
        timeout=cfg.verification_timeout,
    )
    sessions = SessionManager(
        store,
        default_duration=cfg.session_default_duration,
        max_duration=cfg.session_max_duration,
        grace_seconds=cfg.session_store_grace,
        clock=clock,
    )
    gateway = VerificationGateway(
        verifier,
        registry,
        store,
        service_did=cfg.service_did,
        service_domain=cfg.service_domain,
        timeout=cfg.verification_timeout,
        request_ttl=cfg.presentation_request_ttl,
        batch_concurrency=cfg.batch_max_concurrency,
        batch_result_ttl=cfg.batch_result_ttl,
        clock=clock,
    )
    return ServiceContainer(
        settings=cfg,
        clock=clock,
        store=store,
        registry=registry,
        sessions=sessions,
        verifier=verifier,
        gateway=gateway,
        access=AccessControl(
            sessions, registry, access_extension=cfg.session_access_extension
        ),
        sweeper=SessionSweeper(sessions, interval_seconds=cfg.session_cleanup_interval),
        redis=redis,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    - startup: check Redis reachability, start the advisory session sweeper
    - shutdown: stop the sweeper, close outbound HTTP and Redis connections
    """
    services: ServiceContainer = app.state.services
    if services.redis is not None:
        if await ping_redis(services.redis):
            logger.info("Connected to Redis session store")
        else:
            logger.warning(
                "Redis unreachable at startup; sessions are single-process until it recovers"
            )
    services.sweeper.start()

    yield

    await services.sweeper.stop()
    await services.verifier.aclose()
    if services.redis is not None:
        await close_redis(services.redis)


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    services = get_services(request)
    if exc.kind.is_server_side:
        logger.error(
            "%s on %s %s: %s", exc.kind.value, request.method, request.url.path, exc.message
        )
    else:
        logger.info(
            "%s on %s %s: %s", exc.kind.value, request.method, request.url.path, exc.message
        )
    await increment_counter(services.store, "errors")
    payload = exc.to_response(include_stack_trace=services.settings.include_stack_trace)
    return JSONResponse(
        status_code=exc.status_code, content=payload.model_dump(mode="json", exclude_none=True)
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    payload = ErrorResponse(
        code=ErrorKind.VALIDATION_ERROR.value,
        message="Request validation failed",
        status=ErrorKind.VALIDATION_ERROR.http_status,
        context={"errors": errors},
    )
    return JSONResponse(
        status_code=payload.status, content=payload.model_dump(mode="json", exclude_none=True)
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """
    Last-resort handler: log with an error id and return a generic 500.
    """
    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    return JSONResponse(
        status_code=500,
        content={
            "code": "INTERNAL_ERROR",
            "message": "Internal server error, please try again later",
            "status": 500,
            "context": {"errorId": error_id},
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[KeyValueStore] = None,
    verifier: Optional[PresentationVerifier] = None,
    registry: Optional[PolicyRegistry] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    cfg = settings or default_settings
    app = FastAPI(title=cfg.service_name, version="1.0.0", lifespan=lifespan)
    app.state.services = build_services(
        cfg, store=store, verifier=verifier, registry=registry, clock=clock
    )
    app.state.started_at = time.monotonic()

    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(public_router)
    app.include_router(auth_router)
    app.include_router(service_router)
    app.include_router(profile_router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Request/response logging; the Authorization header carries the
        session token and is never logged.
        """
        client_host = request.client.host if request.client else "-"
        has_auth = "authorization" in request.headers
        logger.info(
            "HTTP %s %s from %s (authorization=%s)",
            request.method,
            request.url.path,
            client_host,
            REDACTED if has_auth else "-",
        )
        logger.debug("HTTP %s headers: %s", request.url.path, sanitize_headers_for_log(request.headers))
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "HTTP %s %s -> %s (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    logger.info(
        "Relying party '%s' ready with %d endpoint policies",
        cfg.service_name,
        len(app.state.services.registry),
    )
    return app


__all__ = ["build_services", "create_app"]
