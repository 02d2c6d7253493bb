from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List
from uuid import UUID, uuid4

from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from jose import JWTError
from starlette.concurrency import run_in_threadpool

from quality_hold.core.errors import QualityHoldError
from quality_hold.core.logging import configure_logging, correlation_id_var, user_id_var
from quality_hold.core.security import Actor, actor_from_token
from quality_hold.core.settings import get_app_settings
from quality_hold.db.run_migrations import upgrade_head
from quality_hold.db.seed import seed_all
from quality_hold.db.session import dispose_engine
from quality_hold.schemas.common import ErrorInfo, ErrorResponse, MessageResponse
from quality_hold.services.realtime import broadcast_manager

# Routers
from quality_hold.api.routes.quality_incidents import router as quality_incidents_router
from quality_hold.api.routes.shipments import router as shipments_router
from quality_hold.api.routes.suppliers import router as suppliers_router

settings = get_app_settings()

# Configure structured logging once at import
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Liveness check."},
    {"name": "Quality Incidents", "description": "Incident intake, sample grid, media and review."},
    {"name": "Shipments", "description": "Delivery confirmation."},
    {"name": "Suppliers", "description": "Supplier delivery scorecard."},
    {
        "name": "WebSocket",
        "description": "WebSocket usage, endpoints, and connection details.",
    },
]

app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    openapi_tags=openapi_tags,
)

# CORS - avoid wildcard with credentials
cors_allow_credentials = settings.CORS_ALLOW_CREDENTIALS
if settings.CORS_ORIGINS == ["*"] and cors_allow_credentials:
    logger.warning("CORS_ALLOW_CREDENTIALS=True with '*' origins is not permitted; disabling credentials.")
    cors_allow_credentials = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Enrich request context with a correlation_id for logging and error responses.
    Adds 'X-Correlation-ID' to every response.
    """
    corr = request.headers.get("X-Correlation-ID") or request.headers.get("X-Request-ID") or str(uuid4())
    token_corr = correlation_id_var.set(corr)
    token_user = user_id_var.set(None)
    request.state.correlation_id = corr

    logger.info("Incoming request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token_corr)
        user_id_var.reset(token_user)

    response.headers["X-Correlation-ID"] = corr
    return response


def _build_error_response(
    request: Request,
    status_code: int,
    error_type: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    """Build a standardized ErrorResponse JSONResponse."""
    ts = datetime.now(tz=timezone.utc)
    err = ErrorResponse(
        status=status_code,
        error=ErrorInfo(type=error_type, message=message, details=details),
        correlation_id=getattr(request.state, "correlation_id", None),
        user_id=user_id_var.get(),
        path=request.url.path,
        method=request.method,
        timestamp=ts,
    )
    return JSONResponse(status_code=status_code, content=err.model_dump(mode="json"))


@app.exception_handler(QualityHoldError)
async def quality_hold_error_handler(request: Request, exc: QualityHoldError):
    """
    Render expected workflow errors (invalid argument, forbidden, not found, conflict).
    """
    logger.info("%s %s -> %d %s: %s", request.method, request.url.path, exc.status_code, exc.error_type, exc.message)
    return _build_error_response(
        request=request,
        status_code=exc.status_code,
        error_type=exc.error_type,
        message=exc.message,
        details=exc.details,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Global handler for HTTPException to produce a standardized error envelope.
    """
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP Error"
    return _build_error_response(
        request=request,
        status_code=exc.status_code,
        error_type="http_error",
        message=str(detail),
        details=None if isinstance(exc.detail, str) else exc.detail,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Global handler for request validation errors with a standard structure.
    """
    return _build_error_response(
        request=request,
        status_code=422,
        error_type="validation_error",
        message="Request validation failed",
        details=jsonable_errors(exc),
    )


def jsonable_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    # pydantic error contexts may carry exception objects
    return [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler to avoid leaking stack traces and to return a structured error.
    """
    logger.exception("Unhandled error processing request")
    return _build_error_response(
        request=request,
        status_code=500,
        error_type="internal_error",
        message="An unexpected error occurred",
        details=None,
    )


@app.on_event("startup")
async def on_startup() -> None:
    """
    Run migrations and optional seeding on service startup.

    This ensures the database schema is up to date. Seeding is opt-in via settings.
    """
    Path(settings.QUALITY_MEDIA_PATH).mkdir(parents=True, exist_ok=True)

    if settings.RUN_MIGRATIONS_ON_STARTUP:
        try:
            logger.info("Running Alembic migrations: upgrade head")
            # env.py drives its own event loop, so it runs off the request loop
            await run_in_threadpool(upgrade_head)
            logger.info("Migrations completed.")
        except Exception as exc:
            logger.exception("Migration step failed: %s", exc)
            # Do not crash the app in case of transient DB issues; rely on retries or later readiness checks.

    if settings.AUTO_SEED:
        try:
            logger.info("Running database seeding...")
            await seed_all()
            logger.info("Seeding completed.")
        except Exception as exc:
            logger.exception("Seeding step failed: %s", exc)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await dispose_engine()


# Build API v1 router and include sub-routers
api_v1 = APIRouter(prefix="/api/v1")

# PUBLIC_INTERFACE
@api_v1.get(
    "/health",
    response_model=MessageResponse,
    summary="Health Check",
    tags=["Health"],
)
def health_check() -> MessageResponse:
    """
    Basic liveness health check endpoint.

    Returns:
        MessageResponse: Simple confirmation that the service is running.
    """
    return MessageResponse(message="Healthy")


# PUBLIC_INTERFACE
@api_v1.get(
    "/websocket-info",
    response_model=Dict[str, Any],
    summary="WebSocket Usage Information",
    description="Connection details for the quality incident event stream.",
    tags=["WebSocket"],
)
def websocket_info() -> Dict[str, Any]:
    """
    Describe how to connect to WebSocket endpoints in this service.
    """
    return {
        "usage": (
            "Connect with a valid user JWT as a 'token' query parameter. "
            "Message format is JSON with fields: { type: string, payload: object, at: ISO-8601, user_id?: string, channel?: string }."
        ),
        "endpoints": [
            {
                "path": "/ws/quality",
                "summary": "Quality incident events (server push).",
                "query": ["token", "branch?"],
                "messages": {
                    "client_to_server": ["ping"],
                    "server_to_client": [
                        "quality.incident.created",
                        "quality.incident.submitted",
                        "quality.incident.reviewed",
                    ],
                },
            }
        ],
        "notes": "WebSocket endpoints are not represented in OpenAPI schema; refer to this endpoint for usage.",
    }


# Include all routers under /api/v1
api_v1.include_router(quality_incidents_router)
api_v1.include_router(shipments_router)
api_v1.include_router(suppliers_router)

# Attach api_v1 to app
app.include_router(api_v1)

# Evidentiary media files, served from the local storage root
app.mount(
    settings.QUALITY_MEDIA_URL_PREFIX,
    StaticFiles(directory=settings.QUALITY_MEDIA_PATH, check_dir=False),
    name="quality-media",
)


async def _reject(websocket: WebSocket, code: int) -> None:
    await websocket.close(code=code)
    raise WebSocketDisconnect(code=code)


async def _authorize_ws(websocket: WebSocket) -> tuple[Actor, List[str]]:
    """
    Validate the 'token' query param and resolve the topics the actor may follow.

    HQ roles (and users without branch assignment) follow every branch unless a
    'branch' param narrows it; other users follow their own branches only.

    Raises:
        WebSocketDisconnect if invalid (4401) or the branch is not permitted (4403).
    """
    token = websocket.query_params.get("token")
    if not token:
        await _reject(websocket, 4401)
    try:
        actor = actor_from_token(token)
    except JWTError:
        await _reject(websocket, 4401)

    unrestricted = actor.has_role(settings.HQ_ROLES) or not actor.branch_ids
    branch = websocket.query_params.get("branch")
    if branch:
        try:
            branch_id = UUID(branch)
        except ValueError:
            await _reject(websocket, 4400)
        if not unrestricted and branch_id not in actor.branch_ids:
            await _reject(websocket, 4403)
        return actor, [broadcast_manager.quality_topic(branch_id)]
    if unrestricted:
        return actor, [broadcast_manager.quality_topic()]
    return actor, [broadcast_manager.quality_topic(b) for b in sorted(actor.branch_ids, key=str)]


# PUBLIC_INTERFACE
@app.websocket("/ws/quality")
async def ws_quality(websocket: WebSocket):
    """
    WebSocket endpoint for quality incident events.

    Security:
      - Query param 'token' must be a valid JWT.
    Messages:
      - Server -> Client: type='quality.incident.<created|submitted|reviewed>'
      - Client -> Server: optional 'ping' to keepalive; other messages ignored.
    """
    await websocket.accept()
    try:
        actor, topics = await _authorize_ws(websocket)
    except WebSocketDisconnect:
        return

    for topic in topics:
        await broadcast_manager.connect(topic, websocket)
    logger.info("Quality stream opened by %s on %s", actor.user_id, ", ".join(topics))

    try:
        while True:
            msg = await websocket.receive_text()
            if msg and msg.lower() == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Error on ws_quality connection")
        await websocket.close()
    finally:
        for topic in topics:
            await broadcast_manager.disconnect(topic, websocket)
