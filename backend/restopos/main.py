"""FastAPI application entry point."""

import asyncio
import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from starlette.middleware.base import BaseHTTPMiddleware

import redis

from restopos.api.routes import api_router
from restopos.core.config import settings
from restopos.core.errors import POSError
from restopos.core.rate_limit import limiter
from restopos.core.security import decode_access_token
from restopos.db.base import Base
from restopos.db.session import SessionLocal, engine
from restopos.services.notification_service import fanout
from restopos.services.websocket_service import Channel, ws_manager

# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()


class JSONFormatter(logging.Formatter):
    def format(self, record):
        return json.dumps({
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        })


if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of every API request."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in ["/health", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {e} - Time: {time.time() - start_time:.3f}s - Client: {client_ip}"
            )
            raise

        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"{request.method} {request.url.path} - Status: {response.status_code} - "
            f"Time: {time.time() - start_time:.3f}s - Client: {client_ip}",
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.app_name}")

    # SQLite dev databases are created in place; other databases use Alembic
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    # Sync routes run in the threadpool and publish onto this loop
    fanout.bind_loop(asyncio.get_running_loop())
    yield
    fanout.bind_loop(None)
    logger.info(f"Stopped {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    description="Restaurant point-of-sale order, kitchen ticket and billing API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - added last so it runs first
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
    max_age=600,
)


@app.exception_handler(POSError)
async def pos_error_handler(request: Request, exc: POSError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    detail = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "detail": detail,
            "context": {"errors": json.loads(json.dumps(errors, default=str))},
        },
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity conflict on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=409,
        content={"error": "conflict", "detail": "The request conflicts with the current state"},
    )


# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Basic liveness check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/health/ready")
def readiness_check():
    """Readiness probe with database, Redis, and WebSocket checks."""
    checks = {
        "database": "unknown",
        "websocket_manager": "unknown",
        "redis": "unknown",
    }

    db = None
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unhealthy"
    finally:
        if db:
            db.close()

    if settings.redis_url:
        try:
            redis.from_url(settings.redis_url, socket_connect_timeout=2).ping()
            checks["redis"] = "healthy"
        except (redis.RedisError, OSError) as e:
            logger.error(f"Redis health check failed: {e}")
            checks["redis"] = "unhealthy"
    else:
        checks["redis"] = "not configured"

    checks["websocket_manager"] = f"healthy ({ws_manager.get_connection_count()} connections)"

    all_healthy = all(c.startswith("healthy") or c == "not configured" for c in checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


# ===== WebSocket channels =====

async def _authenticate_websocket(
    websocket: WebSocket,
    token: Optional[str],
    channel_name: str,
) -> Optional[int]:
    """Authenticate a WebSocket connection. Returns user_id or None (rejected).

    Checks the ``token`` query parameter first, then the ``access_token``
    cookie. Connections without valid auth are closed with 1008.
    """
    payload = decode_access_token(token) if token else None
    if not payload:
        cookie_token = websocket.cookies.get("access_token")
        if cookie_token:
            payload = decode_access_token(cookie_token)

    if not payload or not payload.get("sub"):
        logger.warning(f"WebSocket rejected for '{channel_name}': no valid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None
    return int(payload["sub"])


async def _ws_loop(websocket: WebSocket, channel: str, user_id: int):
    """Receive loop with ping/pong support."""
    if not await ws_manager.connect(websocket, channel, user_id=user_id):
        return

    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                ws_manager.update_ping(websocket)
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket, channel)
    except Exception as e:
        logger.error(f"WebSocket error in {channel}: {e}", exc_info=True)
        ws_manager.disconnect(websocket, channel)


@app.websocket("/ws/kitchen")
async def websocket_kitchen(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Ticket events for kitchen and bar displays."""
    user_id = await _authenticate_websocket(websocket, token, Channel.KITCHEN.value)
    if user_id is None:
        return
    await _ws_loop(websocket, Channel.KITCHEN.value, user_id)


@app.websocket("/ws/orders")
async def websocket_orders(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Order, billing and payment events for captains and cashiers."""
    user_id = await _authenticate_websocket(websocket, token, Channel.ORDERS.value)
    if user_id is None:
        return
    await _ws_loop(websocket, Channel.ORDERS.value, user_id)


@app.websocket("/ws/tables")
async def websocket_tables(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Table status changes for floor views."""
    user_id = await _authenticate_websocket(websocket, token, Channel.TABLES.value)
    if user_id is None:
        return
    await _ws_loop(websocket, Channel.TABLES.value, user_id)
