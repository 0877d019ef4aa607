"""FastAPI application exposing the token lifecycle endpoints"""

from datetime import datetime, timezone
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from tokenkeeper.api.errors import register_exception_handlers
from tokenkeeper.api.v1 import auth
from tokenkeeper.config import settings
from tokenkeeper.core.database import SessionLocal, init_db
from tokenkeeper.core.keys import get_key_material
from tokenkeeper.core.logging_config import configure_logging
from tokenkeeper.core.metrics import CLEANUP_UP, HTTP_LATENCY, HTTP_REQUESTS
from tokenkeeper.services.cleanup_scheduler import cleanup_scheduler

configure_logging()
logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 1.0

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

register_exception_handlers(app)


def _route_label(request: Request) -> str:
    # Label by route template so device ids in paths do not explode cardinality.
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


@app.middleware("http")
async def token_response_headers(request: Request, call_next):
    """Request id, no-store caching for token payloads, request metrics"""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Request-ID"] = request_id

    route = _route_label(request)
    HTTP_REQUESTS.labels(request.method, route, str(response.status_code)).inc()
    HTTP_LATENCY.labels(request.method, route).observe(elapsed)
    if elapsed > SLOW_REQUEST_SECONDS:
        logger.warning("Slow request: %s %s took %.2fs request_id=%s", request.method, route, elapsed, request_id)

    return response


@app.on_event("startup")
async def startup_event():
    """Fail fast on bad key material or schema, then start cleanup"""
    settings.validate_security_settings()
    logger.info("Starting %s v%s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)

    keys = get_key_material()
    if keys.ephemeral:
        logger.warning("Tokens are signed with an ephemeral key and will not survive a restart")

    init_db()

    if settings.RUN_EMBEDDED_CLEANUP:
        cleanup_scheduler.start()
        CLEANUP_UP.set(1)


@app.on_event("shutdown")
async def shutdown_event():
    if cleanup_scheduler.is_running():
        cleanup_scheduler.stop()
    CLEANUP_UP.set(0)
    logger.info("Shutting down %s", settings.APP_NAME)


@app.get("/health")
async def health_check():
    """Liveness plus database, signing key and cleanup readiness"""
    db_ok = True
    db_error = None
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        db_ok = False
        db_error = exc.__class__.__name__
    finally:
        db.close()

    cleanup_status = cleanup_scheduler.status()
    CLEANUP_UP.set(1 if cleanup_status["running"] else 0)

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "readiness": {
            "database": {"ok": db_ok, "error": db_error},
            "signing_keys": {"ephemeral": get_key_material().ephemeral},
            "cleanup": cleanup_status,
        },
    }


@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tokenkeeper.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS
    )
