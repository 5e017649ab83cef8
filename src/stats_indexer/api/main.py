from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import REGISTRY, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client import Counter, Histogram
from contextlib import asynccontextmanager
import json
import logging
import time
import uuid
import redis
from sqlalchemy.exc import SQLAlchemyError
from stats_indexer import __version__
from stats_indexer.config import get_settings
from stats_indexer.infrastructure import db
from stats_indexer.infrastructure.log_config import configure_logging
from stats_indexer.indexer.errors import (
    AlreadyExists,
    ConfigurationError,
    ConfirmationRequired,
    IndexBusy,
    IndexerError,
    NotFound,
    TransientIOFailure,
)
from stats_indexer.api.admin import router as admin_router
from stats_indexer.api.products import router as products_router

logger = logging.getLogger("app")

REQUESTS = Counter('api_requests_total', 'API Requests', ['endpoint'])
LATENCY = Histogram('api_request_latency_seconds', 'API request latency', ['endpoint'], buckets=(0.01,0.05,0.1,0.25,0.5,1,2,5))

_ERROR_STATUS = (
    (NotFound, 404, "not_found"),
    (AlreadyExists, 409, "already_exists"),
    (IndexBusy, 409, "index_busy"),
    (ConfirmationRequired, 412, "confirmation_required"),
    (ConfigurationError, 400, "configuration_error"),
    (TransientIOFailure, 503, "transient_io_failure"),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if get_settings().migrate_on_start:
        db.create_all()
    yield


app = FastAPI(title="Product Stats Indexer API", version=__version__, lifespan=lifespan)
app.include_router(products_router)
app.include_router(admin_router)


@app.exception_handler(IndexerError)
async def indexer_error_handler(request: Request, exc: IndexerError):
    for exc_type, status, code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            break
    else:
        status, code = 500, "indexer_error"
    if status >= 500:
        logger.error(json.dumps({"event": "indexer_error", "path": request.url.path, "detail": str(exc), "type": exc.__class__.__name__}))
    return JSONResponse(status_code=status, content={"error": code, "detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    cid = getattr(request.state, "correlation_id", "n/a")
    logger.error(json.dumps({
        "event": "error",
        "path": request.url.path,
        "detail": str(exc),
        "correlation_id": cid,
        "type": exc.__class__.__name__,
    }))
    return Response(content=json.dumps({"error": "internal_error", "correlation_id": cid}), media_type="application/json", status_code=500)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    request.state.correlation_id = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex
    start = time.time()
    response = await call_next(request)
    endpoint = getattr(request.scope.get("route"), "path", request.url.path)
    REQUESTS.labels(endpoint=endpoint).inc()
    LATENCY.labels(endpoint=endpoint).observe(time.time() - start)
    response.headers["X-Correlation-ID"] = request.state.correlation_id
    return response


@app.get("/health")
def health():
    return {"db": db.healthcheck(), "status": "ok"}


@app.get("/ready")
def readiness():
    """Readiness probe that ensures DB and Redis are reachable."""
    settings = get_settings()
    try:
        db_ok = db.healthcheck()
    except SQLAlchemyError:
        db_ok = False
    redis_ok = True
    try:
        r = redis.Redis.from_url(settings.redis_url)
        r.ping()
    except redis.RedisError:
        redis_ok = False
    status = db_ok and redis_ok
    return {"status": "ok" if status else "degraded", "db": db_ok, "redis": redis_ok}


@app.get("/metrics")
def metrics():
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
