import importlib
import logging
import uuid
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware

from rideshare.config import settings
from rideshare.logging_setup import setup_logging, TRACE_ID_CTX
from rideshare.services.side_effects import side_effects

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # let in-flight best-effort writes finish before shutting down
    await side_effects.drain()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# initialize logging and Sentry
setup_logging(settings.LOG_LEVEL, service=settings.APP_NAME)
if settings.SENTRY_DSN:
    sentry_sdk.init(dsn=settings.SENTRY_DSN)
    app.add_middleware(SentryAsgiMiddleware)


@app.middleware("http")
async def add_trace_id(request: Request, call_next):
    trace_id = request.headers.get("x-trace-id") or str(uuid.uuid4())
    TRACE_ID_CTX.set(trace_id)
    response = await call_next(request)
    response.headers["X-Trace-Id"] = trace_id
    return response

# List of module names to include as routers
MODULES = [
    "history",
    "trips",
]


for mod in MODULES:
    pkg = importlib.import_module(f"rideshare.modules.{mod}.router")
    app.include_router(pkg.router, prefix=f"/{mod}", tags=[mod])


@app.get("/")
async def root():
    return {"app": settings.APP_NAME, "status": "ok"}


@app.get("/metrics")
async def metrics():
    content = generate_latest()
    return Response(content=content, media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/ready")
async def ready():
    # simple readiness: check redis
    from rideshare.redis_client import redis_client

    try:
        await redis_client.ping()
    except Exception:
        logger.warning("Readiness check failed: redis unavailable", exc_info=True)
        return Response(status_code=503, content="redis unavailable")
    return {"status": "ready"}
