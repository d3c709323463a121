import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from conduit.cache import cache
from conduit.config import settings
from conduit.exceptions import ConduitError
from conduit.middleware import DiagnosticsMiddleware
from conduit.routers import articles, metrics, profiles, users

API_VERSION = "1.0.0"


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # SQL echo goes through the engine's own logger when DEBUG is on.
    if not settings.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Conduit API env=%s", settings.APP_ENV)
    await cache.connect()
    yield
    await cache.disconnect()


app = FastAPI(
    title="Conduit API",
    description="Blog API with filtered look-ahead feeds and a consistent social graph",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(DiagnosticsMiddleware)
# Wildcard origins: credentials must stay off.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ConduitError)
async def conduit_error_handler(request: Request, exc: ConduitError):
    """Domain errors become ``{"detail": ...}`` with the error's own status."""
    log = logger.warning if exc.status_code >= 500 else logger.info
    log("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


for module in (articles, profiles, users, metrics):
    app.include_router(module.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": API_VERSION, "cache": cache.connected}
