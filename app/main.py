import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import CORS_ALLOW_ORIGIN_REGEX, CORS_ORIGINS, DATABASE_URL
from app.core.database import Base, engine
from app.core.errors import register_exception_handlers
from app.core.logging_setup import configure_logging
from app.core.startup_checks import ensure_migrations_applied, validate_database_environment
from app.middleware.observability import ObservabilityMiddleware
from app.middleware.rate_limit import CredentialRateLimitMiddleware
import app.models  # noqa: F401  models must be registered before create_all

from app.routers.agent import router as agent_router
from app.routers.agent_auth import router as agent_auth_router
from app.routers.agents import router as agents_router
from app.routers.analytics import router as analytics_router
from app.routers.auth import router as auth_router
from app.routers.company import router as company_router
from app.routers.integrations import router as integrations_router
from app.routers.internal_metrics import router as internal_metrics_router
from app.routers.orders import router as orders_router
from app.routers.riders import router as riders_router
from app.routers.settings import router as settings_router
from app.routers.webhooks import router as webhooks_router

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
API_VERSION = "1.0.0"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
    except Exception:
        logger.exception("%s ERROR startup failed", STARTUP_PREFIX)
        raise


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Fleet Dispatch API",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_origin_regex=CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CredentialRateLimitMiddleware)
app.add_middleware(ObservabilityMiddleware)

register_exception_handlers(app)

# Routers
app.include_router(auth_router)
app.include_router(agent_auth_router)
app.include_router(agent_router)
app.include_router(riders_router)
app.include_router(orders_router)
app.include_router(agents_router)
app.include_router(analytics_router)
app.include_router(settings_router)
app.include_router(integrations_router)
app.include_router(company_router)
app.include_router(webhooks_router)
app.include_router(internal_metrics_router)


@app.get("/")
def root():
    return {"name": "Fleet Dispatch API", "version": API_VERSION, "docs": "/docs"}


@app.get("/health")
def health():
    return {"status": "ok"}
