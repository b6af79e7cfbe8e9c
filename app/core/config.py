import os
import re
from dotenv import load_dotenv

# Loads .env from the project root
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fleet_dispatch.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_STAGE = ENV_NORMALIZED in {"stage", "staging", "homolog"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
PUBLIC_BASE_DOMAIN = os.getenv("PUBLIC_BASE_DOMAIN", "").strip().lower()

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

_cors_origin_regex_env = os.getenv("CORS_ALLOW_ORIGIN_REGEX", "").strip()
if _cors_origin_regex_env:
    CORS_ALLOW_ORIGIN_REGEX = _cors_origin_regex_env
elif not IS_DEV and PUBLIC_BASE_DOMAIN:
    CORS_ALLOW_ORIGIN_REGEX = rf"^https://([a-z0-9-]+\.)?{re.escape(PUBLIC_BASE_DOMAIN)}$"
else:
    CORS_ALLOW_ORIGIN_REGEX = None

# Agent (rider) sessions
AGENT_SESSION_TTL_DAYS = int(os.getenv("AGENT_SESSION_TTL_DAYS", "30"))
PIN_MAX_ATTEMPTS = int(os.getenv("PIN_MAX_ATTEMPTS", "5"))
PIN_LOCK_MINUTES = int(os.getenv("PIN_LOCK_MINUTES", "15"))
# First PIN entered by a rider without credential becomes the stored PIN.
PIN_FIRST_USE_BOOTSTRAP = _env_flag("PIN_FIRST_USE_BOOTSTRAP", "1")

# Webhooks
WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10"))
WEBHOOK_MAX_ATTEMPTS = int(os.getenv("WEBHOOK_MAX_ATTEMPTS", "3"))
WEBHOOK_USER_AGENT = os.getenv("WEBHOOK_USER_AGENT", "FleetDispatch-Webhook/1.0")
WEBHOOK_REQUIRE_SIGNATURE = _env_flag("WEBHOOK_REQUIRE_SIGNATURE", "1")

# Integrations pull sync
INTEGRATION_SYNC_TIMEOUT_SECONDS = float(os.getenv("INTEGRATION_SYNC_TIMEOUT_SECONDS", "20"))

# Rate limit per credential
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "600"))


def _scope_limits(raw: str) -> dict[str, int]:
    # "/agent/location=120,/v1/riders=60"
    limits: dict[str, int] = {}
    for item in raw.split(","):
        scope, _, value = item.partition("=")
        if scope.strip() and value.strip().isdigit():
            limits[scope.strip().rstrip("/") or "/"] = int(value)
    return limits


RATE_LIMIT_SCOPE_LIMITS = _scope_limits(os.getenv("RATE_LIMIT_SCOPE_LIMITS", ""))

# Shared secret for /internal/metrics; the endpoint is hidden when unset
INTERNAL_METRICS_TOKEN = os.getenv("INTERNAL_METRICS_TOKEN", "").strip()
