import os

from dotenv import load_dotenv

from sync_guesty.errors import ConfigurationError

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEBUG = LOG_LEVEL == "DEBUG"

DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL must be set in the environment")

# Empty means the connection's default schema (public on Postgres)
SCHEMA = os.getenv("DB_SCHEMA") or None

ALLOWED_ORIGINS_RAW = os.getenv("ALLOWED_ORIGINS")
if not ALLOWED_ORIGINS_RAW:
    raise ValueError("ALLOWED_ORIGINS must be set in the environment")

ALLOWED_ORIGINS: list[str] = [origin.strip() for origin in ALLOWED_ORIGINS_RAW.split(",")]


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


# === Guesty Open API ===

GUESTY_API_BASE_URL = os.getenv("GUESTY_API_BASE_URL", "https://open-api.guesty.com/v1/")
GUESTY_TOKEN_URL = os.getenv("GUESTY_TOKEN_URL", "https://open-api.guesty.com/oauth2/token")
GUESTY_REQUEST_TIMEOUT_SECONDS = float(os.getenv("GUESTY_REQUEST_TIMEOUT_SECONDS", "10"))

TOKEN_SAFETY_MARGIN_SECONDS = int(os.getenv("TOKEN_SAFETY_MARGIN_SECONDS", "300"))
TOKEN_MAX_TTL_SECONDS = int(os.getenv("TOKEN_MAX_TTL_SECONDS", str(23 * 3600)))

# Comma separated "key=listing_id" pairs overriding the built-in catalog
GUESTY_LISTING_IDS_RAW = os.getenv("GUESTY_LISTING_IDS", "")

# === Caches ===

AVAILABILITY_REFRESH_INTERVAL_SECONDS = int(
    os.getenv("AVAILABILITY_REFRESH_INTERVAL_SECONDS", "210")
)
AVAILABILITY_HORIZON_MONTHS = int(os.getenv("AVAILABILITY_HORIZON_MONTHS", "6"))
AVAILABILITY_REFRESH_ENABLED = _flag("AVAILABILITY_REFRESH_ENABLED", "true")

PRICING_CACHE_TTL_SECONDS = int(os.getenv("PRICING_CACHE_TTL_SECONDS", "300"))

# === Sync & webhooks ===

GUESTY_SYNC_ENABLED = _flag("GUESTY_SYNC_ENABLED", "true")
GUESTY_WEBHOOK_ENABLED = _flag("GUESTY_WEBHOOK_ENABLED", "true")
GUESTY_IMPORT_EXTERNAL_RESERVATIONS = _flag("GUESTY_IMPORT_EXTERNAL_RESERVATIONS", "false")

ADMIN_ALERT_EMAIL = os.getenv("ADMIN_ALERT_EMAIL") or None
ADMIN_ALERT_WEBHOOK_URL = os.getenv("ADMIN_ALERT_WEBHOOK_URL") or None


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"{name} must be set in the environment")
    return value


def get_guesty_credentials() -> tuple[str, str]:
    """
    Return the Guesty client-credentials pair.

    Read at call time so a missing credential fails the operation that needs
    it rather than the whole process.

    Raises:
        ConfigurationError: If GUESTY_CLIENT_ID or GUESTY_CLIENT_SECRET is missing
    """
    return _require("GUESTY_CLIENT_ID"), _require("GUESTY_CLIENT_SECRET")


def get_guesty_webhook_secret() -> str:
    return _require("GUESTY_WEBHOOK_SECRET")


def get_stripe_webhook_secret() -> str:
    return _require("STRIPE_WEBHOOK_SECRET")


def get_admin_api_token() -> str:
    return _require("ADMIN_API_TOKEN")
