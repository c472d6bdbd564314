import os
from urllib.parse import urlsplit

# --- Environment ---
APP_ENV = os.getenv("APP_ENV", "production")
IS_DEVELOPMENT = APP_ENV == "development"
IS_PRODUCTION = not IS_DEVELOPMENT

APP_NAME = "Bau-Structura"
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

# --- REST backend ---
API_BASE_URL = os.getenv("API_BASE_URL", "")  # empty: relative paths
# Longer timeout in development (seconds)
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30" if IS_DEVELOPMENT else "15"))
WEBSOCKET_URL = os.getenv("WEBSOCKET_URL")

FEATURES = {
    "enable_analytics": IS_PRODUCTION,
    "debug_mode": IS_DEVELOPMENT,
    "offline_queue": os.getenv("OFFLINE_QUEUE_ENABLED", "1") != "0",
}

# --- Offline queue ---
STORAGE_KEY = "bau-structura-pending-requests"
LEASE_KEY = "bau-structura-drain-lease"
MAX_RETRIES = 5
RETRY_DELAY_BASE_MS = 5000
DRAIN_LEASE_TTL_MS = 60_000
MAX_QUEUE_SIZE = int(os.getenv("MAX_QUEUE_SIZE")) if os.getenv("MAX_QUEUE_SIZE") else None

# --- Network status ---
PING_PATH = "/api/ping"
HEALTH_CHECK_INTERVAL = 30.0
HEALTH_CHECK_TIMEOUT = 3.0
LATENCY_THRESHOLD_MS = 1000
PENDING_COUNT_INTERVAL = 10.0
CONNECTIVITY_PROBE_HOST = os.getenv("CONNECTIVITY_PROBE_HOST")
CONNECTIVITY_PROBE_PORT = int(os.getenv("CONNECTIVITY_PROBE_PORT", "443"))

# --- Infrastructure ---
DATABASE_URL = os.getenv("DATABASE_URL")
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/0")
LOG_FILE = os.getenv("LOG_FILE", "structura_sync.log")  # empty string logs to the console only
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def build_websocket_url(base_url: str | None = None, override: str | None = None) -> str:
    """Returns the websocket endpoint, either the explicit override or one derived from the API host."""
    override = override if override is not None else WEBSOCKET_URL
    if override:
        return override

    parts = urlsplit(base_url if base_url is not None else API_BASE_URL)
    if not parts.netloc:
        return "/ws"
    scheme = "wss" if parts.scheme == "https" else "ws"
    return f"{scheme}://{parts.netloc}/ws"
