import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


APP_ENV = os.getenv("APP_ENV", "development")
SERVICE_NAME = os.getenv("SERVICE_NAME", "appointment-service")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./appointments.db")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:4200").split(",")
    if origin.strip()
]

MIN_BOOKING_LEAD_MINUTES = _get_int(os.getenv("MIN_BOOKING_LEAD_MINUTES"), 0)
DEFAULT_SLOT_DURATION_MINUTES = _get_int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES"), 30)
DEFAULT_MAX_DAILY_APPOINTMENTS = _get_int(os.getenv("DEFAULT_MAX_DAILY_APPOINTMENTS"), 20)

# Upper bound for a single storage call; 0 disables the deadline.
STORAGE_TIMEOUT_MS = _get_int(os.getenv("STORAGE_TIMEOUT_MS"), 5000)
MAX_REQUEST_TIMEOUT_MS = _get_int(os.getenv("MAX_REQUEST_TIMEOUT_MS"), 30000)

MAX_PAGE_SIZE = 100


def validate_runtime_config() -> None:
    if MIN_BOOKING_LEAD_MINUTES < 0:
        raise RuntimeError("MIN_BOOKING_LEAD_MINUTES must not be negative.")
    if DEFAULT_SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("DEFAULT_SLOT_DURATION_MINUTES must be positive.")
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at PostgreSQL in production.")
