import os

from dotenv import load_dotenv

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./careslot.db")

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:4200"])

HOLD_TTL_MINUTES = int(os.getenv("HOLD_TTL_MINUTES", "10"))
DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "30"))
MAX_SLOT_RANGE_DAYS = int(os.getenv("MAX_SLOT_RANGE_DAYS", "31"))

SWEEPER_ENABLED = _get_bool(os.getenv("SWEEPER_ENABLED"), default=True)
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "30"))
SWEEP_RETRY_ATTEMPTS = int(os.getenv("SWEEP_RETRY_ATTEMPTS", "3"))

# Payment completion moves a hold straight to approved instead of waiting for the doctor.
CONFIRM_AUTO_APPROVE = _get_bool(os.getenv("CONFIRM_AUTO_APPROVE"), default=False)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if HOLD_TTL_MINUTES <= 0:
        raise RuntimeError("HOLD_TTL_MINUTES must be positive.")
    if DEFAULT_SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("DEFAULT_SLOT_DURATION_MINUTES must be positive.")
    if SWEEP_INTERVAL_SECONDS <= 0:
        raise RuntimeError("SWEEP_INTERVAL_SECONDS must be positive.")
