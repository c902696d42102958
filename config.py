import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Security settings
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change")
ALGORITHM = "HS256"
SESSION_EXPIRE_MINUTES = int(os.getenv("SESSION_EXPIRE_MINUTES", 60 * 8))
ADMIN_PIN = os.getenv("ADMIN_PIN", "1234")
PIN_MAX_ATTEMPTS = int(os.getenv("PIN_MAX_ATTEMPTS", "0"))
PIN_LOCKOUT_SECONDS = float(os.getenv("PIN_LOCKOUT_SECONDS", "300"))

# Local store
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "smartshop")
PERSIST_DELAY_SECONDS = float(os.getenv("PERSIST_DELAY_SECONDS", "2"))

# Remote mirror (PostgREST / Supabase style), optional
MIRROR_URL = os.getenv("MIRROR_URL", "")
MIRROR_KEY = os.getenv("MIRROR_KEY", "")
MIRROR_TIMEOUT = float(os.getenv("MIRROR_TIMEOUT", "5"))

# Product recognition
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
RECOGNITION_MODEL = os.getenv("RECOGNITION_MODEL", "gpt-4o-mini")

REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "UTC")
REQUIRE_CUSTOMER_NAME = _env_bool("REQUIRE_CUSTOMER_NAME", True)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
