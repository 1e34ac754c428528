import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=env_path)


def _bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# MongoDB
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://127.0.0.1:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "bookcars")
DB_SSL = _bool("DB_SSL")
DB_SSL_CERT = os.getenv("DB_SSL_CERT")
DB_SSL_CA = os.getenv("DB_SSL_CA")
DB_DEBUG = _bool("DB_DEBUG")

PORT = int(os.getenv("PORT", "8000"))

# CORS allow list, comma separated. Empty allows every origin.
WHITELISTED_DOMAINS = [
    d.strip().rstrip("/") for d in os.getenv("WHITELISTED_DOMAINS", "").split(",") if d.strip()
]

# Authentication
JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    import warnings

    warnings.warn(
        "JWT_SECRET not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    JWT_SECRET = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_EXPIRE_AT = int(os.getenv("JWT_EXPIRE_AT", "86400"))
X_ACCESS_TOKEN = os.getenv("X_ACCESS_TOKEN", "x-access-token")

# TTL indexes (seconds)
TOKEN_EXPIRE_AT = int(os.getenv("TOKEN_EXPIRE_AT", "86400"))
BOOKING_EXPIRE_AT = int(os.getenv("BOOKING_EXPIRE_AT", "86400"))
USER_EXPIRE_AT = int(os.getenv("USER_EXPIRE_AT", "86400"))

# SMTP
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
SMTP_FROM = os.getenv("SMTP_FROM", "BookCars <no-reply@bookcars.local>")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")

# Public hosts used in email links
BACKEND_HOST = os.getenv("BACKEND_HOST", "http://localhost:3001")
FRONTEND_HOST = os.getenv("FRONTEND_HOST", "http://localhost:3002")

# CDN folders
CDN_ROOT = os.getenv("CDN_ROOT", str(Path(__file__).resolve().parent / "cdn"))
CDN_USERS = os.getenv("CDN_USERS", os.path.join(CDN_ROOT, "users"))
CDN_TEMP_USERS = os.getenv("CDN_TEMP_USERS", os.path.join(CDN_ROOT, "temp", "users"))
CDN_CARS = os.getenv("CDN_CARS", os.path.join(CDN_ROOT, "cars"))
CDN_TEMP_CARS = os.getenv("CDN_TEMP_CARS", os.path.join(CDN_ROOT, "temp", "cars"))
CDN_LOCATIONS = os.getenv("CDN_LOCATIONS", os.path.join(CDN_ROOT, "locations"))
CDN_TEMP_LOCATIONS = os.getenv("CDN_TEMP_LOCATIONS", os.path.join(CDN_ROOT, "temp", "locations"))
CDN_CONTRACTS = os.getenv("CDN_CONTRACTS", os.path.join(CDN_ROOT, "contracts"))
CDN_LICENSES = os.getenv("CDN_LICENSES", os.path.join(CDN_ROOT, "licenses"))
CDN_TEMP_LICENSES = os.getenv("CDN_TEMP_LICENSES", os.path.join(CDN_ROOT, "temp", "licenses"))

# Business rules
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "en")
MINIMUM_AGE = int(os.getenv("MINIMUM_AGE", "21"))
VAT_PERCENTAGE = float(os.getenv("VAT_PERCENTAGE", "20"))

# Image uploads
IMAGE_MAX_SIZE = int(os.getenv("IMAGE_MAX_SIZE", "800"))
IMAGE_QUALITY = int(os.getenv("IMAGE_QUALITY", "80"))

# Expo push notifications
EXPO_ACCESS_TOKEN = os.getenv("EXPO_ACCESS_TOKEN")
EXPO_PUSH_URL = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")
