import os

from dotenv import load_dotenv

# Load environment variables from .env file
# Load .env.local first (for local development), then .env (fallback)
load_dotenv(".env.local", override=True)  # Local development overrides
load_dotenv()  # Load .env if exists (won't override existing vars)
# General config in a central place


def _env_bool(name: str, default: str = "false") -> bool:
    """Parse a boolean-like environment variable.

    Accepts a broad set of truthy values to be user-friendly.
    """
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on", "y"}


def _env_int(name: str, default: int) -> int:
    """Parse an integer environment variable, falling back on bad input."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# General

DEBUG = _env_bool("DEBUG")

# CORS configuration
# Comma-separated list of allowed origins; if empty, allow all (not recommended with credentials)
RAW_ALLOWED_ORIGINS = os.getenv("ALLOWED_CORS_ORIGINS", "")
ALLOWED_CORS_ORIGINS = [o.strip() for o in RAW_ALLOWED_ORIGINS.split(",") if o.strip()]


# Authentication

SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")
ACCESS_TOKEN_EXPIRE_MINUTES = _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 24 * 60)


# File & Data Management

# Optional Azure Blob storage
USE_AZURE = _env_bool("USE_AZURE_STORAGE")
AZ_CONN = os.getenv("AZURE_CONN_STRING", "")
AZ_CONTAINER = os.getenv("AZURE_CONTAINER", "cartonord-files")

# Local storage directory and the base URL its signed links point at
LOCAL_UPLOAD_DIR = os.getenv("LOCAL_UPLOAD_DIR", "./uploads")
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")

# Signed URL lifetimes (seconds)
UPLOAD_URL_TTL_SECONDS = _env_int("UPLOAD_URL_TTL_SECONDS", 600)
DOWNLOAD_URL_TTL_SECONDS = _env_int("DOWNLOAD_URL_TTL_SECONDS", 300)
MIN_DOWNLOAD_TTL_SECONDS = 300
MAX_DOWNLOAD_TTL_SECONDS = 3600

# File size limit for server-side uploads (10MB)
MAX_FILE_SIZE = _env_int("MAX_FILE_SIZE", 10 * 1024 * 1024)

# Maximum number of files accepted by one batch upload
MAX_BATCH_FILES = _env_int("MAX_BATCH_FILES", 50)


# Database

# Database connection URL
DATABASE_URL = os.getenv("DATABASE_URL")
