from dotenv import load_dotenv
from pathlib import Path
import os
ROOT_DIR = Path(__file__).resolve().parents[1]
# Load both potential env locations:
# 1) parent of the service root (shared deployment .env)
# 2) service root (local override)
load_dotenv(ROOT_DIR.parent / ".env")
load_dotenv(ROOT_DIR / ".env", override=True)


def get_database_url_env():
    return os.getenv("DATABASE_URL")


def get_allow_sqlite_fallback_env():
    return os.getenv("ALLOW_SQLITE_FALLBACK")


def get_app_data_directory_env():
    return os.getenv("APP_DATA_DIRECTORY")


def get_jwt_secret_env():
    return os.getenv("JWT_SECRET")


def get_jwt_expires_days_env():
    return os.getenv("JWT_EXPIRES_DAYS")


def get_environment_env():
    return os.getenv("ENVIRONMENT")


def get_frontend_url_env():
    return os.getenv("FRONTEND_URL")


def get_expose_magic_links_env():
    return os.getenv("EXPOSE_MAGIC_LINKS")


def get_corsair_id_prefix_env():
    return os.getenv("CORSAIR_ID_PREFIX")


def get_cors_origins_env():
    return os.getenv("CORS_ORIGINS")


def get_rate_limit_enabled_env():
    return os.getenv("RATE_LIMIT_ENABLED")


def get_rate_limit_calls_env():
    return os.getenv("RATE_LIMIT_CALLS")


def get_rate_limit_window_env():
    return os.getenv("RATE_LIMIT_WINDOW")
