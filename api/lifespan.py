from contextlib import asynccontextmanager
import asyncio
import logging
import os

from fastapi import FastAPI

from services.database import async_session_maker, create_db_and_tables
from services.settings_service import ensure_default_settings
from utils.config_validator import setup_config_logging
from utils.get_env import get_app_data_directory_env

logger = logging.getLogger(__name__)


async def _init_database():
    await create_db_and_tables()
    async with async_session_maker() as sql_session:
        await ensure_default_settings(sql_session)


@asynccontextmanager
async def app_lifespan(_: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Reports configuration, creates tables and seeds default settings.
    """
    setup_config_logging()
    strict_startup_checks = (
        os.getenv("STRICT_STARTUP_CHECKS", "false").strip().lower() == "true"
    )

    app_data_dir = get_app_data_directory_env() or "/tmp/impact-ledger"
    os.makedirs(app_data_dir, exist_ok=True)

    # DB init can hang when networking or env is misconfigured.
    # Set STRICT_STARTUP_CHECKS=true to fail fast instead.
    db_startup_timeout_seconds = float(os.getenv("DB_STARTUP_TIMEOUT_SECONDS", "20"))
    try:
        await asyncio.wait_for(_init_database(), timeout=db_startup_timeout_seconds)
    except Exception as e:
        if strict_startup_checks:
            raise
        logger.warning(f"Startup DB warning: {e}")
    yield
