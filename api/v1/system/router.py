"""
System status and configuration endpoint
Provides helpful information about the Impact Ledger configuration
"""

from fastapi import APIRouter

from services.rate_limiter import get_rate_limiter
from utils.config_validator import LedgerConfig

SYSTEM_ROUTER = APIRouter(prefix="/api/v1/system", tags=["system"])


@SYSTEM_ROUTER.get("/status")
async def get_system_status():
    """
    Get current system status and configuration

    Useful for debugging configuration issues
    """
    is_valid, errors, warnings = LedgerConfig.validate_setup()

    settings_status = {}

    for key, info in LedgerConfig.REQUIRED_KEYS.items():
        status, _ = LedgerConfig.get_status(key)
        settings_status[key] = {
            "display_name": info["display"],
            "status": status.value,
            "configured": status.name == "CONFIGURED",
        }

    for key, info in LedgerConfig.OPTIONAL_KEYS.items():
        status, _ = LedgerConfig.get_status(key)
        settings_status[key] = {
            "display_name": info["display"],
            "status": status.value,
            "configured": status.name == "CONFIGURED",
            "optional": True,
        }

    limiter = get_rate_limiter()
    return {
        "service": "Impact Ledger",
        "status": "operational" if is_valid else "configuration_incomplete",
        "settings": settings_status,
        "errors": errors,
        "warnings": warnings,
        "rate_limiting": {
            "enabled": limiter.enabled,
            "calls_per_window": limiter.calls_per_window,
            "window_seconds": limiter.window_seconds,
        },
    }


@SYSTEM_ROUTER.get("/health")
async def health_check():
    """
    Simple health check endpoint
    """
    return {
        "status": "healthy",
        "service": "Impact Ledger API",
    }


@SYSTEM_ROUTER.get("/config-help")
async def get_config_help():
    return {
        "service": "Impact Ledger",
        "configuration": {
            "required_keys": [
                {
                    "key": key,
                    "display": info["display"],
                    "purpose": info["purpose"],
                    "example": info["how_to"],
                }
                for key, info in LedgerConfig.REQUIRED_KEYS.items()
            ],
            "optional_keys": [
                {
                    "key": key,
                    "display": info["display"],
                    "purpose": info["purpose"],
                    "example": info["how_to"],
                    "note": info.get("note", ""),
                }
                for key, info in LedgerConfig.OPTIONAL_KEYS.items()
            ],
        },
        "environment_variables": {
            "DATABASE_URL": "postgresql://, mysql:// or sqlite:// connection URL",
            "ALLOW_SQLITE_FALLBACK": "true/false - use a local SQLite file when DATABASE_URL is unset",
            "JWT_EXPIRES_DAYS": "Session token lifetime in days (default: 7)",
            "EXPOSE_MAGIC_LINKS": "true/false - return magic-link URLs in API responses (development)",
            "RATE_LIMIT_ENABLED": "true/false - Enable rate limiting",
            "RATE_LIMIT_CALLS": "Max calls per window (default: 20)",
            "RATE_LIMIT_WINDOW": "Time window in seconds (default: 600)",
        },
    }
