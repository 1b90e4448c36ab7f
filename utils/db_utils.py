import os
from utils.get_env import (
    get_allow_sqlite_fallback_env,
    get_app_data_directory_env,
    get_database_url_env,
)
from urllib.parse import urlsplit, urlunsplit, parse_qsl
import ssl


def get_database_url_and_connect_args() -> tuple[str, dict]:
    database_url = get_database_url_env()
    if not database_url:
        allow_sqlite_fallback = (get_allow_sqlite_fallback_env() or "").strip().lower() in {
            "1",
            "true",
            "yes",
            "on",
        }
        if allow_sqlite_fallback:
            database_url = "sqlite:///" + os.path.join(
                get_app_data_directory_env() or "/tmp/impact-ledger", "impact_ledger.db"
            )
        else:
            raise RuntimeError(
                "No database URL configured. Set DATABASE_URL or ALLOW_SQLITE_FALLBACK=true."
            )

    if database_url.startswith("sqlite://"):
        database_url = database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    elif database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("mysql://"):
        database_url = database_url.replace("mysql://", "mysql+aiomysql://", 1)

    try:
        split_result = urlsplit(database_url)
    except ValueError as exc:
        raise RuntimeError(
            "Database URL is malformed. If your password has special characters "
            "(@, :, /, ?, #, [, ]), URL-encode it before putting it in DATABASE_URL."
        ) from exc

    if not split_result.scheme.startswith("sqlite"):
        hostname = split_result.hostname
        if not hostname:
            raise RuntimeError("Database URL is invalid: hostname is missing.")
        if "<" in hostname or ">" in hostname:
            raise RuntimeError(
                "Database URL contains placeholder hostname. Replace it with the real host."
            )

    connect_args = {}
    if "sqlite" in database_url:
        connect_args["check_same_thread"] = False

    # asyncpg does not understand libpq query options; translate sslmode and drop the rest.
    if split_result.query and "postgresql+asyncpg" in split_result.scheme:
        query_params = parse_qsl(split_result.query, keep_blank_values=True)
        for k, v in query_params:
            if k.lower() == "sslmode" and v.lower() != "disable":
                connect_args["ssl"] = ssl.create_default_context()

        database_url = urlunsplit(
            (
                split_result.scheme,
                split_result.netloc,
                split_result.path,
                "",
                split_result.fragment,
            )
        )

    return database_url, connect_args
