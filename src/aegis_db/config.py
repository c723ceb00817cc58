"""Connection URLs for the Aegis PostgreSQL database.

``DATABASE_URL`` wins when set.  Otherwise the URL is assembled from
``PG_HOST``, ``PG_PORT``, ``PG_USER``, ``PG_PASSWORD`` and ``PG_DATABASE``.
The API server and the sweep/publish workers use the asyncpg flavour;
Alembic uses the plain psycopg2 one.
"""

import os
from urllib.parse import quote

_ASYNC_SCHEME = "postgresql+asyncpg://"
_SYNC_SCHEME = "postgresql://"
_KNOWN_PREFIXES = ("postgresql+asyncpg://", "postgresql+psycopg2://", "postgresql://", "postgres://")


def _url_from_parts() -> str:
    user = quote(os.getenv("PG_USER", "aegis"), safe="")
    password = quote(os.getenv("PG_PASSWORD", "aegis"), safe="")
    host = os.getenv("PG_HOST", "localhost")
    port = os.getenv("PG_PORT", "5432")
    database = os.getenv("PG_DATABASE", "aegis")
    return f"{_SYNC_SCHEME}{user}:{password}@{host}:{port}/{database}"


def _with_scheme(url: str, scheme: str) -> str:
    """Swap a known PostgreSQL scheme for *scheme*; other URLs pass through."""
    for prefix in _KNOWN_PREFIXES:
        if url.startswith(prefix):
            return scheme + url[len(prefix):]
    return url


def _base_url() -> str:
    return os.getenv("DATABASE_URL") or _url_from_parts()


def get_sync_url() -> str:
    """psycopg2 URL for migrations."""
    return _with_scheme(_base_url(), _SYNC_SCHEME)


def get_async_url() -> str:
    """asyncpg URL for the runtime engine."""
    return _with_scheme(_base_url(), _ASYNC_SCHEME)
