"""Database settings for intake storage.

Connection parameters come from the environment, either as a single
``DATABASE_URL`` (takes precedence) or as ``PG_HOST`` / ``PG_PORT`` /
``PG_USER`` / ``PG_PASSWORD`` / ``PG_DATABASE``.  Pool sizing uses
``PG_POOL_SIZE`` / ``PG_MAX_OVERFLOW``.

Alembic needs the plain libpq URL (``get_sync_url``); the runtime engine
needs the asyncpg dialect (``get_async_url``).
"""

import os
from dataclasses import dataclass

SYNC_SCHEME = "postgresql://"
ASYNC_SCHEME = "postgresql+asyncpg://"


def _url_from_parts() -> str:
    host = os.getenv("PG_HOST", "localhost")
    port = os.getenv("PG_PORT", "5432")
    user = os.getenv("PG_USER", "intake")
    password = os.getenv("PG_PASSWORD", "intake")
    database = os.getenv("PG_DATABASE", "intake")
    return f"{SYNC_SCHEME}{user}:{password}@{host}:{port}/{database}"


def to_sync_url(url: str) -> str:
    if url.startswith(ASYNC_SCHEME):
        return SYNC_SCHEME + url[len(ASYNC_SCHEME):]
    return url


def to_async_url(url: str) -> str:
    if url.startswith(SYNC_SCHEME):
        return ASYNC_SCHEME + url[len(SYNC_SCHEME):]
    return url


@dataclass(frozen=True)
class DatabaseSettings:
    """Where intake versions are stored and how the pool is sized."""

    url: str
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False

    @property
    def sync_url(self) -> str:
        return to_sync_url(self.url)

    @property
    def async_url(self) -> str:
        return to_async_url(self.url)

    @classmethod
    def from_env(cls) -> "DatabaseSettings":
        return cls(
            url=os.getenv("DATABASE_URL") or _url_from_parts(),
            pool_size=int(os.getenv("PG_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("PG_MAX_OVERFLOW", "10")),
        )


def database_configured() -> bool:
    """True when the environment names a database (``DATABASE_URL`` or ``PG_HOST``)."""
    return bool(os.getenv("DATABASE_URL") or os.getenv("PG_HOST"))


def get_sync_url() -> str:
    """Synchronous (libpq) URL for Alembic."""
    return DatabaseSettings.from_env().sync_url


def get_async_url() -> str:
    """asyncpg URL for the runtime engine."""
    return DatabaseSettings.from_env().async_url
