"""Helpers for database connection strings.

Deployments hand us SQLAlchemy-style PostgreSQL URLs
(``postgresql+psycopg2://``) or plain ``postgres://`` DSNs, while Tortoise ORM
selects its backend from the scheme and wants ``asyncpg://`` for PostgreSQL.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


def to_tortoise_dsn(url: str) -> str:
    """Convert a database URL into the scheme Tortoise ORM expects."""

    if url.startswith("postgresql+"):
        url = "postgresql://" + url.split("://", 1)[1]
    if url.startswith("postgresql://"):
        return "asyncpg://" + url[len("postgresql://") :]
    if url.startswith("postgres://"):
        return "asyncpg://" + url[len("postgres://") :]
    return url


def sqlite_file_path(url: str) -> Optional[Path]:
    """Return the database file of a ``sqlite://`` URL, ``None`` for other URLs.

    In-memory databases (``sqlite://:memory:``) have no file either.
    """

    if not url.startswith("sqlite://"):
        return None
    location = url[len("sqlite://") :].split("?", 1)[0]
    if not location or location == ":memory:":
        return None
    return Path(location)
