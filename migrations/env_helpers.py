"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without triggering
alembic.context at import time. The application connects with the raw
DATABASE_URL through psycopg2; Alembic needs a SQLAlchemy URL.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus, urlparse, urlunparse

# key=value or key='quoted value with \' escapes'
_DSN_TOKEN = re.compile(r"(\w+)\s*=\s*('(?:[^'\\]|\\.)*'|\S+)")
_DSN_ESCAPE = re.compile(r"\\(.)")


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq key=value DSN into a dict, unquoting quoted values."""
    tokens: dict[str, str] = {}
    for key, value in _DSN_TOKEN.findall(dsn):
        if len(value) >= 2 and value.startswith("'") and value.endswith("'"):
            value = _DSN_ESCAPE.sub(r"\1", value[1:-1])
        tokens[key] = value
    return tokens


def libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq key=value DSN to a SQLAlchemy psycopg2 URL.

    A host starting with "/" is a unix socket directory and goes into the
    query string; anything else becomes HOST:PORT.
    """
    tokens = parse_libpq_dsn(dsn)

    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")
    user = quote_plus(tokens.get("user", ""))
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")
    port = tokens.get("port", "5432")
    credentials = f"{user}:{quote_plus(password)}"

    if host.startswith("/"):
        return f"postgresql+psycopg2://{credentials}@/{dbname}?host={quote_plus(host)}"

    return f"postgresql+psycopg2://{credentials}@{host}:{port}/{dbname}"


def _inject_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def get_database_url() -> str:
    """Build the migration URL from DATABASE_URL (+ optional DB_PASSWORD)."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")

    if "://" not in url:
        return libpq_dsn_to_url(url)

    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            url = "postgresql+psycopg2://" + url[len(prefix):]
            break

    db_password = os.environ.get("DB_PASSWORD", "")
    if db_password:
        url = _inject_password(url, db_password)
    return url
