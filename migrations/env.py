"""Alembic environment for the profiles and stripe_subscriptions schema."""

from __future__ import annotations

import asyncio
import logging
import os
import ssl
from logging.config import fileConfig
from typing import Any

import certifi
from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_engine_from_config
from sqlmodel import SQLModel

from app.config import settings
from app.models import profile, subscription  # noqa: F401 - register tables on SQLModel.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("billing.alembic")
logger.setLevel(logging.INFO)
target_metadata = SQLModel.metadata

SUPABASE_POOLER_PORT = 6543


def _tls_insecure() -> bool:
    value = os.environ.get("ALEMBIC_SUPABASE_TLS_INSECURE", "")
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _supabase_ssl_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context(cafile=os.environ.get("ALEMBIC_SUPABASE_CA_FILE") or certifi.where())
    if _tls_insecure():
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("Supabase TLS verification DISABLED for Alembic.")
    return ctx


def _as_async_url(url: URL) -> URL:
    """Alembic runs on asyncpg regardless of the runtime driver."""
    if url.drivername in {"postgresql", "postgres", "postgresql+psycopg2", "postgresql+psycopg"}:
        return url.set(drivername="postgresql+asyncpg")
    return url


def _prepare_url(raw_url: str) -> tuple[str, dict[str, Any]]:
    url = _as_async_url(make_url(raw_url))
    connect_args: dict[str, Any] = {}
    query = dict(url.query)
    wants_ssl = query.pop("ssl", None) is not None or query.pop("sslmode", None) == "require"
    url = url.set(query=query)
    if "supabase.co" in (url.host or "").lower():
        if url.port != SUPABASE_POOLER_PORT:
            url = url.set(port=SUPABASE_POOLER_PORT)
        connect_args["ssl"] = _supabase_ssl_context()
    elif wants_ssl or os.environ.get("PGSSLMODE", "").lower() == "require":
        connect_args["ssl"] = ssl.create_default_context()
    return url.render_as_string(hide_password=False), connect_args


def _resolve_database_config() -> tuple[str, dict[str, Any]]:
    candidates = [
        ("environment variable", os.environ.get("DATABASE_URL")),
        ("alembic.ini", config.get_main_option("sqlalchemy.url")),
        ("app settings", settings.database_url),
    ]
    for source, value in candidates:
        if not value:
            continue
        url, connect_args = _prepare_url(value)
        rendered = make_url(url).render_as_string(hide_password=True)
        logger.info("Alembic resolved DATABASE_URL from %s: %s", source, rendered)
        return url, connect_args
    raise RuntimeError("DATABASE_URL must be set to run migrations.")


def run_migrations_offline() -> None:
    """Emit SQL without a live connection."""
    url, _ = _resolve_database_config()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    url, connect_args = _resolve_database_config()
    configuration["sqlalchemy.url"] = url
    connectable: AsyncEngine = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args=connect_args,
    )

    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
