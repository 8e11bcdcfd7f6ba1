"""Alembic environment configuration for compliance-core persistence."""

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

from seis_compliance.config import settings
from seis_compliance.models import records  # noqa: F401 - ensure tables are registered

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("seis_compliance.alembic")
logger.setLevel(logging.INFO)
target_metadata = SQLModel.metadata

# Owned by the company-record service; mapped here for read-only lookups.
EXTERNAL_TABLES = {"companies"}


def _env_flag(name: str) -> bool:
    value = os.environ.get(name)
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _include_object(obj, name, type_, reflected, compare_to) -> bool:  # noqa: ANN001
    if type_ == "table" and name in EXTERNAL_TABLES:
        return False
    return True


def _log_database_url(url: str, source: str) -> None:
    rendered = make_url(url).render_as_string(hide_password=True)
    logger.info("Alembic resolved DATABASE_URL from %s: %s", source, rendered)
    config.print_stdout(f"[Alembic] DATABASE_URL source={source}: {rendered}")


def _config_database_url() -> str | None:
    return config.get_main_option("sqlalchemy.url") or None


def _build_supabase_ssl_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ca_file = os.environ.get("ALEMBIC_SUPABASE_CA_FILE")
    ctx.load_verify_locations(cafile=ca_file or certifi.where())
    if _env_flag("ALEMBIC_SUPABASE_TLS_INSECURE"):
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("Supabase TLS verification DISABLED for Alembic.")
    return ctx


def _normalize_database_url(url: URL) -> tuple[str, dict[str, Any]]:
    """Force the asyncpg driver and TLS for Supabase hosts."""
    connect_args: dict[str, Any] = {}
    if url.drivername in {"postgresql", "postgres", "postgresql+psycopg2"}:
        url = url.set(drivername="postgresql+asyncpg")
    host = (url.host or "").lower()
    if "supabase.co" in host:
        connect_args["ssl"] = _build_supabase_ssl_context()
        if url.query:
            query = dict(url.query)
            query.pop("ssl", None)
            query.pop("sslmode", None)
            url = url.set(query=query)
    elif os.environ.get("PGSSLMODE", "").lower() == "require":
        connect_args["ssl"] = ssl.create_default_context()
    return url.render_as_string(hide_password=False), connect_args


def _resolve_database_config() -> tuple[str, dict[str, Any]]:
    candidates = [
        ("environment variable", os.environ.get("DATABASE_URL")),
        ("alembic.ini", _config_database_url()),
        ("app settings", settings.database_url),
    ]
    for source, value in candidates:
        if not value:
            continue
        normalized, connect_args = _normalize_database_url(make_url(value))
        _log_database_url(normalized, source)
        return normalized, connect_args
    raise RuntimeError("DATABASE_URL must be set to run migrations.")


def run_migrations_offline() -> None:
    """Run migrations offline (e.g., CI)."""
    url, _ = _resolve_database_config()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        include_object=_include_object,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        include_object=_include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Run migrations using an async engine."""
    url, connect_args = _resolve_database_config()
    connectable: AsyncEngine = async_engine_from_config(
        {"sqlalchemy.url": url},
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
