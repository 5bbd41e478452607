from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from db.base import Base
from db.config import load_env_files, normalize_postgres_url, redact_database_url, resolve_database_url
import db.models  # noqa: F401  (imports register every crawl table on Base.metadata)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata

# The crawl schema may share a database with other services; keep its own
# version table and never autogenerate drops for tables it does not own.
VERSION_TABLE = "crawl_alembic_version"
CRAWL_TABLES = frozenset(target_metadata.tables)


def _include_object(obj, name, type_, reflected, compare_to) -> bool:
    if type_ == "table":
        return name in CRAWL_TABLES
    table = getattr(obj, "table", None)
    if table is not None:
        return table.name in CRAWL_TABLES
    return True


def _migration_url() -> str:
    """
    Resolve the migration target.

    Priority:
    1) `-x db_url=...` for one-off targets
    2) CRAWL_MIGRATION_DATABASE_URL
    3) sqlalchemy.url from an alembic.ini, when one is used
    4) the crawl runtime URL (db.config.resolve_database_url)
    """

    load_env_files()

    x_args = context.get_x_argument(as_dictionary=True)
    candidates = (
        x_args.get("db_url"),
        os.getenv("CRAWL_MIGRATION_DATABASE_URL"),
        config.get_main_option("sqlalchemy.url"),
    )
    url = next((normalize_postgres_url(value) for value in candidates if value and value.strip()), None)
    url = url or resolve_database_url()

    if not url.startswith("postgresql"):
        raise RuntimeError("Crawl migrations target PostgreSQL only (upserts use ON CONFLICT).")

    logger.info("Migrating crawl schema at %s", redact_database_url(url))
    return url


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table=VERSION_TABLE,
        include_object=_include_object,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    _configure(url=_migration_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _migration_url()

    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool, future=True)
    with connectable.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
