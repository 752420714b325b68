# ruff: noqa: I001
"""
Alembic environment for the ledger tables (``li_*``).

The URL comes from ``DATABASE_URL`` after loading the nearest ``.env``
(searched from the working directory upward), else from ``sqlalchemy.url``
in ``alembic.ini``. Autogenerate only considers ``li_*`` tables so a shared
database can hold other schemas.
"""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from dotenv import find_dotenv, load_dotenv

import db as _db_pkg

TABLE_PREFIX = "li_"

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")
target_metadata = _db_pkg.metadata


def _resolve_url() -> str:
    found = find_dotenv(usecwd=True)
    if found:
        load_dotenv(dotenv_path=found, override=False)
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set. Export it, add it to .env, or set "
            "'sqlalchemy.url' in alembic.ini."
        )
    return url


def _include_object(obj, name, type_, reflected, compare_to) -> bool:
    if type_ == "table":
        return bool(name) and name.startswith(TABLE_PREFIX)
    return True


DB_URL = _resolve_url()
config.set_main_option("sqlalchemy.url", DB_URL)


def run_offline() -> None:
    """Write the migration SQL to stdout."""

    context.configure(
        url=DB_URL,
        target_metadata=target_metadata,
        include_object=_include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    options = dict(config.get_section(config.config_ini_section) or {})
    options["sqlalchemy.url"] = DB_URL
    engine = engine_from_config(options, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with engine.connect() as connection:
        sqlite = connection.dialect.name == "sqlite"
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=_include_object,
            compare_type=True,
            # SQLite cannot ALTER constraints in place.
            render_as_batch=sqlite,
        )
        logger.info("alembic:migrate dialect=%s", connection.dialect.name)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
