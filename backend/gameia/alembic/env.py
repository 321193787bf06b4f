# backend/gameia/alembic/env.py
"""
Migration environment for Gameia.

Online runs reuse the application's write engine. Offline runs (`--sql`)
render against DATABASE_WRITE_URL / DATABASE_URL, or sqlalchemy.url when
alembic.ini sets a real one.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Importing the package registers every app model on Base.metadata.
import gameia  # noqa: F401, E402
from gameia.database import Base  # noqa: E402

target_metadata = Base.metadata

COMPARE_OPTIONS = {"compare_type": True, "compare_server_default": True}


def _offline_url() -> str:
    ini_url = (config.get_main_option("sqlalchemy.url") or "").strip()
    if ini_url and not ini_url.startswith("driver://"):
        return ini_url
    url = (os.getenv("DATABASE_WRITE_URL") or os.getenv("DATABASE_URL") or "").strip()
    if not url:
        raise RuntimeError("Set DATABASE_WRITE_URL or DATABASE_URL to render migrations offline.")
    return url


def run_migrations_offline() -> None:
    context.configure(
        url=_offline_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        **COMPARE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    from gameia.database import write_engine

    with write_engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, **COMPARE_OPTIONS)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
