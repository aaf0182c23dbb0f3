# alembic/env.py
from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from settings import Settings

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# raw SQL migrations; nothing to autogenerate against
target_metadata = None


def _database_url() -> str:
    url = config.get_main_option("sqlalchemy.url") or Settings().DATABASE_URL
    if not url:
        raise RuntimeError("DATABASE_URL is not set.")
    # SQLAlchemy 2 no longer accepts the postgres:// alias
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def run_offline() -> None:
    context.configure(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(_database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, transaction_per_migration=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
