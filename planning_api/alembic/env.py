import os
from logging.config import fileConfig

from sqlalchemy import create_engine

from alembic import context

from planning_api.models.db_models import Base

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _database_url() -> str:
    # DATABASE_URL wins unless the URL was set programmatically (tests)
    if config.attributes.get("url_from_config"):
        return config.get_main_option("sqlalchemy.url")
    return os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")


def _sync_url(url: str) -> str:
    # Alembic runs with a synchronous engine; the app uses the async driver
    return url.replace("+aiosqlite", "").replace("+asyncpg", "+psycopg2")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (emit SQL without a DBAPI connection)."""
    context.configure(
        url=_sync_url(_database_url()),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode against a synchronous engine."""
    connectable = create_engine(_sync_url(_database_url()))
    connection = connectable.connect()
    try:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()
    finally:
        connection.close()
        connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
