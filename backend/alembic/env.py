"""Alembic environment configuration."""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from forum.config import get_settings
from forum.db.base import Base
from forum.db import models  # noqa: F401 - Import models to register them
from forum.db.fulltext import FULL_TEXT_INDEXES

# Alembic Config object
config = context.config

# Configure logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Set target metadata for 'autogenerate' support
target_metadata = Base.metadata

# Get database URL from app settings
settings = get_settings()

FULL_TEXT_INDEX_NAMES = {index.name for index in FULL_TEXT_INDEXES}


def include_object(object, name, type_, reflected, compare_to) -> bool:
    """Full-text indexes are managed by hand in the migrations."""
    return not (type_ == "index" and name in FULL_TEXT_INDEX_NAMES)


def get_url() -> str:
    """Get the database URL for migrations (sync driver for Alembic)."""
    return settings.database_url_sync


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode.

    This configures the context with just a URL and not an Engine.
    Calls to context.execute() emit SQL to the script output.
    """
    url = get_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        include_object=include_object,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """
    Run migrations in 'online' mode.

    Uses a sync engine with psycopg2 driver.
    """
    connectable = create_engine(
        get_url(),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=include_object,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
