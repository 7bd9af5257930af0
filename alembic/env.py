# alembic/env.py
import os
import sys
from logging.config import fileConfig

from sqlalchemy import create_engine, pool
from alembic import context

# make sure project root is on sys.path so `docshelf` imports work
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from docshelf.config import Settings  # noqa: E402
from docshelf.models import build_documents_table, metadata_obj  # noqa: E402

# this is the Alembic Config object
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

app_settings = Settings()
build_documents_table(app_settings.documents_table)
target_metadata = metadata_obj

# migrations need the table name too
config.attributes.setdefault("documents_table", app_settings.documents_table)


def _to_sync_url(async_url: str) -> str:
    """
    Convert async driver scheme to sync driver for Alembic (e.g. asyncpg -> psycopg2).
    Only does simple replacement; adjust if you use something else.
    """
    return async_url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


# If alembic.ini has sqlalchemy.url, prefer it
if not config.get_main_option("sqlalchemy.url"):
    config.set_main_option("sqlalchemy.url", _to_sync_url(app_settings.database_url))


def run_migrations_offline():
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = create_engine(
        config.get_main_option("sqlalchemy.url"),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
