import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

# alembic.ini sets prepend_sys_path = . so the package resolves from the repo root
import budgeting.models  # noqa: F401  registers every table on Base.metadata
from budgeting.database import Base

load_dotenv()

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def migration_url() -> str:
    """
    psycopg2 URL for migrations. DATABASE_SYNC_URL wins; otherwise the app's
    DATABASE_URL is reused with the asyncpg driver swapped out, then alembic.ini.
    """
    sync_url = os.getenv("DATABASE_SYNC_URL")
    if sync_url:
        return sync_url
    app_url = os.getenv("DATABASE_URL")
    if app_url:
        return app_url.replace("postgresql+asyncpg://", "postgresql://", 1)
    return config.get_main_option("sqlalchemy.url")


def run_migrations_offline():
    context.configure(
        url=migration_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    engine = create_engine(migration_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
