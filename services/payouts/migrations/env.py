from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

# alembic.ini sets prepend_sys_path = . so the project packages import from the repo root
from libs.py_common.config import get_settings

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Every table lives on SQLModel.metadata; importing the model modules registers them
import services.payments.models  # noqa: E402,F401
import services.payouts.models  # noqa: E402,F401
import services.wallet.models  # noqa: E402,F401
from sqlmodel import SQLModel  # noqa: E402

target_metadata = SQLModel.metadata


def get_url() -> str:
    # DATABASE_URL (via Settings) wins over the placeholder in alembic.ini
    return get_settings().database_url or config.get_main_option("sqlalchemy.url")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode, emitting SQL to the script output."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode against a live connection."""
    configuration = config.get_section(config.config_ini_section, {})
    db_url_for_online = get_url()
    if not db_url_for_online:
        raise ValueError("Database URL not configured. Set DATABASE_URL or sqlalchemy.url in alembic.ini")
    configuration["sqlalchemy.url"] = db_url_for_online

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection, target_metadata=target_metadata, render_as_batch=True
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
