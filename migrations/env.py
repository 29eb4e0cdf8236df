"""Alembic environment for the phase engine.

The database location comes from the same settings object the service uses,
so `alembic upgrade head` run by hand targets the database the server opens.
A URL already set by the caller (startup upgrade in phase_engine.db.database)
takes precedence.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from phase_engine.config import settings

INI_DEFAULT_URL = "sqlite:///phase_engine.db"

config = context.config


def _settings_url() -> str:
    if settings.database_url.startswith("postgresql://"):
        return settings.database_url
    return f"sqlite:///{settings.database_path}"


if config.get_main_option("sqlalchemy.url") in (None, "", INI_DEFAULT_URL):
    config.set_main_option("sqlalchemy.url", _settings_url())

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# Schema is plain SQL (phase_engine/db/schema.sql); there is no ORM metadata
target_metadata = None


def _is_sqlite() -> bool:
    return config.get_main_option("sqlalchemy.url").startswith("sqlite")


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_is_sqlite(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=_is_sqlite(),
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
