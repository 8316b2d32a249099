"""Alembic environment for the insurance_intakes schema.

The URL comes from ``DatabaseSettings`` (``DATABASE_URL`` / ``PG_*``),
converted to the synchronous driver.  ``alembic -x url=...`` overrides it
for one-off runs against another database.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from intake_db.config import DatabaseSettings, to_sync_url
from intake_db.models import Base

config = context.config

override = context.get_x_argument(as_dictionary=True).get("url")
config.set_main_option(
    "sqlalchemy.url",
    to_sync_url(override) if override else DatabaseSettings.from_env().sync_url,
)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL to stdout without a connection (``alembic upgrade --sql``)."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
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
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
