"""
Alembic environment - migrations run against the configured DATABASE_URL.
"""
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from medattest.config import settings
from medattest.database import Base
# Import all models so their tables are on the metadata
from medattest.core import audit_models  # noqa: F401
from medattest.directory import models as directory_models  # noqa: F401
from medattest.challenges import models as challenge_models  # noqa: F401
from medattest.attestation import models as attestation_models  # noqa: F401

config = context.config
config.set_main_option("sqlalchemy.url", settings.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
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
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
