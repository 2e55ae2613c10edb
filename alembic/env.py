# alembic/env.py
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from app.core.settings import settings
from app.db.base import Base
import app.models.builder  # noqa: F401  (registra themes/templates/sections/blocks en la metadata)
import app.models.snapshot  # noqa: F401
import app.models.audit  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

DB_URL = settings.SQLALCHEMY_DATABASE_URL
# SQLite no soporta ALTER completo: batch mode recrea la tabla
RENDER_AS_BATCH = DB_URL.startswith("sqlite")


def run_migrations_offline() -> None:
    context.configure(
        url=DB_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        target_metadata=target_metadata,
        render_as_batch=RENDER_AS_BATCH,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        {"sqlalchemy.url": DB_URL},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=RENDER_AS_BATCH,
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
