import re
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from salon.app.core.db import database_url
from salon.app.domain.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _sync_url() -> str:
    """Same target as the app, with the async driver swapped for the default one."""
    # postgresql+asyncpg:// -> postgresql://, sqlite+aiosqlite:// -> sqlite://
    return re.sub(r"^(postgresql|sqlite)\+[^:]+", r"\1", database_url())


def _configure(**kwargs) -> None:
    url = kwargs.get("url") or config.get_main_option("sqlalchemy.url")
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER constraints in place
        render_as_batch=str(url).startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL for the schedule/booking schema without connecting."""
    _configure(url=_sync_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    config.set_main_option("sqlalchemy.url", _sync_url())
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
