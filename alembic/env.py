"""Alembic environment: runs migrations over the application's async engine."""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from kinderhub.core.config import settings
from kinderhub.core.database import Base

# Register every table on Base.metadata
from kinderhub.modules.auth import models as auth_models  # noqa: F401
from kinderhub.modules.billing import models as billing_models  # noqa: F401
from kinderhub.modules.children import models as children_models  # noqa: F401
from kinderhub.modules.classes import models as classes_models  # noqa: F401
from kinderhub.modules.homework import models as homework_models  # noqa: F401
from kinderhub.modules.messaging import models as messaging_models  # noqa: F401
from kinderhub.modules.notifications import models as notifications_models  # noqa: F401
from kinderhub.modules.push import models as push_models  # noqa: F401
from kinderhub.modules.users import models as users_models  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=settings.database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(settings.database_url)
    async with engine.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
