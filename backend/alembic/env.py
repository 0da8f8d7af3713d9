import asyncio
import os
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context
from cabinet.auth.models import User  # noqa: F401
from cabinet.contact.models import ContactMessage  # noqa: F401

# Import all models so they register with Base.metadata
from cabinet.database import Base
from cabinet.documents.models import Document  # noqa: F401
from cabinet.dossiers.models import Dossier, DossierCounter  # noqa: F401
from cabinet.logs.models import ActivityLog  # noqa: F401
from cabinet.messages.models import Message, MessageArchive, MessageRead, MessageRecipient  # noqa: F401
from cabinet.notifications.models import Notification, NotificationOutbox  # noqa: F401
from cabinet.scheduling.models import Creneau, RendezVous  # noqa: F401
from cabinet.tasks.models import Task  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Override URL from environment if available
database_url = os.environ.get("DATABASE_URL")
if database_url:
    config.set_main_option("sqlalchemy.url", database_url)


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
