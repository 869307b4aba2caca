"""
Alembic migration environment running against the async engine.
"""
import asyncio

from alembic import context
from sqlalchemy.engine import Connection

from orchestrator.core.config import settings
from orchestrator.core.database import Base, Database
import orchestrator.models  # noqa: F401

config = context.config
target_metadata = Base.metadata


def database_url() -> str:
    return config.get_main_option("sqlalchemy.url") or settings.database_url


def run_migrations_offline() -> None:
    """Emit SQL without connecting."""
    context.configure(
        url=database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    database = Database(database_url())
    async with database.engine.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await database.close()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
