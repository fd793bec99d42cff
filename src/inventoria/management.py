"""Utility helpers for administrative tasks."""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from . import crud
from .config import Settings, get_settings
from .database import Base, engine
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


async def init_database(
    db_engine: AsyncEngine | None = None, settings: Settings | None = None
) -> None:
    """Create database tables and make sure an administrator exists."""

    engine_to_use = db_engine or engine
    settings = settings or get_settings()
    async with engine_to_use.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind=engine_to_use, expire_on_commit=False)
    async with session_factory() as session:
        admin = await crud.create_default_admin_user(session, settings)
        await session.commit()
    logger.info("Database initialised; administrator is %s", admin.username)


def cli_init_database() -> None:
    """CLI wrapper executed from :mod:`python -m`."""

    setup_logging()
    asyncio.run(init_database())


if __name__ == "__main__":
    cli_init_database()
