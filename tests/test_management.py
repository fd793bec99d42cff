from __future__ import annotations

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine

from inventoria import crud
from inventoria.management import init_database


async def test_init_database_creates_tables_and_admin(settings, session_factory, engine) -> None:
    await init_database(engine, settings)
    await init_database(engine, settings)

    async with session_factory() as session:
        users = await crud.list_users(session)
    assert [(user.username, user.role) for user in users] == [("admin", "admin")]


async def test_init_database_on_empty_file(settings, tmp_path) -> None:
    fresh = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    try:
        await init_database(fresh, settings)
        async with fresh.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    finally:
        await fresh.dispose()

    assert set(tables) >= {"categories", "users", "items", "transactions"}
