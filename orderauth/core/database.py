from pathlib import Path
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, MappedAsDataclass

# Privilege check used by the row store on PostgreSQL.
IS_ADMIN_FUNCTION_DDL = """
CREATE OR REPLACE FUNCTION is_admin(uid text) RETURNS boolean
LANGUAGE sql STABLE AS $$
    SELECT EXISTS (
        SELECT 1 FROM administrators WHERE id = uid AND role = 'admin'
    )
$$
"""


class Base(MappedAsDataclass, DeclarativeBase):
    pass


def build_engine(database_url: str) -> AsyncEngine:
    connection_url = make_url(database_url)
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}

    if connection_url.drivername.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if connection_url.database and connection_url.database != ":memory:":
            Path(connection_url.database).parent.mkdir(parents=True, exist_ok=True)
    else:
        engine_kwargs.update(
            {
                "pool_size": 5,
                "max_overflow": 10,
                "pool_recycle": 1800,
                "pool_timeout": 30,
            }
        )

    return create_async_engine(database_url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    # Import the row modules so their tables are registered on Base.metadata.
    import orderauth.models  # noqa: F401

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
        if connection.dialect.name == "postgresql":
            await connection.execute(text(IS_ADMIN_FUNCTION_DDL))


async def ping_database(engine: AsyncEngine) -> bool:
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
