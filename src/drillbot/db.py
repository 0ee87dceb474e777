from __future__ import annotations
from pathlib import Path
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from .config import Settings

class Base(DeclarativeBase):
    pass

def make_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(settings.database_url, echo=False, future=True)

def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

def ensure_sqlite_dir(database_url: str) -> None:
    prefix = "sqlite+aiosqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix):]
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

async def ensure_sqlite_schema(engine: AsyncEngine) -> None:
    # imported for its side effect of registering the tables on Base
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        result = await conn.execute(text("PRAGMA table_info(learners);"))
        columns = {row[1] for row in result.fetchall()}
        if "difficulty" not in columns:
            await conn.execute(
                text("ALTER TABLE learners ADD COLUMN difficulty TEXT DEFAULT 'easy';")
            )
        await conn.execute(
            text(
                "UPDATE learners SET difficulty='easy' "
                "WHERE difficulty IS NULL OR difficulty='';"
            )
        )
