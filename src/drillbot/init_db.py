import asyncio
from sqlalchemy import text
from .config import load_settings
from .db import ensure_sqlite_dir, ensure_sqlite_schema, make_engine

async def main():
    settings = load_settings()
    ensure_sqlite_dir(settings.database_url)

    engine = make_engine(settings)
    await ensure_sqlite_schema(engine)
    if settings.database_url.startswith("sqlite"):
        async with engine.begin() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL;"))
            await conn.execute(text("PRAGMA synchronous=NORMAL;"))
    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(main())
