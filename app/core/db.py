# app/core/db.py
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from app.core.config import settings


def _engine_options(url: str) -> dict:
    # sqlite (tests / dev) no comparte conexiones entre event loops
    if url.startswith("sqlite"):
        return {"poolclass": NullPool}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 0}


engine = create_async_engine(
    settings.async_database_url, echo=False, **_engine_options(settings.async_database_url)
)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

class Base(DeclarativeBase):
    pass

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

def db_now() -> datetime:
    # columnas DATETIME sin zona: siempre UTC naive
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)
