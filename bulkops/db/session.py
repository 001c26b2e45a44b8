from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from bulkops.settings import settings

def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
    )

def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)

AsyncSessionLocal = build_sessionmaker(engine)

class Base(DeclarativeBase):
    pass

async def create_all(bind: AsyncEngine = engine) -> None:
    # Registers the tables on Base.metadata
    import bulkops.db.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
