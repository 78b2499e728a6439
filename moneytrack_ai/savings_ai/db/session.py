from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from savings_ai.core.config import settings
from savings_ai.db.base import Base
from savings_ai.db import models  # noqa: F401

engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

async def init_db(bind=engine):
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
