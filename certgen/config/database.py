# certgen/config/database.py
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from certgen.config.logger import get_logger
from certgen.config.settings import settings

logger = get_logger(__name__, "DB")

# Create async engine
engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)

# Create session factory
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)


# Initialize database (creates missing tables in development)
async def init_db() -> bool:
    try:
        async with engine.begin() as conn:
            if settings.ENVIRONMENT == "development":
                from certgen.infrastructure.database.models import Base
                await conn.run_sync(Base.metadata.create_all)
            await conn.execute(text("SELECT 1"))
        logger.info("Koneksi database berhasil.")
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Koneksi database gagal: {e}")
        return False
