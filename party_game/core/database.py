"""
Database engine and session factory
数据库引擎和会话工厂 - 游戏状态的持久化存储
"""

import logging
import time
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from party_game.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the game tables"""
    pass


class DatabaseManager:
    """Async engine plus the session factory handed to GameStore"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.DATABASE_URL
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self.last_latency_ms: Optional[float] = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def _engine_kwargs(self) -> dict:
        if self.is_sqlite:
            kwargs = {"connect_args": {"check_same_thread": False}}
            # 内存数据库只能有一个连接
            if ":memory:" in self.database_url:
                kwargs["poolclass"] = StaticPool
            return kwargs

        # MySQL: 行锁 (SELECT ... FOR UPDATE) 依赖连接池里的长连接
        return {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
            "pool_recycle": settings.DB_POOL_RECYCLE,
            "pool_pre_ping": True,
        }

    async def initialize(self):
        self.engine = create_async_engine(self.database_url, echo=False, **self._engine_kwargs())
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        if not await self.ping():
            raise ConnectionError(f"Database unreachable: {self.database_url}")
        logger.info(f"Database engine ready ({self.engine.dialect.name})")

    async def ping(self) -> bool:
        if not self.engine:
            return False
        started = time.perf_counter()
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {e}")
            return False
        self.last_latency_ms = round((time.perf_counter() - started) * 1000, 2)
        return True

    async def create_all(self):
        """Create every game table that does not exist yet"""
        from party_game import models  # noqa: F401  注册所有模型

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        if self.engine:
            await self.engine.dispose()
        self.engine = None
        self.session_factory = None


db_manager = DatabaseManager()


async def init_db():
    """Connect and create missing tables"""
    await db_manager.initialize()
    await db_manager.create_all()
    logger.info("Database initialized")


async def close_db():
    await db_manager.close()
    logger.info("Database connections closed")


async def health_check() -> dict:
    """Status block for /health/detailed"""
    healthy = await db_manager.ping()
    return {
        "status": "healthy" if healthy else "unhealthy",
        "dialect": db_manager.engine.dialect.name if db_manager.engine else None,
        "latency_ms": db_manager.last_latency_ms if healthy else None,
    }
