"""
Control Plane Database

Database connection and session management for read access to the task and
job instance tables owned by the persistence layer.
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
import structlog

from .config import ControlPlaneSettings

logger = structlog.get_logger(__name__)


class Database:
    """
    Database connection manager for Control Plane.

    Uses async SQLModel with asyncpg. Pool sizing only applies to server
    databases; SQLite URLs get the driver defaults.
    """

    def __init__(self, settings: ControlPlaneSettings) -> None:
        self._settings = settings
        dsn = settings.postgres_dsn
        engine_kwargs = {"pool_pre_ping": True, "echo": False}
        if not dsn.startswith("sqlite"):
            engine_kwargs.update(pool_size=5, max_overflow=15)
        self._engine: AsyncEngine = create_async_engine(dsn, **engine_kwargs)
        self._session_factory = sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )
        logger.info("database_configured", driver=self._engine.url.drivername)

    @property
    def engine(self) -> AsyncEngine:
        """Get the database engine."""
        return self._engine

    def session(self) -> AsyncSession:
        """Get a database session."""
        return self._session_factory()

    async def dispose(self) -> None:
        """Close database connections."""
        await self._engine.dispose()
