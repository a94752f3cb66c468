"""Conexión a la base de datos (PostgreSQL en producción, SQLite en tests)"""
from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy.exc import DBAPIError, OperationalError
from contextlib import asynccontextmanager
from functools import wraps
from typing import AsyncGenerator, Optional
from fastapi import Request
import logging
import ssl

from shared.utils.errors import TransientStoreError

logger = logging.getLogger(__name__)

# Base para modelos SQLAlchemy
Base = declarative_base()


def normalize_database_url(database_url: str) -> str:
    """Convertir la URL al driver async correspondiente"""
    # Limpiar parámetros SSL de la URL (se configuran en connect_args)
    if database_url.startswith("postgresql") and "?" in database_url:
        database_url = database_url.split("?")[0]

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("postgresql+psycopg://"):
        database_url = database_url.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("sqlite://"):
        database_url = database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    return database_url


class Database:
    """Engine + session factory con init/teardown explícitos.

    La instancia vive en ``app.state.db`` (o la crea la tarea de Celery) en
    lugar de un global de módulo.
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        self.url = normalize_database_url(database_url)
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker] = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    async def connect(self):
        """Inicializar conexión a la base de datos"""
        if self.engine is not None:
            logger.warning("Database engine already initialized, skipping...")
            return

        logger.info(f"Initializing database connection to: {self.url.split('@')[-1]}")

        if self.is_sqlite:
            # Una conexión por sesión: las transacciones compiten por el lock
            # de escritura igual que filas concurrentes en Postgres
            self.engine = create_async_engine(
                self.url,
                echo=self.echo,
                poolclass=NullPool,
                connect_args={"timeout": 30},
            )
        else:
            is_supabase = "supabase.com" in self.url
            connect_args = {}
            if is_supabase:
                logger.info("Detected Supabase connection, configuring search_path and SSL")
                ssl_context = ssl.create_default_context()
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE
                connect_args = {
                    "ssl": ssl_context,
                    "server_settings": {"search_path": "public", "jit": "off"},
                    "command_timeout": 60,
                    "timeout": 60,
                }

            self.engine = create_async_engine(
                self.url,
                echo=self.echo,
                connect_args=connect_args,
                pool_pre_ping=True,  # Verificar conexiones antes de usar
                pool_recycle=180 if is_supabase else 300,
                pool_timeout=30,
                pool_use_lifo=True,
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
            )
            logger.info(f"Pool config: size={self.pool_size}, overflow={self.max_overflow}")

        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        logger.info("Database engine initialized successfully")

    async def create_all(self):
        """Crear tablas (desarrollo y tests; producción usa migraciones)"""
        # Registrar modelos en el metadata
        from shared.database import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def session(self) -> AsyncSession:
        if self.session_maker is None:
            raise RuntimeError("Database not initialized. Call connect() first.")
        return self.session_maker()

    async def dispose(self):
        """Cerrar conexiones a la base de datos"""
        if self.engine:
            logger.info("Closing database connections...")
            await self.engine.dispose()
            self.engine = None
            self.session_maker = None
            logger.info("Database connections closed")


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency para obtener sesión de base de datos"""
    database: Database = request.app.state.db
    async with database.session() as session:
        yield session


def is_transient(exc: Exception) -> bool:
    """Errores de conexión / lock que vale la pena reintentar"""
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


@asynccontextmanager
async def store_errors(session: AsyncSession):
    """Hacer rollback y traducir errores de I/O a TransientStoreError"""
    try:
        yield
    except DBAPIError as e:
        await session.rollback()
        if is_transient(e):
            logger.error(f"Database I/O error: {type(e).__name__}: {e}")
            raise TransientStoreError() from e
        raise
    except OSError as e:
        # Errores de DNS y socket
        await session.rollback()
        logger.error(f"Database connection error: {type(e).__name__}: {e}")
        raise TransientStoreError() from e


def transactional(func):
    """Decorator para métodos de servicio ``(self, db, ...)``.

    Cualquier excepción hace rollback de la sesión; errores de I/O se exponen
    como TransientStoreError.
    """
    @wraps(func)
    async def wrapper(self, db: AsyncSession, *args, **kwargs):
        async with store_errors(db):
            try:
                return await func(self, db, *args, **kwargs)
            except Exception:
                await db.rollback()
                raise
    return wrapper
