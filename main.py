"""API Gateway principal - Punto de entrada de la aplicación"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import JSONResponse
import logging
from contextlib import asynccontextmanager

from shared.config import get_settings
from shared.database.connection import Database
from shared.cache.redis_client import CacheClient
from shared.utils.errors import AccessError, access_error_handler
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler
from services.audit.services.audit_service import AuditService

settings = get_settings()

# Configurar logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events de la aplicación"""
    # Startup
    logger.info("Iniciando aplicación...")
    database = Database(
        settings.DATABASE_URL,
        echo=settings.APP_DEBUG,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
    )
    await database.connect()
    if database.is_sqlite:
        await database.create_all()

    cache = CacheClient(settings.REDIS_URL, max_connections=settings.REDIS_MAX_CONNECTIONS)
    await cache.connect()

    app.state.db = database
    app.state.cache = cache
    app.state.audit = AuditService(database)
    logger.info("Aplicación iniciada")
    yield
    # Shutdown
    logger.info("Cerrando aplicación...")
    await database.dispose()
    await cache.close()
    logger.info("Aplicación cerrada")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Vanta Access API",
        description="Control de acceso: tickets, cortesías, listas de invitados y auditoría",
        version="1.0.0",
        lifespan=lifespan
    )

    # En desarrollo, permitir todos los orígenes para facilitar testing
    if settings.APP_ENV == "development":
        allow_origins = ["*"]
        allow_credentials = False  # No se puede usar credentials con allow_origins=["*"]
    else:
        allow_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
        allow_credentials = True
        logger.info(f"CORS origins configurados: {allow_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        max_age=3600,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(AccessError, access_error_handler)

    # Incluir routers de cada servicio
    from services.event_management.routes.events import router as events_router
    from services.ticketing.routes.tickets import router as tickets_router
    from services.guest_list.routes.guests import router as guests_router
    from services.audit.routes.audit import router as audit_router

    app.include_router(events_router, prefix="/api/v1", tags=["events"])
    app.include_router(tickets_router, prefix="/api/v1", tags=["tickets"])
    app.include_router(guests_router, prefix="/api/v1", tags=["guests"])
    app.include_router(audit_router, prefix="/api/v1", tags=["audit"])

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {"status": "ok", "service": "vanta-access"}

    @app.get("/ready")
    async def ready():
        """Ready check endpoint - verifica conexiones y escrituras de auditoría fallidas"""
        audit_failures = app.state.audit.failed_writes
        try:
            async with app.state.db.session() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Ready check failed: {e}")
            return JSONResponse(
                status_code=503,
                content={"status": "not ready", "database": "unavailable", "audit_failed_writes": audit_failures},
            )

        cache = app.state.cache
        redis_status = "disabled"
        if cache.enabled:
            redis_status = "connected" if await cache.ping() else "unavailable"

        return {
            "status": "ready",
            "database": "connected",
            "redis": redis_status,
            "audit_failed_writes": audit_failures,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_DEBUG
    )
