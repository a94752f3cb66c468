"""Cliente Redis para cache"""
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError
import json
from typing import Optional, Any
import logging

logger = logging.getLogger(__name__)


class CacheClient:
    """Cache best-effort sobre Redis.

    Sin URL configurada el cache queda deshabilitado y todas las lecturas son
    miss. Un Redis caído nunca rompe la operación que consulta el cache.
    """

    def __init__(self, redis_url: str = "", max_connections: int = 20):
        self.redis_url = redis_url
        self.max_connections = max_connections
        self.client: Optional[redis.Redis] = None
        self.pool: Optional[ConnectionPool] = None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def connect(self):
        """Inicializar conexión a Redis con pool de conexiones"""
        if not self.redis_url:
            logger.info("REDIS_URL vacío: cache deshabilitado")
            return

        self.pool = ConnectionPool.from_url(
            self.redis_url,
            max_connections=self.max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
            health_check_interval=30,  # Health check cada 30s
        )
        self.client = redis.Redis(connection_pool=self.pool)

        try:
            await self.client.ping()
            logger.info(f"Redis conectado exitosamente (pool max_connections={self.max_connections})")
        except RedisError as e:
            logger.error(f"Error conectando a Redis: {e}")

    async def close(self):
        """Cerrar conexión a Redis y pool"""
        if self.client:
            await self.client.aclose()
            self.client = None
        if self.pool:
            await self.pool.disconnect()
            self.pool = None
        logger.info("Redis desconectado")

    async def ping(self) -> bool:
        if not self.client:
            return False
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    async def get(self, key: str) -> Optional[Any]:
        """Obtener valor del cache"""
        if not self.client:
            return None
        try:
            value = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"Cache get falló para {key}: {e}")
            return None
        if value:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return None

    async def set(self, key: str, value: Any, expire: int = 3600):
        """Guardar valor en cache"""
        if not self.client:
            return
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        try:
            await self.client.setex(key, expire, value)
        except RedisError as e:
            logger.warning(f"Cache set falló para {key}: {e}")

    async def delete(self, key: str):
        """Eliminar del cache"""
        if not self.client:
            return
        try:
            await self.client.delete(key)
        except RedisError as e:
            logger.warning(f"Cache delete falló para {key}: {e}")
