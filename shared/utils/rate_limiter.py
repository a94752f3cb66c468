"""
Rate limiting usando slowapi (memoria local o Redis compartido)
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, Response
from starlette.responses import JSONResponse
import hashlib
import logging

from shared.config import get_settings

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """
    Obtener IP real del cliente considerando proxies/load balancers.
    Importante para rate limiting correcto detrás de nginx/cloudflare.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # La primera es la IP real del cliente
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    cf_connecting_ip = request.headers.get("CF-Connecting-IP")
    if cf_connecting_ip:
        return cf_connecting_ip

    return get_remote_address(request)


def get_user_identifier(request: Request) -> str:
    """
    Generar identificador único para rate limiting.
    Combina IP + hash del token si está autenticado (varios scanners detrás de la misma IP).
    """
    ip = get_real_client_ip(request)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token_hash = hashlib.md5(auth_header.encode()).hexdigest()[:8]
        return f"{ip}:{token_hash}"

    return ip


def create_limiter() -> Limiter:
    settings = get_settings()
    storage_uri = settings.RATE_LIMIT_STORAGE_URL
    logger.info(
        f"Rate limiter inicializado (enabled={settings.RATE_LIMIT_ENABLED}, "
        f"storage={storage_uri.split('@')[-1]})"
    )
    return Limiter(
        key_func=get_user_identifier,
        storage_uri=storage_uri,
        strategy="fixed-window",
        enabled=settings.RATE_LIMIT_ENABLED,
        headers_enabled=False,  # Compatibilidad con response_model de FastAPI
    )


limiter = create_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Handler personalizado para rate limit exceeded.
    Retorna JSON con información útil para el cliente.
    """
    retry_after = exc.detail.split(" ")[-1] if exc.detail else "60"

    logger.warning(
        f"Rate limit exceeded - IP: {get_real_client_ip(request)}, "
        f"Path: {request.url.path}, "
        f"Retry-After: {retry_after}"
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "detail": "Demasiadas solicitudes. Por favor espera antes de intentar nuevamente.",
            "retry_after_seconds": int(retry_after) if retry_after.isdigit() else 60,
        },
        headers={"Retry-After": str(retry_after)},
    )


# ============ RATE LIMITS PRE-DEFINIDOS ============

RATE_LIMITS = {
    # Escaneo en puerta: varios scanners en ráfaga al abrir el evento
    "scan": "120/minute",

    # Validación sin redención (consulta previa del staff)
    "validation": "60/minute",

    # Emisión de tickets y cortesías
    "issue": "30/minute",

    # Listas de invitados (carga y check-in)
    "guests": "60/minute",

    # Admin: sync de configuración, auditoría
    "admin": "120/minute",

    "default": "30/minute",
}
