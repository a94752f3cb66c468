"""Errores de dominio del control de acceso.

Cada error lleva un código estable, el status HTTP con el que se expone y un
mensaje seguro para mostrar al staff de puerta / promoter. ``details`` contiene
solo información del recurso que causó el rechazo (nunca datos de otros tickets).
"""
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    OVERSOLD = "OVERSOLD"
    SALE_WINDOW_CLOSED = "SALE_WINDOW_CLOSED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    DOCUMENT_LIMIT_EXCEEDED = "DOCUMENT_LIMIT_EXCEEDED"
    NOMINATION_QUOTA_EXCEEDED = "NOMINATION_QUOTA_EXCEEDED"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    ALREADY_USED = "ALREADY_USED"
    CANCELLED = "CANCELLED"
    TRANSFER_PENDING = "TRANSFER_PENDING"
    OWNERSHIP_ALREADY_CLAIMED = "OWNERSHIP_ALREADY_CLAIMED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_REQUEST = "INVALID_REQUEST"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    VARIATION_NOT_FOUND = "VARIATION_NOT_FOUND"
    RULE_NOT_FOUND = "RULE_NOT_FOUND"
    GUEST_NOT_FOUND = "GUEST_NOT_FOUND"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    TRANSFER_NOT_FOUND = "TRANSFER_NOT_FOUND"
    TRANSFER_NOT_ALLOWED = "TRANSFER_NOT_ALLOWED"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    TRANSIENT_STORE_ERROR = "TRANSIENT_STORE_ERROR"


class AccessError(Exception):
    """Error base: código, mensaje para el usuario y detalles del rechazo"""

    code: ErrorCode = ErrorCode.INVALID_REQUEST
    status_code: int = 400
    retryable: bool = False
    default_message: str = "Solicitud inválida"

    def __init__(self, message: Optional[str] = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code.value, "detail": self.message, **self.details}


# ==================== INVENTARIO / CUOTAS ====================

class OversoldError(AccessError):
    """Variación agotada. El caller puede elegir otra variación."""
    code = ErrorCode.OVERSOLD
    status_code = 409
    default_message = "Este lote acaba de agotarse"


class SaleWindowClosedError(AccessError):
    code = ErrorCode.SALE_WINDOW_CLOSED
    status_code = 409
    default_message = "La venta de este lote ya terminó"


class QuotaExceededError(AccessError):
    code = ErrorCode.QUOTA_EXCEEDED
    status_code = 409
    default_message = "Tu cuota de cortesías para este evento está agotada"


class DocumentLimitExceededError(AccessError):
    code = ErrorCode.DOCUMENT_LIMIT_EXCEEDED
    status_code = 409
    default_message = "Límite de cortesías por documento alcanzado para este evento"


class NominationQuotaExceededError(AccessError):
    code = ErrorCode.NOMINATION_QUOTA_EXCEEDED
    status_code = 409
    default_message = "Tu cuota de nombres para esta regla es insuficiente"


# ==================== ESTADOS DE TICKET ====================

class TicketNotFoundError(AccessError):
    code = ErrorCode.TICKET_NOT_FOUND
    status_code = 404
    default_message = "Ticket inválido para este evento"


class AlreadyUsedError(AccessError):
    code = ErrorCode.ALREADY_USED
    status_code = 409
    default_message = "Este ticket ya fue utilizado"


class CancelledError(AccessError):
    code = ErrorCode.CANCELLED
    status_code = 410
    default_message = "Este ticket fue cancelado"


class TransferPendingError(AccessError):
    code = ErrorCode.TRANSFER_PENDING
    status_code = 409
    default_message = "Ticket en proceso de transferencia"


class OwnershipAlreadyClaimedError(AccessError):
    code = ErrorCode.OWNERSHIP_ALREADY_CLAIMED
    status_code = 409
    default_message = "La titularidad de este ticket ya fue confirmada"


class InvalidTokenError(AccessError):
    code = ErrorCode.INVALID_TOKEN
    status_code = 400
    default_message = "Código escaneado no es una credencial válida"


# ==================== RECURSOS ====================

class InvalidRequestError(AccessError):
    code = ErrorCode.INVALID_REQUEST


class EventNotFoundError(AccessError):
    code = ErrorCode.EVENT_NOT_FOUND
    status_code = 404
    default_message = "Evento no encontrado"


class VariationNotFoundError(AccessError):
    code = ErrorCode.VARIATION_NOT_FOUND
    status_code = 404
    default_message = "Variación no encontrada para este evento"


class RuleNotFoundError(AccessError):
    code = ErrorCode.RULE_NOT_FOUND
    status_code = 404
    default_message = "Regla de lista no encontrada para este evento"


class GuestNotFoundError(AccessError):
    code = ErrorCode.GUEST_NOT_FOUND
    status_code = 404
    default_message = "Invitado no encontrado"


class AlreadyCheckedInError(AccessError):
    code = ErrorCode.ALREADY_CHECKED_IN
    status_code = 409
    default_message = "Este invitado ya ingresó"


class TransferNotFoundError(AccessError):
    code = ErrorCode.TRANSFER_NOT_FOUND
    status_code = 404
    default_message = "Transferencia no encontrada"


class TransferNotAllowedError(AccessError):
    code = ErrorCode.TRANSFER_NOT_ALLOWED
    status_code = 409
    default_message = "Este ticket no puede transferirse"


# ==================== AUTH / INFRAESTRUCTURA ====================

class NotAuthorizedError(AccessError):
    code = ErrorCode.NOT_AUTHORIZED
    status_code = 403
    default_message = "No autorizado"


class AuthenticationRequiredError(AccessError):
    code = ErrorCode.AUTHENTICATION_REQUIRED
    status_code = 401
    default_message = "Se requiere una sesión autenticada"


class TransientStoreError(AccessError):
    """Falla de I/O contra la base de datos. El caller puede reintentar."""
    code = ErrorCode.TRANSIENT_STORE_ERROR
    status_code = 503
    retryable = True
    default_message = "Servicio temporalmente no disponible, intenta nuevamente"


def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
    """Handler para exponer errores de dominio como JSON"""
    if exc.status_code >= 500:
        logger.error(f"{exc} - Path: {request.url.path}")
    else:
        logger.info(f"Solicitud rechazada {exc.code.value} - Path: {request.url.path}")

    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)
