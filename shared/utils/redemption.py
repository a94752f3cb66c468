"""Utilidades para generar y leer credenciales de acceso"""
import hashlib
import hmac
import re
import secrets
from typing import Optional

from shared.config import get_settings
from shared.utils.errors import InvalidTokenError

TOKEN_PREFIX = "VANTA_AUTH:"
HASH_LENGTH = 16

_NON_DIGITS = re.compile(r"\D")
_WHITESPACE = re.compile(r"\s+")


def generate_redemption_hash(ticket_id: str, secret: Optional[str] = None, nonce: Optional[str] = None) -> str:
    """
    Generar hash de redención para un ticket

    Usa HMAC-SHA256 sobre el ticket_id y un nonce aleatorio, de modo que una
    transferencia puede reemitir el hash del mismo ticket e invalidar el
    anterior.

    Args:
        ticket_id: UUID del ticket como string
        secret: Secret key para HMAC (default: REDEMPTION_SECRET)
        nonce: Valor aleatorio (default: generado)

    Returns:
        String hexadecimal en mayúsculas de 16 caracteres
    """
    if secret is None:
        secret = get_settings().REDEMPTION_SECRET
    if nonce is None:
        nonce = secrets.token_hex(8)

    message = f"ticket:{ticket_id}:{nonce}"
    signature = hmac.new(
        secret.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()

    return signature[:HASH_LENGTH].upper()


def normalize_hash(value: str) -> str:
    return (value or "").strip().upper()


def build_auth_token(ticket_hash: str) -> str:
    """Texto que codifica el QR del ticket"""
    return f"{TOKEN_PREFIX}{normalize_hash(ticket_hash)}"


def parse_auth_token(token: str) -> str:
    """Extraer el hash de un texto escaneado. Sin el marcador es InvalidToken."""
    text = (token or "").strip()
    if not text.upper().startswith(TOKEN_PREFIX):
        raise InvalidTokenError()
    ticket_hash = normalize_hash(text[len(TOKEN_PREFIX):])
    if not ticket_hash:
        raise InvalidTokenError()
    return ticket_hash


def normalize_document(document: Optional[str]) -> Optional[str]:
    """Documento (CPF) solo con dígitos; vacío = None"""
    if document is None:
        return None
    digits = _NON_DIGITS.sub("", document)
    return digits or None


def normalize_name(name: Optional[str]) -> str:
    """Nombre sin espacios redundantes y en mayúsculas"""
    return _WHITESPACE.sub(" ", (name or "").strip()).upper()
