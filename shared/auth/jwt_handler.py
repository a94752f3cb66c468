"""Manejo de JWT tokens"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
from jose import JWTError, jwt
import logging

from shared.config import get_settings

logger = logging.getLogger(__name__)

JWT_ACCESS_TOKEN_EXPIRE_MINUTES = 30


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    '''Crear token de acceso JWT'''
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({'exp': expire, 'type': 'access'})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict]:
    '''Decodificar y validar token JWT'''
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


async def verify_token(token: str, cache=None) -> Optional[Dict]:
    '''
    Verificar token.
    Para tokens de Supabase, delega en el servidor de Auth.
    Para tokens propios del backend, usa la validación local.
    '''
    try:
        unverified = jwt.get_unverified_claims(token)
    except JWTError:
        return None

    issuer = unverified.get('iss', '')
    if 'supabase.co/auth' in issuer:
        from shared.auth.supabase_validator import verify_supabase_token
        return await verify_supabase_token(token, cache=cache)

    return decode_token(token)


def extract_role(payload: Dict) -> str:
    '''El rol viaja en app_metadata (Supabase) o como claim propio'''
    return (payload.get('app_metadata') or {}).get('role') or payload.get('role') or 'user'
