import httpx
import hashlib
import logging
from typing import Optional, Dict
from jose import jwt

from shared.config import get_settings

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 600  # 10 minutos


def get_token_cache_key(token: str) -> str:
    '''Generar clave de caché para un token (usando hash para no almacenar el token completo)'''
    token_hash = hashlib.sha256(token.encode()).hexdigest()
    return f'jwt:validated:{token_hash[:16]}'


async def verify_supabase_token(token: str, cache=None) -> Optional[Dict]:
    '''
    Verifica un JWT token de Supabase delegando la validación al Auth server.

    Cachea tokens validados por 10 minutos cuando hay cache disponible.
    '''
    settings = get_settings()
    if not settings.SUPABASE_URL:
        logger.error('Token de Supabase recibido pero SUPABASE_URL no está configurado')
        return None

    cache_key = get_token_cache_key(token)
    if cache is not None:
        cached_payload = await cache.get(cache_key)
        if cached_payload:
            return cached_payload

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(
                f'{settings.SUPABASE_URL}/auth/v1/user',
                headers={
                    'apikey': settings.SUPABASE_ANON_KEY,
                    'Authorization': f'Bearer {token}'
                }
            )
    except httpx.HTTPError as e:
        logger.error(f'Error validating token with Supabase: {e}')
        return None

    if response.status_code != 200:
        return None

    user_data = response.json()

    # Decodificar el token SIN verificar (solo para extraer claims; Auth ya lo validó)
    unverified_payload = jwt.get_unverified_claims(token)
    app_metadata = user_data.get('app_metadata') or unverified_payload.get('app_metadata', {})

    payload = {
        'sub': user_data.get('id'),
        'user_id': user_data.get('id'),
        'email': user_data.get('email'),
        'role': app_metadata.get('role', 'user'),
        'exp': unverified_payload.get('exp'),
        'iss': unverified_payload.get('iss'),
        'app_metadata': app_metadata,
    }

    if cache is not None:
        await cache.set(cache_key, payload, expire=CACHE_TTL_SECONDS)

    return payload
