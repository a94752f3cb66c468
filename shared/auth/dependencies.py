"""Dependencies de autenticación para FastAPI"""
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import logging

from shared.auth.context import (
    ActorContext,
    ADMIN_ROLES,
    DOOR_ROLES,
    PRODUCER_ROLES,
    PROMOTER_ROLES,
    bind_actor,
)
from shared.auth.jwt_handler import verify_token, extract_role
from shared.utils.errors import AuthenticationRequiredError, NotAuthorizedError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> ActorContext:
    '''Resolver el actor desde el token JWT y ligarlo al contexto de la solicitud'''
    if credentials is None:
        raise AuthenticationRequiredError()

    cache = getattr(request.app.state, 'cache', None)
    payload = await verify_token(credentials.credentials, cache=cache)
    if payload is None:
        raise AuthenticationRequiredError('Token inválido o expirado')

    user_id = payload.get('sub') or payload.get('user_id')
    if not user_id:
        raise AuthenticationRequiredError('Token inválido: falta user_id')

    actor = ActorContext(
        user_id=str(user_id),
        email=payload.get('email'),
        role=extract_role(payload),
    )
    bind_actor(actor)
    return actor


def require_roles(*role_groups: frozenset):
    '''Fábrica de guards por rol. Admin siempre pasa.'''
    allowed = frozenset().union(*role_groups) | ADMIN_ROLES

    async def guard(actor: ActorContext = Depends(get_current_actor)) -> ActorContext:
        if actor.normalized_role not in allowed:
            logger.info(f"Acceso denegado para rol {actor.role} ({actor.user_id})")
            raise NotAuthorizedError(f"Acceso denegado para el rol {actor.role}")
        return actor

    return guard


get_current_admin = require_roles(ADMIN_ROLES)
get_event_manager = require_roles(PRODUCER_ROLES)
get_door_staff = require_roles(PRODUCER_ROLES, DOOR_ROLES)
get_issuer = require_roles(PRODUCER_ROLES, PROMOTER_ROLES)
get_list_staff = require_roles(PRODUCER_ROLES, DOOR_ROLES, PROMOTER_ROLES)
