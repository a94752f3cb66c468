"""Identidad del actor autenticado para la solicitud en curso.

El actor se resuelve una sola vez a partir del token verificado y queda ligado
al contexto de ejecución (``ContextVar``). Los servicios y el registro de
auditoría lo leen de aquí; ningún campo del body puede reemplazarlo.
"""
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Iterator, Optional

from shared.utils.errors import AuthenticationRequiredError

ADMIN_ROLES = frozenset({"admin", "master", "vanta_master"})
PRODUCER_ROLES = frozenset({"produtor", "vanta_prod", "socio", "vanta_socio"})
DOOR_ROLES = frozenset({"portaria", "vanta_portaria"})
PROMOTER_ROLES = frozenset({"promoter", "vanta_promoter"})
SYSTEM_ROLE = "system"


@dataclass(frozen=True)
class ActorContext:
    user_id: str
    email: Optional[str] = None
    role: str = "user"

    @property
    def normalized_role(self) -> str:
        return (self.role or "user").lower()

    @property
    def label(self) -> str:
        return self.email or self.user_id

    @property
    def is_admin(self) -> bool:
        return self.normalized_role in ADMIN_ROLES

    @property
    def is_manager(self) -> bool:
        """Admin o productor del evento"""
        return self.is_admin or self.normalized_role in PRODUCER_ROLES

    @property
    def is_promoter(self) -> bool:
        return self.normalized_role in PROMOTER_ROLES

    @classmethod
    def system(cls, name: str) -> "ActorContext":
        """Actor para procesos internos (tareas periódicas)"""
        return cls(user_id=f"system:{name}", email=None, role=SYSTEM_ROLE)


_current_actor: ContextVar[Optional[ActorContext]] = ContextVar("current_actor", default=None)


def bind_actor(actor: ActorContext) -> Token:
    return _current_actor.set(actor)


def reset_actor(token: Token) -> None:
    _current_actor.reset(token)


@contextmanager
def actor_scope(actor: ActorContext) -> Iterator[ActorContext]:
    token = bind_actor(actor)
    try:
        yield actor
    finally:
        reset_actor(token)


def get_current_actor() -> ActorContext:
    actor = _current_actor.get()
    if actor is None:
        raise AuthenticationRequiredError()
    return actor
