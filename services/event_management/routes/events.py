"""Rutas de configuración de eventos"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from shared.auth.context import ActorContext
from shared.auth.dependencies import get_event_manager, get_list_staff
from shared.database.connection import get_db
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.event_management.models.event import EventConfig, EventSnapshot
from services.event_management.services.event_service import EventService


router = APIRouter()


def get_event_service(request: Request) -> EventService:
    return EventService(cache=request.app.state.cache, audit=request.app.state.audit)


@router.put("/events/{event_id}/config", response_model=EventSnapshot)
@limiter.limit(RATE_LIMITS["admin"])
async def sync_event_config(
    request: Request,
    event_id: UUID,
    config: EventConfig,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_event_manager),
    service: EventService = Depends(get_event_service),
):
    """
    Sincronizar configuración del evento (capacidad, lotes, reglas, staff)

    Requiere: admin o productor
    """
    return await service.sync_event(db, event_id, config)


@router.get("/events/{event_id}/config", response_model=EventSnapshot)
async def get_event_config(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_list_staff),
    service: EventService = Depends(get_event_service),
):
    """Obtener snapshot de configuración del evento"""
    return await service.get_event(db, event_id)
