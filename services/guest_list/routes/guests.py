"""Rutas de listas de invitados y timeline de reglas"""
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date
from typing import List, Optional
from uuid import UUID

from shared.auth.context import ActorContext
from shared.auth.dependencies import get_door_staff, get_list_staff
from shared.database.connection import get_db
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.event_management.services.event_service import EventService
from services.guest_list.models.guest import (
    AddGuestsRequest,
    GuestEntryResponse,
    GuestReportResponse,
    PriorityRequest,
    RuleTimelineEntry,
)
from services.guest_list.services.guest_list_service import GuestListService


router = APIRouter()


def get_guest_list_service(request: Request) -> GuestListService:
    state = request.app.state
    return GuestListService(audit=state.audit, events=EventService(cache=state.cache))


@router.post(
    "/events/{event_id}/guests",
    response_model=List[GuestEntryResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(RATE_LIMITS["guests"])
async def add_guests(
    request: Request,
    event_id: UUID,
    payload: AddGuestsRequest,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_list_staff),
    service: GuestListService = Depends(get_guest_list_service),
):
    """Cargar nombres en la lista de una regla"""
    return await service.add_guests(
        db, event_id, payload.rule_id, payload.names, notify_on_arrival=payload.notify_on_arrival
    )


@router.get("/events/{event_id}/guests", response_model=List[GuestEntryResponse])
async def list_guests(
    event_id: UUID,
    search: Optional[str] = Query(None, description="Búsqueda por nombre"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_list_staff),
    service: GuestListService = Depends(get_guest_list_service),
):
    """Listar nombres del evento (promoters ven solo los propios)"""
    return await service.list_guests(db, event_id, search=search)


@router.get("/events/{event_id}/guests/report", response_model=GuestReportResponse)
async def guest_report(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_list_staff),
    service: GuestListService = Depends(get_guest_list_service),
):
    """Balance de la lista del evento"""
    return await service.report(db, event_id)


@router.get("/events/{event_id}/rules/timeline", response_model=List[RuleTimelineEntry])
async def rules_timeline(
    event_id: UUID,
    event_day: Optional[date] = Query(None, description="Fecha del evento; sin ella se compara solo la hora"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_list_staff),
    service: GuestListService = Depends(get_guest_list_service),
):
    """Reglas ordenadas por vigencia: activas primero, por horario límite"""
    return await service.timeline(db, event_id, event_day=event_day)


@router.post("/events/{event_id}/guests/{guest_id}/check-in", response_model=GuestEntryResponse)
@limiter.limit(RATE_LIMITS["guests"])
async def check_in_guest(
    request: Request,
    event_id: UUID,
    guest_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_door_staff),
    service: GuestListService = Depends(get_guest_list_service),
):
    """Registrar llegada de un invitado"""
    return await service.check_in(db, guest_id, event_id=event_id)


@router.patch("/guests/{guest_id}/priority", response_model=GuestEntryResponse)
async def toggle_priority(
    guest_id: UUID,
    payload: PriorityRequest,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_list_staff),
    service: GuestListService = Depends(get_guest_list_service),
):
    """Activar/desactivar aviso de llegada"""
    return await service.toggle_priority(db, guest_id, payload.notify_on_arrival)
