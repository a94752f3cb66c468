"""Rutas de tickets: emisión, puerta, titularidad, cancelación y transferencias"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from shared.auth.context import ActorContext
from shared.auth.dependencies import (
    get_current_actor, get_door_staff, get_event_manager, get_issuer, get_list_staff,
)
from shared.database.connection import get_db
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.audit.services.audit_service import CATEGORY_SYSTEM
from services.event_management.services.event_service import EventService
from services.ticketing.models.ticket import (
    ClaimOwnershipRequest,
    InventoryResponse,
    IssueTicketRequest,
    IssuedTicketResponse,
    ReconcileResponse,
    TicketResponse,
    TokenRequest,
    TransferRequest,
    TransferResponse,
    TransferResponseRequest,
    ValidationResponse,
)
from services.ticketing.services.inventory_service import InventoryService
from services.ticketing.services.ticket_service import TicketService
from services.ticketing.services.transfer_service import TransferService


router = APIRouter()


def get_ticket_service(request: Request) -> TicketService:
    state = request.app.state
    return TicketService(audit=state.audit, events=EventService(cache=state.cache))


def get_transfer_service(request: Request) -> TransferService:
    state = request.app.state
    return TransferService(audit=state.audit, events=EventService(cache=state.cache))


# ==================== INVENTARIO ====================

@router.get("/events/{event_id}/inventory", response_model=InventoryResponse)
async def get_inventory(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_list_staff),
):
    """Disponibilidad por variación (conteo derivado de tickets no cancelados)"""
    return await InventoryService.availability(db, event_id)


@router.post("/events/{event_id}/inventory/reconcile", response_model=ReconcileResponse)
@limiter.limit(RATE_LIMITS["admin"])
async def reconcile_inventory(
    request: Request,
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_event_manager),
):
    """Recalcular contadores cacheados desde los tickets"""
    corrections = await InventoryService.reconcile(db, event_id)
    await request.app.state.audit.record(
        "INVENTORY_RECONCILE",
        CATEGORY_SYSTEM,
        target_id=event_id,
        details={"corrections": corrections},
        event_id=event_id,
    )
    return ReconcileResponse(event_id=event_id, corrections=corrections)


# ==================== EMISIÓN ====================

@router.post(
    "/events/{event_id}/tickets",
    response_model=IssuedTicketResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(RATE_LIMITS["issue"])
async def issue_ticket(
    request: Request,
    event_id: UUID,
    payload: IssueTicketRequest,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_issuer),
    service: TicketService = Depends(get_ticket_service),
):
    """
    Emitir ticket o cortesía

    Para cortesías el promoter es el usuario autenticado; se aplican su cuota
    y el límite por documento.
    """
    ticket = await service.issue(db, event_id, payload)
    return IssuedTicketResponse.from_ticket(ticket)


# ==================== PUERTA ====================

@router.post("/events/{event_id}/tickets/validate", response_model=ValidationResponse)
@limiter.limit(RATE_LIMITS["validation"])
async def validate_ticket(
    request: Request,
    event_id: UUID,
    payload: TokenRequest,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_door_staff),
    service: TicketService = Depends(get_ticket_service),
):
    """Validar QR sin registrar la entrada"""
    ticket = await service.validate_token(db, payload.token, event_id)
    return ValidationResponse.from_ticket(ticket)


@router.post("/events/{event_id}/tickets/scan", response_model=ValidationResponse)
@limiter.limit(RATE_LIMITS["scan"])
async def scan_ticket(
    request: Request,
    event_id: UUID,
    payload: TokenRequest,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_door_staff),
    service: TicketService = Depends(get_ticket_service),
):
    """Validar y registrar la entrada en una sola llamada (scanner de puerta)"""
    ticket = await service.scan(db, payload.token, event_id)
    return ValidationResponse.from_ticket(ticket, redeemed=True)


@router.post("/tickets/{ticket_id}/redeem", response_model=TicketResponse)
@limiter.limit(RATE_LIMITS["scan"])
async def redeem_ticket(
    request: Request,
    ticket_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_door_staff),
    service: TicketService = Depends(get_ticket_service),
):
    """Registrar la entrada de un ticket ya validado"""
    return await service.redeem(db, ticket_id)


# ==================== TITULAR ====================

@router.post("/tickets/{ticket_id}/ownership", response_model=TicketResponse)
async def claim_ownership(
    ticket_id: UUID,
    payload: ClaimOwnershipRequest,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    service: TicketService = Depends(get_ticket_service),
):
    """Confirmar nombre y documento del titular"""
    return await service.claim_ownership(db, ticket_id, payload.name, payload.document)


@router.post("/tickets/{ticket_id}/cancel", response_model=TicketResponse)
@limiter.limit(RATE_LIMITS["issue"])
async def cancel_ticket(
    request: Request,
    ticket_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_issuer),
    service: TicketService = Depends(get_ticket_service),
):
    """Cancelar ticket (emisor o producción)"""
    return await service.cancel(db, ticket_id)


# ==================== TRANSFERENCIAS ====================

@router.post(
    "/tickets/{ticket_id}/transfers",
    response_model=TransferResponse,
    status_code=status.HTTP_201_CREATED,
)
async def initiate_transfer(
    ticket_id: UUID,
    payload: TransferRequest,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """Transferir ticket a otro miembro"""
    return await service.initiate(db, ticket_id, payload.receiver_id)


@router.post("/transfers/{transfer_id}/respond", response_model=TransferResponse)
async def respond_transfer(
    transfer_id: UUID,
    payload: TransferResponseRequest,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
    service: TransferService = Depends(get_transfer_service),
):
    """Aceptar o devolver una transferencia recibida"""
    return await service.respond(db, transfer_id, payload.action)
