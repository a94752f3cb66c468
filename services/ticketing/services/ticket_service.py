"""Ciclo de vida de tickets: emisión, titularidad, validación, redención y cancelación"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from typing import Any, Dict, Optional
from uuid import UUID
import uuid
import logging

from shared.auth.context import get_current_actor
from shared.database.connection import store_errors, transactional
from shared.database.models import (
    Ticket, TicketTransfer,
    TICKET_ACTIVE, TICKET_USED, TICKET_CANCELLED, TICKET_TRANSFER_PENDING,
    SOURCE_COMPLIMENTARY, TRANSFER_PENDING, TRANSFER_CANCELLED,
)
from shared.utils.clock import utcnow
from shared.utils.errors import (
    AccessError, AlreadyUsedError, CancelledError, InvalidRequestError, NotAuthorizedError,
    OwnershipAlreadyClaimedError, TicketNotFoundError, TransferPendingError,
)
from shared.utils.redemption import (
    generate_redemption_hash, normalize_document, normalize_hash, normalize_name, parse_auth_token,
)
from services.audit.services.audit_service import CATEGORY_ACCESS, OUTCOME_REJECTED
from services.event_management.services.event_service import EventService
from services.ticketing.models.ticket import IssueTicketRequest
from services.ticketing.services.inventory_service import InventoryService
from services.ticketing.services.quota_service import QuotaService

logger = logging.getLogger(__name__)


def ensure_active(ticket: Ticket):
    """Error distinto por estado para que el staff de puerta sepa cómo actuar"""
    if ticket.status == TICKET_USED:
        raise AlreadyUsedError(used_at=ticket.used_at.isoformat() if ticket.used_at else None)
    if ticket.status == TICKET_CANCELLED:
        raise CancelledError()
    if ticket.status == TICKET_TRANSFER_PENDING:
        raise TransferPendingError()


async def find_ticket(db: AsyncSession, ticket_id: UUID) -> Optional[Ticket]:
    """Lectura fresca (ignora el estado en memoria de la sesión)"""
    stmt = select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_ticket(db: AsyncSession, ticket_id: UUID) -> Ticket:
    ticket = await find_ticket(db, ticket_id)
    if ticket is None:
        raise TicketNotFoundError(ticket_id=str(ticket_id))
    return ticket


class TicketService:
    """
    Máquina de estados del ticket.

    active -> used | cancelled, active -> transfer_pending -> active.
    Cada transición es un UPDATE condicionado al estado de origen, así dos
    scanners que redimen el mismo ticket obtienen un éxito y un AlreadyUsed.
    """

    def __init__(self, audit=None, events: Optional[EventService] = None):
        self.audit = audit
        self.events = events or EventService()

    async def _audit(
        self,
        action: str,
        target_id: Any,
        details: Dict[str, Any],
        event_id: Optional[UUID],
        **kwargs,
    ):
        if self.audit is not None:
            await self.audit.record(
                action, CATEGORY_ACCESS, target_id=target_id, details=details, event_id=event_id, **kwargs
            )

    async def _audit_rejection(
        self,
        action: str,
        error: AccessError,
        target_id: Any,
        event_id: Optional[UUID],
        details: Optional[Dict[str, Any]] = None,
    ):
        payload = dict(details or {})
        payload.update(error.details)
        payload["error"] = error.code.value
        payload["reason"] = error.message
        await self._audit(action, target_id, payload, event_id, outcome=OUTCOME_REJECTED)

    # ==================== EMISIÓN ====================

    async def issue(self, db: AsyncSession, event_id: UUID, request: IssueTicketRequest) -> Ticket:
        """
        Emitir un ticket.

        Cortesías: cuota del promoter, luego cupo del documento. Después el
        inventario de la variación. Todo en una transacción junto con el insert.

        Raises:
            QuotaExceededError, DocumentLimitExceededError, OversoldError,
            SaleWindowClosedError, EventNotFoundError, VariationNotFoundError
        """
        try:
            ticket = await self._issue(db, event_id, request)
        except AccessError as e:
            await self._audit_rejection(
                "TICKET_ISSUE", e, request.variation_id, event_id, {"source": request.source}
            )
            raise

        logger.info(f"Ticket {ticket.id} emitido ({ticket.source}) para evento {event_id}")
        await self._audit(
            "TICKET_ISSUE",
            ticket.id,
            {
                "source": ticket.source,
                "variation_id": ticket.variation_id,
                "promoter_id": ticket.promoter_id,
                "user_id": ticket.user_id,
                "has_document": ticket.guest_document is not None,
            },
            event_id,
        )
        return ticket

    @transactional
    async def _issue(self, db: AsyncSession, event_id: UUID, request: IssueTicketRequest) -> Ticket:
        actor = get_current_actor()
        complimentary = request.source == SOURCE_COMPLIMENTARY

        if actor.is_promoter and not complimentary:
            raise NotAuthorizedError("Promoters solo pueden emitir cortesías")
        if not complimentary and request.variation_id is None:
            raise InvalidRequestError("variation_id es obligatorio para este tipo de ticket")

        # EventNotFoundError si el evento no existe
        await self.events.get_event(db, event_id)

        document = normalize_document(request.guest_document)
        guest_name = normalize_name(request.guest_name) or None
        promoter_id = None
        quota_claimed = False

        if complimentary:
            promoter_id = actor.user_id
            quota_claimed = await QuotaService.claim_promoter_quota(
                db, event_id, promoter_id, required=actor.is_promoter
            )
            if document:
                await QuotaService.claim_document_slot(db, event_id, document)

        if request.variation_id is not None:
            await InventoryService.reserve(db, request.variation_id, event_id=event_id)

        ticket_id = uuid.uuid4()
        now = utcnow()
        ticket = Ticket(
            id=ticket_id,
            event_id=event_id,
            variation_id=request.variation_id,
            user_id=request.user_id,
            status=TICKET_ACTIVE,
            source=request.source,
            hash=generate_redemption_hash(str(ticket_id)),
            promoter_id=promoter_id,
            quota_claimed=quota_claimed,
            guest_name=guest_name,
            guest_document=document,
            issued_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(ticket)
        await db.commit()
        return ticket

    # ==================== TITULARIDAD ====================

    async def claim_ownership(self, db: AsyncSession, ticket_id: UUID, name: str, document: str) -> Ticket:
        """
        Completar nombre y documento del titular.

        Para cortesías el cupo por documento se consume en este momento.
        """
        try:
            ticket = await self._claim_ownership(db, ticket_id, name, document)
        except AccessError as e:
            await self._audit_rejection("TICKET_CLAIM", e, ticket_id, None)
            raise

        await self._audit("TICKET_CLAIM", ticket.id, {"source": ticket.source}, ticket.event_id)
        return ticket

    @transactional
    async def _claim_ownership(self, db: AsyncSession, ticket_id: UUID, name: str, document: str) -> Ticket:
        actor = get_current_actor()
        name = normalize_name(name)
        document = normalize_document(document)
        if len(name) < 3 or not document:
            raise InvalidRequestError("Nombre y documento del titular son obligatorios")

        ticket = await get_ticket(db, ticket_id)
        if ticket.user_id and ticket.user_id != actor.user_id and not actor.is_manager:
            raise NotAuthorizedError("Este ticket pertenece a otro miembro")
        ensure_active(ticket)
        if ticket.guest_document:
            raise OwnershipAlreadyClaimedError()

        now = utcnow()
        result = await db.execute(
            update(Ticket)
            .where(
                Ticket.id == ticket_id,
                Ticket.status == TICKET_ACTIVE,
                Ticket.guest_document.is_(None),
            )
            .values(
                guest_name=name,
                guest_document=document,
                user_id=func.coalesce(Ticket.user_id, actor.user_id),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Otra solicitud ganó la carrera
            ticket = await get_ticket(db, ticket_id)
            ensure_active(ticket)
            raise OwnershipAlreadyClaimedError()

        if ticket.source == SOURCE_COMPLIMENTARY:
            await QuotaService.claim_document_slot(db, ticket.event_id, document)

        await db.commit()
        return await get_ticket(db, ticket_id)

    # ==================== PUERTA ====================

    async def validate(self, db: AsyncSession, ticket_hash: str, event_id: UUID) -> Ticket:
        """
        Buscar ticket por (hash, evento). Solo lectura.

        Un hash válido en otro evento es TicketNotFound.
        """
        normalized = normalize_hash(ticket_hash)
        if not normalized:
            raise TicketNotFoundError()

        async with store_errors(db):
            stmt = select(Ticket).where(
                Ticket.event_id == event_id,
                Ticket.hash == normalized,
            ).execution_options(populate_existing=True)
            ticket = (await db.execute(stmt)).scalar_one_or_none()

        if ticket is None:
            raise TicketNotFoundError()
        ensure_active(ticket)
        return ticket

    async def validate_token(self, db: AsyncSession, token: str, event_id: UUID) -> Ticket:
        """Validar el texto escaneado (VANTA_AUTH:<hash>)"""
        return await self.validate(db, parse_auth_token(token), event_id)

    async def redeem(self, db: AsyncSession, ticket_id: UUID, event_id: Optional[UUID] = None) -> Ticket:
        """Registrar la entrada: active -> used, con hora y staff que escaneó"""
        try:
            ticket = await self._redeem(db, ticket_id, event_id)
        except AccessError as e:
            await self._audit_rejection("TICKET_REDEEM", e, ticket_id, event_id)
            raise

        logger.info(f"Ticket {ticket.id} redimido por {ticket.redeemed_by}")
        await self._audit(
            "TICKET_REDEEM",
            ticket.id,
            {"source": ticket.source, "promoter_id": ticket.promoter_id, "guest_name": ticket.guest_name},
            ticket.event_id,
        )
        return ticket

    @transactional
    async def _redeem(self, db: AsyncSession, ticket_id: UUID, event_id: Optional[UUID]) -> Ticket:
        actor = get_current_actor()
        now = utcnow()

        stmt = update(Ticket).where(Ticket.id == ticket_id, Ticket.status == TICKET_ACTIVE)
        if event_id is not None:
            stmt = stmt.where(Ticket.event_id == event_id)
        result = await db.execute(
            stmt.values(status=TICKET_USED, used_at=now, redeemed_by=actor.label, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            ticket = await find_ticket(db, ticket_id)
            if ticket is None or (event_id is not None and ticket.event_id != event_id):
                raise TicketNotFoundError()
            ensure_active(ticket)
            raise AlreadyUsedError()

        await db.commit()
        return await get_ticket(db, ticket_id)

    async def scan(self, db: AsyncSession, token: str, event_id: UUID) -> Ticket:
        """Flujo del scanner de puerta: validar el token y redimir en una llamada"""
        try:
            ticket = await self.validate_token(db, token, event_id)
        except AccessError as e:
            await self._audit_rejection("TICKET_REDEEM", e, None, event_id)
            raise
        return await self.redeem(db, ticket.id, event_id)

    # ==================== CANCELACIÓN ====================

    async def cancel(self, db: AsyncSession, ticket_id: UUID) -> Ticket:
        """
        Cancelar un ticket no terminal.

        Libera inventario, cuota del promoter y cupo del documento en la misma
        transacción, y cancela la transferencia pendiente si existe.
        """
        try:
            ticket = await self._cancel(db, ticket_id)
        except AccessError as e:
            await self._audit_rejection("TICKET_CANCEL", e, ticket_id, None)
            raise

        logger.info(f"Ticket {ticket.id} cancelado")
        await self._audit(
            "TICKET_CANCEL",
            ticket.id,
            {"source": ticket.source, "variation_id": ticket.variation_id, "promoter_id": ticket.promoter_id},
            ticket.event_id,
        )
        return ticket

    @transactional
    async def _cancel(self, db: AsyncSession, ticket_id: UUID) -> Ticket:
        actor = get_current_actor()
        ticket = await get_ticket(db, ticket_id)
        if not actor.is_manager and ticket.promoter_id != actor.user_id:
            raise NotAuthorizedError("Solo el emisor o la producción pueden cancelar este ticket")

        now = utcnow()
        result = await db.execute(
            update(Ticket)
            .where(
                Ticket.id == ticket_id,
                Ticket.status.in_((TICKET_ACTIVE, TICKET_TRANSFER_PENDING)),
            )
            .values(status=TICKET_CANCELLED, cancelled_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            ticket = await get_ticket(db, ticket_id)
            if ticket.status == TICKET_USED:
                raise AlreadyUsedError(used_at=ticket.used_at.isoformat() if ticket.used_at else None)
            raise CancelledError()

        # Valores frescos con la fila ya bloqueada
        ticket = await get_ticket(db, ticket_id)

        if ticket.promoter_id and ticket.quota_claimed:
            await QuotaService.release_promoter_quota(db, ticket.event_id, ticket.promoter_id)
        if ticket.source == SOURCE_COMPLIMENTARY and ticket.guest_document:
            await QuotaService.release_document_slot(db, ticket.event_id, ticket.guest_document)
        if ticket.variation_id:
            await InventoryService.release(db, ticket.variation_id)

        await db.execute(
            update(TicketTransfer)
            .where(TicketTransfer.ticket_id == ticket_id, TicketTransfer.status == TRANSFER_PENDING)
            .values(status=TRANSFER_CANCELLED, resolved_at=now)
            .execution_options(synchronize_session=False)
        )

        await db.commit()
        return ticket
