"""Transferencias de tickets entre miembros (regalo)"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from datetime import timedelta
from typing import Optional
from uuid import UUID
import uuid
import logging

from shared.auth.context import get_current_actor
from shared.config import get_settings
from shared.database.connection import transactional
from shared.database.models import (
    Ticket, TicketTransfer,
    TICKET_ACTIVE, TICKET_TRANSFER_PENDING, SOURCE_GIFT, SOURCE_COMPLIMENTARY,
    TRANSFER_PENDING, TRANSFER_ACCEPTED, TRANSFER_RETURNED, TRANSFER_EXPIRED,
)
from shared.utils.clock import utcnow
from shared.utils.errors import (
    AccessError, InvalidRequestError, NotAuthorizedError, TransferNotAllowedError, TransferNotFoundError,
)
from shared.utils.redemption import generate_redemption_hash
from services.audit.services.audit_service import CATEGORY_ACCESS, CATEGORY_SYSTEM, OUTCOME_REJECTED
from services.event_management.services.event_service import EventService
from services.ticketing.services.quota_service import QuotaService
from services.ticketing.services.ticket_service import ensure_active, get_ticket

logger = logging.getLogger(__name__)

ACTION_ACCEPT = "accept"
ACTION_RETURN = "return"


async def get_transfer(db: AsyncSession, transfer_id: UUID) -> TicketTransfer:
    stmt = select(TicketTransfer).where(TicketTransfer.id == transfer_id).execution_options(populate_existing=True)
    transfer = (await db.execute(stmt)).scalar_one_or_none()
    if transfer is None:
        raise TransferNotFoundError(transfer_id=str(transfer_id))
    return transfer


class TransferService:
    """
    active -> transfer_pending -> active (nuevo titular o devuelto al emisor).

    Al aceptar se reemite el hash, por lo que el QR del emisor deja de valer,
    y se limpian los datos del titular: el nuevo dueño valida los suyos.
    """

    def __init__(self, audit=None, events: Optional[EventService] = None):
        self.audit = audit
        self.events = events or EventService()

    async def _record(self, action, target_id, details, event_id=None, category=CATEGORY_ACCESS, **kwargs):
        if self.audit is not None:
            await self.audit.record(action, category, target_id=target_id, details=details, event_id=event_id, **kwargs)

    async def initiate(self, db: AsyncSession, ticket_id: UUID, receiver_id: str) -> TicketTransfer:
        """Iniciar transferencia (solo el titular del ticket)"""
        try:
            transfer, event_id = await self._initiate(db, ticket_id, receiver_id)
        except AccessError as e:
            await self._record(
                "TICKET_TRANSFER", ticket_id,
                {"receiver_id": receiver_id, "error": e.code.value, "reason": e.message},
                outcome=OUTCOME_REJECTED,
            )
            raise

        await self._record(
            "TICKET_TRANSFER", ticket_id,
            {"transfer_id": transfer.id, "receiver_id": transfer.receiver_id},
            event_id,
        )
        return transfer

    @transactional
    async def _initiate(self, db: AsyncSession, ticket_id: UUID, receiver_id: str):
        actor = get_current_actor()
        receiver_id = (receiver_id or "").strip()
        if not receiver_id or receiver_id == actor.user_id:
            raise InvalidRequestError("Destinatario de la transferencia inválido")

        ticket = await get_ticket(db, ticket_id)
        if ticket.user_id != actor.user_id:
            raise NotAuthorizedError("Solo el titular puede transferir este ticket")

        event = await self.events.get_event(db, ticket.event_id)
        if not event.transfers_enabled:
            raise TransferNotAllowedError("Transferencias suspendidas para este evento")

        result = await db.execute(
            update(Ticket)
            .where(
                Ticket.id == ticket_id,
                Ticket.status == TICKET_ACTIVE,
                Ticket.user_id == actor.user_id,
            )
            .values(status=TICKET_TRANSFER_PENDING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            ensure_active(await get_ticket(db, ticket_id))
            raise TransferNotAllowedError()

        transfer = TicketTransfer(
            id=uuid.uuid4(),
            ticket_id=ticket_id,
            sender_id=actor.user_id,
            receiver_id=receiver_id,
            status=TRANSFER_PENDING,
            created_at=utcnow(),
        )
        db.add(transfer)
        await db.commit()
        return transfer, ticket.event_id

    async def respond(self, db: AsyncSession, transfer_id: UUID, action: str) -> TicketTransfer:
        """Aceptar o devolver una transferencia (solo el destinatario)"""
        try:
            transfer, event_id = await self._respond(db, transfer_id, action)
        except AccessError as e:
            await self._record(
                "TICKET_TRANSFER_RESPONSE", transfer_id,
                {"action": action, "error": e.code.value, "reason": e.message},
                outcome=OUTCOME_REJECTED,
            )
            raise

        await self._record(
            "TICKET_TRANSFER_RESPONSE", transfer.ticket_id,
            {"transfer_id": transfer.id, "action": action, "status": transfer.status},
            event_id,
        )
        return transfer

    @transactional
    async def _respond(self, db: AsyncSession, transfer_id: UUID, action: str):
        if action not in (ACTION_ACCEPT, ACTION_RETURN):
            raise InvalidRequestError("action debe ser accept o return")

        actor = get_current_actor()
        transfer = await get_transfer(db, transfer_id)
        if transfer.receiver_id != actor.user_id:
            raise NotAuthorizedError("Solo el destinatario puede responder esta transferencia")

        now = utcnow()
        new_status = TRANSFER_ACCEPTED if action == ACTION_ACCEPT else TRANSFER_RETURNED
        result = await db.execute(
            update(TicketTransfer)
            .where(TicketTransfer.id == transfer_id, TicketTransfer.status == TRANSFER_PENDING)
            .values(status=new_status, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise TransferNotAllowedError("Esta transferencia ya fue resuelta")

        ticket = await get_ticket(db, transfer.ticket_id)

        if action == ACTION_ACCEPT:
            values = dict(
                user_id=transfer.receiver_id,
                status=TICKET_ACTIVE,
                source=SOURCE_GIFT,
                hash=generate_redemption_hash(str(ticket.id)),
                guest_name=None,
                guest_document=None,
                updated_at=now,
            )
        else:
            values = dict(status=TICKET_ACTIVE, updated_at=now)

        result = await db.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.status == TICKET_TRANSFER_PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise TransferNotAllowedError("El ticket ya no está en transferencia")

        # El documento del titular anterior deja de ocupar cupo
        if action == ACTION_ACCEPT and ticket.source == SOURCE_COMPLIMENTARY and ticket.guest_document:
            await QuotaService.release_document_slot(db, ticket.event_id, ticket.guest_document)

        await db.commit()
        return await get_transfer(db, transfer_id), ticket.event_id

    @transactional
    async def expire_stale(self, db: AsyncSession, older_than: Optional[timedelta] = None) -> int:
        """
        Devolver al emisor las transferencias pendientes más antiguas que
        ``older_than`` (default TRANSFER_EXPIRY_HOURS). Retorna cuántas expiraron.
        """
        if older_than is None:
            older_than = timedelta(hours=get_settings().TRANSFER_EXPIRY_HOURS)
        now = utcnow()
        cutoff = now - older_than

        stale = await db.execute(
            select(TicketTransfer.id, TicketTransfer.ticket_id).where(
                TicketTransfer.status == TRANSFER_PENDING,
                TicketTransfer.created_at < cutoff,
            )
        )

        expired = []
        for transfer_id, ticket_id in stale.all():
            result = await db.execute(
                update(TicketTransfer)
                .where(TicketTransfer.id == transfer_id, TicketTransfer.status == TRANSFER_PENDING)
                .values(status=TRANSFER_EXPIRED, resolved_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                continue
            await db.execute(
                update(Ticket)
                .where(Ticket.id == ticket_id, Ticket.status == TICKET_TRANSFER_PENDING)
                .values(status=TICKET_ACTIVE, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            expired.append(str(transfer_id))

        await db.commit()

        if expired:
            logger.info(f"{len(expired)} transferencias expiradas devueltas al emisor")
            await self._record(
                "TRANSFERS_EXPIRED", None,
                {"count": len(expired), "transfer_ids": expired},
                category=CATEGORY_SYSTEM,
            )
        return len(expired)
