"""Servicio de inventario por variación (lote + área + género)"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID
import logging

from shared.database.models import (
    Event, TicketBatch, TicketVariation, Ticket, StaffAssignment, DocumentAllowance,
    TICKET_CANCELLED, SOURCE_COMPLIMENTARY,
)
from shared.utils.clock import utcnow, as_utc
from shared.utils.errors import (
    EventNotFoundError, OversoldError, SaleWindowClosedError, VariationNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class Reservation:
    """Unidad reservada dentro de la transacción de emisión"""
    variation_id: UUID
    batch_id: UUID
    batch_name: str
    area: str
    gender: str
    price: Decimal
    limit: int


class InventoryService:
    """
    Inventario de variaciones.

    ``sold_count`` es un contador co-actualizado: se incrementa con un UPDATE
    condicional en la misma transacción que inserta el ticket y se decrementa
    en la que lo cancela. El conteo autoritativo son los tickets no cancelados.
    """

    @staticmethod
    async def current_sold(db: AsyncSession, event_id: UUID) -> Dict[UUID, int]:
        """Tickets no cancelados por variación (todas las variaciones del evento)"""
        variations = await db.execute(
            select(TicketVariation.id).where(TicketVariation.event_id == event_id)
        )
        sold = {variation_id: 0 for variation_id in variations.scalars().all()}

        stmt = select(Ticket.variation_id, func.count(Ticket.id)).where(
            Ticket.event_id == event_id,
            Ticket.variation_id.is_not(None),
            Ticket.status != TICKET_CANCELLED,
        ).group_by(Ticket.variation_id)
        result = await db.execute(stmt)
        for variation_id, count in result.all():
            sold[variation_id] = count

        return sold

    @staticmethod
    async def reserve(
        db: AsyncSession,
        variation_id: UUID,
        event_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> Reservation:
        """
        Reservar una unidad de la variación.

        Check y escritura son un único UPDATE condicional; no hace commit, el
        caller inserta el ticket en la misma transacción.

        Raises:
            VariationNotFoundError, SaleWindowClosedError, OversoldError
        """
        stmt = select(TicketVariation, TicketBatch).join(
            TicketBatch, TicketVariation.batch_id == TicketBatch.id
        ).where(TicketVariation.id == variation_id)
        if event_id is not None:
            stmt = stmt.where(TicketVariation.event_id == event_id)
        row = (await db.execute(stmt)).first()

        if row is None:
            raise VariationNotFoundError(variation_id=str(variation_id))
        variation, batch = row

        sale_ends_at = as_utc(batch.sale_ends_at)
        if sale_ends_at is not None and (now or utcnow()) >= sale_ends_at:
            raise SaleWindowClosedError(batch=batch.name, sale_ends_at=sale_ends_at.isoformat())

        result = await db.execute(
            update(TicketVariation)
            .where(
                TicketVariation.id == variation_id,
                TicketVariation.sold_count < TicketVariation.sale_limit,
            )
            .values(sold_count=TicketVariation.sold_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.info(f"Variación {variation_id} agotada (límite {variation.sale_limit})")
            raise OversoldError(
                variation_id=str(variation_id),
                batch=batch.name,
                area=variation.area,
                gender=variation.gender,
                limit=variation.sale_limit,
            )

        return Reservation(
            variation_id=variation.id,
            batch_id=batch.id,
            batch_name=batch.name,
            area=variation.area,
            gender=variation.gender,
            price=variation.price,
            limit=variation.sale_limit,
        )

    @staticmethod
    async def release(db: AsyncSession, variation_id: UUID):
        """Liberar una unidad (dentro de la transacción de cancelación)"""
        await db.execute(
            update(TicketVariation)
            .where(TicketVariation.id == variation_id, TicketVariation.sold_count > 0)
            .values(sold_count=TicketVariation.sold_count - 1)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def availability(db: AsyncSession, event_id: UUID) -> Dict:
        """Disponibilidad por variación usando el conteo derivado de tickets"""
        event = await db.get(Event, event_id)
        if event is None:
            raise EventNotFoundError(event_id=str(event_id))

        sold = await InventoryService.current_sold(db, event_id)

        stmt = select(TicketVariation, TicketBatch).join(
            TicketBatch, TicketVariation.batch_id == TicketBatch.id
        ).where(TicketVariation.event_id == event_id).order_by(
            TicketBatch.position, TicketVariation.position
        )
        result = await db.execute(stmt)

        now = utcnow()
        variations = []
        for variation, batch in result.all():
            count = sold.get(variation.id, 0)
            sale_ends_at = as_utc(batch.sale_ends_at)
            variations.append({
                "variation_id": variation.id,
                "batch_id": batch.id,
                "batch_name": batch.name,
                "area": variation.area,
                "gender": variation.gender,
                "price": float(variation.price),
                "limit": variation.sale_limit,
                "sold": count,
                "remaining": max(variation.sale_limit - count, 0),
                "sale_open": sale_ends_at is None or now < sale_ends_at,
            })

        total_sold = sum(v["sold"] for v in variations)
        return {
            "event_id": event.id,
            "capacity": event.capacity,
            "total_sold": total_sold,
            "variations": variations,
        }

    @staticmethod
    async def reconcile(db: AsyncSession, event_id: UUID) -> List[Dict]:
        """
        Recalcular contadores cacheados desde los tickets

        Corrige ``sold_count`` de variaciones, ``complimentary_issued`` del
        staff y los cupos por documento. Retorna las diferencias encontradas.
        """
        corrections = []

        # Bloquear los contadores del evento (mismo orden que la emisión:
        # promoter, documento, variación) antes de contar
        for counter in (
            StaffAssignment.complimentary_issued,
            DocumentAllowance.used,
            TicketVariation.sold_count,
        ):
            model = counter.class_
            await db.execute(
                update(model)
                .where(model.event_id == event_id)
                .values({counter: counter})
                .execution_options(synchronize_session=False)
            )

        sold = await InventoryService.current_sold(db, event_id)
        variations = await db.execute(
            select(TicketVariation)
            .where(TicketVariation.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        for variation in variations.scalars().all():
            actual = sold.get(variation.id, 0)
            if variation.sold_count != actual:
                corrections.append({
                    "kind": "variation",
                    "id": str(variation.id),
                    "cached": variation.sold_count,
                    "actual": actual,
                })
                variation.sold_count = actual

        issued_stmt = select(Ticket.promoter_id, func.count(Ticket.id)).where(
            Ticket.event_id == event_id,
            Ticket.promoter_id.is_not(None),
            Ticket.quota_claimed.is_(True),
            Ticket.status != TICKET_CANCELLED,
        ).group_by(Ticket.promoter_id)
        issued = dict((await db.execute(issued_stmt)).all())

        staff = await db.execute(
            select(StaffAssignment)
            .where(StaffAssignment.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        for assignment in staff.scalars().all():
            actual = issued.get(assignment.staff_id, 0)
            if assignment.complimentary_issued != actual:
                corrections.append({
                    "kind": "promoter",
                    "id": assignment.staff_id,
                    "cached": assignment.complimentary_issued,
                    "actual": actual,
                })
                assignment.complimentary_issued = actual

        documents_stmt = select(Ticket.guest_document, func.count(Ticket.id)).where(
            Ticket.event_id == event_id,
            Ticket.source == SOURCE_COMPLIMENTARY,
            Ticket.guest_document.is_not(None),
            Ticket.status != TICKET_CANCELLED,
        ).group_by(Ticket.guest_document)
        documents = dict((await db.execute(documents_stmt)).all())

        allowances = await db.execute(
            select(DocumentAllowance)
            .where(DocumentAllowance.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        seen = set()
        for allowance in allowances.scalars().all():
            seen.add(allowance.document)
            actual = documents.get(allowance.document, 0)
            if allowance.used != actual:
                corrections.append({
                    "kind": "document",
                    "id": allowance.document,
                    "cached": allowance.used,
                    "actual": actual,
                })
                allowance.used = actual
        for document, actual in documents.items():
            if document not in seen:
                corrections.append({"kind": "document", "id": document, "cached": 0, "actual": actual})
                db.add(DocumentAllowance(event_id=event_id, document=document, used=actual))

        await db.commit()

        if corrections:
            logger.warning(f"Reconciliación del evento {event_id}: {len(corrections)} contadores corregidos")
        return corrections
