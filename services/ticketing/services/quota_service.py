"""Cuotas de cortesías por promoter y por documento"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_
from sqlalchemy.dialects import postgresql, sqlite
from typing import Optional
from uuid import UUID
import logging

from shared.config import get_settings
from shared.database.models import (
    StaffAssignment, DocumentAllowance, Ticket, TICKET_CANCELLED, SOURCE_COMPLIMENTARY,
)
from shared.utils.errors import QuotaExceededError, DocumentLimitExceededError

logger = logging.getLogger(__name__)

STAFF_REJECTED = "REJECTED"


def _insert_for(db: AsyncSession):
    """insert() del dialecto activo (ON CONFLICT DO NOTHING)"""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


class QuotaService:
    """
    Cuotas compartidas entre actores concurrentes.

    Los ``check_*`` cuentan tickets (consulta consultiva, sin escribir). Los
    ``claim_*`` son la forma atómica que usa la emisión: un UPDATE condicional
    sobre el contador, dentro de la transacción que inserta el ticket.
    """

    @staticmethod
    async def complimentary_count(db: AsyncSession, event_id: UUID, promoter_id: str) -> int:
        stmt = select(func.count(Ticket.id)).where(
            Ticket.event_id == event_id,
            Ticket.promoter_id == promoter_id,
            Ticket.status != TICKET_CANCELLED,
        )
        return (await db.execute(stmt)).scalar_one()

    @staticmethod
    async def document_count(db: AsyncSession, event_id: UUID, document: str) -> int:
        stmt = select(func.count(Ticket.id)).where(
            Ticket.event_id == event_id,
            Ticket.source == SOURCE_COMPLIMENTARY,
            Ticket.guest_document == document,
            Ticket.status != TICKET_CANCELLED,
        )
        return (await db.execute(stmt)).scalar_one()

    @staticmethod
    async def check_promoter_quota(
        db: AsyncSession,
        event_id: UUID,
        promoter_id: str,
        assigned_quota: Optional[int],
    ) -> int:
        """
        Verificar cuota del promoter. ``assigned_quota`` None = sin límite.

        Returns:
            Cortesías ya emitidas por el promoter
        """
        count = await QuotaService.complimentary_count(db, event_id, promoter_id)
        if assigned_quota is not None and count >= assigned_quota:
            raise QuotaExceededError(quota=assigned_quota, issued=count)
        return count

    @staticmethod
    async def check_document_limit(db: AsyncSession, event_id: UUID, document: str) -> int:
        cap = get_settings().COMPLIMENTARY_DOCUMENT_CAP
        count = await QuotaService.document_count(db, event_id, document)
        if count >= cap:
            raise DocumentLimitExceededError(limit=cap)
        return count

    @staticmethod
    async def claim_promoter_quota(db: AsyncSession, event_id: UUID, promoter_id: str, required: bool = True) -> bool:
        """
        Consumir una cortesía de la cuota del promoter.

        Con ``required`` (promoters) la ausencia de asignación equivale a cuota
        0. Sin él (productores/admin) solo se cuenta si existe asignación.

        Returns:
            True si se incrementó un contador
        """
        result = await db.execute(
            update(StaffAssignment)
            .where(
                StaffAssignment.event_id == event_id,
                StaffAssignment.staff_id == promoter_id,
                StaffAssignment.status != STAFF_REJECTED,
                or_(
                    StaffAssignment.vip_quota.is_(None),
                    StaffAssignment.complimentary_issued < StaffAssignment.vip_quota,
                ),
            )
            .values(complimentary_issued=StaffAssignment.complimentary_issued + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return True

        assignment = (await db.execute(
            select(StaffAssignment).where(
                StaffAssignment.event_id == event_id,
                StaffAssignment.staff_id == promoter_id,
                StaffAssignment.status != STAFF_REJECTED,
            ).execution_options(populate_existing=True)
        )).scalar_one_or_none()

        if assignment is None:
            if not required:
                return False
            logger.info(f"Promoter {promoter_id} sin asignación en evento {event_id}")
            raise QuotaExceededError(quota=0, issued=0)

        logger.info(f"Cuota agotada para promoter {promoter_id} ({assignment.vip_quota})")
        raise QuotaExceededError(quota=assignment.vip_quota, issued=assignment.complimentary_issued)

    @staticmethod
    async def release_promoter_quota(db: AsyncSession, event_id: UUID, promoter_id: str):
        await db.execute(
            update(StaffAssignment)
            .where(
                StaffAssignment.event_id == event_id,
                StaffAssignment.staff_id == promoter_id,
                StaffAssignment.complimentary_issued > 0,
            )
            .values(complimentary_issued=StaffAssignment.complimentary_issued - 1)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def claim_document_slot(db: AsyncSession, event_id: UUID, document: str):
        """Consumir un cupo del documento en el evento (máximo COMPLIMENTARY_DOCUMENT_CAP)"""
        cap = get_settings().COMPLIMENTARY_DOCUMENT_CAP
        insert = _insert_for(db)

        await db.execute(
            insert(DocumentAllowance)
            .values(event_id=event_id, document=document, used=0)
            .on_conflict_do_nothing(index_elements=["event_id", "document"])
        )
        result = await db.execute(
            update(DocumentAllowance)
            .where(
                DocumentAllowance.event_id == event_id,
                DocumentAllowance.document == document,
                DocumentAllowance.used < cap,
            )
            .values(used=DocumentAllowance.used + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.info(f"Límite por documento alcanzado en evento {event_id}")
            raise DocumentLimitExceededError(limit=cap)

    @staticmethod
    async def release_document_slot(db: AsyncSession, event_id: UUID, document: str):
        await db.execute(
            update(DocumentAllowance)
            .where(
                DocumentAllowance.event_id == event_id,
                DocumentAllowance.document == document,
                DocumentAllowance.used > 0,
            )
            .values(used=DocumentAllowance.used - 1)
            .execution_options(synchronize_session=False)
        )
