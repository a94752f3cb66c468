"""Registro de auditoría append-only"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select
from typing import Any, Dict, List, Optional
from uuid import UUID
import json
import logging

from shared.auth.context import get_current_actor
from shared.database.connection import Database
from shared.database.models import AuditLog
from shared.utils.errors import AuthenticationRequiredError
from shared.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Categorías de auditoría
CATEGORY_GENERAL = "GENERAL"
CATEGORY_ACCESS = "ACCESS"
CATEGORY_LIST = "LIST"
CATEGORY_STAFF = "STAFF"
CATEGORY_SYSTEM = "SYSTEM"
AUDIT_CATEGORIES = (CATEGORY_GENERAL, CATEGORY_ACCESS, CATEGORY_LIST, CATEGORY_STAFF, CATEGORY_SYSTEM)

OUTCOME_SUCCESS = "success"
OUTCOME_REJECTED = "rejected"


class AuditService:
    """
    Escribe registros de auditoría en su propia sesión, después de la
    transacción principal. Una falla de escritura nunca revierte ni rompe la
    operación auditada: se registra en el log y se cuenta en ``failed_writes``.
    """

    def __init__(self, database: Database, max_retries: int = 2, initial_delay: float = 0.1):
        self.database = database
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.failed_writes = 0

    async def record(
        self,
        action: str,
        category: str,
        target_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
        event_id: Optional[UUID] = None,
        outcome: str = OUTCOME_SUCCESS,
    ) -> Optional[AuditLog]:
        """
        Registrar una acción.

        El actor se toma siempre del contexto autenticado de la solicitud; no
        existe forma de pasarlo como argumento.
        """
        try:
            actor = get_current_actor()
        except AuthenticationRequiredError:
            self.failed_writes += 1
            logger.error(f"Audit sin actor autenticado para {action}; registro descartado")
            return None

        entry = {
            "event_id": event_id,
            "action": action,
            "category": category,
            "outcome": outcome,
            "performed_by_id": actor.user_id,
            "performed_by_label": actor.label,
            "target_id": str(target_id) if target_id is not None else None,
            # UUIDs, Decimals y datetimes a string para la columna JSON
            "details": json.loads(json.dumps(details or {}, default=str)),
        }

        async def write():
            async with self.database.session() as session:
                log = AuditLog(**entry)
                session.add(log)
                await session.commit()
                return log

        try:
            return await retry_with_backoff(
                write,
                max_retries=self.max_retries,
                initial_delay=self.initial_delay,
                max_delay=2.0,
                exceptions=(SQLAlchemyError, OSError),
            )
        except (SQLAlchemyError, OSError) as e:
            self.failed_writes += 1
            logger.error(
                f"Audit write failed for {action} (target={entry['target_id']}, "
                f"failed_writes={self.failed_writes}): {e}",
                exc_info=True,
            )
            return None

    @staticmethod
    async def fetch_logs(
        db: AsyncSession,
        event_id: Optional[UUID] = None,
        category: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Logs más recientes primero, filtrados por evento y/o categoría"""
        stmt = select(AuditLog)
        if event_id:
            stmt = stmt.where(AuditLog.event_id == event_id)
        if category:
            stmt = stmt.where(AuditLog.category == category)
        stmt = stmt.order_by(AuditLog.created_at.desc()).limit(limit)

        result = await db.execute(stmt)
        return list(result.scalars().all())
