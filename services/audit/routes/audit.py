"""Rutas de consulta de auditoría (solo admin)"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID

from shared.auth.context import ActorContext
from shared.auth.dependencies import get_current_admin
from shared.database.connection import get_db
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.audit.models.audit import AuditLogResponse
from shared.utils.errors import InvalidRequestError
from services.audit.services.audit_service import AUDIT_CATEGORIES, AuditService


router = APIRouter()


@router.get("/audit-logs", response_model=List[AuditLogResponse])
@limiter.limit(RATE_LIMITS["admin"])
async def get_audit_logs(
    request: Request,
    event_id: Optional[UUID] = Query(None),
    category: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    admin: ActorContext = Depends(get_current_admin),
):
    """Listar registros de auditoría, más recientes primero"""
    if category and category.upper() not in AUDIT_CATEGORIES:
        raise InvalidRequestError(f"category debe ser una de {AUDIT_CATEGORIES}")
    category = category.upper() if category else None
    return await AuditService.fetch_logs(db, event_id=event_id, category=category, limit=limit)
