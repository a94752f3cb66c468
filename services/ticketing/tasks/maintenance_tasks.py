"""Tareas periódicas: expiración de transferencias y reconciliación de inventario"""
from datetime import timedelta
from typing import Optional
import logging
import asyncio

from sqlalchemy import select

from shared.auth.context import ActorContext, actor_scope
from shared.cache.celery_app import celery_app
from shared.config import get_settings
from shared.database.connection import Database
from shared.database.models import Event

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper para ejecutar coroutines en contexto síncrono de Celery"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_database() -> Database:
    settings = get_settings()
    return Database(
        settings.DATABASE_URL,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
    )


async def expire_stale_transfers(database: Database, older_than: Optional[timedelta] = None) -> int:
    from services.audit.services.audit_service import AuditService
    from services.ticketing.services.transfer_service import TransferService

    service = TransferService(audit=AuditService(database))
    with actor_scope(ActorContext.system("transfer-expiry")):
        async with database.session() as session:
            return await service.expire_stale(session, older_than=older_than)


async def reconcile_all_events(database: Database) -> int:
    """Reconciliar contadores de todos los eventos. Retorna el total de correcciones."""
    from services.audit.services.audit_service import AuditService, CATEGORY_SYSTEM
    from services.ticketing.services.inventory_service import InventoryService

    audit = AuditService(database)
    total = 0
    with actor_scope(ActorContext.system("inventory-reconcile")):
        async with database.session() as session:
            event_ids = (await session.execute(select(Event.id))).scalars().all()

        for event_id in event_ids:
            async with database.session() as session:
                corrections = await InventoryService.reconcile(session, event_id)
            if corrections:
                total += len(corrections)
                await audit.record(
                    "INVENTORY_RECONCILE",
                    CATEGORY_SYSTEM,
                    target_id=event_id,
                    details={"corrections": corrections},
                    event_id=event_id,
                )
    return total


async def _with_database(job, *args, **kwargs):
    database = create_database()
    await database.connect()
    try:
        return await job(database, *args, **kwargs)
    finally:
        await database.dispose()


@celery_app.task(
    name="expire_stale_transfers",
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def expire_stale_transfers_task(self, older_than_hours: Optional[int] = None):
    """Devolver al emisor las transferencias pendientes vencidas"""
    try:
        older_than = timedelta(hours=older_than_hours) if older_than_hours else None
        count = run_async(_with_database(expire_stale_transfers, older_than=older_than))
        logger.info(f"[CELERY] {count} transferencias expiradas")
        return {"status": "ok", "expired": count}
    except Exception as e:
        logger.error(f"[CELERY] Error en expire_stale_transfers_task: {e}", exc_info=True)
        raise


@celery_app.task(
    name="reconcile_inventory",
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 2},
)
def reconcile_inventory_task(self):
    """Recalcular contadores cacheados de inventario y cuotas"""
    try:
        corrections = run_async(_with_database(reconcile_all_events))
        logger.info(f"[CELERY] Reconciliación completada: {corrections} correcciones")
        return {"status": "ok", "corrections": corrections}
    except Exception as e:
        logger.error(f"[CELERY] Error en reconcile_inventory_task: {e}", exc_info=True)
        raise
