"""Servicio de configuración de eventos (capacidad, lotes, reglas, staff)"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from typing import Optional
from uuid import UUID
import uuid
import logging

from shared.config import get_settings
from shared.database.connection import transactional
from shared.database.models import (
    Event, TicketBatch, TicketVariation, GuestListRule, StaffAssignment, PromoterRuleLimit,
)
from shared.utils.errors import AccessError, EventNotFoundError, RuleNotFoundError
from services.audit.services.audit_service import CATEGORY_GENERAL, OUTCOME_REJECTED
from services.event_management.models.event import (
    EventConfig, EventSnapshot, BatchSnapshot, VariationSnapshot, RuleSnapshot, StaffSnapshot,
)

logger = logging.getLogger(__name__)


def snapshot_cache_key(event_id) -> str:
    return f"events:snapshot:{event_id}"


class EventService:
    """
    Directorio de eventos.

    La configuración la administra el sistema externo; este servicio la
    expone como snapshot de solo lectura (cacheado en Redis) y la sincroniza
    sin tocar los contadores de ventas, cuotas y nombres.
    """

    def __init__(self, cache=None, audit=None, ttl: Optional[int] = None):
        self.cache = cache
        self.audit = audit
        self.ttl = ttl if ttl is not None else get_settings().EVENT_CACHE_TTL_SECONDS

    async def get_event(self, db: AsyncSession, event_id: UUID) -> EventSnapshot:
        """Obtener snapshot del evento (cache primero)"""
        cache_key = snapshot_cache_key(event_id)
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached:
                return EventSnapshot(**cached)

        snapshot = await self.load_snapshot(db, event_id)

        if self.cache is not None:
            await self.cache.set(cache_key, snapshot.model_dump(mode="json"), expire=self.ttl)
        return snapshot

    @staticmethod
    async def load_snapshot(db: AsyncSession, event_id: UUID) -> EventSnapshot:
        stmt = select(Event).options(
            selectinload(Event.batches).selectinload(TicketBatch.variations),
            selectinload(Event.rules),
            selectinload(Event.staff),
        ).where(Event.id == event_id).execution_options(populate_existing=True)
        result = await db.execute(stmt)
        event = result.scalar_one_or_none()

        if not event:
            raise EventNotFoundError(event_id=str(event_id))

        limits_result = await db.execute(
            select(PromoterRuleLimit).where(PromoterRuleLimit.event_id == event_id)
        )
        limits = {}
        for limit in limits_result.scalars().all():
            limits.setdefault(limit.staff_id, {})[str(limit.rule_id)] = limit.nomination_limit

        return EventSnapshot(
            id=event.id,
            name=event.name,
            capacity=event.capacity,
            starts_at=event.starts_at,
            transfers_enabled=event.transfers_enabled,
            batches=[
                BatchSnapshot(
                    id=batch.id,
                    name=batch.name,
                    sale_ends_at=batch.sale_ends_at,
                    variations=[
                        VariationSnapshot(
                            id=v.id,
                            batch_id=batch.id,
                            area=v.area,
                            gender=v.gender,
                            price=float(v.price),
                            limit=v.sale_limit,
                        )
                        for v in batch.variations
                    ],
                )
                for batch in event.batches
            ],
            rules=[
                RuleSnapshot(
                    id=rule.id,
                    benefit_type=rule.benefit_type,
                    gender_scope=rule.gender_scope,
                    area=rule.area,
                    value=float(rule.value),
                    deadline=rule.deadline,
                )
                for rule in event.rules
            ],
            staff=[
                StaffSnapshot(
                    staff_id=s.staff_id,
                    email=s.email,
                    role=s.role,
                    status=s.status,
                    vip_quota=s.vip_quota,
                    rule_limits=limits.get(s.staff_id, {}),
                )
                for s in event.staff
            ],
        )

    async def invalidate(self, event_id: UUID):
        if self.cache is not None:
            await self.cache.delete(snapshot_cache_key(event_id))

    async def sync_event(self, db: AsyncSession, event_id: UUID, config: EventConfig) -> EventSnapshot:
        """
        Upsert de la configuración del evento.

        Las filas existentes se actualizan en el lugar para conservar
        ``sold_count``, ``complimentary_issued`` y ``nominations_used``. El
        staff que ya no aparece en la configuración queda como REJECTED.
        """
        try:
            await self._sync(db, event_id, config)
        except AccessError as e:
            if self.audit is not None:
                await self.audit.record(
                    "EVENT_CONFIG_SYNCED",
                    CATEGORY_GENERAL,
                    target_id=event_id,
                    details={"error": e.code.value, "reason": e.message},
                    event_id=event_id,
                    outcome=OUTCOME_REJECTED,
                )
            raise
        await self.invalidate(event_id)

        if self.audit is not None:
            await self.audit.record(
                "EVENT_CONFIG_SYNCED",
                CATEGORY_GENERAL,
                target_id=event_id,
                details={
                    "capacity": config.capacity,
                    "batches": len(config.batches),
                    "rules": len(config.rules),
                    "staff": len(config.staff),
                },
                event_id=event_id,
            )

        return await self.get_event(db, event_id)

    @transactional
    async def _sync(self, db: AsyncSession, event_id: UUID, config: EventConfig):
        event = await db.get(Event, event_id)
        if event is None:
            event = Event(id=event_id, name=config.name, transfers_enabled=config.transfers_enabled)
            db.add(event)
            logger.info(f"Evento {event_id} creado por sync")

        event.name = config.name
        event.capacity = config.capacity
        event.starts_at = config.starts_at
        event.transfers_enabled = config.transfers_enabled

        # Lotes y variaciones
        batches_result = await db.execute(select(TicketBatch).where(TicketBatch.event_id == event_id))
        existing_batches = {b.id: b for b in batches_result.scalars().all()}
        batches_by_name = {b.name: b for b in existing_batches.values()}
        variations_result = await db.execute(
            select(TicketVariation).where(TicketVariation.event_id == event_id)
        )
        existing_variations = {v.id: v for v in variations_result.scalars().all()}
        variations_by_slot = {(v.batch_id, v.area, v.gender): v for v in existing_variations.values()}

        for position, batch_config in enumerate(config.batches):
            # Sin id se reconoce el lote por nombre
            if batch_config.id is not None:
                batch = existing_batches.get(batch_config.id)
            else:
                batch = batches_by_name.get(batch_config.name)
            if batch is None:
                batch = TicketBatch(id=batch_config.id or uuid.uuid4(), event_id=event_id)
                db.add(batch)
            batch.name = batch_config.name
            batch.sale_ends_at = batch_config.sale_ends_at
            batch.position = position

            for v_position, variation_config in enumerate(batch_config.variations):
                if variation_config.id is not None:
                    variation = existing_variations.get(variation_config.id)
                else:
                    variation = variations_by_slot.get((batch.id, variation_config.area, variation_config.gender))
                if variation is None:
                    variation = TicketVariation(
                        id=variation_config.id or uuid.uuid4(),
                        event_id=event_id,
                        sold_count=0,
                    )
                    db.add(variation)
                elif variation_config.limit < variation.sold_count:
                    logger.warning(
                        f"Límite de variación {variation.id} reducido a {variation_config.limit} "
                        f"con {variation.sold_count} ya emitidos"
                    )
                variation.batch_id = batch.id
                variation.area = variation_config.area
                variation.gender = variation_config.gender
                variation.price = variation_config.price
                variation.sale_limit = variation_config.limit
                variation.position = v_position

        # Reglas de lista
        rules_result = await db.execute(select(GuestListRule).where(GuestListRule.event_id == event_id))
        existing_rules = {r.id: r for r in rules_result.scalars().all()}
        for rule_config in config.rules:
            rule = existing_rules.get(rule_config.id)
            if rule is None:
                rule = GuestListRule(id=rule_config.id or uuid.uuid4(), event_id=event_id)
                db.add(rule)
                existing_rules[rule.id] = rule
            rule.benefit_type = rule_config.benefit_type
            rule.gender_scope = rule_config.gender_scope
            rule.area = rule_config.area
            rule.value = rule_config.value
            rule.deadline = rule_config.deadline

        # Staff y cupos por regla
        staff_result = await db.execute(select(StaffAssignment).where(StaffAssignment.event_id == event_id))
        existing_staff = {s.staff_id: s for s in staff_result.scalars().all()}
        limits_result = await db.execute(select(PromoterRuleLimit).where(PromoterRuleLimit.event_id == event_id))
        existing_limits = {(l.staff_id, l.rule_id): l for l in limits_result.scalars().all()}

        listed = set()
        for staff_config in config.staff:
            listed.add(staff_config.staff_id)
            assignment = existing_staff.get(staff_config.staff_id)
            if assignment is None:
                assignment = StaffAssignment(
                    id=uuid.uuid4(),
                    event_id=event_id,
                    staff_id=staff_config.staff_id,
                    complimentary_issued=0,
                )
                db.add(assignment)
            assignment.email = staff_config.email
            assignment.role = staff_config.role
            assignment.status = staff_config.status
            assignment.vip_quota = staff_config.vip_quota

            for rule_id, nomination_limit in staff_config.rule_limits.items():
                if rule_id not in existing_rules:
                    raise RuleNotFoundError(rule_id=str(rule_id))
                limit = existing_limits.get((staff_config.staff_id, rule_id))
                if limit is None:
                    limit = PromoterRuleLimit(
                        id=uuid.uuid4(),
                        event_id=event_id,
                        staff_id=staff_config.staff_id,
                        rule_id=rule_id,
                        nominations_used=0,
                    )
                    db.add(limit)
                limit.nomination_limit = nomination_limit

        for staff_id, assignment in existing_staff.items():
            if staff_id not in listed and assignment.status != "REJECTED":
                assignment.status = "REJECTED"
                logger.info(f"Staff {staff_id} removido del evento {event_id}")

        await db.commit()
