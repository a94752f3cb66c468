"""Listas nominales de invitados: carga por promoter/staff, check-in y reportes"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from datetime import date, datetime
from typing import Dict, List, Optional
from uuid import UUID
import uuid
import logging

from shared.auth.context import get_current_actor
from shared.database.connection import store_errors, transactional
from shared.database.models import GuestEntry, GuestListRule, PromoterRuleLimit
from shared.utils.clock import event_now, utcnow
from shared.utils.errors import (
    AccessError, AlreadyCheckedInError, GuestNotFoundError, InvalidRequestError,
    NominationQuotaExceededError, NotAuthorizedError, RuleNotFoundError,
)
from shared.utils.redemption import normalize_name
from services.audit.services.audit_service import CATEGORY_LIST, OUTCOME_REJECTED
from services.event_management.services.event_service import EventService
from services.guest_list.services.rule_timeline import rule_label, rule_status, sort_rules_by_timeline

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3


def clean_names(names: List[str]) -> List[str]:
    """Trim + mayúsculas; se descartan entradas con menos de 3 caracteres"""
    cleaned = [normalize_name(name) for name in names]
    return [name for name in cleaned if len(name) >= MIN_NAME_LENGTH]


async def get_entry(db: AsyncSession, entry_id: UUID) -> GuestEntry:
    stmt = select(GuestEntry).where(GuestEntry.id == entry_id).execution_options(populate_existing=True)
    entry = (await db.execute(stmt)).scalar_one_or_none()
    if entry is None:
        raise GuestNotFoundError(guest_id=str(entry_id))
    return entry


class GuestListService:
    """Nombres en lista por regla; el cupo por regla de cada promoter es atómico por lote"""

    def __init__(self, audit=None, events: Optional[EventService] = None):
        self.audit = audit
        self.events = events or EventService()

    async def _record(self, action, target_id, details, event_id=None, **kwargs):
        if self.audit is not None:
            await self.audit.record(action, CATEGORY_LIST, target_id=target_id, details=details, event_id=event_id, **kwargs)

    async def add_guests(
        self,
        db: AsyncSession,
        event_id: UUID,
        rule_id: UUID,
        names: List[str],
        notify_on_arrival: bool = False,
    ) -> List[GuestEntry]:
        """
        Cargar nombres en la lista de una regla.

        Promoters consumen su cupo para la regla; si el lote completo no cabe
        se rechaza entero con NominationQuotaExceeded.
        """
        try:
            entries = await self._add_guests(db, event_id, rule_id, names, notify_on_arrival)
        except AccessError as e:
            await self._record(
                "GUEST_ADD", rule_id,
                {"requested": len(names), "error": e.code.value, "reason": e.message, **e.details},
                event_id, outcome=OUTCOME_REJECTED,
            )
            raise

        logger.info(f"{len(entries)} nombres agregados a la regla {rule_id}")
        await self._record(
            "GUEST_ADD", rule_id,
            {"count": len(entries), "names": [e.name for e in entries]},
            event_id,
        )
        return entries

    @transactional
    async def _add_guests(
        self,
        db: AsyncSession,
        event_id: UUID,
        rule_id: UUID,
        names: List[str],
        notify_on_arrival: bool,
    ) -> List[GuestEntry]:
        actor = get_current_actor()
        cleaned = clean_names(names)
        if not cleaned:
            raise InvalidRequestError("Ningún nombre válido (mínimo 3 caracteres)")

        rule = (await db.execute(
            select(GuestListRule).where(GuestListRule.id == rule_id, GuestListRule.event_id == event_id)
        )).scalar_one_or_none()
        if rule is None:
            raise RuleNotFoundError(rule_id=str(rule_id))

        if actor.is_promoter:
            requested = len(cleaned)
            result = await db.execute(
                update(PromoterRuleLimit)
                .where(
                    PromoterRuleLimit.event_id == event_id,
                    PromoterRuleLimit.staff_id == actor.user_id,
                    PromoterRuleLimit.rule_id == rule_id,
                    PromoterRuleLimit.nominations_used + requested <= PromoterRuleLimit.nomination_limit,
                )
                .values(nominations_used=PromoterRuleLimit.nominations_used + requested)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                limit = (await db.execute(
                    select(PromoterRuleLimit).where(
                        PromoterRuleLimit.event_id == event_id,
                        PromoterRuleLimit.staff_id == actor.user_id,
                        PromoterRuleLimit.rule_id == rule_id,
                    ).execution_options(populate_existing=True)
                )).scalar_one_or_none()
                remaining = max(limit.nomination_limit - limit.nominations_used, 0) if limit else 0
                raise NominationQuotaExceededError(
                    f"Cupo insuficiente: intentaste agregar {requested} nombres y te quedan {remaining}",
                    requested=requested,
                    remaining=remaining,
                )

        now = utcnow()
        entries = [
            GuestEntry(
                id=uuid.uuid4(),
                event_id=event_id,
                rule_id=rule_id,
                name=name,
                added_by=actor.label,
                checked_in=False,
                notify_on_arrival=notify_on_arrival,
                created_at=now,
            )
            for name in cleaned
        ]
        db.add_all(entries)
        await db.commit()
        return entries

    async def check_in(self, db: AsyncSession, entry_id: UUID, event_id: Optional[UUID] = None) -> GuestEntry:
        """Registrar llegada. Un segundo check-in es AlreadyCheckedIn."""
        try:
            entry = await self._check_in(db, entry_id, event_id)
        except AccessError as e:
            await self._record(
                "GUEST_CHECK_IN", entry_id,
                {"error": e.code.value, "reason": e.message},
                event_id,
                outcome=OUTCOME_REJECTED,
            )
            raise

        await self._record(
            "GUEST_CHECK_IN", entry.id,
            {"name": entry.name, "added_by": entry.added_by, "notify_on_arrival": entry.notify_on_arrival},
            entry.event_id,
        )
        return entry

    @transactional
    async def _check_in(self, db: AsyncSession, entry_id: UUID, event_id: Optional[UUID] = None) -> GuestEntry:
        actor = get_current_actor()
        stmt = update(GuestEntry).where(GuestEntry.id == entry_id, GuestEntry.checked_in.is_(False))
        if event_id is not None:
            stmt = stmt.where(GuestEntry.event_id == event_id)
        result = await db.execute(
            stmt
            .values(checked_in=True, checked_in_at=utcnow(), checked_in_by=actor.label)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            entry = await get_entry(db, entry_id)
            # Un id de otro evento no existe para esta puerta
            if event_id is not None and entry.event_id != event_id:
                raise GuestNotFoundError(guest_id=str(entry_id))
            raise AlreadyCheckedInError(
                checked_in_at=entry.checked_in_at.isoformat() if entry.checked_in_at else None,
                checked_in_by=entry.checked_in_by,
            )
        await db.commit()
        return await get_entry(db, entry_id)

    async def toggle_priority(self, db: AsyncSession, entry_id: UUID, value: bool) -> GuestEntry:
        """Marcar/desmarcar aviso de llegada. Idempotente, gana la última escritura."""
        try:
            entry = await self._toggle_priority(db, entry_id, value)
        except AccessError as e:
            await self._record(
                "GUEST_PRIORITY", entry_id,
                {"error": e.code.value, "reason": e.message, "notify_on_arrival": value},
                outcome=OUTCOME_REJECTED,
            )
            raise

        await self._record("GUEST_PRIORITY", entry.id, {"notify_on_arrival": value}, entry.event_id)
        return entry

    @transactional
    async def _toggle_priority(self, db: AsyncSession, entry_id: UUID, value: bool) -> GuestEntry:
        actor = get_current_actor()
        entry = await get_entry(db, entry_id)
        if actor.is_promoter and entry.added_by != actor.label:
            raise NotAuthorizedError("Solo puedes modificar tus propios nombres")

        await db.execute(
            update(GuestEntry)
            .where(GuestEntry.id == entry_id)
            .values(notify_on_arrival=value)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return await get_entry(db, entry_id)

    async def list_guests(self, db: AsyncSession, event_id: UUID, search: Optional[str] = None) -> List[GuestEntry]:
        """Nombres del evento; promoters ven solo los que ellos cargaron"""
        actor = get_current_actor()
        await self.events.get_event(db, event_id)

        stmt = select(GuestEntry).where(GuestEntry.event_id == event_id)
        if actor.is_promoter:
            stmt = stmt.where(GuestEntry.added_by == actor.label)
        if search:
            stmt = stmt.where(GuestEntry.name.ilike(f"%{search.strip()}%"))
        stmt = stmt.order_by(GuestEntry.name)

        async with store_errors(db):
            result = await db.execute(stmt)
        return list(result.scalars().all())

    async def report(self, db: AsyncSession, event_id: UUID) -> Dict:
        """Balance de la lista: presencias, distribución por regla y ranking de promoters"""
        actor = get_current_actor()
        event = await self.events.get_event(db, event_id)

        async with store_errors(db):
            result = await db.execute(select(GuestEntry).where(GuestEntry.event_id == event_id))
        entries = list(result.scalars().all())

        total = len(entries)
        checked = sum(1 for e in entries if e.checked_in)

        rule_stats = []
        if not actor.is_promoter:
            for rule in event.rules:
                rule_entries = [e for e in entries if e.rule_id == rule.id]
                rule_stats.append({
                    "rule_id": rule.id,
                    "label": rule_label(rule),
                    "total": len(rule_entries),
                    "checked_in": sum(1 for e in rule_entries if e.checked_in),
                })

        by_promoter: Dict[str, Dict] = {}
        for entry in entries:
            stats = by_promoter.setdefault(entry.added_by, {"added_by": entry.added_by, "total": 0, "checked_in": 0})
            stats["total"] += 1
            if entry.checked_in:
                stats["checked_in"] += 1
        ranking = []
        for stats in by_promoter.values():
            stats["efficiency"] = round(stats["checked_in"] / stats["total"] * 100, 1)
            ranking.append(stats)
        ranking.sort(key=lambda s: (-s["checked_in"], -s["efficiency"], s["added_by"]))
        if actor.is_promoter:
            ranking = [s for s in ranking if s["added_by"] == actor.label]

        return {
            "event_id": event_id,
            "total_guests": total,
            "checked_in_count": checked,
            "occupancy": round(checked / total * 100, 1) if total else 0.0,
            "rule_stats": rule_stats,
            "promoter_ranking": ranking,
        }

    async def timeline(
        self,
        db: AsyncSession,
        event_id: UUID,
        now: Optional[datetime] = None,
        event_day: Optional[date] = None,
    ) -> List[Dict]:
        """Reglas del evento ordenadas: activas primero, por horario límite"""
        event = await self.events.get_event(db, event_id)
        now = now or event_now()
        return [
            {
                "id": rule.id,
                "label": rule_label(rule),
                "benefit_type": rule.benefit_type,
                "gender_scope": rule.gender_scope,
                "area": rule.area,
                "value": rule.value,
                "deadline": rule.deadline,
                "status": rule_status(rule, now, event_day),
            }
            for rule in sort_rules_by_timeline(event.rules, now, event_day)
        ]
