"""
Clasificación de reglas de lista por horario límite.

Las reglas se evalúan contra la hora de pared (hora:minuto) del club: una
regla "VIP hasta 23:00" expira a las 23:00 de cualquier día. Cuando el caller
pasa ``event_day`` se compara además la fecha: antes del día del evento la
regla sigue activa y después del día del evento ya expiró.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional

ACTIVE = "ACTIVE"
EXPIRED = "EXPIRED"

END_OF_DAY_MINUTES = 24 * 60

GENDER_LABELS = {"M": "MASCULINO", "F": "FEMININO", "Unisex": "UNISEX"}


def deadline_minutes(deadline: Optional[str]) -> int:
    """Minutos desde medianoche; sin deadline = fin del día"""
    if not deadline:
        return END_OF_DAY_MINUTES
    hours, minutes = deadline.split(":")
    return int(hours) * 60 + int(minutes)


def rule_status(rule, now: datetime, event_day: Optional[date] = None) -> str:
    if not rule.deadline:
        return ACTIVE

    if event_day is not None:
        today = now.date()
        if today < event_day:
            return ACTIVE
        if today > event_day:
            return EXPIRED

    current = now.hour * 60 + now.minute
    return EXPIRED if current >= deadline_minutes(rule.deadline) else ACTIVE


def sort_rules_by_timeline(rules: Iterable, now: datetime, event_day: Optional[date] = None) -> List:
    """Activas primero, luego por deadline ascendente (sin deadline al final). Orden estable."""
    return sorted(
        rules,
        key=lambda rule: (
            rule_status(rule, now, event_day) == EXPIRED,
            deadline_minutes(rule.deadline),
        ),
    )


def format_rule_value(value) -> str:
    """Valor en reales con centavos: 1234.5 -> 'R$ 1.234,50', 50 -> 'R$ 50,00'"""
    amount = Decimal(str(value or 0)).quantize(Decimal("0.01"))
    text = f"{amount:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"R$ {text}"


def rule_label(rule) -> str:
    """Ej: 'VIP FEMININO (PISTA) ATÉ 23:00 R$ 50,00'"""
    parts = [rule.benefit_type.upper(), GENDER_LABELS.get(rule.gender_scope, rule.gender_scope.upper())]
    parts.append(f"({rule.area.upper()})")
    parts.append(f"ATÉ {rule.deadline}" if rule.deadline else "NOITE TODA")
    parts.append(format_rule_value(rule.value))
    return " ".join(parts)
