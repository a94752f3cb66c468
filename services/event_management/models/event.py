"""Modelos Pydantic para configuración de eventos"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict
from datetime import datetime
from decimal import Decimal
from uuid import UUID
import re

BENEFIT_TYPES = ("VIP", "DISCOUNT", "CONSUMPTION")
GENDER_SCOPES = ("M", "F", "Unisex")
STAFF_STATUSES = ("PENDING", "CONFIRMED", "REJECTED")

_DEADLINE_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ==================== CONFIGURACIÓN (entrada del sync) ====================

class VariationConfig(BaseModel):
    id: Optional[UUID] = None
    area: str
    gender: str
    price: Decimal = Decimal("0")
    limit: int = Field(..., ge=0)


class BatchConfig(BaseModel):
    id: Optional[UUID] = None
    name: str
    sale_ends_at: Optional[datetime] = None
    variations: List[VariationConfig] = []


class RuleConfig(BaseModel):
    id: Optional[UUID] = None
    benefit_type: str
    gender_scope: str = "Unisex"
    area: str
    value: Decimal = Decimal("0")
    deadline: Optional[str] = None  # "HH:MM" o null = noche completa

    @field_validator("benefit_type")
    @classmethod
    def validate_benefit_type(cls, v: str) -> str:
        v = v.upper()
        if v not in BENEFIT_TYPES:
            raise ValueError(f"benefit_type debe ser uno de {BENEFIT_TYPES}")
        return v

    @field_validator("gender_scope")
    @classmethod
    def validate_gender_scope(cls, v: str) -> str:
        if v.upper() in ("U", "UNISEX"):
            return "Unisex"
        v = v.upper()
        if v not in ("M", "F"):
            raise ValueError("gender_scope debe ser M, F o Unisex")
        return v

    @field_validator("deadline")
    @classmethod
    def validate_deadline(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not _DEADLINE_RE.match(v):
            raise ValueError("deadline debe tener formato HH:MM")
        return v


class StaffConfig(BaseModel):
    staff_id: str
    email: Optional[str] = None
    role: str
    status: str = "CONFIRMED"
    vip_quota: Optional[int] = Field(None, ge=0)  # None = sin cuota
    rule_limits: Dict[UUID, int] = {}  # rule_id -> cupo de nombres

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        v = v.upper()
        if v not in STAFF_STATUSES:
            raise ValueError(f"status debe ser uno de {STAFF_STATUSES}")
        return v


class EventConfig(BaseModel):
    """Configuración completa del evento enviada por el sistema de administración"""
    name: str
    capacity: int = Field(0, ge=0)
    starts_at: Optional[datetime] = None
    transfers_enabled: bool = True
    batches: List[BatchConfig] = []
    rules: List[RuleConfig] = []
    staff: List[StaffConfig] = []


# ==================== SNAPSHOT (lectura, cacheable) ====================

class VariationSnapshot(BaseModel):
    id: UUID
    batch_id: UUID
    area: str
    gender: str
    price: float
    limit: int


class BatchSnapshot(BaseModel):
    id: UUID
    name: str
    sale_ends_at: Optional[datetime] = None
    variations: List[VariationSnapshot] = []


class RuleSnapshot(BaseModel):
    id: UUID
    benefit_type: str
    gender_scope: str
    area: str
    value: float
    deadline: Optional[str] = None


class StaffSnapshot(BaseModel):
    staff_id: str
    email: Optional[str] = None
    role: str
    status: str
    vip_quota: Optional[int] = None
    rule_limits: Dict[str, int] = {}


class EventSnapshot(BaseModel):
    id: UUID
    name: str
    capacity: int
    starts_at: Optional[datetime] = None
    transfers_enabled: bool = True
    batches: List[BatchSnapshot] = []
    rules: List[RuleSnapshot] = []
    staff: List[StaffSnapshot] = []

    def find_variation(self, variation_id: UUID):
        """(batch, variation) o None si la variación no es de este evento"""
        for batch in self.batches:
            for variation in batch.variations:
                if variation.id == variation_id:
                    return batch, variation
        return None

    def find_rule(self, rule_id: UUID) -> Optional[RuleSnapshot]:
        return next((r for r in self.rules if r.id == rule_id), None)

    def find_staff(self, staff_id: str) -> Optional[StaffSnapshot]:
        return next((s for s in self.staff if s.staff_id == staff_id), None)
