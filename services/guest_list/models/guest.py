"""Modelos Pydantic para listas de invitados"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime
from uuid import UUID


class AddGuestsRequest(BaseModel):
    rule_id: UUID
    names: List[str] = Field(..., min_length=1, max_length=500)
    notify_on_arrival: bool = False


class PriorityRequest(BaseModel):
    notify_on_arrival: bool


class GuestEntryResponse(BaseModel):
    id: UUID
    event_id: UUID
    rule_id: UUID
    name: str
    user_id: Optional[str] = None
    added_by: str
    checked_in: bool
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None
    notify_on_arrival: bool = False

    model_config = ConfigDict(from_attributes=True)


class RuleStat(BaseModel):
    rule_id: UUID
    label: str
    total: int
    checked_in: int


class PromoterPerformance(BaseModel):
    added_by: str
    total: int
    checked_in: int
    efficiency: float


class GuestReportResponse(BaseModel):
    event_id: UUID
    total_guests: int
    checked_in_count: int
    occupancy: float
    rule_stats: List[RuleStat] = []
    promoter_ranking: List[PromoterPerformance] = []


class RuleTimelineEntry(BaseModel):
    id: UUID
    label: str
    benefit_type: str
    gender_scope: str
    area: str
    value: float
    deadline: Optional[str] = None
    status: str
