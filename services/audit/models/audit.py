"""Modelos Pydantic para auditoría"""
from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime
from uuid import UUID


class AuditLogResponse(BaseModel):
    id: UUID
    event_id: Optional[UUID] = None
    action: str
    category: str
    outcome: str
    performed_by_id: str
    performed_by_label: Optional[str] = None
    target_id: Optional[str] = None
    details: Dict[str, Any] = {}
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
