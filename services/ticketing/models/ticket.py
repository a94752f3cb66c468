"""Modelos Pydantic para tickets y transferencias"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID

from shared.database.models import TICKET_SOURCES, SOURCE_COMPLIMENTARY
from shared.utils.redemption import build_auth_token


class IssueTicketRequest(BaseModel):
    """Emisión de un ticket. El promoter de una cortesía es siempre el actor autenticado."""
    source: str = SOURCE_COMPLIMENTARY
    variation_id: Optional[UUID] = None
    user_id: Optional[str] = None  # Envío directo a la billetera de un miembro
    guest_name: Optional[str] = None
    guest_document: Optional[str] = None

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str) -> str:
        v = v.lower()
        if v not in TICKET_SOURCES:
            raise ValueError(f"source debe ser uno de {TICKET_SOURCES}")
        return v


class ClaimOwnershipRequest(BaseModel):
    name: str = Field(..., min_length=3)
    document: str = Field(..., min_length=1)


class TokenRequest(BaseModel):
    """Texto escaneado del QR (VANTA_AUTH:<hash>)"""
    token: str


class TransferRequest(BaseModel):
    receiver_id: str


class TransferResponseRequest(BaseModel):
    action: str  # accept | return

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: str) -> str:
        v = v.lower()
        if v not in ("accept", "return"):
            raise ValueError("action debe ser accept o return")
        return v


class TicketResponse(BaseModel):
    id: UUID
    event_id: UUID
    variation_id: Optional[UUID] = None
    user_id: Optional[str] = None
    status: str
    source: str
    hash: str
    promoter_id: Optional[str] = None
    guest_name: Optional[str] = None
    guest_document: Optional[str] = None
    issued_at: Optional[datetime] = None
    used_at: Optional[datetime] = None
    redeemed_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class IssuedTicketResponse(TicketResponse):
    """Ticket + texto del QR para entregar al titular"""
    auth_token: str = ""

    @classmethod
    def from_ticket(cls, ticket) -> "IssuedTicketResponse":
        response = cls.model_validate(ticket)
        response.auth_token = build_auth_token(ticket.hash)
        return response


class ValidationResponse(BaseModel):
    """Resultado de validación/escaneo en puerta (solo datos del ticket escaneado)"""
    valid: bool = True
    redeemed: bool = False
    ticket_id: UUID
    status: str
    source: str
    guest_name: Optional[str] = None
    variation_id: Optional[UUID] = None
    used_at: Optional[datetime] = None

    @classmethod
    def from_ticket(cls, ticket, redeemed: bool = False) -> "ValidationResponse":
        return cls(
            redeemed=redeemed,
            ticket_id=ticket.id,
            status=ticket.status,
            source=ticket.source,
            guest_name=ticket.guest_name,
            variation_id=ticket.variation_id,
            used_at=ticket.used_at,
        )


class TransferResponse(BaseModel):
    id: UUID
    ticket_id: UUID
    sender_id: str
    receiver_id: str
    status: str
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class VariationAvailability(BaseModel):
    variation_id: UUID
    batch_id: UUID
    batch_name: str
    area: str
    gender: str
    price: float
    limit: int
    sold: int
    remaining: int
    sale_open: bool


class InventoryResponse(BaseModel):
    event_id: UUID
    capacity: int
    total_sold: int
    variations: List[VariationAvailability] = []


class ReconcileResponse(BaseModel):
    event_id: UUID
    corrections: List[Dict[str, Any]] = []
