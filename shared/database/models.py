"""Modelos SQLAlchemy del control de acceso"""
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, JSON, Uuid,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


# Estados y orígenes de ticket
TICKET_ACTIVE = "active"
TICKET_USED = "used"
TICKET_CANCELLED = "cancelled"
TICKET_TRANSFER_PENDING = "transfer_pending"

SOURCE_PURCHASE = "purchase"
SOURCE_BENEFIT = "benefit"
SOURCE_GIFT = "gift"
SOURCE_COMPLIMENTARY = "complimentary"
TICKET_SOURCES = (SOURCE_PURCHASE, SOURCE_BENEFIT, SOURCE_GIFT, SOURCE_COMPLIMENTARY)

TRANSFER_PENDING = "pending"
TRANSFER_ACCEPTED = "accepted"
TRANSFER_RETURNED = "returned"
TRANSFER_EXPIRED = "expired"
TRANSFER_CANCELLED = "cancelled"


class Event(Base):
    """Configuración del evento. La administra el sistema externo (sync)."""
    __tablename__ = "events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    capacity = Column(Integer, nullable=False, server_default="0")
    starts_at = Column(DateTime(timezone=True), nullable=True)
    transfers_enabled = Column(Boolean, nullable=False, server_default="true", default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    batches = relationship("TicketBatch", back_populates="event", order_by="TicketBatch.position")
    rules = relationship("GuestListRule", back_populates="event")
    staff = relationship("StaffAssignment", back_populates="event")


class TicketBatch(Base):
    __tablename__ = "ticket_batches"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    sale_ends_at = Column(DateTime(timezone=True), nullable=True)  # NULL = sin cierre
    position = Column(Integer, nullable=False, server_default="0", default=0)

    # Relaciones
    event = relationship("Event", back_populates="batches")
    variations = relationship("TicketVariation", back_populates="batch", order_by="TicketVariation.position")


class TicketVariation(Base):
    """Unidad vendible (área + género + precio) con límite propio"""
    __tablename__ = "ticket_variations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    batch_id = Column(Uuid(as_uuid=True), ForeignKey("ticket_batches.id"), nullable=False, index=True)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    area = Column(String, nullable=False)
    gender = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False, server_default="0")
    sale_limit = Column(Integer, nullable=False)
    # Contador co-actualizado en la misma transacción que emite/cancela tickets
    sold_count = Column(Integer, nullable=False, server_default="0", default=0)
    position = Column(Integer, nullable=False, server_default="0", default=0)

    # Relaciones
    batch = relationship("TicketBatch", back_populates="variations")

    __table_args__ = (
        CheckConstraint("sold_count >= 0", name="check_sold_count_non_negative"),
    )


class GuestListRule(Base):
    __tablename__ = "guest_list_rules"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    benefit_type = Column(String, nullable=False)  # VIP, DISCOUNT, CONSUMPTION
    gender_scope = Column(String, nullable=False, server_default="Unisex")  # M, F, Unisex
    area = Column(String, nullable=False)
    value = Column(Numeric(12, 2), nullable=False, server_default="0")
    deadline = Column(String(5), nullable=True)  # "HH:MM", NULL = noche completa

    # Relaciones
    event = relationship("Event", back_populates="rules")


class StaffAssignment(Base):
    __tablename__ = "staff_assignments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False)
    staff_id = Column(String, nullable=False)
    email = Column(String, nullable=True)
    role = Column(String, nullable=False)
    status = Column(String, nullable=False, server_default="PENDING")  # PENDING, CONFIRMED, REJECTED
    vip_quota = Column(Integer, nullable=True)  # NULL = sin cuota de cortesías
    # Cortesías no canceladas emitidas por este promoter
    complimentary_issued = Column(Integer, nullable=False, server_default="0", default=0)

    # Relaciones
    event = relationship("Event", back_populates="staff")

    __table_args__ = (
        UniqueConstraint("event_id", "staff_id", name="uq_staff_assignment_event_staff"),
    )


class PromoterRuleLimit(Base):
    """Cupo de nombres por promoter y regla de lista"""
    __tablename__ = "promoter_rule_limits"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False)
    staff_id = Column(String, nullable=False)
    rule_id = Column(Uuid(as_uuid=True), ForeignKey("guest_list_rules.id"), nullable=False)
    nomination_limit = Column(Integer, nullable=False, server_default="0")
    nominations_used = Column(Integer, nullable=False, server_default="0", default=0)

    __table_args__ = (
        UniqueConstraint("event_id", "staff_id", "rule_id", name="uq_promoter_rule_limit"),
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False)
    variation_id = Column(Uuid(as_uuid=True), ForeignKey("ticket_variations.id"), nullable=True)
    user_id = Column(String, nullable=True, index=True)  # NULL hasta que alguien lo reclame
    status = Column(String, nullable=False, server_default=TICKET_ACTIVE)  # active, used, cancelled, transfer_pending
    source = Column(String, nullable=False)  # purchase, benefit, gift, complimentary
    hash = Column(String, nullable=False)
    promoter_id = Column(String, nullable=True)
    quota_claimed = Column(Boolean, nullable=False, server_default="false", default=False)  # Consumió cupo de vip_quota
    guest_name = Column(String, nullable=True)
    guest_document = Column(String, nullable=True)
    issued_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    redeemed_by = Column(String, nullable=True)  # Staff que registró la entrada
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "hash", name="uq_ticket_event_hash"),
        Index("ix_tickets_event_variation_status", "event_id", "variation_id", "status"),
        Index("ix_tickets_event_promoter_source", "event_id", "promoter_id", "source"),
        Index("ix_tickets_event_document_source", "event_id", "guest_document", "source"),
    )


class DocumentAllowance(Base):
    """Cortesías no canceladas vinculadas a un documento en un evento"""
    __tablename__ = "document_allowances"

    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), primary_key=True)
    document = Column(String, primary_key=True)
    used = Column(Integer, nullable=False, server_default="0", default=0)


class TicketTransfer(Base):
    __tablename__ = "ticket_transfers"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ticket_id = Column(Uuid(as_uuid=True), ForeignKey("tickets.id"), nullable=False, index=True)
    sender_id = Column(String, nullable=False)
    receiver_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, server_default=TRANSFER_PENDING)  # pending, accepted, returned, expired, cancelled
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    # Relaciones
    ticket = relationship("Ticket")


class GuestEntry(Base):
    __tablename__ = "event_guests"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    rule_id = Column(Uuid(as_uuid=True), ForeignKey("guest_list_rules.id"), nullable=False)
    name = Column(String, nullable=False)
    user_id = Column(String, nullable=True)
    added_by = Column(String, nullable=False)  # Email (o id) del staff que nominó
    checked_in = Column(Boolean, nullable=False, server_default="false", default=False)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_by = Column(String, nullable=True)
    notify_on_arrival = Column(Boolean, nullable=False, server_default="false", default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AuditLog(Base):
    """Registro append-only. performed_by_* siempre viene del actor autenticado."""
    __tablename__ = "audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    action = Column(String, nullable=False)
    category = Column(String, nullable=False, server_default="GENERAL")
    outcome = Column(String, nullable=False, server_default="success")  # success, rejected
    performed_by_id = Column(String, nullable=False)
    performed_by_label = Column(String, nullable=True)
    target_id = Column(String, nullable=True)
    details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
