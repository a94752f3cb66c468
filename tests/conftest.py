"""Pytest configuration and shared fixtures."""
import os

# Antes de importar shared.*: Settings y el limiter se leen al importar
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["SUPABASE_URL"] = ""
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["REDEMPTION_SECRET"] = "test-redemption-secret"
os.environ["LOG_LEVEL"] = "WARNING"

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from shared.auth.context import ActorContext, actor_scope
from shared.auth.jwt_handler import create_access_token
from shared.cache.redis_client import CacheClient
from shared.database.connection import Database
from services.audit.services.audit_service import AuditService
from services.event_management.models.event import (
    BatchConfig, EventConfig, RuleConfig, StaffConfig, VariationConfig,
)
from services.event_management.services.event_service import EventService


ADMIN = ActorContext(user_id="admin-1", email="admin@vanta.club", role="vanta_master")
PRODUCER = ActorContext(user_id="producer-1", email="prod@vanta.club", role="vanta_prod")
PROMOTER = ActorContext(user_id="promoter-1", email="p1@vanta.club", role="vanta_promoter")
PROMOTER_2 = ActorContext(user_id="promoter-2", email="p2@vanta.club", role="promoter")
DOOR = ActorContext(user_id="door-1", email="door@vanta.club", role="portaria")
MEMBER = ActorContext(user_id="member-1", email="m1@vanta.club", role="user")
MEMBER_2 = ActorContext(user_id="member-2", email="m2@vanta.club", role="user")


@dataclass
class SeededEvent:
    event_id: uuid.UUID
    other_event_id: uuid.UUID
    batch_id: uuid.UUID
    vip_female_id: uuid.UUID  # limit 20
    pista_id: uuid.UUID  # limit 100
    closed_variation_id: uuid.UUID  # lote con venta cerrada
    vip_rule_id: uuid.UUID  # deadline 22:00
    open_rule_id: uuid.UUID  # noche toda


def token_for(actor: ActorContext) -> str:
    return create_access_token({"sub": actor.user_id, "email": actor.email, "role": actor.role})


def auth_headers(actor: ActorContext) -> dict:
    return {"Authorization": f"Bearer {token_for(actor)}"}


@pytest.fixture
async def database(tmp_path):
    database = Database(f"sqlite:///{tmp_path}/vanta.db")
    await database.connect()
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
async def db(database):
    async with database.session() as session:
        yield session


@pytest.fixture
def audit(database) -> AuditService:
    return AuditService(database, initial_delay=0)


@pytest.fixture
async def seeded(database, audit) -> SeededEvent:
    event_id = uuid.uuid4()
    other_event_id = uuid.uuid4()
    batch_id = uuid.uuid4()
    vip_female_id = uuid.uuid4()
    pista_id = uuid.uuid4()
    closed_variation_id = uuid.uuid4()
    vip_rule_id = uuid.uuid4()
    open_rule_id = uuid.uuid4()

    config = EventConfig(
        name="Noite Vanta",
        capacity=500,
        starts_at=datetime.now(timezone.utc) + timedelta(days=2),
        batches=[
            BatchConfig(
                id=batch_id,
                name="Pré-venda",
                variations=[
                    VariationConfig(id=vip_female_id, area="VIP", gender="Feminino", price=Decimal("80"), limit=20),
                    VariationConfig(id=pista_id, area="Pista", gender="Unisex", price=Decimal("50"), limit=100),
                ],
            ),
            BatchConfig(
                name="Lote Relâmpago",
                sale_ends_at=datetime.now(timezone.utc) - timedelta(hours=1),
                variations=[
                    VariationConfig(id=closed_variation_id, area="Pista", gender="Unisex", limit=10),
                ],
            ),
        ],
        rules=[
            RuleConfig(id=vip_rule_id, benefit_type="VIP", gender_scope="F", area="Pista", value=Decimal("0"), deadline="22:00"),
            RuleConfig(id=open_rule_id, benefit_type="DISCOUNT", gender_scope="Unisex", area="Pista", value=Decimal("30")),
        ],
        staff=[
            StaffConfig(
                staff_id=PROMOTER.user_id,
                email=PROMOTER.email,
                role="promoter",
                vip_quota=3,
                rule_limits={vip_rule_id: 5},
            ),
            StaffConfig(staff_id=PROMOTER_2.user_id, email=PROMOTER_2.email, role="promoter", vip_quota=10),
            StaffConfig(staff_id=DOOR.user_id, email=DOOR.email, role="portaria"),
        ],
    )

    service = EventService(audit=audit)
    with actor_scope(ADMIN):
        async with database.session() as session:
            await service.sync_event(session, event_id, config)
            await service.sync_event(session, other_event_id, EventConfig(name="Outra Noite", capacity=100))

    return SeededEvent(
        event_id=event_id,
        other_event_id=other_event_id,
        batch_id=batch_id,
        vip_female_id=vip_female_id,
        pista_id=pista_id,
        closed_variation_id=closed_variation_id,
        vip_rule_id=vip_rule_id,
        open_rule_id=open_rule_id,
    )


@pytest.fixture
async def client(database, audit):
    from main import app

    app.state.db = database
    app.state.cache = CacheClient("")
    app.state.audit = audit
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
