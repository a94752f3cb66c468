"""
Tests for variation inventory: reservation, release and reconciliation.

Run with: pytest tests/test_inventory.py -v
"""
import asyncio
import uuid

import pytest
from sqlalchemy import select, update

from shared.auth.context import actor_scope
from shared.database.models import AuditLog, StaffAssignment, TicketVariation
from shared.utils.errors import (
    EventNotFoundError, OversoldError, SaleWindowClosedError, VariationNotFoundError,
)
from services.ticketing.models.ticket import IssueTicketRequest
from services.ticketing.services.inventory_service import InventoryService
from services.ticketing.services.ticket_service import TicketService
from services.ticketing.tasks.maintenance_tasks import reconcile_all_events
from conftest import ADMIN, PROMOTER


def purchase(variation_id) -> IssueTicketRequest:
    return IssueTicketRequest(source="purchase", variation_id=variation_id)


async def sold_count(database, variation_id) -> int:
    async with database.session() as session:
        variation = await session.get(TicketVariation, variation_id)
        return variation.sold_count


class TestReserve:
    """Tests for InventoryService.reserve."""

    async def test_concurrent_issues_never_exceed_limit(self, database, audit, seeded):
        """25 concurrent purchases against a limit of 20 yield exactly 20 tickets."""
        service = TicketService(audit=audit)

        async def issue_one():
            async with database.session() as session:
                return await service.issue(session, seeded.event_id, purchase(seeded.vip_female_id))

        with actor_scope(ADMIN):
            results = await asyncio.gather(*(issue_one() for _ in range(25)), return_exceptions=True)

        issued = [r for r in results if not isinstance(r, BaseException)]
        oversold = [r for r in results if isinstance(r, OversoldError)]
        assert len(issued) == 20
        assert len(oversold) == 5
        assert await sold_count(database, seeded.vip_female_id) == 20

        async with database.session() as session:
            sold = await InventoryService.current_sold(session, seeded.event_id)
        assert sold[seeded.vip_female_id] == 20

    async def test_oversold_carries_variation_details(self, database, seeded):
        """The rejection names the exhausted variation and its limit."""
        async with database.session() as session:
            await session.execute(
                update(TicketVariation)
                .where(TicketVariation.id == seeded.vip_female_id)
                .values(sold_count=20)
            )
            await session.commit()

            with pytest.raises(OversoldError) as exc_info:
                await InventoryService.reserve(session, seeded.vip_female_id, event_id=seeded.event_id)

        assert exc_info.value.details["limit"] == 20
        assert exc_info.value.details["area"] == "VIP"
        assert exc_info.value.details["batch"] == "Pré-venda"

    async def test_closed_batch_rejects_sale(self, db, seeded):
        """A batch past its sale_ends_at refuses new reservations."""
        with pytest.raises(SaleWindowClosedError):
            await InventoryService.reserve(db, seeded.closed_variation_id, event_id=seeded.event_id)

    async def test_variation_of_another_event_is_not_found(self, db, seeded):
        """A variation id is only valid within its own event."""
        with pytest.raises(VariationNotFoundError):
            await InventoryService.reserve(db, seeded.vip_female_id, event_id=seeded.other_event_id)

    async def test_unknown_variation_is_not_found(self, db, seeded):
        """An id that matches nothing raises VariationNotFound."""
        with pytest.raises(VariationNotFoundError):
            await InventoryService.reserve(db, uuid.uuid4())


class TestAvailability:
    """Tests for the derived availability view."""

    async def test_availability_counts_non_cancelled_tickets(self, database, audit, seeded):
        """Cancelled tickets free their unit in the availability view."""
        service = TicketService(audit=audit)
        with actor_scope(ADMIN):
            async with database.session() as session:
                first = await service.issue(session, seeded.event_id, purchase(seeded.pista_id))
                await service.issue(session, seeded.event_id, purchase(seeded.pista_id))
                await service.cancel(session, first.id)

        async with database.session() as session:
            availability = await InventoryService.availability(session, seeded.event_id)

        pista = next(v for v in availability["variations"] if v["variation_id"] == seeded.pista_id)
        assert pista["sold"] == 1
        assert pista["remaining"] == 99
        assert availability["total_sold"] == 1
        assert availability["capacity"] == 500

    async def test_availability_reports_closed_batches(self, db, seeded):
        """Variations of a closed batch are flagged as not on sale."""
        availability = await InventoryService.availability(db, seeded.event_id)

        closed = next(v for v in availability["variations"] if v["variation_id"] == seeded.closed_variation_id)
        assert closed["sale_open"] is False
        assert closed["sold"] == 0

    async def test_unknown_event(self, db):
        """Availability of a missing event is EventNotFound."""
        with pytest.raises(EventNotFoundError):
            await InventoryService.availability(db, uuid.uuid4())


class TestReconcile:
    """Tests for counter reconciliation."""

    async def test_reconcile_repairs_drifted_counter(self, database, audit, seeded):
        """A drifted sold_count is reset to the ticket count and reported."""
        service = TicketService(audit=audit)
        with actor_scope(ADMIN):
            async with database.session() as session:
                await service.issue(session, seeded.event_id, purchase(seeded.pista_id))

        async with database.session() as session:
            await session.execute(
                update(TicketVariation).where(TicketVariation.id == seeded.pista_id).values(sold_count=7)
            )
            await session.commit()

            corrections = await InventoryService.reconcile(session, seeded.event_id)

        assert {"kind": "variation", "id": str(seeded.pista_id), "cached": 7, "actual": 1} in corrections
        assert await sold_count(database, seeded.pista_id) == 1

    async def test_reconcile_without_drift_reports_nothing(self, db, seeded):
        """Consistent counters produce no corrections."""
        assert await InventoryService.reconcile(db, seeded.event_id) == []

        result = await db.execute(select(TicketVariation.sold_count).where(TicketVariation.event_id == seeded.event_id))
        assert set(result.scalars().all()) == {0}

    async def test_periodic_reconcile_fixes_promoter_counter(self, database, seeded):
        """The scheduled job repairs promoter counters across events and audits the fix."""
        async with database.session() as session:
            await session.execute(
                update(StaffAssignment)
                .where(StaffAssignment.event_id == seeded.event_id, StaffAssignment.staff_id == PROMOTER.user_id)
                .values(complimentary_issued=5)
            )
            await session.commit()

        assert await reconcile_all_events(database) == 1

        async with database.session() as session:
            issued = (await session.execute(
                select(StaffAssignment.complimentary_issued).where(
                    StaffAssignment.event_id == seeded.event_id,
                    StaffAssignment.staff_id == PROMOTER.user_id,
                )
            )).scalar_one()
            logs = (await session.execute(
                select(AuditLog).where(AuditLog.action == "INVENTORY_RECONCILE")
            )).scalars().all()
        assert issued == 0
        assert len(logs) == 1
        assert logs[0].performed_by_id == "system:inventory-reconcile"
