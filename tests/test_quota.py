"""
Tests for complimentary quotas per promoter and per document.

Run with: pytest tests/test_quota.py -v
"""
import asyncio

import pytest
from sqlalchemy import select

from shared.auth.context import actor_scope
from shared.database.models import DocumentAllowance, StaffAssignment
from shared.utils.errors import (
    DocumentLimitExceededError, NotAuthorizedError, QuotaExceededError,
)
from services.ticketing.models.ticket import IssueTicketRequest
from services.ticketing.services.quota_service import QuotaService
from services.ticketing.services.ticket_service import TicketService
from conftest import ADMIN, PRODUCER, PROMOTER


def courtesy(document=None, name=None, variation_id=None) -> IssueTicketRequest:
    return IssueTicketRequest(
        source="complimentary", guest_document=document, guest_name=name, variation_id=variation_id
    )


async def issued_by(database, event_id, staff_id) -> int:
    async with database.session() as session:
        result = await session.execute(
            select(StaffAssignment.complimentary_issued).where(
                StaffAssignment.event_id == event_id,
                StaffAssignment.staff_id == staff_id,
            )
        )
        return result.scalar_one()


class TestDocumentLimit:
    """Tests for the per-document complimentary cap."""

    async def test_third_courtesy_for_same_document_is_rejected(self, database, audit, seeded):
        """The cap is two complimentary tickets per document per event."""
        service = TicketService(audit=audit)
        with actor_scope(ADMIN):
            async with database.session() as session:
                await service.issue(session, seeded.event_id, courtesy("123.456.789-00", "Ana Souza"))
                await service.issue(session, seeded.event_id, courtesy("12345678900", "Ana Souza"))

                with pytest.raises(DocumentLimitExceededError) as exc_info:
                    await service.issue(session, seeded.event_id, courtesy("123 456 789 00", "Ana Souza"))

        assert exc_info.value.details == {"limit": 2}

    async def test_cap_is_per_event(self, database, audit, seeded):
        """The same document can still receive courtesies for another event."""
        service = TicketService(audit=audit)
        with actor_scope(ADMIN):
            async with database.session() as session:
                for _ in range(2):
                    await service.issue(session, seeded.event_id, courtesy("11122233344"))
                ticket = await service.issue(session, seeded.other_event_id, courtesy("11122233344"))

        assert ticket.guest_document == "11122233344"

    async def test_concurrent_claims_respect_cap(self, database, audit, seeded):
        """Three simultaneous courtesies for one document produce exactly two tickets."""
        service = TicketService(audit=audit)

        async def issue_one():
            async with database.session() as session:
                return await service.issue(session, seeded.event_id, courtesy("99988877766"))

        with actor_scope(ADMIN):
            results = await asyncio.gather(*(issue_one() for _ in range(3)), return_exceptions=True)

        assert sum(1 for r in results if isinstance(r, DocumentLimitExceededError)) == 1
        async with database.session() as session:
            assert await QuotaService.document_count(session, seeded.event_id, "99988877766") == 2
            allowance = await session.get(DocumentAllowance, (seeded.event_id, "99988877766"))
            assert allowance.used == 2

    async def test_check_document_limit_is_advisory(self, database, audit, seeded):
        """check_document_limit counts tickets without consuming a slot."""
        service = TicketService(audit=audit)
        with actor_scope(ADMIN):
            async with database.session() as session:
                await service.issue(session, seeded.event_id, courtesy("55566677788"))
                assert await QuotaService.check_document_limit(session, seeded.event_id, "55566677788") == 1
                await service.issue(session, seeded.event_id, courtesy("55566677788"))

                with pytest.raises(DocumentLimitExceededError):
                    await QuotaService.check_document_limit(session, seeded.event_id, "55566677788")


class TestPromoterQuota:
    """Tests for the promoter complimentary quota."""

    async def test_fourth_courtesy_exceeds_quota(self, database, audit, seeded):
        """A promoter with vip_quota 3 cannot issue a fourth courtesy."""
        service = TicketService(audit=audit)
        with actor_scope(PROMOTER):
            async with database.session() as session:
                for _ in range(3):
                    await service.issue(session, seeded.event_id, courtesy(variation_id=seeded.vip_female_id))

                with pytest.raises(QuotaExceededError) as exc_info:
                    await service.issue(session, seeded.event_id, courtesy(variation_id=seeded.vip_female_id))

        assert exc_info.value.details == {"quota": 3, "issued": 3}
        assert await issued_by(database, seeded.event_id, PROMOTER.user_id) == 3

    async def test_courtesy_is_attributed_to_authenticated_promoter(self, database, audit, seeded):
        """The ticket's promoter is always the actor issuing it."""
        service = TicketService(audit=audit)
        with actor_scope(PROMOTER):
            async with database.session() as session:
                ticket = await service.issue(session, seeded.event_id, courtesy())

        assert ticket.promoter_id == PROMOTER.user_id
        assert ticket.source == "complimentary"

    async def test_promoter_without_assignment_has_no_quota(self, database, audit, seeded):
        """A promoter not staffed on the event gets quota zero."""
        service = TicketService(audit=audit)
        with actor_scope(PROMOTER):
            async with database.session() as session:
                with pytest.raises(QuotaExceededError) as exc_info:
                    await service.issue(session, seeded.other_event_id, courtesy())

        assert exc_info.value.details["quota"] == 0

    async def test_promoter_cannot_issue_purchases(self, database, audit, seeded):
        """Promoters only issue complimentary tickets."""
        service = TicketService(audit=audit)
        with actor_scope(PROMOTER):
            async with database.session() as session:
                with pytest.raises(NotAuthorizedError):
                    await service.issue(
                        session,
                        seeded.event_id,
                        IssueTicketRequest(source="purchase", variation_id=seeded.pista_id),
                    )

    async def test_cancellation_returns_quota(self, database, audit, seeded):
        """Cancelling a courtesy lets the promoter issue another one."""
        service = TicketService(audit=audit)
        with actor_scope(PROMOTER):
            async with database.session() as session:
                tickets = [await service.issue(session, seeded.event_id, courtesy()) for _ in range(3)]
                await service.cancel(session, tickets[0].id)

                replacement = await service.issue(session, seeded.event_id, courtesy())

        assert replacement.status == "active"
        assert await issued_by(database, seeded.event_id, PROMOTER.user_id) == 3

    async def test_check_promoter_quota_unlimited(self, db, seeded):
        """An assigned quota of None never rejects."""
        assert await QuotaService.check_promoter_quota(db, seeded.event_id, "producer-1", None) == 0

    async def test_check_promoter_quota_counts_tickets(self, database, audit, seeded):
        """The advisory check counts the promoter's non-cancelled tickets."""
        service = TicketService(audit=audit)
        with actor_scope(PROMOTER):
            async with database.session() as session:
                await service.issue(session, seeded.event_id, courtesy())

                with pytest.raises(QuotaExceededError):
                    await QuotaService.check_promoter_quota(session, seeded.event_id, PROMOTER.user_id, 1)

    async def test_cancelling_uncounted_courtesy_keeps_quota(self, database, audit, seeded):
        """A courtesy issued before the assignment existed never frees a quota slot."""
        service = TicketService(audit=audit)
        with actor_scope(PRODUCER):
            async with database.session() as session:
                early = await service.issue(session, seeded.event_id, courtesy())
                assert early.quota_claimed is False

                session.add(StaffAssignment(
                    event_id=seeded.event_id, staff_id=PRODUCER.user_id, role="vanta_prod",
                    status="CONFIRMED", vip_quota=1,
                ))
                await session.commit()

                counted = await service.issue(session, seeded.event_id, courtesy())
                assert counted.quota_claimed is True
                await service.cancel(session, early.id)

                with pytest.raises(QuotaExceededError):
                    await service.issue(session, seeded.event_id, courtesy())

        assert await issued_by(database, seeded.event_id, PRODUCER.user_id) == 1
