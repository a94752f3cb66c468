"""
Tests for member-to-member ticket transfers.

Run with: pytest tests/test_transfers.py -v
"""
from datetime import timedelta

import pytest
from sqlalchemy import update

from shared.auth.context import ActorContext, actor_scope
from shared.database.models import DocumentAllowance, Event, TicketTransfer
from shared.utils.clock import utcnow
from shared.utils.errors import (
    AlreadyUsedError, CancelledError, InvalidRequestError, NotAuthorizedError, TicketNotFoundError,
    TransferNotAllowedError, TransferPendingError,
)
from services.ticketing.models.ticket import IssueTicketRequest
from services.ticketing.services.ticket_service import TicketService, get_ticket
from services.ticketing.services.transfer_service import TransferService, get_transfer
from services.ticketing.tasks.maintenance_tasks import expire_stale_transfers
from conftest import ADMIN, DOOR, MEMBER, MEMBER_2


@pytest.fixture
def tickets(audit) -> TicketService:
    return TicketService(audit=audit)


@pytest.fixture
def transfers(audit) -> TransferService:
    return TransferService(audit=audit)


@pytest.fixture
async def owned_ticket(database, tickets, seeded):
    """Purchase bound to MEMBER"""
    with actor_scope(ADMIN):
        async with database.session() as session:
            return await tickets.issue(
                session,
                seeded.event_id,
                IssueTicketRequest(source="purchase", variation_id=seeded.pista_id, user_id=MEMBER.user_id),
            )


async def start_transfer(database, transfers, ticket_id, receiver=MEMBER_2):
    with actor_scope(MEMBER):
        async with database.session() as session:
            return await transfers.initiate(session, ticket_id, receiver.user_id)


class TestInitiate:
    """Tests for starting a transfer."""

    async def test_ticket_becomes_transfer_pending(self, database, tickets, transfers, owned_ticket, seeded):
        """A pending transfer blocks validation at the door."""
        transfer = await start_transfer(database, transfers, owned_ticket.id)

        assert transfer.status == "pending"
        assert transfer.sender_id == MEMBER.user_id
        assert transfer.receiver_id == MEMBER_2.user_id

        with actor_scope(ADMIN):
            async with database.session() as session:
                with pytest.raises(TransferPendingError):
                    await tickets.validate(session, owned_ticket.hash, seeded.event_id)

    async def test_only_owner_can_transfer(self, database, transfers, owned_ticket):
        """Another member cannot give away someone else's ticket."""
        with actor_scope(MEMBER_2):
            async with database.session() as session:
                with pytest.raises(NotAuthorizedError):
                    await transfers.initiate(session, owned_ticket.id, "member-3")

    async def test_cannot_transfer_to_self(self, database, transfers, owned_ticket):
        """The receiver must be a different member."""
        with actor_scope(MEMBER):
            async with database.session() as session:
                with pytest.raises(InvalidRequestError):
                    await transfers.initiate(session, owned_ticket.id, MEMBER.user_id)

    async def test_second_transfer_while_pending(self, database, transfers, owned_ticket):
        """A ticket already in transfer cannot be transferred again."""
        await start_transfer(database, transfers, owned_ticket.id)

        with actor_scope(MEMBER):
            async with database.session() as session:
                with pytest.raises(TransferPendingError):
                    await transfers.initiate(session, owned_ticket.id, "member-3")

    async def test_disabled_event_rejects_transfers(self, database, transfers, owned_ticket, seeded):
        """Events with transfers switched off refuse new transfers."""
        async with database.session() as session:
            await session.execute(update(Event).where(Event.id == seeded.event_id).values(transfers_enabled=False))
            await session.commit()

        with actor_scope(MEMBER):
            async with database.session() as session:
                with pytest.raises(TransferNotAllowedError):
                    await transfers.initiate(session, owned_ticket.id, MEMBER_2.user_id)
                assert (await get_ticket(session, owned_ticket.id)).status == "active"

    async def test_used_ticket_cannot_be_transferred(self, database, tickets, transfers, owned_ticket, seeded):
        """After entry the ticket stays used."""
        with actor_scope(DOOR):
            async with database.session() as session:
                await tickets.redeem(session, owned_ticket.id, seeded.event_id)

        with actor_scope(MEMBER):
            async with database.session() as session:
                with pytest.raises(AlreadyUsedError):
                    await transfers.initiate(session, owned_ticket.id, MEMBER_2.user_id)
                assert (await get_ticket(session, owned_ticket.id)).status == "used"

    async def test_cancelled_ticket_cannot_be_transferred(self, database, tickets, transfers, owned_ticket):
        """A cancelled ticket cannot come back through a transfer."""
        with actor_scope(ADMIN):
            async with database.session() as session:
                await tickets.cancel(session, owned_ticket.id)

        with actor_scope(MEMBER):
            async with database.session() as session:
                with pytest.raises(CancelledError):
                    await transfers.initiate(session, owned_ticket.id, MEMBER_2.user_id)
                assert (await get_ticket(session, owned_ticket.id)).status == "cancelled"

    async def test_pending_ticket_cannot_be_redeemed(self, database, tickets, transfers, owned_ticket, seeded):
        """The door refuses a ticket while its transfer is open."""
        await start_transfer(database, transfers, owned_ticket.id)

        with actor_scope(DOOR):
            async with database.session() as session:
                with pytest.raises(TransferPendingError):
                    await tickets.redeem(session, owned_ticket.id, seeded.event_id)
                current = await get_ticket(session, owned_ticket.id)

        assert current.status == "transfer_pending"
        assert current.used_at is None


class TestRespond:
    """Tests for accepting and returning transfers."""

    async def test_accept_moves_ownership_and_reissues_hash(self, database, tickets, transfers, owned_ticket, seeded):
        """The receiver becomes the owner and the sender's QR stops working."""
        transfer = await start_transfer(database, transfers, owned_ticket.id)

        with actor_scope(MEMBER_2):
            async with database.session() as session:
                resolved = await transfers.respond(session, transfer.id, "accept")
                ticket = await get_ticket(session, owned_ticket.id)

        assert resolved.status == "accepted"
        assert ticket.status == "active"
        assert ticket.user_id == MEMBER_2.user_id
        assert ticket.source == "gift"
        assert ticket.hash != owned_ticket.hash

        with actor_scope(ADMIN):
            async with database.session() as session:
                with pytest.raises(TicketNotFoundError):
                    await tickets.validate(session, owned_ticket.hash, seeded.event_id)
                found = await tickets.validate(session, ticket.hash, seeded.event_id)
        assert found.id == owned_ticket.id

    async def test_return_restores_sender(self, database, transfers, owned_ticket):
        """Returning puts the ticket back in the sender's wallet unchanged."""
        transfer = await start_transfer(database, transfers, owned_ticket.id)

        with actor_scope(MEMBER_2):
            async with database.session() as session:
                resolved = await transfers.respond(session, transfer.id, "return")
                ticket = await get_ticket(session, owned_ticket.id)

        assert resolved.status == "returned"
        assert ticket.status == "active"
        assert ticket.user_id == MEMBER.user_id
        assert ticket.hash == owned_ticket.hash

    async def test_only_receiver_can_respond(self, database, transfers, owned_ticket):
        """The sender cannot accept their own transfer."""
        transfer = await start_transfer(database, transfers, owned_ticket.id)

        with actor_scope(MEMBER):
            async with database.session() as session:
                with pytest.raises(NotAuthorizedError):
                    await transfers.respond(session, transfer.id, "accept")

    async def test_resolved_transfer_cannot_be_answered_again(self, database, transfers, owned_ticket):
        """A transfer is resolved exactly once."""
        transfer = await start_transfer(database, transfers, owned_ticket.id)

        with actor_scope(MEMBER_2):
            async with database.session() as session:
                await transfers.respond(session, transfer.id, "return")
                with pytest.raises(TransferNotAllowedError):
                    await transfers.respond(session, transfer.id, "accept")

    async def test_accept_frees_previous_holder_document(self, database, tickets, transfers, seeded):
        """The sender's document stops counting against the courtesy cap."""
        with actor_scope(ADMIN):
            async with database.session() as session:
                courtesy = await tickets.issue(
                    session,
                    seeded.event_id,
                    IssueTicketRequest(user_id=MEMBER.user_id, guest_name="Ana Souza", guest_document="44455566677"),
                )

        transfer = await start_transfer(database, transfers, courtesy.id)
        with actor_scope(MEMBER_2):
            async with database.session() as session:
                await transfers.respond(session, transfer.id, "accept")
                ticket = await get_ticket(session, courtesy.id)
                allowance = await session.get(DocumentAllowance, (seeded.event_id, "44455566677"))

        assert ticket.guest_document is None
        assert ticket.guest_name is None
        assert allowance.used == 0


class TestExpiry:
    """Tests for stale transfer expiry."""

    async def test_stale_transfer_returns_to_sender(self, database, transfers, owned_ticket):
        """Transfers older than the window expire and the ticket is active again."""
        transfer = await start_transfer(database, transfers, owned_ticket.id)
        async with database.session() as session:
            await session.execute(
                update(TicketTransfer)
                .where(TicketTransfer.id == transfer.id)
                .values(created_at=utcnow() - timedelta(hours=3))
            )
            await session.commit()

        with actor_scope(ActorContext.system("test")):
            async with database.session() as session:
                expired = await transfers.expire_stale(session, older_than=timedelta(hours=1))
                ticket = await get_ticket(session, owned_ticket.id)
                resolved = await get_transfer(session, transfer.id)

        assert expired == 1
        assert ticket.status == "active"
        assert ticket.user_id == MEMBER.user_id
        assert resolved.status == "expired"

    async def test_recent_transfer_is_kept(self, database, owned_ticket, transfers):
        """The periodic job leaves transfers inside the window alone."""
        transfer = await start_transfer(database, transfers, owned_ticket.id)

        assert await expire_stale_transfers(database, older_than=timedelta(hours=1)) == 0

        async with database.session() as session:
            assert (await get_transfer(session, transfer.id)).status == "pending"

    async def test_cancel_closes_pending_transfer(self, database, tickets, transfers, owned_ticket):
        """Cancelling a ticket in transfer also cancels the transfer."""
        transfer = await start_transfer(database, transfers, owned_ticket.id)

        with actor_scope(ADMIN):
            async with database.session() as session:
                cancelled = await tickets.cancel(session, owned_ticket.id)
                resolved = await get_transfer(session, transfer.id)

        assert cancelled.status == "cancelled"
        assert resolved.status == "cancelled"
