# negotiator.py
import logging
import uuid
from typing import List

import sqlalchemy
from databases import Database

from slot_swap.auth import fetch_user_summaries
from slot_swap.data_models import SlotStatus, SwapRequest, SwapRequestListing, SwapRequestStatus, utcnow
from slot_swap.database import unit_of_work
from slot_swap.errors import ErrorKind, SwapError
from slot_swap.models import swap_requests
from slot_swap.slot_store import SlotStore

logger = logging.getLogger(__name__)


def row_to_request(row) -> SwapRequest:
    return SwapRequest(
        id=row["id"],
        offered_slot_id=row["offered_slot_id"],
        requested_slot_id=row["requested_slot_id"],
        requester_id=row["requester_id"],
        responder_id=row["responder_id"],
        status=SwapRequestStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SwapNegotiator:
    """
    Creates and resolves swap requests between two users' slots.

    A request moves PENDING -> ACCEPTED | REJECTED exactly once. Its two
    slots move together: SWAPPABLE -> SWAP_PENDING on creation, then to BUSY
    with owners exchanged on accept, or back to SWAPPABLE on reject. Each
    operation reads and writes inside a single unit of work so two racing
    callers can never both couple the same slot or both resolve the same
    request.
    """

    def __init__(self, database: Database, slot_store: SlotStore):
        self.database = database
        self.slot_store = slot_store

    async def create_request(self, requester_id: str, offered_slot_id: str, requested_slot_id: str) -> SwapRequest:
        if offered_slot_id == requested_slot_id:
            raise SwapError(ErrorKind.VALIDATION, "Cannot swap slot with itself")

        async with unit_of_work(self.database):
            # Lock in id order so requests in opposite directions cannot deadlock
            locked = {}
            for slot_id in sorted((offered_slot_id, requested_slot_id)):
                locked[slot_id] = await self.slot_store.find(slot_id, for_update=True)
            my_slot = locked[offered_slot_id]
            their_slot = locked[requested_slot_id]

            if my_slot is None:
                raise SwapError(ErrorKind.NOT_FOUND, "My slot not found")
            if their_slot is None:
                raise SwapError(ErrorKind.NOT_FOUND, "Their slot not found")

            if my_slot.owner_id != requester_id:
                raise SwapError(ErrorKind.FORBIDDEN, "Not authorized to use this slot")
            if their_slot.owner_id == requester_id:
                raise SwapError(ErrorKind.VALIDATION, "Cannot request swap for your own slot")

            if my_slot.status != SlotStatus.SWAPPABLE:
                raise SwapError(ErrorKind.VALIDATION, "My slot must be SWAPPABLE")
            if their_slot.status != SlotStatus.SWAPPABLE:
                raise SwapError(ErrorKind.VALIDATION, "Their slot must be SWAPPABLE")

            if await self._pending_between(offered_slot_id, requested_slot_id):
                raise SwapError(ErrorKind.CONFLICT, "A pending swap request already exists for these slots")

            now = utcnow()
            request_id = str(uuid.uuid4())
            await self.database.execute(swap_requests.insert().values(
                id=request_id,
                offered_slot_id=offered_slot_id,
                requested_slot_id=requested_slot_id,
                requester_id=requester_id,
                responder_id=their_slot.owner_id,
                status=SwapRequestStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            ))

            for slot_id in sorted(locked):
                await self.slot_store.set_status(slot_id, SlotStatus.SWAP_PENDING)

        logger.info(f"Swap request {request_id} created: {offered_slot_id} offered for {requested_slot_id}")
        return await self.get_request(request_id)

    async def respond(self, responder_id: str, request_id: str, accept: bool) -> SwapRequest:
        async with unit_of_work(self.database):
            row = await self.database.fetch_one(
                swap_requests.select().where(swap_requests.c.id == request_id).with_for_update()
            )
            if row is None:
                raise SwapError(ErrorKind.NOT_FOUND, "Swap request not found")
            request = row_to_request(row)

            if request.responder_id != responder_id:
                raise SwapError(ErrorKind.FORBIDDEN, "Not authorized to respond to this request")
            if request.status != SwapRequestStatus.PENDING:
                raise SwapError(ErrorKind.CONFLICT, "Swap request is no longer pending")

            # Slots are written in id order, matching the lock order of create_request
            new_owners = {
                request.offered_slot_id: request.responder_id,
                request.requested_slot_id: request.requester_id,
            }
            for slot_id in sorted(new_owners):
                if accept:
                    await self.slot_store.transfer_ownership(slot_id, new_owners[slot_id], SlotStatus.BUSY)
                else:
                    await self.slot_store.set_status(slot_id, SlotStatus.SWAPPABLE)
            new_status = SwapRequestStatus.ACCEPTED if accept else SwapRequestStatus.REJECTED

            await self.database.execute(
                swap_requests.update()
                .where(swap_requests.c.id == request_id)
                .values(status=new_status.value, updated_at=utcnow())
            )

        logger.info(f"Swap request {request_id} {new_status.value.lower()} by {responder_id}")
        return await self.get_request(request_id)

    async def get_request(self, request_id: str) -> SwapRequest:
        row = await self.database.fetch_one(swap_requests.select().where(swap_requests.c.id == request_id))
        if row is None:
            raise SwapError(ErrorKind.NOT_FOUND, "Swap request not found")
        [request] = await self._with_relations([row_to_request(row)])
        return request

    async def list_requests(self, user_id: str) -> SwapRequestListing:
        """Incoming (user responds) and outgoing (user asked) requests, newest first."""
        incoming_query = swap_requests.select().where(
            swap_requests.c.responder_id == user_id
        ).order_by(sqlalchemy.desc(swap_requests.c.created_at))
        outgoing_query = swap_requests.select().where(
            swap_requests.c.requester_id == user_id
        ).order_by(sqlalchemy.desc(swap_requests.c.created_at))

        incoming = [row_to_request(row) for row in await self.database.fetch_all(incoming_query)]
        outgoing = [row_to_request(row) for row in await self.database.fetch_all(outgoing_query)]
        return SwapRequestListing(
            incoming=await self._with_relations(incoming),
            outgoing=await self._with_relations(outgoing),
        )

    async def _pending_between(self, first_slot_id: str, second_slot_id: str) -> bool:
        query = swap_requests.select().where(
            sqlalchemy.or_(
                sqlalchemy.and_(
                    swap_requests.c.offered_slot_id == first_slot_id,
                    swap_requests.c.requested_slot_id == second_slot_id,
                ),
                sqlalchemy.and_(
                    swap_requests.c.offered_slot_id == second_slot_id,
                    swap_requests.c.requested_slot_id == first_slot_id,
                ),
            ),
            swap_requests.c.status == SwapRequestStatus.PENDING.value,
        )
        return await self.database.fetch_one(query) is not None

    async def _with_relations(self, requests: List[SwapRequest]) -> List[SwapRequest]:
        slot_ids = {r.offered_slot_id for r in requests} | {r.requested_slot_id for r in requests}
        user_ids = {r.requester_id for r in requests} | {r.responder_id for r in requests}
        slots_by_id = await self.slot_store.find_many(slot_ids)
        users_by_id = await fetch_user_summaries(self.database, user_ids)

        for request in requests:
            request.offered_slot = slots_by_id.get(request.offered_slot_id)
            request.requested_slot = slots_by_id.get(request.requested_slot_id)
            request.requester = users_by_id.get(request.requester_id)
            request.responder = users_by_id.get(request.responder_id)
        return requests
