# slot_store.py
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import sqlalchemy
from databases import Database

from slot_swap.data_models import Slot, SlotStatus, SwapRequestStatus, UserSummary, to_naive_utc, utcnow
from slot_swap.database import unit_of_work
from slot_swap.errors import ErrorKind, SwapError
from slot_swap.models import slots, swap_requests, users

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "start_time", "end_time", "status")


def row_to_slot(row, owner: Optional[UserSummary] = None) -> Slot:
    return Slot(
        id=row["id"],
        title=row["title"],
        start_time=to_naive_utc(row["start_time"]),
        end_time=to_naive_utc(row["end_time"]),
        status=SlotStatus(row["status"]),
        owner_id=row["owner_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        owner=owner,
    )


def _clean_title(title: Optional[str]) -> str:
    if title is None or not title.strip():
        raise SwapError(ErrorKind.VALIDATION, "Title is required")
    return title.strip()


def _require_time(name: str, value: Optional[datetime]) -> datetime:
    if value is None:
        raise SwapError(ErrorKind.VALIDATION, f"Valid {name} is required")
    return to_naive_utc(value)


def _check_time_range(start_time: datetime, end_time: datetime) -> None:
    if end_time <= start_time:
        raise SwapError(ErrorKind.VALIDATION, "end_time must be after start_time")


def _parse_status(value) -> SlotStatus:
    try:
        return SlotStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in SlotStatus)
        raise SwapError(ErrorKind.VALIDATION, f"status must be one of {allowed}")


class SlotStore:
    """
    Owns slot rows: creation, owner-checked edits, listing, and the
    unchecked status/ownership primitives the swap negotiator drives
    from inside its own transaction.
    """

    def __init__(self, database: Database):
        self.database = database

    async def create(
        self,
        owner_id: str,
        title: str,
        start_time: datetime,
        end_time: datetime,
        status: Optional[SlotStatus] = None,
    ) -> Slot:
        title = _clean_title(title)
        start_time = _require_time("start_time", start_time)
        end_time = _require_time("end_time", end_time)
        _check_time_range(start_time, end_time)

        status = _parse_status(status) if status is not None else SlotStatus.BUSY
        if status == SlotStatus.SWAP_PENDING:
            raise SwapError(ErrorKind.VALIDATION, "A new event cannot start as SWAP_PENDING")

        now = utcnow()
        values = {
            "id": str(uuid.uuid4()),
            "title": title,
            "start_time": start_time,
            "end_time": end_time,
            "status": status.value,
            "owner_id": owner_id,
            "created_at": now,
            "updated_at": now,
        }
        await self.database.execute(slots.insert().values(**values))
        return row_to_slot(values)

    async def find(self, slot_id: str, for_update: bool = False) -> Optional[Slot]:
        query = slots.select().where(slots.c.id == slot_id)
        if for_update:
            # Row lock on PostgreSQL, dropped by the SQLite compiler
            query = query.with_for_update()
        row = await self.database.fetch_one(query)
        return row_to_slot(row) if row is not None else None

    async def get(self, slot_id: str, for_update: bool = False) -> Slot:
        slot = await self.find(slot_id, for_update=for_update)
        if slot is None:
            raise SwapError(ErrorKind.NOT_FOUND, "Event not found")
        return slot

    async def find_many(self, slot_ids: Iterable[str]) -> Dict[str, Slot]:
        slot_ids = set(slot_ids)
        if not slot_ids:
            return {}
        rows = await self.database.fetch_all(slots.select().where(slots.c.id.in_(slot_ids)))
        return {row["id"]: row_to_slot(row) for row in rows}

    async def has_pending_request(self, slot_id: str) -> bool:
        """True when a PENDING swap request references the slot on either side."""
        query = swap_requests.select().where(
            sqlalchemy.or_(
                swap_requests.c.offered_slot_id == slot_id,
                swap_requests.c.requested_slot_id == slot_id,
            ),
            swap_requests.c.status == SwapRequestStatus.PENDING.value,
        )
        return await self.database.fetch_one(query) is not None

    async def update(self, slot_id: str, requester_id: str, fields: Dict[str, Any]) -> Slot:
        unknown = sorted(set(fields) - set(UPDATABLE_FIELDS))
        if unknown:
            raise SwapError(ErrorKind.VALIDATION, f"Cannot update field(s): {', '.join(unknown)}")

        async with unit_of_work(self.database):
            slot = await self.get(slot_id, for_update=True)
            if slot.owner_id != requester_id:
                raise SwapError(ErrorKind.FORBIDDEN, "Not authorized to update this event")

            changes = {}
            if "title" in fields:
                changes["title"] = _clean_title(fields["title"])

            if "start_time" in fields or "end_time" in fields:
                start_time = _require_time("start_time", fields["start_time"]) if "start_time" in fields else slot.start_time
                end_time = _require_time("end_time", fields["end_time"]) if "end_time" in fields else slot.end_time
                _check_time_range(start_time, end_time)
                changes["start_time"] = start_time
                changes["end_time"] = end_time

            if "status" in fields:
                status = _parse_status(fields["status"])
                if status != slot.status:
                    if status == SlotStatus.SWAP_PENDING:
                        raise SwapError(ErrorKind.CONFLICT, "SWAP_PENDING can only be set by a swap request")
                    if slot.status == SlotStatus.SWAP_PENDING and await self.has_pending_request(slot_id):
                        raise SwapError(ErrorKind.CONFLICT, "Cannot change status while swap request is pending")
                changes["status"] = status.value

            if not changes:
                return slot

            changes["updated_at"] = utcnow()
            await self.database.execute(slots.update().where(slots.c.id == slot_id).values(**changes))
            return await self.get(slot_id)

    async def delete(self, slot_id: str, requester_id: str) -> None:
        async with unit_of_work(self.database):
            slot = await self.get(slot_id, for_update=True)
            if slot.owner_id != requester_id:
                raise SwapError(ErrorKind.FORBIDDEN, "Not authorized to delete this event")
            if slot.status == SlotStatus.SWAP_PENDING:
                raise SwapError(ErrorKind.CONFLICT, "Cannot delete an event while a swap request is pending")
            await self.database.execute(slots.delete().where(slots.c.id == slot_id))
        logger.info(f"Deleted event {slot_id} owned by {requester_id}")

    async def list_by_owner(self, owner_id: str) -> List[Slot]:
        query = slots.select().where(slots.c.owner_id == owner_id).order_by(slots.c.start_time.asc())
        return [row_to_slot(row) for row in await self.database.fetch_all(query)]

    async def list_swappable_excluding(self, owner_id: str) -> List[Slot]:
        """Every other user's SWAPPABLE slot, soonest first, with its owner attached."""
        query = sqlalchemy.select(
            slots,
            users.c.name.label("owner_name"),
            users.c.email.label("owner_email"),
        ).select_from(
            slots.join(users, slots.c.owner_id == users.c.id)
        ).where(
            slots.c.status == SlotStatus.SWAPPABLE.value,
            slots.c.owner_id != owner_id,
        ).order_by(slots.c.start_time.asc())

        rows = await self.database.fetch_all(query)
        return [
            row_to_slot(row, owner=UserSummary(id=row["owner_id"], name=row["owner_name"], email=row["owner_email"]))
            for row in rows
        ]

    # Negotiator primitives. No ownership or state checks; callers hold the unit of work.

    async def set_status(self, slot_id: str, status: SlotStatus) -> None:
        query = slots.update().where(slots.c.id == slot_id).values(status=status.value, updated_at=utcnow())
        await self.database.execute(query)

    async def transfer_ownership(self, slot_id: str, new_owner_id: str, status: SlotStatus) -> None:
        query = slots.update().where(slots.c.id == slot_id).values(
            owner_id=new_owner_id,
            status=status.value,
            updated_at=utcnow(),
        )
        await self.database.execute(query)
