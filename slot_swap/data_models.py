# data_models.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class SlotStatus(str, Enum):
    BUSY = "BUSY"
    SWAPPABLE = "SWAPPABLE"
    SWAP_PENDING = "SWAP_PENDING"


class SwapRequestStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Timestamps are stored and compared as naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class UserSummary:
    """Public view of a user attached to slots and swap requests"""
    id: str
    name: str
    email: str


@dataclass
class Slot:
    """A calendar time block owned by a single user"""
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    status: SlotStatus
    owner_id: str
    created_at: datetime
    updated_at: datetime
    owner: Optional[UserSummary] = None


@dataclass
class SwapRequest:
    """A proposal to trade the requester's offered slot for the responder's requested slot"""
    id: str
    offered_slot_id: str
    requested_slot_id: str
    requester_id: str
    responder_id: str
    status: SwapRequestStatus
    created_at: datetime
    updated_at: datetime
    offered_slot: Optional[Slot] = None
    requested_slot: Optional[Slot] = None
    requester: Optional[UserSummary] = None
    responder: Optional[UserSummary] = None


@dataclass
class SwapRequestListing:
    incoming: List[SwapRequest] = field(default_factory=list)
    outgoing: List[SwapRequest] = field(default_factory=list)
