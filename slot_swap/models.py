# models.py
import sqlalchemy
from slot_swap.database import metadata
from slot_swap.data_models import SlotStatus, SwapRequestStatus

#'users' table
users = sqlalchemy.Table(
    "users",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(36), primary_key=True),
    sqlalchemy.Column("name", sqlalchemy.String),
    sqlalchemy.Column("email", sqlalchemy.String, unique=True, index=True),
    sqlalchemy.Column("hashed_password", sqlalchemy.String),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime),
)

#'slots' table, the calendar events users own and trade
slots = sqlalchemy.Table(
    "slots",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(36), primary_key=True),
    sqlalchemy.Column("title", sqlalchemy.String, nullable=False),
    # Naive UTC
    sqlalchemy.Column("start_time", sqlalchemy.DateTime, nullable=False, index=True),
    sqlalchemy.Column("end_time", sqlalchemy.DateTime, nullable=False),
    sqlalchemy.Column(
        "status",
        sqlalchemy.Enum(*[s.value for s in SlotStatus], name="slot_status"),
        nullable=False,
        default=SlotStatus.BUSY.value,
    ),
    sqlalchemy.Column("owner_id", sqlalchemy.String(36), sqlalchemy.ForeignKey("users.id"), nullable=False, index=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=False),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime, nullable=False),
)

swap_requests = sqlalchemy.Table(
    "swap_requests",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(36), primary_key=True),
    # Plain ids, not foreign keys: resolved requests outlive a later deleted slot
    sqlalchemy.Column("offered_slot_id", sqlalchemy.String(36), nullable=False, index=True),
    sqlalchemy.Column("requested_slot_id", sqlalchemy.String(36), nullable=False, index=True),
    sqlalchemy.Column("requester_id", sqlalchemy.String(36), sqlalchemy.ForeignKey("users.id"), nullable=False, index=True),
    sqlalchemy.Column("responder_id", sqlalchemy.String(36), sqlalchemy.ForeignKey("users.id"), nullable=False, index=True),
    sqlalchemy.Column(
        "status",
        sqlalchemy.Enum(*[s.value for s in SwapRequestStatus], name="swap_request_status"),
        nullable=False,
        default=SwapRequestStatus.PENDING.value,
    ),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime, nullable=False),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime, nullable=False),
)
