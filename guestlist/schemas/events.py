"""
Real-time stream events.

Every frame pushed over ``/organizations/{id}/stream`` is one of the models
below, discriminated by its ``type`` field. Producers build the model and
call ``encode_frame``; consumers call ``parse_event`` and match on the class.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PresenceUser(BaseModel):
    id: str
    name: str


# -------- Connection lifecycle events --------

class ConnectedEvent(BaseModel):
    type: Literal["connected"] = "connected"
    message: str = "Connection established"
    timeout: Optional[float] = None  # idle timeout in seconds

class OnlineUsersEvent(BaseModel):
    type: Literal["online_users"] = "online_users"
    users: List[PresenceUser] = []
    timestamp: datetime = Field(default_factory=utcnow)

class UserConnectedEvent(BaseModel):
    type: Literal["user_connected"] = "user_connected"
    user: PresenceUser
    timestamp: datetime = Field(default_factory=utcnow)

class UserDisconnectedEvent(BaseModel):
    type: Literal["user_disconnected"] = "user_disconnected"
    user: PresenceUser
    timestamp: datetime = Field(default_factory=utcnow)

class HeartbeatEvent(BaseModel):
    type: Literal["heartbeat"] = "heartbeat"
    timestamp: datetime = Field(default_factory=utcnow)


# -------- Guest mutation events --------

class _GuestEventBase(BaseModel):
    userId: str
    userName: str
    timestamp: datetime = Field(default_factory=utcnow)
    isAI: bool = False

class GuestAddedEvent(_GuestEventBase):
    type: Literal["guest_added"] = "guest_added"
    guest: Dict[str, Any]

class GuestUpdatedEvent(_GuestEventBase):
    type: Literal["guest_updated"] = "guest_updated"
    guestId: str
    guestName: Optional[str] = None
    updates: Dict[str, Any]
    updatedFields: List[str] = []

    @model_validator(mode="after")
    def default_updated_fields(self) -> "GuestUpdatedEvent":
        if not self.updatedFields:
            self.updatedFields = list(self.updates.keys())
        return self

class GuestDeletedEvent(_GuestEventBase):
    type: Literal["guest_deleted"] = "guest_deleted"
    guestId: str
    guestName: Optional[str] = None

class GuestsReorderedEvent(_GuestEventBase):
    type: Literal["guests_reordered"] = "guests_reordered"
    guestIds: List[str]

class GuestMovedEvent(_GuestEventBase):
    type: Literal["guest_moved"] = "guest_moved"
    guestId: str
    guestName: Optional[str] = None
    action: Optional[str] = None

class GuestsSwappedEvent(_GuestEventBase):
    type: Literal["guests_swapped"] = "guests_swapped"
    guest1Id: str
    guest1Name: Optional[str] = None
    guest2Id: str
    guest2Name: Optional[str] = None


GuestMutationEvent = Annotated[
    Union[
        GuestAddedEvent,
        GuestUpdatedEvent,
        GuestDeletedEvent,
        GuestsReorderedEvent,
        GuestMovedEvent,
        GuestsSwappedEvent,
    ],
    Field(discriminator="type"),
]

StreamEvent = Annotated[
    Union[
        ConnectedEvent,
        OnlineUsersEvent,
        UserConnectedEvent,
        UserDisconnectedEvent,
        HeartbeatEvent,
        GuestAddedEvent,
        GuestUpdatedEvent,
        GuestDeletedEvent,
        GuestsReorderedEvent,
        GuestMovedEvent,
        GuestsSwappedEvent,
    ],
    Field(discriminator="type"),
]

_stream_event_adapter = TypeAdapter(StreamEvent)
_mutation_event_adapter = TypeAdapter(GuestMutationEvent)


def parse_event(data: Union[str, bytes, Dict[str, Any]]):
    """Parse a JSON text frame or dict into its concrete event model.

    Raises ``pydantic.ValidationError`` for unknown types or missing fields.
    """
    if isinstance(data, (str, bytes)):
        return _stream_event_adapter.validate_json(data)
    return _stream_event_adapter.validate_python(data)


def parse_mutation_event(data: Dict[str, Any]):
    """Like ``parse_event`` but only accepts guest mutation events"""
    return _mutation_event_adapter.validate_python(data)


def encode_frame(event: BaseModel) -> str:
    """Serialize an event as one Server-Sent Events frame"""
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"
