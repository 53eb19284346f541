"""
Guest change broadcasting for collaborating organization members
"""

import logging
from typing import Any, Dict, List, Optional

from guestlist.schemas.events import (
    GuestAddedEvent,
    GuestDeletedEvent,
    GuestMovedEvent,
    GuestsReorderedEvent,
    GuestsSwappedEvent,
    GuestUpdatedEvent,
)
from guestlist.services.broadcast_hub import BroadcastHub

logger = logging.getLogger(__name__)


class Actor:
    """Who made a change: a signed-in user, possibly acting through the assistant"""

    def __init__(self, user_id: str, user_name: str, is_ai: bool = False):
        self.user_id = user_id
        self.user_name = user_name
        self.is_ai = is_ai

    def as_assistant(self) -> "Actor":
        return Actor(self.user_id, self.user_name, is_ai=True)


class CollaborationService:
    """Announces guest mutations to every stream subscriber of an organization"""

    def __init__(self, broadcast_hub: BroadcastHub):
        self.broadcast_hub = broadcast_hub

    def _origin(self, actor: Actor) -> Dict[str, Any]:
        return {"userId": actor.user_id, "userName": actor.user_name, "isAI": actor.is_ai}

    async def guest_added(self, organization_id: str, actor: Actor, guest: Dict[str, Any]) -> int:
        event = GuestAddedEvent(guest=guest, **self._origin(actor))
        return await self.broadcast_hub.broadcast(organization_id, event)

    async def guest_updated(
        self,
        organization_id: str,
        actor: Actor,
        guest_id: str,
        updates: Dict[str, Any],
        guest_name: Optional[str] = None,
    ) -> int:
        event = GuestUpdatedEvent(
            guestId=guest_id,
            guestName=guest_name,
            updates=updates,
            updatedFields=list(updates.keys()),
            **self._origin(actor),
        )
        return await self.broadcast_hub.broadcast(organization_id, event)

    async def guest_deleted(self, organization_id: str, actor: Actor, guest_id: str, guest_name: Optional[str] = None) -> int:
        event = GuestDeletedEvent(guestId=guest_id, guestName=guest_name, **self._origin(actor))
        return await self.broadcast_hub.broadcast(organization_id, event)

    async def guests_reordered(self, organization_id: str, actor: Actor, guest_ids: List[str]) -> int:
        event = GuestsReorderedEvent(guestIds=guest_ids, **self._origin(actor))
        return await self.broadcast_hub.broadcast(organization_id, event)

    async def guest_moved(
        self,
        organization_id: str,
        actor: Actor,
        guest_id: str,
        guest_name: Optional[str] = None,
        action: str = "move_to_end",
    ) -> int:
        """Broadcast that a guest changed position; receivers refetch the list"""
        event = GuestMovedEvent(guestId=guest_id, guestName=guest_name, action=action, **self._origin(actor))
        return await self.broadcast_hub.broadcast(organization_id, event)

    async def guests_swapped(self, organization_id: str, actor: Actor, first: Dict[str, Any], second: Dict[str, Any]) -> int:
        event = GuestsSwappedEvent(
            guest1Id=first["id"],
            guest1Name=first.get("name"),
            guest2Id=second["id"],
            guest2Name=second.get("name"),
            **self._origin(actor),
        )
        return await self.broadcast_hub.broadcast(organization_id, event)
