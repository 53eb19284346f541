"""
Guest list API routes - requires organization membership
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from guestlist.api.routes_stream import get_broadcast_hub
from guestlist.core.db import get_db
from guestlist.schemas.guest import GuestCreate, GuestUpdate, MoveRequest, ReorderRequest, SwapRequest
from guestlist.services.broadcast_hub import BroadcastHub
from guestlist.services.collaboration_service import Actor, CollaborationService
from guestlist.services.guest_service import GuestService
from guestlist.utils.responses import success_response
from guestlist.utils.security import SessionUser, get_current_user

router = APIRouter()

# Create/update/delete/reorder are announced by the editing client after the
# write succeeds; only position changes that clients cannot replay locally
# are announced here.

@router.get("/organizations/{organization_id}/guests")
async def list_guests(
    organization_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List guests ordered by display_order"""
    return success_response(
        message="Guests retrieved",
        data=GuestService.list_guests(organization_id, user, db)
    )

@router.post("/organizations/{organization_id}/guests", status_code=201)
async def create_guest(
    organization_id: str,
    data: GuestCreate,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    guest = GuestService.create_guest(organization_id, data, user, db)
    return success_response(
        message="Guest created successfully",
        data=guest,
        status_code=201
    )

@router.get("/organizations/{organization_id}/guests/{guest_id}")
async def get_guest(
    organization_id: str,
    guest_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return success_response(
        message="Guest retrieved",
        data=GuestService.get_guest(organization_id, guest_id, user, db)
    )

@router.patch("/organizations/{organization_id}/guests/{guest_id}")
async def update_guest(
    organization_id: str,
    guest_id: str,
    data: GuestUpdate,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update the fields present in the body"""
    guest, _ = GuestService.update_guest(organization_id, guest_id, data, user, db)
    return success_response(
        message="Guest updated successfully",
        data=guest
    )

@router.delete("/organizations/{organization_id}/guests/{guest_id}")
async def delete_guest(
    organization_id: str,
    guest_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    deleted = GuestService.delete_guest(organization_id, guest_id, user, db)
    return success_response(
        message="Guest deleted successfully",
        data={"id": deleted["id"], "name": deleted["name"]}
    )

@router.post("/organizations/{organization_id}/guests/reorder")
async def reorder_guests(
    organization_id: str,
    data: ReorderRequest,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Set the full guest order"""
    guest_ids = GuestService.reorder_guests(organization_id, data.guestIds, user, db)
    return success_response(
        message="Guests reordered successfully",
        data={"guestIds": guest_ids}
    )

@router.post("/organizations/{organization_id}/guests/{guest_id}/move-to-end")
async def move_guest_to_end(
    organization_id: str,
    guest_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    guest = GuestService.move_to_end(organization_id, guest_id, user, db)
    return success_response(
        message="Guest moved to end",
        data=guest
    )

@router.post("/organizations/{organization_id}/guests/{guest_id}/move")
async def move_guest_to_position(
    organization_id: str,
    guest_id: str,
    data: MoveRequest,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub)
):
    """Move a guest to a 1-based position and tell other sessions to refetch"""
    guest = GuestService.move_to_position(organization_id, guest_id, data.position, user, db)
    await CollaborationService(hub).guest_moved(
        organization_id, Actor(user.id, user.name), guest["id"], guest["name"], action="move_to_position"
    )
    return success_response(
        message="Guest moved",
        data=guest
    )

@router.post("/organizations/{organization_id}/guests/swap")
async def swap_guests(
    organization_id: str,
    data: SwapRequest,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub)
):
    """Swap the positions of two guests and tell other sessions to refetch"""
    first, second = GuestService.swap_positions(organization_id, data.guest1Id, data.guest2Id, user, db)
    await CollaborationService(hub).guests_swapped(organization_id, Actor(user.id, user.name), first, second)
    return success_response(
        message="Guests swapped",
        data={"guest1": first, "guest2": second}
    )
