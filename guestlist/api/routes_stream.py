"""
Server-Sent Events stream and broadcast trigger for real-time collaboration
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from guestlist.core.config import settings
from guestlist.core.db import get_db
from guestlist.core.exceptions import ValidationError
from guestlist.schemas.events import HeartbeatEvent, encode_frame, parse_mutation_event, utcnow
from guestlist.services.broadcast_hub import BroadcastHub, Connection
from guestlist.services.organization_service import OrganizationService
from guestlist.utils.responses import success_response
from guestlist.utils.security import SessionUser, get_current_user

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

router = APIRouter()


def get_broadcast_hub(request: Request) -> BroadcastHub:
    """The process-wide hub created in the application lifespan"""
    return request.app.state.broadcast_hub


async def stream_frames(
    hub: BroadcastHub,
    connection: Connection,
    request: Optional[Request] = None,
    heartbeat_interval: float = settings.HEARTBEAT_INTERVAL_SECONDS,
) -> AsyncIterator[str]:
    """Yield the frames of one connection until it is cancelled or the client leaves.

    A heartbeat goes out every ``heartbeat_interval`` seconds whatever other
    traffic there is, and each one refreshes the connection's last-seen time.
    The connection is unsubscribed when the generator finishes.
    """
    loop = asyncio.get_running_loop()
    next_heartbeat = loop.time() + heartbeat_interval
    try:
        while True:
            if request is not None and await request.is_disconnected():
                break
            try:
                frame = await asyncio.wait_for(
                    connection.queue.get(), timeout=max(0.0, next_heartbeat - loop.time())
                )
            except asyncio.TimeoutError:
                await hub.touch(connection)
                yield encode_frame(HeartbeatEvent())
                next_heartbeat = loop.time() + heartbeat_interval
                continue
            if frame is None:
                break
            yield frame
    finally:
        await hub.unsubscribe(connection.organization_id, connection.user_id, connection)


@router.get("/organizations/{organization_id}/stream")
async def stream_organization_events(
    organization_id: str,
    request: Request,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    """Open the organization's event stream for the current user"""
    OrganizationService.require_member(organization_id, user.id, db)
    # The stream outlives the request's need for a database session
    db.close()

    connection = await hub.subscribe(organization_id, user.id, user.name)
    return StreamingResponse(
        stream_frames(hub, connection, request, settings.HEARTBEAT_INTERVAL_SECONDS),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/organizations/{organization_id}/broadcast")
async def broadcast_guest_event(
    organization_id: str,
    payload: Dict[str, Any] = Body(...),
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
):
    """Republish a guest mutation event to the organization's subscribers.

    The sender identity always comes from the session, never from the body.
    """
    if settings.BROADCAST_REQUIRE_MEMBERSHIP:
        OrganizationService.require_member(organization_id, user.id, db)

    data = dict(payload)
    data["userId"] = user.id
    data["userName"] = user.name
    data.setdefault("timestamp", utcnow().isoformat())
    try:
        event = parse_mutation_event(data)
    except PydanticValidationError as e:
        details = [
            {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
            for err in e.errors()
        ]
        raise ValidationError("Invalid broadcast event", details=details)

    delivered = await hub.broadcast(organization_id, event)
    return success_response(
        message="Event broadcast",
        data={"type": event.type, "delivered": delivered}
    )


@router.get("/stream/stats")
async def stream_stats(hub: BroadcastHub = Depends(get_broadcast_hub)):
    """Get stream connection statistics (for debugging)"""
    counts = hub.get_all_connection_counts()
    return {
        "total_organizations_with_connections": len(counts),
        "connection_counts": counts,
        "total_connections": sum(counts.values())
    }
