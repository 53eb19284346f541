"""
Organization API routes - requires authentication except for invite previews
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from guestlist.core.db import get_db
from guestlist.schemas.organization import ConfigUpdate, JoinRequest, OrganizationCreate, OrganizationUpdate
from guestlist.services import config_service
from guestlist.services.guest_service import GuestService
from guestlist.services.organization_service import OrganizationService
from guestlist.services.qr_service import QRService
from guestlist.utils.responses import success_response
from guestlist.utils.security import SessionUser, get_current_user

router = APIRouter()

@router.get("/event-presets")
async def list_event_presets():
    """List the event types an organization can be created from"""
    return success_response(
        message="Event presets retrieved",
        data={"presets": config_service.list_presets()}
    )

@router.post("/organizations", status_code=201)
async def create_organization(
    data: OrganizationCreate,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a new organization; the caller becomes its admin"""
    organization = OrganizationService.create_organization(data, user, db)
    return success_response(
        message="Organization created successfully",
        data=organization,
        status_code=201
    )

@router.get("/organizations")
async def list_organizations(
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the organizations the caller belongs to"""
    return success_response(
        message="Organizations retrieved",
        data=OrganizationService.list_organizations(user, db)
    )

@router.post("/organizations/join")
async def join_organization(
    data: JoinRequest,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Join an organization with its invite code"""
    organization = OrganizationService.join_by_invite(data.invite_code, user, db)
    return success_response(
        message="Joined organization",
        data=organization
    )

@router.get("/organizations/by-invite/{invite_code}")
async def preview_organization(
    invite_code: str,
    db: Session = Depends(get_db)
):
    """Public summary of the organization an invite code points to"""
    return success_response(
        message="Organization found",
        data=OrganizationService.preview_by_invite(invite_code, db)
    )

@router.get("/organizations/{organization_id}")
async def get_organization(
    organization_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return success_response(
        message="Organization retrieved",
        data=OrganizationService.get_organization(organization_id, user, db)
    )

@router.patch("/organizations/{organization_id}")
async def update_organization(
    organization_id: str,
    data: OrganizationUpdate,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Rename or retype an organization (admin only)"""
    return success_response(
        message="Organization updated successfully",
        data=OrganizationService.update_organization(organization_id, data, user, db)
    )

@router.get("/organizations/{organization_id}/config")
async def get_configuration(
    organization_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return success_response(
        message="Configuration retrieved",
        data=OrganizationService.get_configuration(organization_id, user, db)
    )

@router.put("/organizations/{organization_id}/config")
async def update_configuration(
    organization_id: str,
    data: ConfigUpdate,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Replace the guest list configuration (admin only)"""
    return success_response(
        message="Configuration updated successfully",
        data=OrganizationService.update_configuration(organization_id, data, user, db)
    )

@router.post("/organizations/{organization_id}/refresh-invite")
async def refresh_invite_code(
    organization_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Rotate the invite code (admin only); old links stop working"""
    invite_code = OrganizationService.refresh_invite_code(organization_id, user, db)
    return success_response(
        message="Invite code refreshed",
        data={"invite_code": invite_code, "invite_url": QRService.get_invite_url(invite_code)}
    )

@router.get("/organizations/{organization_id}/invite-qr.png")
async def get_invite_qr(
    organization_id: str,
    size: int = 0,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """QR code image of the invite link"""
    organization = OrganizationService.get_organization(organization_id, user, db)
    qr_bytes = QRService.generate_invite_qr(organization["invite_code"], size=max(0, min(size, 1024)))

    return Response(
        content=qr_bytes,
        media_type="image/png",
        headers={"Cache-Control": "no-store"}
    )

@router.get("/organizations/{organization_id}/members")
async def list_members(
    organization_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return success_response(
        message="Members retrieved",
        data=OrganizationService.list_members(organization_id, user, db)
    )

@router.get("/organizations/{organization_id}/stats")
async def get_statistics(
    organization_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Guest counts by category and confirmation stage"""
    return success_response(
        message="Statistics retrieved",
        data=GuestService.statistics(organization_id, user, db)
    )
