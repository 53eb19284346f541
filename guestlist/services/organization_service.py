"""
Organization, membership and invite management
"""

import logging
import secrets
import string
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from guestlist.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from guestlist.models import Organization, OrganizationMember
from guestlist.schemas.organization import (
    ConfigUpdate,
    MemberResponse,
    OrganizationCreate,
    OrganizationPreview,
    OrganizationResponse,
    OrganizationUpdate,
)
from guestlist.services import config_service
from guestlist.services.repositories import MemberRepo, OrganizationRepo, UserRepo
from guestlist.utils.security import SessionUser

logger = logging.getLogger(__name__)

INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_CODE_LENGTH = 8


class OrganizationService:
    """Service for organizations and their members"""

    @staticmethod
    def generate_invite_code(db: Session) -> str:
        """Random 8-character uppercase code not used by any organization"""
        while True:
            code = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))
            if not OrganizationRepo.invite_code_taken(db, code):
                return code

    @staticmethod
    def sync_user(user: SessionUser, db: Session) -> None:
        """Make sure the session user has a row in the users table"""
        email = user.primary_email or f"{user.id}@users.example.com"
        UserRepo.upsert(db, user.id, email, user.display_name)

    @staticmethod
    def require_member(organization_id: str, user_id: str, db: Session) -> Tuple[Organization, OrganizationMember]:
        organization = OrganizationRepo.get_by_id(db, organization_id)
        if not organization:
            raise NotFoundError("Organization not found")
        member = MemberRepo.get(db, organization_id, user_id)
        if not member:
            raise AuthorizationError("Access denied")
        return organization, member

    @staticmethod
    def require_admin(organization_id: str, user_id: str, db: Session) -> Organization:
        organization, member = OrganizationService.require_member(organization_id, user_id, db)
        if member.role != "admin":
            raise AuthorizationError("Only admins can perform this action", code="admin_required")
        return organization

    @staticmethod
    def serialize(organization: Organization, role: Optional[str] = None) -> Dict[str, Any]:
        data = OrganizationResponse.model_validate(organization).model_dump(mode="json")
        data["role"] = role
        return data

    @staticmethod
    def create_organization(data: OrganizationCreate, user: SessionUser, db: Session) -> Dict[str, Any]:
        """Create an organization from an event-type preset; the creator becomes admin"""
        base = config_service.get_preset_configuration(data.event_type)
        configuration = config_service.validate_configuration(
            config_service.merge_configuration(base, data.custom_config)
        )

        OrganizationService.sync_user(user, db)
        organization = OrganizationRepo.create(
            db,
            name=data.name,
            invite_code=OrganizationService.generate_invite_code(db),
            admin_id=user.id,
            event_type=data.event_type,
            configuration=configuration,
        )
        MemberRepo.add(db, organization.id, user.id, role="admin")
        db.commit()
        db.refresh(organization)

        logger.info(f"Organization {organization.id} created by user {user.id}")
        return OrganizationService.serialize(organization, "admin")

    @staticmethod
    def list_organizations(user: SessionUser, db: Session) -> List[Dict[str, Any]]:
        return [
            OrganizationService.serialize(organization, role)
            for organization, role in OrganizationRepo.list_for_user(db, user.id)
        ]

    @staticmethod
    def get_organization(organization_id: str, user: SessionUser, db: Session) -> Dict[str, Any]:
        organization, member = OrganizationService.require_member(organization_id, user.id, db)
        return OrganizationService.serialize(organization, member.role)

    @staticmethod
    def update_organization(organization_id: str, data: OrganizationUpdate, user: SessionUser, db: Session) -> Dict[str, Any]:
        organization = OrganizationService.require_admin(organization_id, user.id, db)

        if data.name is not None:
            organization.name = data.name
        if data.event_type is not None:
            organization.event_type = data.event_type
        organization.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(organization)
        return OrganizationService.serialize(organization, "admin")

    @staticmethod
    def get_configuration(organization_id: str, user: SessionUser, db: Session) -> Dict[str, Any]:
        organization, _ = OrganizationService.require_member(organization_id, user.id, db)
        return {
            "id": organization.id,
            "name": organization.name,
            "event_type": organization.event_type,
            "configuration": organization.configuration,
        }

    @staticmethod
    def update_configuration(organization_id: str, data: ConfigUpdate, user: SessionUser, db: Session) -> Dict[str, Any]:
        organization = OrganizationService.require_admin(organization_id, user.id, db)
        if data.event_type is None and data.configuration is None:
            raise ValidationError("Nothing to update")

        if data.event_type is not None:
            organization.event_type = data.event_type
        if data.configuration is not None:
            organization.configuration = data.configuration.model_dump(exclude_none=True)
        organization.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(organization)

        logger.info(f"Configuration of organization {organization_id} updated by user {user.id}")
        return {
            "id": organization.id,
            "name": organization.name,
            "event_type": organization.event_type,
            "configuration": organization.configuration,
        }

    @staticmethod
    def preview_by_invite(invite_code: str, db: Session) -> Dict[str, Any]:
        """Public organization summary for an invite link"""
        organization = OrganizationRepo.get_by_invite_code(db, invite_code)
        if not organization:
            raise NotFoundError("Invalid invite code")
        return OrganizationPreview.model_validate(organization).model_dump()

    @staticmethod
    def join_by_invite(invite_code: str, user: SessionUser, db: Session) -> Dict[str, Any]:
        """Join an organization; joining twice is a no-op"""
        organization = OrganizationRepo.get_by_invite_code(db, invite_code)
        if not organization:
            raise NotFoundError("Invalid invite code")

        OrganizationService.sync_user(user, db)
        member = MemberRepo.get(db, organization.id, user.id)
        if member is None:
            member = MemberRepo.add(db, organization.id, user.id, role="member")
            logger.info(f"User {user.id} joined organization {organization.id}")
        db.commit()
        return OrganizationService.serialize(organization, member.role)

    @staticmethod
    def refresh_invite_code(organization_id: str, user: SessionUser, db: Session) -> str:
        organization = OrganizationService.require_admin(organization_id, user.id, db)
        organization.invite_code = OrganizationService.generate_invite_code(db)
        organization.updated_at = datetime.utcnow()
        db.commit()
        return organization.invite_code

    @staticmethod
    def list_members(organization_id: str, user: SessionUser, db: Session) -> List[Dict[str, Any]]:
        OrganizationService.require_member(organization_id, user.id, db)
        return [
            MemberResponse(
                id=member_user.id,
                email=member_user.email,
                name=member_user.name,
                role=member.role,
                joined_at=member.joined_at,
            ).model_dump(mode="json")
            for member, member_user in MemberRepo.list_with_users(db, organization_id)
        ]
