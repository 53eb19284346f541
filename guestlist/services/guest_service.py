"""
Guest list data access with organization membership enforcement
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple

from sqlalchemy.orm import Session

from guestlist.core.exceptions import NotFoundError, ValidationError
from guestlist.models import Guest
from guestlist.schemas.guest import GuestCreate, GuestUpdate
from guestlist.services import config_service
from guestlist.services.organization_service import OrganizationService
from guestlist.services.repositories import GuestRepo
from guestlist.utils.security import SessionUser
from guestlist.utils.stats import guest_statistics

logger = logging.getLogger(__name__)

# Columns an update may clear by sending null; other nulls leave the value alone
NULLABLE_FIELDS = {"family_color", "age_group", "food_preference"}
UPDATABLE_FIELDS = (
    "name",
    "categories",
    "age_group",
    "food_preference",
    "food_preferences",
    "confirmation_stage",
    "custom_fields",
    "family_color",
)


class GuestService:
    """Service for guest list reads and writes.

    Every operation checks that the caller is a member of the organization.
    ``display_order`` stays a contiguous 1..n sequence after each write.
    """

    @staticmethod
    def _get_guest(organization_id: str, guest_id: str, db: Session) -> Guest:
        guest = GuestRepo.get(db, organization_id, guest_id)
        if not guest:
            raise NotFoundError("Guest not found")
        return guest

    @staticmethod
    def list_guests(organization_id: str, user: SessionUser, db: Session) -> List[Dict[str, Any]]:
        OrganizationService.require_member(organization_id, user.id, db)
        return [guest.to_dict() for guest in GuestRepo.list_ordered(db, organization_id)]

    @staticmethod
    def get_guest(organization_id: str, guest_id: str, user: SessionUser, db: Session) -> Dict[str, Any]:
        OrganizationService.require_member(organization_id, user.id, db)
        return GuestService._get_guest(organization_id, guest_id, db).to_dict()

    @staticmethod
    def create_guest(organization_id: str, data: GuestCreate, user: SessionUser, db: Session) -> Dict[str, Any]:
        """Create a guest, filling unset fields from the organization configuration.

        Without ``target_position`` the guest goes last; with it, the guest is
        inserted there and the guests from that position on shift down.
        """
        organization, _ = OrganizationService.require_member(organization_id, user.id, db)
        defaults = config_service.guest_defaults(organization.configuration or {})

        categories = data.categories or defaults["categories"]
        if not categories:
            raise ValidationError("A guest needs at least one category")

        guest = Guest(
            organization_id=organization_id,
            name=data.name.strip(),
            categories=categories,
            age_group=data.age_group or defaults["age_group"],
            food_preference=data.food_preference or defaults["food_preference"],
            food_preferences=data.food_preferences if data.food_preferences is not None else defaults["food_preferences"],
            confirmation_stage=data.confirmation_stage or defaults["confirmation_stage"],
            custom_fields=data.custom_fields or {},
            family_color=data.family_color,
            created_by=user.id,
        )

        guests = GuestRepo.list_ordered(db, organization_id)
        if data.target_position is not None:
            index = min(data.target_position, len(guests) + 1) - 1
            guest.display_order = index + 1
            GuestRepo.add(db, guest)
            guests.insert(index, guest)
            GuestRepo.apply_order(db, guests)
        else:
            guest.display_order = GuestRepo.max_display_order(db, organization_id) + 1
            GuestRepo.add(db, guest)

        db.commit()
        db.refresh(guest)
        logger.info(f"Guest {guest.id} added to organization {organization_id} at position {guest.display_order}")
        return guest.to_dict()

    @staticmethod
    def update_guest(
        organization_id: str,
        guest_id: str,
        data: GuestUpdate,
        user: SessionUser,
        db: Session,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Apply a partial update; returns the stored guest and the fields applied"""
        OrganizationService.require_member(organization_id, user.id, db)
        guest = GuestService._get_guest(organization_id, guest_id, db)

        applied: Dict[str, Any] = {}
        for field, value in data.model_dump(exclude_unset=True).items():
            if field not in UPDATABLE_FIELDS:
                continue
            if value is None and field not in NULLABLE_FIELDS:
                continue
            if field == "categories" and not value:
                raise ValidationError("A guest needs at least one category", details=[{"field": "categories", "message": "must not be empty"}])
            if field == "name":
                value = value.strip()
            applied[field] = value

        if applied:
            for field, value in applied.items():
                setattr(guest, field, value)
            guest.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(guest)
        return guest.to_dict(), applied

    @staticmethod
    def delete_guest(organization_id: str, guest_id: str, user: SessionUser, db: Session) -> Dict[str, Any]:
        """Delete a guest and close the gap it leaves in the ordering"""
        OrganizationService.require_member(organization_id, user.id, db)
        guest = GuestService._get_guest(organization_id, guest_id, db)
        deleted = guest.to_dict()

        GuestRepo.delete(db, guest)
        GuestRepo.apply_order(db, GuestRepo.list_ordered(db, organization_id))
        db.commit()
        logger.info(f"Guest {guest_id} deleted from organization {organization_id}")
        return deleted

    @staticmethod
    def reorder_guests(organization_id: str, guest_ids: List[str], user: SessionUser, db: Session) -> List[str]:
        """Put the listed guests at positions 1..n in the given order.

        Guests left out keep their relative order after the listed ones;
        unknown ids are ignored. Returns the resulting full order.
        """
        OrganizationService.require_member(organization_id, user.id, db)
        guests = GuestRepo.list_ordered(db, organization_id)
        by_id = {guest.id: guest for guest in guests}

        ordered: List[Guest] = []
        seen = set()
        for guest_id in guest_ids:
            if guest_id in by_id and guest_id not in seen:
                ordered.append(by_id[guest_id])
                seen.add(guest_id)
        ordered.extend(guest for guest in guests if guest.id not in seen)

        GuestRepo.apply_order(db, ordered)
        db.commit()
        return [guest.id for guest in ordered]

    @staticmethod
    def move_to_end(organization_id: str, guest_id: str, user: SessionUser, db: Session) -> Dict[str, Any]:
        OrganizationService.require_member(organization_id, user.id, db)
        guest = GuestService._get_guest(organization_id, guest_id, db)

        guests = [g for g in GuestRepo.list_ordered(db, organization_id) if g.id != guest_id]
        guests.append(guest)
        GuestRepo.apply_order(db, guests)
        db.commit()
        db.refresh(guest)
        return guest.to_dict()

    @staticmethod
    def move_to_position(organization_id: str, guest_id: str, position: int, user: SessionUser, db: Session) -> Dict[str, Any]:
        """Move a guest to a 1-based position; positions past the end mean last"""
        OrganizationService.require_member(organization_id, user.id, db)
        guest = GuestService._get_guest(organization_id, guest_id, db)
        if position < 1:
            raise ValidationError("Target position must be 1 or greater")

        guests = [g for g in GuestRepo.list_ordered(db, organization_id) if g.id != guest_id]
        index = min(position, len(guests) + 1) - 1
        guests.insert(index, guest)
        GuestRepo.apply_order(db, guests)
        db.commit()
        db.refresh(guest)
        return guest.to_dict()

    @staticmethod
    def swap_positions(
        organization_id: str,
        first_id: str,
        second_id: str,
        user: SessionUser,
        db: Session,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        OrganizationService.require_member(organization_id, user.id, db)
        if first_id == second_id:
            raise ValidationError("Cannot swap a guest with itself")
        first = GuestService._get_guest(organization_id, first_id, db)
        second = GuestService._get_guest(organization_id, second_id, db)

        guests = GuestRepo.list_ordered(db, organization_id)
        i, j = guests.index(first), guests.index(second)
        guests[i], guests[j] = guests[j], guests[i]
        GuestRepo.apply_order(db, guests)
        db.commit()
        db.refresh(first)
        db.refresh(second)
        return first.to_dict(), second.to_dict()

    @staticmethod
    def statistics(organization_id: str, user: SessionUser, db: Session) -> Dict[str, Any]:
        organization, _ = OrganizationService.require_member(organization_id, user.id, db)
        guests = [guest.to_dict() for guest in GuestRepo.list_ordered(db, organization_id)]
        return guest_statistics(guests, organization.configuration or {})

