"""
Repository layer over the relational store.

Every query that touches guests or members is scoped by organization id.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from guestlist.models import Guest, Organization, OrganizationMember, User


# -------- User repository --------

class UserRepo:
    @staticmethod
    def get_by_id(db: Session, user_id: str) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_by_session_token(db: Session, token: str) -> Optional[User]:
        return db.query(User).filter(User.session_token == token).first()

    @staticmethod
    def upsert(db: Session, user_id: str, email: str, name: Optional[str] = None) -> User:
        """Mirror an identity-provider user into the users table"""
        user = UserRepo.get_by_id(db, user_id)
        if user is None:
            user = User(id=user_id, email=email, name=name)
            db.add(user)
        else:
            user.email = email or user.email
            user.name = name or user.name
        db.flush()
        return user


# -------- Organization repository --------

class OrganizationRepo:
    @staticmethod
    def get_by_id(db: Session, organization_id: str) -> Optional[Organization]:
        return db.query(Organization).filter(Organization.id == organization_id).first()

    @staticmethod
    def get_by_invite_code(db: Session, invite_code: str) -> Optional[Organization]:
        return db.query(Organization).filter(Organization.invite_code == invite_code.upper()).first()

    @staticmethod
    def invite_code_taken(db: Session, invite_code: str, exclude_id: Optional[str] = None) -> bool:
        query = db.query(Organization.id).filter(Organization.invite_code == invite_code)
        if exclude_id:
            query = query.filter(Organization.id != exclude_id)
        return query.first() is not None

    @staticmethod
    def list_for_user(db: Session, user_id: str) -> List[tuple]:
        """(organization, role) pairs, newest first"""
        return (
            db.query(Organization, OrganizationMember.role)
            .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
            .filter(OrganizationMember.user_id == user_id)
            .order_by(Organization.created_at.desc())
            .all()
        )

    @staticmethod
    def create(db: Session, name: str, invite_code: str, admin_id: str, event_type: str, configuration: dict) -> Organization:
        organization = Organization(
            name=name,
            invite_code=invite_code,
            admin_id=admin_id,
            event_type=event_type,
            configuration=configuration,
        )
        db.add(organization)
        db.flush()
        return organization


# -------- Member repository --------

class MemberRepo:
    @staticmethod
    def get(db: Session, organization_id: str, user_id: str) -> Optional[OrganizationMember]:
        return db.query(OrganizationMember).filter(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user_id,
        ).first()

    @staticmethod
    def add(db: Session, organization_id: str, user_id: str, role: str = "member") -> OrganizationMember:
        member = OrganizationMember(organization_id=organization_id, user_id=user_id, role=role)
        db.add(member)
        db.flush()
        return member

    @staticmethod
    def list_with_users(db: Session, organization_id: str) -> List[tuple]:
        """(member, user) pairs ordered by join date"""
        return (
            db.query(OrganizationMember, User)
            .join(User, User.id == OrganizationMember.user_id)
            .filter(OrganizationMember.organization_id == organization_id)
            .order_by(OrganizationMember.joined_at)
            .all()
        )


# -------- Guest repository --------

class GuestRepo:
    @staticmethod
    def list_ordered(db: Session, organization_id: str) -> List[Guest]:
        return db.query(Guest).filter(
            Guest.organization_id == organization_id
        ).order_by(Guest.display_order, Guest.created_at).all()

    @staticmethod
    def get(db: Session, organization_id: str, guest_id: str) -> Optional[Guest]:
        return db.query(Guest).filter(
            Guest.organization_id == organization_id,
            Guest.id == guest_id,
        ).first()

    @staticmethod
    def max_display_order(db: Session, organization_id: str) -> int:
        return db.query(func.max(Guest.display_order)).filter(Guest.organization_id == organization_id).scalar() or 0

    @staticmethod
    def add(db: Session, guest: Guest) -> Guest:
        db.add(guest)
        db.flush()
        return guest

    @staticmethod
    def delete(db: Session, guest: Guest) -> None:
        db.delete(guest)
        db.flush()

    @staticmethod
    def delete_all(db: Session, organization_id: str) -> int:
        return db.query(Guest).filter(Guest.organization_id == organization_id).delete(synchronize_session=False)

    @staticmethod
    def apply_order(db: Session, guests: List[Guest]) -> None:
        """Write positions 1..n following the list order"""
        now = datetime.utcnow()
        for position, guest in enumerate(guests, start=1):
            if guest.display_order != position:
                guest.display_order = position
                guest.updated_at = now
        db.flush()
