"""
Database models package
"""

from .user import User
from .organization import Organization, OrganizationMember
from .guest import Guest

__all__ = ["User", "Organization", "OrganizationMember", "Guest"]
