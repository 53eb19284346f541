"""
Guest model
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from guestlist.core.db import Base

class Guest(Base):
    __tablename__ = "guests"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    organization_id = Column(String(64), ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    categories = Column(JSON, nullable=False, default=list)
    age_group = Column(String(100), nullable=True)
    food_preference = Column(String(100), nullable=True)
    food_preferences = Column(JSON, nullable=False, default=list)
    confirmation_stage = Column(String(100), nullable=False, default="invited")
    custom_fields = Column(JSON, nullable=False, default=dict)
    family_color = Column(String(7), nullable=True)  # hex color, e.g. #aabbcc
    display_order = Column(Integer, nullable=False, index=True)
    created_by = Column(String(64), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    organization = relationship("Organization", back_populates="guests")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "categories": list(self.categories or []),
            "age_group": self.age_group,
            "food_preference": self.food_preference,
            "food_preferences": list(self.food_preferences or []),
            "confirmation_stage": self.confirmation_stage,
            "custom_fields": dict(self.custom_fields or {}),
            "family_color": self.family_color,
            "display_order": self.display_order,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
