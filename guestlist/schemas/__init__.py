"""
Pydantic schemas package
"""

from .common import *
from .organization import *
from .guest import *
from .events import *
from .transfer import *

__all__ = [
    "StandardResponse",
    "ErrorResponse",
    "EventConfiguration",
    "OrganizationCreate",
    "OrganizationUpdate",
    "OrganizationResponse",
    "OrganizationPreview",
    "ConfigUpdate",
    "JoinRequest",
    "MemberResponse",
    "GuestCreate",
    "GuestUpdate",
    "GuestResponse",
    "GuestStatistics",
    "ReorderRequest",
    "MoveRequest",
    "SwapRequest",
    "StreamEvent",
    "GuestMutationEvent",
    "parse_event",
    "encode_frame",
    "ExportData",
    "ImportRequest",
    "ImportSummary",
]
