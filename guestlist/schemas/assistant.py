"""
AI assistant chat schemas
"""

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str

class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1)

class ToolResult(BaseModel):
    tool: str
    arguments: Dict[str, Any]
    result: Dict[str, Any]

class ChatResponse(BaseModel):
    reply: str
    tool_results: List[ToolResult] = []

# Tool argument schemas, exposed to the model as JSON Schema

class AssistantGuestInput(BaseModel):
    name: str = Field(description="The name of the guest")
    categories: Optional[List[str]] = Field(default=None, description="Array of category IDs for the guest")
    age_group: Optional[str] = Field(default=None, description="The age group ID of the guest")
    food_preference: Optional[str] = Field(default=None, description="The food preference ID of the guest")
    food_preferences: Optional[List[str]] = Field(default=None, description="Array of food preference IDs")
    confirmation_stage: Optional[str] = Field(default=None, description="The confirmation stage ID (invited, confirmed, declined, etc)")

class AssistantGuestPatch(BaseModel):
    name: Optional[str] = Field(default=None, description="The new name of the guest")
    categories: Optional[List[str]] = Field(default=None, description="Array of category IDs for the guest")
    age_group: Optional[str] = Field(default=None, description="The age group ID of the guest")
    food_preference: Optional[str] = Field(default=None, description="The food preference ID of the guest")
    food_preferences: Optional[List[str]] = Field(default=None, description="Array of food preference IDs")
    confirmation_stage: Optional[str] = Field(default=None, description="The confirmation stage ID")

class CreateMultipleGuestsInput(BaseModel):
    guests: List[AssistantGuestInput] = Field(description="Array of guests to create")

class UpdateGuestInput(BaseModel):
    guestId: str = Field(description="The ID of the guest to update")
    updates: AssistantGuestPatch = Field(description="Fields to update on the guest")

class DeleteGuestInput(BaseModel):
    guestId: str = Field(description="The ID of the guest to delete")

class EmptyInput(BaseModel):
    pass
