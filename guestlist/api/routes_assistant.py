"""
AI assistant chat route
"""

from fastapi import APIRouter, Depends, Request
from openai import AsyncOpenAI
from sqlalchemy.orm import Session

from guestlist.api.routes_stream import get_broadcast_hub
from guestlist.core.config import settings
from guestlist.core.db import get_db
from guestlist.schemas.assistant import ChatRequest
from guestlist.services.assistant_service import AssistantService, AssistantUnavailableError
from guestlist.services.broadcast_hub import BroadcastHub
from guestlist.services.collaboration_service import CollaborationService
from guestlist.utils.responses import success_response
from guestlist.utils.security import SessionUser, enforce_rate_limit, get_client_ip, get_current_user

router = APIRouter()

_llm_client = None

def get_llm_client() -> AsyncOpenAI:
    """Shared OpenAI client; tests override this dependency"""
    global _llm_client
    if not settings.OPENAI_API_KEY:
        raise AssistantUnavailableError("The assistant is not configured")
    if _llm_client is None:
        _llm_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _llm_client

@router.post("/organizations/{organization_id}/chat")
async def chat_with_assistant(
    organization_id: str,
    data: ChatRequest,
    request: Request,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    hub: BroadcastHub = Depends(get_broadcast_hub),
    llm_client: AsyncOpenAI = Depends(get_llm_client)
):
    """Send the conversation to the assistant; it may edit guests on the way"""
    enforce_rate_limit(get_client_ip(request))

    assistant = AssistantService(llm_client, CollaborationService(hub))
    response = await assistant.chat(organization_id, data.messages, user, db)
    return success_response(
        message="Assistant replied",
        data=response.model_dump()
    )
