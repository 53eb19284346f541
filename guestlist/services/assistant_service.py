"""
AI assistant that edits the guest list through tool calls
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from openai import AsyncOpenAI
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from guestlist.core.config import settings
from guestlist.core.exceptions import GuestListError
from guestlist.schemas.assistant import (
    AssistantGuestInput,
    ChatMessage,
    ChatResponse,
    CreateMultipleGuestsInput,
    DeleteGuestInput,
    EmptyInput,
    ToolResult,
    UpdateGuestInput,
)
from guestlist.schemas.guest import GuestCreate, GuestUpdate
from guestlist.services.collaboration_service import Actor, CollaborationService
from guestlist.services.guest_service import GuestService
from guestlist.services.organization_service import OrganizationService
from guestlist.utils.security import SessionUser

logger = logging.getLogger(__name__)


class AssistantUnavailableError(GuestListError):
    status_code = 503
    default_code = "assistant_unavailable"


def _inline_refs(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Inline local ``$defs`` references so the schema stands alone"""
    defs = schema.get("$defs", {})

    def _deref(obj: Any) -> Any:
        if isinstance(obj, dict):
            ref = obj.get("$ref")
            if isinstance(ref, str) and ref.startswith("#/$defs/"):
                return _deref(defs.get(ref.split("/")[-1], {}))
            return {k: _deref(v) for k, v in obj.items() if k != "$defs"}
        if isinstance(obj, list):
            return [_deref(x) for x in obj]
        return obj

    return _deref(schema)


def build_system_prompt(organization: Dict[str, Any]) -> str:
    config = organization.get("configuration") or {}
    categories = config.get("categories") or []
    age_groups = config.get("ageGroups") or {}
    food = config.get("foodPreferences") or {}
    stages = config.get("confirmationStages") or {}

    def listing(block: Dict[str, Any], key: str) -> str:
        if not block.get("enabled"):
            return "Not enabled"
        return ", ".join(f"{item['label']} ({item['id']})" for item in block.get(key) or [])

    default_stage = (stages.get("stages") or [{"id": "invited"}])[0]["id"]
    default_category = categories[0]["id"] if categories else ""
    category_listing = listing({"enabled": True, "items": categories}, "items")

    return (
        "You are a helpful assistant for a wedding guest planning application.\n\n"
        "Current organization configuration:\n"
        f"- Event Type: {organization.get('event_type')}\n"
        f"- Categories: {category_listing}\n"
        f"- Age Groups: {listing(age_groups, 'groups')}\n"
        f"- Food Preferences: {listing(food, 'options')}\n"
        f"- Confirmation Stages: {listing(stages, 'stages')}\n\n"
        "When creating guests:\n"
        "- Always use the ID values (not labels) for categories, age groups, food preferences, and confirmation stages\n"
        f"- Default confirmation stage is \"{default_stage}\"\n"
        f"- Default category is \"{default_category}\"\n\n"
        "Be helpful and conversational. When users provide lists of names, help them create guests efficiently."
    )


class AssistantService:
    """Runs one chat turn against the LLM, executing guest tools it asks for.

    Every successful mutating tool call is broadcast to the organization with
    ``isAI`` set, so the requesting user's own session applies it too.
    """

    def __init__(
        self,
        llm_client: AsyncOpenAI,
        collaboration: CollaborationService,
        model: str = settings.OPENAI_MODEL,
        max_rounds: int = settings.ASSISTANT_MAX_TOOL_ROUNDS,
    ):
        self.llm_client = llm_client
        self.collaboration = collaboration
        self.model = model
        self.max_rounds = max_rounds
        self.tools: Dict[str, Tuple[str, Type[BaseModel], Callable[..., Awaitable[Dict[str, Any]]]]] = {
            "create_guest": ("Create a single guest", AssistantGuestInput, self._create_guest),
            "create_multiple_guests": ("Create multiple guests at once", CreateMultipleGuestsInput, self._create_multiple_guests),
            "update_guest": ("Update an existing guest", UpdateGuestInput, self._update_guest),
            "delete_guest": ("Delete a guest", DeleteGuestInput, self._delete_guest),
            "get_guests": ("Get the list of all guests", EmptyInput, self._get_guests),
            "get_organization_info": ("Get information about the organization configuration", EmptyInput, self._get_organization_info),
        }

    def tool_definitions(self) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": description,
                    "parameters": _inline_refs(schema.model_json_schema()),
                },
            }
            for name, (description, schema, _) in self.tools.items()
        ]

    async def chat(
        self,
        organization_id: str,
        messages: List[ChatMessage],
        user: SessionUser,
        db: Session,
    ) -> ChatResponse:
        organization = OrganizationService.get_organization(organization_id, user, db)
        actor = Actor(user.id, user.name, is_ai=True)

        conversation: List[Dict[str, Any]] = [{"role": "system", "content": build_system_prompt(organization)}]
        conversation += [message.model_dump() for message in messages]
        tool_results: List[ToolResult] = []

        for _ in range(self.max_rounds):
            response = await self.llm_client.chat.completions.create(
                model=self.model,
                messages=conversation,
                tools=self.tool_definitions(),
            )
            message = response.choices[0].message
            if not message.tool_calls:
                return ChatResponse(reply=message.content or "", tool_results=tool_results)

            conversation.append({
                "role": "assistant",
                "content": message.content,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.function.name, "arguments": call.function.arguments},
                    }
                    for call in message.tool_calls
                ],
            })
            for call in message.tool_calls:
                arguments, result = await self.run_tool(
                    call.function.name, call.function.arguments, organization_id, actor, user, db
                )
                tool_results.append(ToolResult(tool=call.function.name, arguments=arguments, result=result))
                conversation.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result, default=str),
                })

        logger.warning(f"Assistant stopped after {self.max_rounds} tool rounds for organization {organization_id}")
        return ChatResponse(
            reply="I made the changes I could but stopped before finishing. Please check the guest list.",
            tool_results=tool_results,
        )

    async def run_tool(
        self,
        name: str,
        raw_arguments: Optional[str],
        organization_id: str,
        actor: Actor,
        user: SessionUser,
        db: Session,
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Execute one tool call; failures become ``{"success": False, "error": ...}``"""
        try:
            arguments = json.loads(raw_arguments or "{}")
        except json.JSONDecodeError:
            return {}, {"success": False, "error": "Arguments are not valid JSON"}

        tool = self.tools.get(name)
        if tool is None:
            return arguments, {"success": False, "error": f"Unknown tool: {name}"}
        _, schema, handler = tool

        try:
            payload = schema.model_validate(arguments)
            result = await handler(payload, organization_id, actor, user, db)
        except PydanticValidationError as e:
            db.rollback()
            return arguments, {"success": False, "error": f"Invalid arguments: {e.errors()[0].get('msg')}"}
        except GuestListError as e:
            db.rollback()
            return arguments, {"success": False, "error": e.message}

        logger.info(f"Assistant tool {name} succeeded for organization {organization_id}")
        return arguments, result

    async def _add(self, guest: AssistantGuestInput, organization_id: str, actor: Actor, user: SessionUser, db: Session) -> Dict[str, Any]:
        data = GuestCreate(**guest.model_dump(exclude_none=True))
        created = GuestService.create_guest(organization_id, data, user, db)
        await self.collaboration.guest_added(organization_id, actor, created)
        return created

    async def _create_guest(self, payload: AssistantGuestInput, organization_id, actor, user, db) -> Dict[str, Any]:
        created = await self._add(payload, organization_id, actor, user, db)
        return {"success": True, "guest": created}

    async def _create_multiple_guests(self, payload: CreateMultipleGuestsInput, organization_id, actor, user, db) -> Dict[str, Any]:
        results = []
        for guest in payload.guests:
            try:
                created = await self._add(guest, organization_id, actor, user, db)
                results.append({"success": True, "guest": created})
            except (GuestListError, PydanticValidationError) as e:
                db.rollback()
                message = e.message if isinstance(e, GuestListError) else "Invalid guest data"
                results.append({"success": False, "guestName": guest.name, "error": message})
        return {"results": results}

    async def _update_guest(self, payload: UpdateGuestInput, organization_id, actor, user, db) -> Dict[str, Any]:
        data = GuestUpdate(**payload.updates.model_dump(exclude_none=True))
        guest, applied = GuestService.update_guest(organization_id, payload.guestId, data, user, db)
        if applied:
            await self.collaboration.guest_updated(organization_id, actor, guest["id"], applied, guest["name"])
        return {"success": True, "guest": guest}

    async def _delete_guest(self, payload: DeleteGuestInput, organization_id, actor, user, db) -> Dict[str, Any]:
        deleted = GuestService.delete_guest(organization_id, payload.guestId, user, db)
        await self.collaboration.guest_deleted(organization_id, actor, deleted["id"], deleted["name"])
        return {"success": True}

    async def _get_guests(self, payload: EmptyInput, organization_id, actor, user, db) -> Dict[str, Any]:
        return {"success": True, "guests": GuestService.list_guests(organization_id, user, db)}

    async def _get_organization_info(self, payload: EmptyInput, organization_id, actor, user, db) -> Dict[str, Any]:
        return {"success": True, "organization": OrganizationService.get_organization(organization_id, user, db)}
