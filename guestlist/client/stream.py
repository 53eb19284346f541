"""
Event stream consumer with presence tracking and automatic reconnect
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from guestlist.schemas.events import (
    OnlineUsersEvent,
    PresenceUser,
    UserConnectedEvent,
    UserDisconnectedEvent,
    parse_event,
)

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 3.0


class StreamClosedError(Exception):
    """The server refused or ended the stream"""


class EventStreamClient:
    """Reads one organization's event stream and hands every event to the handlers.

    Any connection error or end of stream is followed by a reconnect after
    ``reconnect_delay`` seconds, for as long as the client runs.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        organization_id: str,
        *,
        base_path: str = "/api",
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.organization_id = organization_id
        self.path = f"{base_path.rstrip('/')}/organizations/{organization_id}/stream"
        self.reconnect_delay = reconnect_delay
        self._sleep = sleep
        self.online_users: Dict[str, PresenceUser] = {}
        self.is_connected = False
        self.connect_attempts = 0
        self._handlers: List[Callable[[Any], Any]] = []
        self._stopped = False
        self._task: Optional[asyncio.Task] = None

    def add_handler(self, handler: Callable[[Any], Any]) -> None:
        """Register a sync or async callable invoked with each parsed event"""
        self._handlers.append(handler)

    async def run(self) -> None:
        self._stopped = False
        while not self._stopped:
            self.connect_attempts += 1
            try:
                await self._consume()
            except (httpx.HTTPError, StreamClosedError) as e:
                logger.warning(f"Event stream for organization {self.organization_id} failed: {e}")
            finally:
                self.is_connected = False
                self.online_users.clear()

            if self._stopped:
                break
            logger.info(f"Reconnecting event stream in {self.reconnect_delay}s")
            await self._sleep(self.reconnect_delay)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    def close(self) -> None:
        """Make ``run()`` return after the current event instead of reconnecting"""
        self._stopped = True

    async def stop(self) -> None:
        self.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _consume(self) -> None:
        async with self.client.stream("GET", self.path, headers={"Accept": "text/event-stream"}) as resp:
            if resp.status_code >= 400:
                raise StreamClosedError(f"stream request rejected with status {resp.status_code}")
            self.is_connected = True
            async for line in resp.aiter_lines():
                if not line.startswith("data:"):
                    continue
                try:
                    event = parse_event(line[len("data:"):].strip())
                except PydanticValidationError:
                    logger.warning(f"Ignoring malformed stream frame: {line[:200]}")
                    continue
                await self.dispatch(event)
                if self._stopped:
                    return
        raise StreamClosedError("stream ended")

    async def dispatch(self, event: Any) -> None:
        """Update presence from the event, then run the handlers"""
        if isinstance(event, OnlineUsersEvent):
            self.online_users = {user.id: user for user in event.users}
        elif isinstance(event, UserConnectedEvent):
            self.online_users[event.user.id] = event.user
        elif isinstance(event, UserDisconnectedEvent):
            self.online_users.pop(event.user.id, None)

        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Stream event handler failed on {event.type}: {e}")
