"""
Per-organization broadcast hub for Server-Sent Events subscribers
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from guestlist.core.config import settings
from guestlist.schemas.events import (
    ConnectedEvent,
    OnlineUsersEvent,
    PresenceUser,
    UserConnectedEvent,
    UserDisconnectedEvent,
    encode_frame,
)

logger = logging.getLogger(__name__)


class Connection:
    """One live stream connection of one user to one organization.

    Frames are buffered in a bounded queue drained by the stream endpoint.
    A ``None`` in the queue tells the reader to stop.
    """

    def __init__(self, organization_id: str, user_id: str, user_name: str, last_seen: float, queue_size: int):
        self.organization_id = organization_id
        self.user_id = user_id
        self.user_name = user_name
        self.last_seen = last_seen
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.cancelled = False

    @property
    def presence(self) -> PresenceUser:
        return PresenceUser(id=self.user_id, name=self.user_name)

    def send(self, frame: str) -> bool:
        """Buffer a frame; False means the connection is dead"""
        if self.cancelled:
            return False
        try:
            self.queue.put_nowait(frame)
            return True
        except asyncio.QueueFull:
            return False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        # The stop marker must get through even when the buffer is full
        while True:
            try:
                self.queue.put_nowait(None)
                return
            except asyncio.QueueFull:
                self.queue.get_nowait()


class BroadcastHub(ABC):
    """Publish/subscribe interface for organization-scoped stream events.

    Only an in-process implementation exists; a multi-instance deployment
    needs one backed by an external broker.
    """

    @abstractmethod
    async def subscribe(self, organization_id: str, user_id: str, user_name: str) -> Connection:
        ...

    @abstractmethod
    async def unsubscribe(self, organization_id: str, user_id: str, connection: Optional[Connection] = None) -> None:
        ...

    @abstractmethod
    async def broadcast(
        self,
        organization_id: str,
        payload: Union[BaseModel, dict],
        exclude_user_id: Optional[str] = None,
    ) -> int:
        ...

    @abstractmethod
    async def touch(self, connection: Connection) -> None:
        ...

    @abstractmethod
    async def sweep(self) -> List[str]:
        ...

    def get_all_connection_counts(self) -> Dict[str, int]:
        return {}

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


class InMemoryBroadcastHub(BroadcastHub):
    """Broadcast hub holding live connections in process memory"""

    def __init__(
        self,
        connection_timeout: float = settings.CONNECTION_TIMEOUT_SECONDS,
        sweep_interval: float = settings.SWEEP_INTERVAL_SECONDS,
        queue_size: int = settings.STREAM_QUEUE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        # organization_id -> user_id -> connection
        self.active_connections: Dict[str, Dict[str, Connection]] = {}
        self.connection_timeout = connection_timeout
        self.sweep_interval = sweep_interval
        self.queue_size = queue_size
        self.clock = clock
        self._lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    async def subscribe(self, organization_id: str, user_id: str, user_name: str) -> Connection:
        """Register a connection, superseding any previous one of the same user"""
        connection = Connection(organization_id, user_id, user_name, self.clock(), self.queue_size)

        async with self._lock:
            org_connections = self.active_connections.setdefault(organization_id, {})
            previous = org_connections.get(user_id)
            org_connections[user_id] = connection
            roster = [c.presence for c in org_connections.values() if c.user_id != user_id]

        connection.send(encode_frame(ConnectedEvent(timeout=self.connection_timeout)))
        connection.send(encode_frame(OnlineUsersEvent(users=roster)))

        if previous is not None:
            previous.cancel()
            logger.info(f"Superseded stream connection of user {user_id} in organization {organization_id}")
            await self.broadcast(organization_id, UserDisconnectedEvent(user=previous.presence), exclude_user_id=user_id)

        await self.broadcast(organization_id, UserConnectedEvent(user=connection.presence), exclude_user_id=user_id)
        logger.info(f"User {user_id} connected to organization {organization_id}. Total connections: {len(org_connections)}")
        return connection

    async def unsubscribe(self, organization_id: str, user_id: str, connection: Optional[Connection] = None) -> None:
        """Remove a user's connection and announce the disconnect.

        When ``connection`` is given, nothing happens unless it is still the
        registered one (a superseded connection must not evict its successor).
        """
        async with self._lock:
            org_connections = self.active_connections.get(organization_id)
            if not org_connections:
                return
            current = org_connections.get(user_id)
            if current is None or (connection is not None and current is not connection):
                return
            del org_connections[user_id]
            if not org_connections:
                del self.active_connections[organization_id]

        current.cancel()
        logger.info(f"User {user_id} disconnected from organization {organization_id}")
        await self.broadcast(organization_id, UserDisconnectedEvent(user=current.presence))

    async def broadcast(
        self,
        organization_id: str,
        payload: Union[BaseModel, dict],
        exclude_user_id: Optional[str] = None,
    ) -> int:
        """Send one frame to every subscriber of an organization.

        Subscribers that cannot take the frame are evicted. Never raises for
        delivery problems; returns the number of subscribers reached.
        """
        if isinstance(payload, BaseModel):
            frame = encode_frame(payload)
        else:
            frame = f"data: {_dump_json(payload)}\n\n"

        async with self._lock:
            connections = list(self.active_connections.get(organization_id, {}).values())

        delivered = 0
        dead: List[Connection] = []
        for connection in connections:
            if connection.user_id == exclude_user_id:
                continue
            if connection.send(frame):
                delivered += 1
            else:
                dead.append(connection)

        if dead:
            logger.warning(f"Evicting {len(dead)} dead connection(s) from organization {organization_id}")
            await self._evict(organization_id, dead)
        return delivered

    async def touch(self, connection: Connection) -> None:
        connection.last_seen = self.clock()

    async def sweep(self) -> List[str]:
        """Cancel connections silent for longer than the timeout; returns their user ids"""
        now = self.clock()
        expired: List[Connection] = []

        async with self._lock:
            for organization_id in list(self.active_connections):
                org_connections = self.active_connections[organization_id]
                for user_id, connection in list(org_connections.items()):
                    if now - connection.last_seen > self.connection_timeout:
                        del org_connections[user_id]
                        expired.append(connection)
                if not org_connections:
                    del self.active_connections[organization_id]

        for connection in expired:
            connection.cancel()
            logger.info(f"Expired idle connection of user {connection.user_id} in organization {connection.organization_id}")
            await self.broadcast(connection.organization_id, UserDisconnectedEvent(user=connection.presence))
        return [connection.user_id for connection in expired]

    def online_users(self, organization_id: str) -> List[PresenceUser]:
        return [c.presence for c in self.active_connections.get(organization_id, {}).values()]

    def get_connection_count(self, organization_id: str) -> int:
        return len(self.active_connections.get(organization_id, {}))

    def get_all_connection_counts(self) -> Dict[str, int]:
        return {
            organization_id: len(connections)
            for organization_id, connections in self.active_connections.items()
        }

    async def start(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        async with self._lock:
            connections = [c for org in self.active_connections.values() for c in org.values()]
            self.active_connections.clear()
        for connection in connections:
            connection.cancel()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error sweeping idle connections: {e}")

    async def _evict(self, organization_id: str, dead: List[Connection]) -> None:
        async with self._lock:
            org_connections = self.active_connections.get(organization_id, {})
            for connection in dead:
                if org_connections.get(connection.user_id) is connection:
                    del org_connections[connection.user_id]
            if organization_id in self.active_connections and not org_connections:
                del self.active_connections[organization_id]
        for connection in dead:
            connection.cancel()


def _dump_json(payload: dict) -> str:
    return json.dumps(payload, default=str)
