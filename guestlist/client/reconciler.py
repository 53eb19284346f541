"""
Optimistic guest list session.

Every mutation is applied to ``GuestListSession.guests`` at once and queued
as a ``PendingUpdate``. A single worker task sends queued updates to the
server one at a time in the order they were issued, merges the server's
answer back in, and announces the change to other sessions through the
broadcast endpoint. A failed update is rolled back locally and reported
through ``on_error``; it is not retried.

Field values carry a last-write timestamp per (guest id, field) in
``FieldClock``. A server response or a remote event only overwrites a field
when nothing newer has been written to that field locally.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple, Union

import httpx

from guestlist.client import ordering
from guestlist.client.api import ApiError, GuestApiClient
from guestlist.schemas.events import (
    GuestAddedEvent,
    GuestDeletedEvent,
    GuestMovedEvent,
    GuestsReorderedEvent,
    GuestsSwappedEvent,
    GuestUpdatedEvent,
    parse_event,
)
from guestlist.services.config_service import guest_defaults
from guestlist.utils.stats import guest_statistics

logger = logging.getLogger(__name__)

Guest = ordering.Guest

TEMP_ID_PREFIX = "temp-"

# Fields owned by the server or by the list position, never merged from updates
PROTECTED_FIELDS = {"id", "organization_id", "display_order", "created_by", "created_at"}


class UpdateType(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    REORDER = "reorder"
    MOVE_TO_END = "move_to_end"


class UpdateStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PendingUpdate:
    """One queued server write and what is needed to reconcile or undo it.

    ``previous_state`` holds the replaced field values for updates, the
    removed guest for deletes and the previous id order for reorders.
    """
    type: UpdateType
    timestamp: int
    guest_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    previous_state: Any = None
    updated_fields: List[str] = field(default_factory=list)
    status: UpdateStatus = UpdateStatus.PENDING
    error: Optional[str] = None
    # Failed attempts; a failed write is rolled back, not resent
    retry_count: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class FieldClock:
    """Latest write timestamp per (guest id, field)"""

    def __init__(self) -> None:
        self._stamps: Dict[Tuple[str, str], int] = {}

    def get(self, guest_id: str, field_name: str) -> Optional[int]:
        return self._stamps.get((guest_id, field_name))

    def record(self, guest_id: str, fields: Iterable[str], timestamp: int) -> None:
        for field_name in fields:
            self._stamps[(guest_id, field_name)] = timestamp

    def is_stale(self, guest_id: str, field_name: str, timestamp: int) -> bool:
        """True when the field was written after ``timestamp``"""
        latest = self.get(guest_id, field_name)
        return latest is not None and latest > timestamp

    def accepts(self, guest_id: str, field_name: str, timestamp: int) -> bool:
        """True when a write stamped ``timestamp`` is newer than anything seen"""
        latest = self.get(guest_id, field_name)
        return latest is None or timestamp > latest

    def clear_if_latest(self, guest_id: str, field_name: str, timestamp: int) -> bool:
        key = (guest_id, field_name)
        if self._stamps.get(key) == timestamp:
            del self._stamps[key]
            return True
        return False

    def rename(self, old_id: str, new_id: str) -> None:
        for (guest_id, field_name) in list(self._stamps):
            if guest_id == old_id:
                self._stamps[(new_id, field_name)] = self._stamps.pop((guest_id, field_name))

    def forget(self, guest_id: str) -> None:
        for key in [key for key in self._stamps if key[0] == guest_id]:
            del self._stamps[key]


def _to_millis(value: Union[datetime, int, float]) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    return int(value)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class GuestListSession:
    """Guest list of one organization as seen by one user.

    Mutating methods return immediately; call ``start()`` to run the worker
    and ``wait_idle()`` to wait until the queue is drained.
    """

    def __init__(
        self,
        api: GuestApiClient,
        user_id: str,
        user_name: str,
        *,
        configuration: Optional[Dict[str, Any]] = None,
        on_error: Optional[Callable[[str], Any]] = None,
        clock: Optional[Callable[[], float]] = None,
        refetch_delay: float = 0.1,
    ) -> None:
        self.api = api
        self.user_id = user_id
        self.user_name = user_name
        self.configuration: Dict[str, Any] = configuration or {}
        self.on_error = on_error
        self.refetch_delay = refetch_delay
        self._clock = clock or (lambda: time.time() * 1000)
        self._last_timestamp = 0

        self.guests: List[Guest] = []
        self.queue: Deque[PendingUpdate] = deque()
        self.field_clock = FieldClock()

        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._worker: Optional[asyncio.Task] = None
        self._refetch: Optional[asyncio.Task] = None
        # Ids another session deleted; a failed local delete must not bring them back
        self._remote_deleted: Set[str] = set()

    # -------- Lifecycle --------

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run_worker())

    async def stop(self) -> None:
        for task in (self._worker, self._refetch):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._worker = None
        self._refetch = None

    async def wait_idle(self) -> None:
        """Wait until every queued update has been sent and reconciled"""
        await self._idle.wait()

    async def load_guests(self) -> List[Guest]:
        """Replace the local list with the server's.

        Writes still in the queue are replayed on top of the fresh list so
        they stay visible until the server has them.
        """
        server_guests = await self.api.list_guests()
        server_guests.sort(key=lambda guest: guest.get("display_order") or 0)
        self.guests = self._replay_queued(server_guests)
        return self.guests

    def _replay_queued(self, guests: List[Guest]) -> List[Guest]:
        local = {guest["id"]: guest for guest in self.guests}
        guests = list(guests)
        for item in list(self.queue):
            index = next((i for i, g in enumerate(guests) if g["id"] == item.guest_id), -1)

            if item.type == UpdateType.ADD:
                if index == -1 and item.guest_id in local:
                    position = item.payload.get("target_position") or len(guests) + 1
                    insert_at = max(0, min(position - 1, len(guests)))
                    guests.insert(insert_at, local[item.guest_id])

            elif item.type == UpdateType.UPDATE:
                if index != -1:
                    owned = {
                        key: value for key, value in item.payload.items()
                        if not self.field_clock.is_stale(item.guest_id, key, item.timestamp)
                    }
                    guests[index] = {**guests[index], **owned}

            elif item.type == UpdateType.DELETE:
                if index != -1:
                    del guests[index]

            elif item.type == UpdateType.REORDER:
                guests = ordering.apply_order(guests, item.payload["guestIds"])

            elif item.type == UpdateType.MOVE_TO_END:
                guests = ordering.move_to_end(guests, item.guest_id) or guests

        return ordering.resequence(guests)

    async def load_configuration(self) -> Dict[str, Any]:
        config = await self.api.get_configuration()
        self.configuration = config.get("configuration") or {}
        return self.configuration

    @property
    def stats(self) -> Dict[str, Any]:
        return guest_statistics(self.guests, self.configuration)

    @property
    def pending_count(self) -> int:
        return len(self.queue)

    def get_guest(self, guest_id: str) -> Optional[Guest]:
        index = self._index_of(guest_id)
        return self.guests[index] if index != -1 else None

    # -------- Optimistic operations --------

    def add_guest(self, name: str, **fields: Any) -> Guest:
        """Add a guest at the end of the list under a temporary id"""
        payload = {**guest_defaults(self.configuration), **fields, "name": name.strip()}
        guest = self._new_local_guest(payload)
        self.guests = ordering.resequence(self.guests + [guest])
        self._enqueue_add(guest, payload)
        return dict(guest)

    def clone_guest(self, guest: Guest) -> Optional[Guest]:
        """Insert ``guest``'s +1 right after them"""
        index = self._index_of(guest["id"])
        if index == -1:
            return None
        source = self.guests[index]
        payload = {
            key: source.get(key)
            for key in ("categories", "age_group", "food_preference", "food_preferences",
                        "confirmation_stage", "custom_fields", "family_color")
            if source.get(key) is not None
        }
        payload["name"] = ordering.plus_one_name(source["name"])
        payload["target_position"] = index + 2

        clone = self._new_local_guest(payload)
        self.guests = ordering.resequence(self.guests[:index + 1] + [clone] + self.guests[index + 1:])
        self._enqueue_add(clone, payload)
        return dict(clone)

    def update_guest(self, guest_id: str, updates: Dict[str, Any]) -> bool:
        """Apply ``updates`` to one guest; False when nothing was applied"""
        index = self._index_of(guest_id)
        if index == -1:
            logger.warning(f"Update for unknown guest {guest_id} ignored")
            return False

        updates = {k: v for k, v in updates.items() if k not in PROTECTED_FIELDS}
        if "categories" in updates and not updates["categories"]:
            logger.info(f"Ignoring update that would leave guest {guest_id} without categories")
            updates.pop("categories")
        if not updates:
            return False

        guest = self.guests[index]
        previous = {key: guest.get(key) for key in updates}
        timestamp = self._next_timestamp()
        self.guests[index] = {**guest, **updates}
        self.field_clock.record(guest_id, updates, timestamp)
        self._enqueue(PendingUpdate(
            type=UpdateType.UPDATE,
            timestamp=timestamp,
            guest_id=guest_id,
            payload=dict(updates),
            previous_state=previous,
            updated_fields=list(updates),
        ))
        return True

    def delete_guest(self, guest_id: str) -> bool:
        index = self._index_of(guest_id)
        if index == -1:
            return False
        removed = self.guests[index]
        self.guests = ordering.resequence(self.guests[:index] + self.guests[index + 1:])
        self._enqueue(PendingUpdate(
            type=UpdateType.DELETE,
            timestamp=self._next_timestamp(),
            guest_id=guest_id,
            previous_state=dict(removed),
        ))
        return True

    def reorder_guests(
        self,
        from_index: int,
        to_index: int,
        include_plus_one: bool = False,
        include_family_together: bool = False,
    ) -> bool:
        """Drag a guest (and optionally their +1 and family) to ``to_index``"""
        previous_ids = self._ids()
        reordered = ordering.reorder_guests(
            self.guests, from_index, to_index, include_plus_one, include_family_together
        )
        new_ids = [guest["id"] for guest in reordered]
        if new_ids == previous_ids:
            return False

        self.guests = reordered
        self._enqueue(PendingUpdate(
            type=UpdateType.REORDER,
            timestamp=self._next_timestamp(),
            payload={"guestIds": new_ids},
            previous_state=previous_ids,
        ))
        return True

    def move_guest_to_end(self, guest_id: str) -> bool:
        previous_ids = self._ids()
        moved = ordering.move_to_end(self.guests, guest_id)
        if moved is None:
            return False

        self.guests = moved
        self._enqueue(PendingUpdate(
            type=UpdateType.MOVE_TO_END,
            timestamp=self._next_timestamp(),
            guest_id=guest_id,
            previous_state=previous_ids,
        ))
        return True

    # -------- Remote events --------

    def apply_remote_event(self, event: Any) -> bool:
        """Merge a stream event from another session into the local list.

        Returns True when local state changed or a refetch was scheduled.
        Events this user produced are skipped unless they came from the
        assistant acting on their behalf.
        """
        if isinstance(event, (dict, str, bytes)):
            event = parse_event(event)

        if getattr(event, "userId", None) == self.user_id and not getattr(event, "isAI", False):
            return False

        if isinstance(event, GuestAddedEvent):
            return self._apply_remote_add(event)
        if isinstance(event, GuestUpdatedEvent):
            return self._apply_remote_update(event)
        if isinstance(event, GuestDeletedEvent):
            self._remote_deleted.add(event.guestId)
            index = self._index_of(event.guestId)
            if index == -1:
                return False
            self.guests = ordering.resequence(self.guests[:index] + self.guests[index + 1:])
            self.field_clock.forget(event.guestId)
            return True
        if isinstance(event, GuestsReorderedEvent):
            reordered = ordering.apply_order(self.guests, event.guestIds)
            changed = [g["id"] for g in reordered] != self._ids()
            self.guests = reordered
            return changed
        if isinstance(event, (GuestMovedEvent, GuestsSwappedEvent)):
            self.schedule_refetch()
            return True
        return False

    def _apply_remote_add(self, event: GuestAddedEvent) -> bool:
        guest = dict(event.guest)
        if not guest.get("id") or self._index_of(guest["id"]) != -1:
            return False
        position = guest.get("display_order") or len(self.guests) + 1
        insert_at = max(0, min(position - 1, len(self.guests)))
        self.guests = ordering.resequence(self.guests[:insert_at] + [guest] + self.guests[insert_at:])
        return True

    def _apply_remote_update(self, event: GuestUpdatedEvent) -> bool:
        index = self._index_of(event.guestId)
        if index == -1:
            return False
        timestamp = _to_millis(event.timestamp)
        guest = dict(self.guests[index])
        applied = []
        for field_name in event.updatedFields:
            if field_name not in event.updates or field_name in PROTECTED_FIELDS:
                continue
            value = event.updates[field_name]
            if field_name == "categories" and not value:
                continue
            if not self.field_clock.accepts(event.guestId, field_name, timestamp):
                continue
            guest[field_name] = value
            applied.append(field_name)

        if not applied:
            return False
        self.guests[index] = guest
        self.field_clock.record(event.guestId, applied, timestamp)
        self._last_timestamp = max(self._last_timestamp, timestamp)
        return True

    def schedule_refetch(self) -> None:
        """Reload the list after ``refetch_delay``; a newer request replaces an older one"""
        if self._refetch is not None and not self._refetch.done():
            self._refetch.cancel()
        self._refetch = asyncio.create_task(self._delayed_refetch())

    async def _delayed_refetch(self) -> None:
        await asyncio.sleep(self.refetch_delay)
        try:
            await self.load_guests()
        except Exception as e:
            logger.error(f"Refetching guests failed: {e}")

    # -------- Worker --------

    async def _run_worker(self) -> None:
        while True:
            if not self.queue:
                self._idle.set()
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            item = self.queue[0]
            item.status = UpdateStatus.PROCESSING
            try:
                result = await self._send(item)
            except Exception as e:
                # Any failure, including an unreadable response, must not stop the worker
                self.queue.popleft()
                self._rollback(item, e)
                continue

            self.queue.popleft()
            item.status = UpdateStatus.COMPLETED
            try:
                await self._reconcile(item, result)
            except Exception as e:
                logger.exception(f"Reconciling {item.type.value} for guest {item.guest_id} failed: {e}")

    async def _send(self, item: PendingUpdate) -> Any:
        # guest_id and payload are read here, after any temp id swap
        if item.type == UpdateType.ADD:
            return await self.api.create_guest(item.payload)
        if item.type == UpdateType.UPDATE:
            return await self.api.update_guest(item.guest_id, item.payload)
        if item.type == UpdateType.DELETE:
            return await self.api.delete_guest(item.guest_id)
        if item.type == UpdateType.REORDER:
            return await self.api.reorder_guests(item.payload["guestIds"])
        if item.type == UpdateType.MOVE_TO_END:
            return await self.api.move_guest_to_end(item.guest_id)
        raise ValueError(f"Unknown update type: {item.type}")

    async def _reconcile(self, item: PendingUpdate, result: Any) -> None:
        if item.type == UpdateType.ADD:
            guest = self._confirm_add(item, result)
            if guest is not None:
                await self._announce(GuestAddedEvent(guest=guest, **self._origin()))

        elif item.type == UpdateType.UPDATE:
            fresh = self._confirm_update(item, result)
            if fresh:
                await self._announce(GuestUpdatedEvent(
                    guestId=item.guest_id,
                    guestName=(self.get_guest(item.guest_id) or {}).get("name"),
                    updates=fresh,
                    updatedFields=list(fresh),
                    timestamp=_from_millis(item.timestamp),
                    **self._origin(),
                ))

        elif item.type == UpdateType.DELETE:
            # A refetch may have brought the guest back while the delete was in flight
            if self._index_of(item.guest_id) != -1:
                self.guests = ordering.resequence([g for g in self.guests if g["id"] != item.guest_id])
            self.field_clock.forget(item.guest_id)
            await self._announce(GuestDeletedEvent(
                guestId=item.guest_id,
                guestName=item.previous_state.get("name"),
                **self._origin(),
            ))

        elif item.type == UpdateType.REORDER:
            await self._announce(GuestsReorderedEvent(guestIds=item.payload["guestIds"], **self._origin()))

        elif item.type == UpdateType.MOVE_TO_END:
            await self._announce(GuestsReorderedEvent(guestIds=self._ids(), **self._origin()))

    def _confirm_add(self, item: PendingUpdate, server_guest: Dict[str, Any]) -> Optional[Guest]:
        temp_id = item.guest_id
        real_id = server_guest["id"]
        self._rename_guest(temp_id, real_id)

        indexes = [i for i, guest in enumerate(self.guests) if guest["id"] == real_id]
        if not indexes:
            # Deleted locally while the create was in flight
            return None
        for duplicate in reversed(indexes[1:]):
            del self.guests[duplicate]

        index = indexes[0]
        local = self.guests[index]
        merged = dict(local)
        for key, value in server_guest.items():
            if key == "display_order":
                continue
            if not self.field_clock.is_stale(real_id, key, item.timestamp):
                merged[key] = value
        self.guests[index] = merged
        self.guests = ordering.resequence(self.guests)
        return dict(self.guests[index])

    def _confirm_update(self, item: PendingUpdate, server_guest: Dict[str, Any]) -> Dict[str, Any]:
        """Merge the server's values for fields not edited since; returns them"""
        index = self._index_of(item.guest_id)
        fresh = {
            key: server_guest.get(key, item.payload.get(key))
            for key in item.updated_fields
            if not self.field_clock.is_stale(item.guest_id, key, item.timestamp)
        }
        if index != -1 and fresh:
            self.guests[index] = {**self.guests[index], **fresh}
        return fresh

    def _rollback(self, item: PendingUpdate, error: Exception) -> None:
        item.status = UpdateStatus.FAILED
        item.retry_count += 1
        item.error = getattr(error, "message", None) or str(error) or type(error).__name__
        logger.error(f"{item.type.value} failed for guest {item.guest_id}: {item.error}")

        if item.type == UpdateType.ADD:
            self.guests = ordering.resequence([g for g in self.guests if g["id"] != item.guest_id])
            self.field_clock.forget(item.guest_id)
            self._drop_queued_for(item.guest_id)

        elif item.type == UpdateType.UPDATE:
            index = self._index_of(item.guest_id)
            restored = {}
            for key in item.updated_fields:
                if self.field_clock.clear_if_latest(item.guest_id, key, item.timestamp):
                    restored[key] = item.previous_state.get(key)
            if index != -1 and restored:
                self.guests[index] = {**self.guests[index], **restored}

        elif item.type == UpdateType.DELETE:
            already_gone = (
                isinstance(error, ApiError) and error.status_code == 404
            ) or item.guest_id in self._remote_deleted
            if not already_gone and self._index_of(item.guest_id) == -1:
                guest = item.previous_state
                insert_at = max(0, min((guest.get("display_order") or 1) - 1, len(self.guests)))
                self.guests = ordering.resequence(self.guests[:insert_at] + [guest] + self.guests[insert_at:])

        elif item.type in (UpdateType.REORDER, UpdateType.MOVE_TO_END):
            self.guests = ordering.apply_order(self.guests, item.previous_state)

        self._notify_error(item)

    def _notify_error(self, item: PendingUpdate) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(f"Could not {item.type.value.replace('_', ' ')}: {item.error}")
        except Exception as e:
            logger.error(f"Error callback failed: {e}")

    async def _announce(self, event: Any) -> None:
        try:
            await self.api.broadcast(event.model_dump(mode="json", exclude_none=True))
        except (ApiError, httpx.HTTPError) as e:
            logger.warning(f"Broadcast of {event.type} failed: {e}")

    # -------- Helpers --------

    def _origin(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "userName": self.user_name}

    def _next_timestamp(self) -> int:
        # Strictly increasing even when the wall clock stalls or steps back
        self._last_timestamp = max(int(self._clock()), self._last_timestamp + 1)
        return self._last_timestamp

    def _ids(self) -> List[str]:
        return [guest["id"] for guest in self.guests]

    def _index_of(self, guest_id: str) -> int:
        return next((i for i, guest in enumerate(self.guests) if guest["id"] == guest_id), -1)

    def _new_local_guest(self, payload: Dict[str, Any]) -> Guest:
        guest = {key: value for key, value in payload.items() if key != "target_position"}
        guest.setdefault("custom_fields", {})
        guest.setdefault("family_color", None)
        guest["id"] = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
        return guest

    def _enqueue_add(self, guest: Guest, payload: Dict[str, Any]) -> None:
        timestamp = self._next_timestamp()
        fields = [key for key in payload if key != "target_position"]
        self.field_clock.record(guest["id"], fields, timestamp)
        self._enqueue(PendingUpdate(
            type=UpdateType.ADD,
            timestamp=timestamp,
            guest_id=guest["id"],
            payload=payload,
            updated_fields=fields,
        ))

    def _enqueue(self, item: PendingUpdate) -> None:
        self.queue.append(item)
        self._idle.clear()
        self._wakeup.set()

    def _rename_guest(self, old_id: str, new_id: str) -> None:
        """Swap a temporary id for the server's id in the list, clocks and queue"""
        if old_id == new_id:
            return
        self.guests = [{**g, "id": new_id} if g["id"] == old_id else g for g in self.guests]
        self.field_clock.rename(old_id, new_id)
        for queued in self.queue:
            if queued.guest_id == old_id:
                queued.guest_id = new_id
            if "guestIds" in queued.payload:
                queued.payload["guestIds"] = [new_id if i == old_id else i for i in queued.payload["guestIds"]]
            if isinstance(queued.previous_state, list):
                queued.previous_state = [new_id if i == old_id else i for i in queued.previous_state]

    def _drop_queued_for(self, guest_id: str) -> None:
        """Discard queued writes that target a guest that was never created"""
        kept: Deque[PendingUpdate] = deque()
        for queued in self.queue:
            if queued.guest_id == guest_id and queued.type != UpdateType.ADD:
                queued.status = UpdateStatus.FAILED
                queued.error = "guest was not created"
                continue
            if "guestIds" in queued.payload:
                queued.payload["guestIds"] = [i for i in queued.payload["guestIds"] if i != guest_id]
            kept.append(queued)
        self.queue = kept
