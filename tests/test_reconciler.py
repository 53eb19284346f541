"""
Tests for the optimistic guest list session
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from guestlist.client.api import ApiError, GuestApiClient
from guestlist.client.reconciler import FieldClock, GuestListSession, UpdateStatus
from guestlist.schemas.events import (
    GuestAddedEvent,
    GuestDeletedEvent,
    GuestMovedEvent,
    GuestsReorderedEvent,
    GuestUpdatedEvent,
    parse_event,
)
from guestlist.services.organization_service import OrganizationService
from main import app


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeGuestApi:
    """In-memory stand-in for GuestApiClient.

    ``gate`` holds every call until it is set; ``fail_next`` makes the next
    call raise the given error.
    """

    def __init__(self, guests: Optional[List[Dict[str, Any]]] = None):
        self.guests = {g["id"]: dict(g) for g in guests or []}
        self.calls: List[tuple] = []
        self.broadcasts: List[Dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.fail_next: Optional[Exception] = None
        self._next_id = 0

    async def _enter(self, call: tuple) -> None:
        self.calls.append(call)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error

    def _ordered(self) -> List[Dict[str, Any]]:
        return sorted(self.guests.values(), key=lambda g: g["display_order"])

    def _resequence(self, ordered: List[Dict[str, Any]]) -> None:
        for position, guest in enumerate(ordered, start=1):
            guest["display_order"] = position

    async def list_guests(self) -> List[Dict[str, Any]]:
        return [dict(g) for g in self._ordered()]

    async def create_guest(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        await self._enter(("create", payload["name"]))
        self._next_id += 1
        guest = {k: v for k, v in payload.items() if k != "target_position"}
        guest["id"] = f"g{self._next_id}"
        ordered = self._ordered()
        position = payload.get("target_position") or len(ordered) + 1
        ordered.insert(position - 1, guest)
        self.guests[guest["id"]] = guest
        self._resequence(ordered)
        return dict(guest)

    async def update_guest(self, guest_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        await self._enter(("update", guest_id, dict(updates)))
        if guest_id not in self.guests:
            raise ApiError(404, "Guest not found", "not_found")
        self.guests[guest_id].update(updates)
        return dict(self.guests[guest_id])

    async def delete_guest(self, guest_id: str) -> Dict[str, Any]:
        await self._enter(("delete", guest_id))
        if guest_id not in self.guests:
            raise ApiError(404, "Guest not found", "not_found")
        deleted = self.guests.pop(guest_id)
        self._resequence(self._ordered())
        return {"id": guest_id, "name": deleted["name"]}

    async def reorder_guests(self, guest_ids: List[str]) -> Dict[str, Any]:
        await self._enter(("reorder", list(guest_ids)))
        ordered = [self.guests[i] for i in guest_ids if i in self.guests]
        ordered += [g for g in self._ordered() if g["id"] not in guest_ids]
        self._resequence(ordered)
        return {"guestIds": [g["id"] for g in ordered]}

    async def move_guest_to_end(self, guest_id: str) -> Dict[str, Any]:
        await self._enter(("move_to_end", guest_id))
        ordered = [g for g in self._ordered() if g["id"] != guest_id] + [self.guests[guest_id]]
        self._resequence(ordered)
        return dict(self.guests[guest_id])

    async def get_configuration(self) -> Dict[str, Any]:
        return {"configuration": {}}

    async def broadcast(self, event: Dict[str, Any]) -> Dict[str, Any]:
        self.broadcasts.append(event)
        return {"type": event["type"], "delivered": 0}


def make_guest(guest_id: str, name: str, position: int, **fields) -> Dict[str, Any]:
    return {
        "id": guest_id,
        "name": name,
        "categories": ["bride"],
        "confirmation_stage": "invited",
        "family_color": None,
        "display_order": position,
        **fields,
    }


async def wait_for_calls(api: FakeGuestApi, count: int) -> None:
    for _ in range(200):
        if len(api.calls) >= count:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"expected {count} api calls, saw {api.calls}")


async def settle(session: GuestListSession) -> None:
    await asyncio.wait_for(session.wait_idle(), timeout=2)


def names(session: GuestListSession) -> List[str]:
    return [g["name"] for g in session.guests]


def remote_update(guest_id: str, updates: Dict[str, Any], when: datetime, user_id: str = "bob") -> Dict[str, Any]:
    return GuestUpdatedEvent(
        userId=user_id, userName="Bob", guestId=guest_id, updates=updates, timestamp=when
    ).model_dump(mode="json")


@pytest_asyncio.fixture
async def session_factory():
    sessions = []

    async def _make(api, **kwargs) -> GuestListSession:
        session = GuestListSession(api, "alice", "Alice", **kwargs)
        await session.load_guests()
        session.start()
        sessions.append(session)
        return session

    yield _make
    for session in sessions:
        await session.stop()


# -------- Field clock --------

def test_field_clock_staleness():
    clock = FieldClock()
    clock.record("g1", ["name"], 200)

    assert clock.is_stale("g1", "name", 100)
    assert not clock.is_stale("g1", "name", 200)
    assert not clock.is_stale("g1", "family_color", 100)
    assert clock.accepts("g1", "name", 201)
    assert not clock.accepts("g1", "name", 200)


def test_field_clock_clears_only_latest():
    clock = FieldClock()
    clock.record("g1", ["name"], 200)

    assert not clock.clear_if_latest("g1", "name", 100)
    assert clock.clear_if_latest("g1", "name", 200)
    assert clock.get("g1", "name") is None


def test_field_clock_rename():
    clock = FieldClock()
    clock.record("temp-1", ["name", "categories"], 5)
    clock.rename("temp-1", "g9")

    assert clock.get("g9", "name") == 5
    assert clock.get("temp-1", "name") is None


# -------- Optimistic mutations --------

@pytest.mark.asyncio
async def test_add_guest_swaps_temporary_id(session_factory):
    api = FakeGuestApi([make_guest("g0", "Alice", 1)])
    session = await session_factory(api)

    added = session.add_guest("Sam")
    assert added["id"].startswith("temp-")
    assert names(session) == ["Alice", "Sam"]

    await settle(session)

    ids = [g["id"] for g in session.guests]
    assert ids == ["g0", "g1"]
    assert [g["display_order"] for g in session.guests] == [1, 2]
    assert [b["type"] for b in api.broadcasts] == ["guest_added"]
    assert api.broadcasts[0]["guest"]["id"] == "g1"


@pytest.mark.asyncio
async def test_queued_update_follows_id_swap(session_factory):
    api = FakeGuestApi()
    session = await session_factory(api)

    temp = session.add_guest("Sam")
    session.update_guest(temp["id"], {"family_color": "#ff0000"})
    await settle(session)

    assert api.calls == [("create", "Sam"), ("update", "g1", {"family_color": "#ff0000"})]
    assert session.guests[0]["id"] == "g1"
    assert session.guests[0]["family_color"] == "#ff0000"


@pytest.mark.asyncio
async def test_mutations_reach_server_in_order(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    session = await session_factory(api)

    session.update_guest("g1", {"name": "Samuel"})
    session.update_guest("g1", {"name": "Sam Smith"})
    session.update_guest("g1", {"confirmation_stage": "confirmed"})
    await settle(session)

    assert [call[2] for call in api.calls] == [
        {"name": "Samuel"},
        {"name": "Sam Smith"},
        {"confirmation_stage": "confirmed"},
    ]
    assert api.guests["g1"]["name"] == "Sam Smith"


@pytest.mark.asyncio
async def test_only_one_update_in_flight(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    api.gate = asyncio.Event()
    session = await session_factory(api)

    session.update_guest("g1", {"name": "Samuel"})
    session.delete_guest("g1")
    await wait_for_calls(api, 1)
    await asyncio.sleep(0.02)

    assert len(api.calls) == 1
    assert session.pending_count == 2

    api.gate.set()
    await settle(session)
    assert [call[0] for call in api.calls] == ["update", "delete"]


@pytest.mark.asyncio
async def test_late_response_does_not_clobber_newer_edit(session_factory):
    """U1 at t=100 returns after U2 at t=200 was applied locally"""
    clock = FakeClock()
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    api.gate = asyncio.Event()
    session = await session_factory(api, clock=clock)

    clock.now = 100
    session.update_guest("g1", {"name": "Samuel"})
    await wait_for_calls(api, 1)

    clock.now = 200
    session.update_guest("g1", {"name": "Sam Smith"})
    assert session.get_guest("g1")["name"] == "Sam Smith"

    api.gate.set()
    await settle(session)

    assert session.get_guest("g1")["name"] == "Sam Smith"
    updates = [b for b in api.broadcasts if b["type"] == "guest_updated"]
    assert len(updates) == 1
    assert updates[0]["updates"] == {"name": "Sam Smith"}


@pytest.mark.asyncio
async def test_update_never_empties_categories(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    session = await session_factory(api)

    assert session.update_guest("g1", {"categories": []}) is False
    assert session.get_guest("g1")["categories"] == ["bride"]
    assert session.pending_count == 0


@pytest.mark.asyncio
async def test_reorder_with_plus_one(session_factory):
    api = FakeGuestApi([
        make_guest("g1", "Alice", 1),
        make_guest("g2", "Alice's +1", 2),
        make_guest("g3", "Bob", 3),
    ])
    session = await session_factory(api)

    assert session.reorder_guests(0, 2, include_plus_one=True)
    assert names(session) == ["Bob", "Alice", "Alice's +1"]

    await settle(session)
    assert api.calls == [("reorder", ["g3", "g1", "g2"])]
    assert api.broadcasts[-1]["type"] == "guests_reordered"
    assert api.broadcasts[-1]["guestIds"] == ["g3", "g1", "g2"]


@pytest.mark.asyncio
async def test_clone_inserts_plus_one_after_guest(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1, family_color="#aa0000"), make_guest("g2", "Bob", 2)])
    api._next_id = 2
    session = await session_factory(api)

    clone = session.clone_guest(session.get_guest("g1"))
    assert clone["name"] == "Sam's +1"
    assert names(session) == ["Sam", "Sam's +1", "Bob"]

    await settle(session)
    assert [g["id"] for g in session.guests] == ["g1", "g3", "g2"]
    assert api.guests["g3"]["display_order"] == 2
    assert api.guests["g3"]["family_color"] == "#aa0000"


@pytest.mark.asyncio
async def test_move_to_end_announces_new_order(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1), make_guest("g2", "Bob", 2)])
    session = await session_factory(api)

    assert session.move_guest_to_end("g1")
    assert not session.move_guest_to_end("g1")
    await settle(session)

    assert api.calls == [("move_to_end", "g1")]
    assert api.broadcasts[-1]["guestIds"] == ["g2", "g1"]


# -------- Failure handling --------

@pytest.mark.asyncio
async def test_failed_update_rolls_back_touched_fields(session_factory):
    errors = []
    api = FakeGuestApi([make_guest("g1", "Sam", 1, family_color="#00ff00")])
    api.fail_next = ApiError(500, "Internal server error")
    session = await session_factory(api, on_error=errors.append)

    session.update_guest("g1", {"name": "Samuel", "family_color": "#0000ff"})
    await settle(session)

    guest = session.get_guest("g1")
    assert guest["name"] == "Sam"
    assert guest["family_color"] == "#00ff00"
    assert len(errors) == 1
    assert session.field_clock.get("g1", "name") is None
    assert api.broadcasts == []


@pytest.mark.asyncio
async def test_failed_update_is_not_retried(session_factory):
    """Failed writes are dropped; the user has to repeat the edit"""
    errors = []
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    api.fail_next = httpx.ConnectError("connection refused")
    session = await session_factory(api, on_error=errors.append)

    session.update_guest("g1", {"name": "Samuel"})
    await settle(session)
    await asyncio.sleep(0.05)

    assert len(api.calls) == 1
    assert session.pending_count == 0
    assert len(errors) == 1
    assert api.guests["g1"]["name"] == "Sam"


@pytest.mark.asyncio
async def test_failed_update_keeps_newer_edit(session_factory):
    clock = FakeClock()
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    api.gate = asyncio.Event()
    api.fail_next = ApiError(500, "boom")
    session = await session_factory(api, clock=clock, on_error=lambda message: None)

    clock.now = 100
    session.update_guest("g1", {"name": "Samuel"})
    await wait_for_calls(api, 1)
    clock.now = 200
    session.update_guest("g1", {"name": "Sam Smith"})

    api.gate.set()
    await settle(session)

    assert session.get_guest("g1")["name"] == "Sam Smith"
    assert api.guests["g1"]["name"] == "Sam Smith"


@pytest.mark.asyncio
async def test_failed_add_removes_guest_and_dependent_writes(session_factory):
    errors = []
    api = FakeGuestApi([make_guest("g0", "Alice", 1)])
    api.fail_next = ApiError(400, "Invalid input")
    session = await session_factory(api, on_error=errors.append)

    temp = session.add_guest("Sam")
    session.update_guest(temp["id"], {"name": "Samuel"})
    await settle(session)

    assert names(session) == ["Alice"]
    assert api.calls == [("create", "Sam")]
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_failed_delete_restores_guest_in_place(session_factory):
    api = FakeGuestApi([make_guest("g1", "Alice", 1), make_guest("g2", "Sam", 2), make_guest("g3", "Bob", 3)])
    api.fail_next = ApiError(500, "boom")
    session = await session_factory(api, on_error=lambda message: None)

    session.delete_guest("g2")
    assert names(session) == ["Alice", "Bob"]
    await settle(session)

    assert names(session) == ["Alice", "Sam", "Bob"]
    assert [g["display_order"] for g in session.guests] == [1, 2, 3]


@pytest.mark.asyncio
async def test_failed_reorder_restores_order(session_factory):
    api = FakeGuestApi([make_guest("g1", "Alice", 1), make_guest("g2", "Bob", 2), make_guest("g3", "Carol", 3)])
    api.fail_next = ApiError(403, "Access denied")
    session = await session_factory(api, on_error=lambda message: None)

    session.reorder_guests(0, 2)
    assert names(session) == ["Bob", "Carol", "Alice"]
    await settle(session)

    assert names(session) == ["Alice", "Bob", "Carol"]
    assert session.pending_count == 0


@pytest.mark.asyncio
async def test_failed_item_is_marked(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    api.gate = asyncio.Event()
    api.fail_next = ApiError(500, "boom")
    session = await session_factory(api, on_error=lambda message: None)

    session.update_guest("g1", {"name": "Samuel"})
    item = session.queue[0]
    api.gate.set()
    await settle(session)

    assert item.status == UpdateStatus.FAILED
    assert item.error == "boom"
    assert item.retry_count == 1


@pytest.mark.asyncio
async def test_unreadable_response_rolls_back_and_worker_continues(session_factory):
    """A 200 page from a proxy is a failure, not a reason to stop the queue"""
    guests = [make_guest("g1", "Sam", 1), make_guest("g2", "Bob", 2)]
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path))
        if request.method == "GET":
            return httpx.Response(200, json={"success": True, "data": guests})
        if request.url.path.endswith("/guests/g1"):
            return httpx.Response(200, content=b"<html>proxy page</html>", headers={"content-type": "text/html"})
        if request.url.path.endswith("/broadcast"):
            return httpx.Response(200, json={"success": True, "data": {"delivered": 0}})
        return httpx.Response(200, json={"success": True, "data": {**guests[1], "name": "Robert"}})

    errors = []
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test") as http:
        session = await session_factory(GuestApiClient(http, "org-1"), on_error=errors.append)

        session.update_guest("g1", {"name": "Samuel"})
        session.update_guest("g2", {"name": "Robert"})
        await settle(session)

    assert len(errors) == 1
    assert names(session) == ["Sam", "Robert"]
    assert ("PATCH", "/api/organizations/org-1/guests/g2") in requests
    assert session.pending_count == 0


@pytest.mark.asyncio
async def test_failed_delete_stays_deleted_after_remote_delete(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1), make_guest("g2", "Bob", 2)])
    api.gate = asyncio.Event()
    api.fail_next = ApiError(503, "Service unavailable")
    session = await session_factory(api, on_error=lambda message: None)

    session.delete_guest("g2")
    await wait_for_calls(api, 1)
    session.apply_remote_event(GuestDeletedEvent(guestId="g2", userId="bob", userName="Bob"))

    api.gate.set()
    await settle(session)

    assert names(session) == ["Sam"]


# -------- Remote events --------

@pytest.mark.asyncio
async def test_remote_update_is_idempotent(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    session = await session_factory(api)
    event = remote_update("g1", {"name": "Samantha"}, datetime(2030, 1, 1, tzinfo=timezone.utc))

    assert session.apply_remote_event(event)
    snapshot = copy.deepcopy(session.guests)

    assert not session.apply_remote_event(event)
    assert session.guests == snapshot

    older = remote_update("g1", {"name": "Sammy"}, datetime(2029, 1, 1, tzinfo=timezone.utc))
    assert not session.apply_remote_event(older)
    assert session.get_guest("g1")["name"] == "Samantha"


@pytest.mark.asyncio
async def test_remote_update_loses_to_newer_local_edit(session_factory):
    clock = FakeClock(now=datetime(2030, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    api.gate = asyncio.Event()
    session = await session_factory(api, clock=clock)

    session.update_guest("g1", {"name": "Samuel"})
    event = remote_update(
        "g1",
        {"name": "Sammy", "confirmation_stage": "confirmed"},
        datetime(2029, 12, 31, tzinfo=timezone.utc),
    )

    assert session.apply_remote_event(event)
    guest = session.get_guest("g1")
    assert guest["name"] == "Samuel"
    assert guest["confirmation_stage"] == "confirmed"
    api.gate.set()
    await settle(session)


@pytest.mark.asyncio
async def test_remote_update_ignores_empty_categories(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    session = await session_factory(api)

    event = remote_update("g1", {"categories": []}, datetime(2030, 1, 1, tzinfo=timezone.utc))
    assert not session.apply_remote_event(event)
    assert session.get_guest("g1")["categories"] == ["bride"]


@pytest.mark.asyncio
async def test_own_events_are_skipped_unless_from_assistant(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    session = await session_factory(api)
    when = datetime(2030, 1, 1, tzinfo=timezone.utc)

    assert not session.apply_remote_event(remote_update("g1", {"name": "Echo"}, when, user_id="alice"))

    from_assistant = GuestUpdatedEvent(
        userId="alice", userName="Alice", guestId="g1", updates={"name": "Samuel"}, timestamp=when, isAI=True
    )
    assert session.apply_remote_event(from_assistant)
    assert session.get_guest("g1")["name"] == "Samuel"


@pytest.mark.asyncio
async def test_remote_add_delete_and_reorder(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1), make_guest("g2", "Bob", 2)])
    session = await session_factory(api)
    origin = {"userId": "bob", "userName": "Bob"}

    added = GuestAddedEvent(guest=make_guest("g3", "Carol", 3), **origin)
    assert session.apply_remote_event(added)
    assert not session.apply_remote_event(added)
    assert names(session) == ["Sam", "Bob", "Carol"]

    assert session.apply_remote_event(GuestsReorderedEvent(guestIds=["g3", "g1", "g2"], **origin))
    assert names(session) == ["Carol", "Sam", "Bob"]

    assert session.apply_remote_event(GuestDeletedEvent(guestId="g1", **origin))
    assert names(session) == ["Carol", "Bob"]
    assert [g["display_order"] for g in session.guests] == [1, 2]


@pytest.mark.asyncio
async def test_remote_move_triggers_refetch(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1), make_guest("g2", "Bob", 2)])
    session = await session_factory(api, refetch_delay=0.01)

    api.guests["g1"]["display_order"] = 2
    api.guests["g2"]["display_order"] = 1
    assert session.apply_remote_event(GuestMovedEvent(userId="bob", userName="Bob", guestId="g1"))
    assert names(session) == ["Sam", "Bob"]

    await asyncio.sleep(0.1)
    assert names(session) == ["Bob", "Sam"]


@pytest.mark.asyncio
async def test_refetch_keeps_queued_edit_and_delete(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1), make_guest("g2", "Bob", 2), make_guest("g3", "Carol", 3)])
    api.gate = asyncio.Event()
    session = await session_factory(api, refetch_delay=0)

    session.update_guest("g1", {"name": "Samuel"})
    await wait_for_calls(api, 1)
    session.delete_guest("g3")
    session.apply_remote_event(GuestMovedEvent(userId="bob", userName="Bob", guestId="g2"))
    await asyncio.sleep(0.05)

    assert names(session) == ["Samuel", "Bob"]

    api.gate.set()
    await settle(session)

    server_ids = [g["id"] for g in await api.list_guests()]
    assert [g["id"] for g in session.guests] == server_ids == ["g1", "g2"]
    assert session.get_guest("g1")["name"] == "Samuel"


@pytest.mark.asyncio
async def test_refetch_keeps_queued_reorder(session_factory):
    api = FakeGuestApi([make_guest("g1", "Sam", 1), make_guest("g2", "Bob", 2), make_guest("g3", "Carol", 3)])
    api.gate = asyncio.Event()
    session = await session_factory(api, refetch_delay=0)

    session.reorder_guests(0, 2)
    await wait_for_calls(api, 1)
    session.apply_remote_event(GuestMovedEvent(userId="bob", userName="Bob", guestId="g2"))
    await asyncio.sleep(0.05)

    assert names(session) == ["Bob", "Carol", "Sam"]

    api.gate.set()
    await settle(session)
    assert names(session) == ["Bob", "Carol", "Sam"]


@pytest.mark.asyncio
async def test_stats_follow_local_state(session_factory):
    configuration = {
        "categories": [{"id": "bride", "label": "Bride", "initial": "B", "color": "#EC4899"}],
        "confirmationStages": {"enabled": True, "stages": [
            {"id": "invited", "label": "Invited", "order": 1},
            {"id": "confirmed", "label": "Confirmed", "order": 2},
        ]},
    }
    api = FakeGuestApi([make_guest("g1", "Sam", 1)])
    session = await session_factory(api, configuration=configuration)

    session.update_guest("g1", {"confirmation_stage": "confirmed"})
    stats = session.stats
    assert stats["total"] == 1
    assert stats["confirmed"] == 1
    assert stats["byCategory"] == {"bride": 1}
    await settle(session)


# -------- End to end through the API and broadcast hub --------

@pytest.mark.asyncio
async def test_added_guest_reaches_second_session(client, hub, db_session, alice, organization, bob):
    """Sam appears at once, gets the server id, and reaches Bob's session"""
    OrganizationService.join_by_invite(organization["invite_code"], bob, db_session)
    organization_id = organization["id"]

    bob_connection = await hub.subscribe(organization_id, bob.id, bob.name)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test",
                                 headers={"Authorization": "Bearer alice-token"}) as alice_http, \
            httpx.AsyncClient(transport=transport, base_url="http://test",
                              headers={"Authorization": "Bearer bob-token"}) as bob_http:
        errors = []
        alice_session = GuestListSession(
            GuestApiClient(alice_http, organization_id), alice.id, alice.name, on_error=errors.append
        )
        bob_session = GuestListSession(GuestApiClient(bob_http, organization_id), bob.id, bob.name)
        await alice_session.load_configuration()
        alice_session.start()

        alice_session.add_guest("Sam")
        assert names(alice_session) == ["Sam"]
        assert alice_session.guests[0]["id"].startswith("temp-")

        await asyncio.wait_for(alice_session.wait_idle(), timeout=5)
        await alice_session.stop()

        assert errors == []
        assert len(alice_session.guests) == 1
        server_guests = await GuestApiClient(alice_http, organization_id).list_guests()
        assert alice_session.guests[0]["id"] == server_guests[0]["id"]
        assert alice_session.guests[0]["categories"] == ["bride"]

        received = []
        while not bob_connection.queue.empty():
            frame = bob_connection.queue.get_nowait()
            received.append(parse_event(frame[len("data: "):].strip()))
        added = [event for event in received if isinstance(event, GuestAddedEvent)]
        assert len(added) == 1
        assert added[0].userId == alice.id

        assert bob_session.apply_remote_event(added[0])
        assert [g["id"] for g in bob_session.guests] == [server_guests[0]["id"]]
