"""
Tests for the HTTP API: authentication, authorization and error envelopes
"""

import asyncio
import json
import string

import pytest

from guestlist.services.organization_service import OrganizationService


def drain(connection):
    payloads = []
    while not connection.queue.empty():
        frame = connection.queue.get_nowait()
        if frame is not None:
            payloads.append(json.loads(frame[len("data: "):]))
    return payloads


@pytest.fixture
def bob_member(db_session, bob, organization):
    """Bob joins Alice's organization as a regular member"""
    OrganizationService.join_by_invite(organization["invite_code"], bob, db_session)
    return bob


def guests_url(organization):
    return f"/api/organizations/{organization['id']}/guests"


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_missing_token_is_401(client):
    response = client.get("/api/organizations")
    body = response.json()

    assert response.status_code == 401
    assert body["success"] is False
    assert body["error_code"] == "not_authenticated"


def test_unknown_token_is_401(client, alice):
    response = client.get("/api/organizations", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_create_and_list_organizations(client, alice_headers):
    response = client.post("/api/organizations", json={"name": "Our Wedding", "event_type": "wedding"}, headers=alice_headers)
    created = response.json()["data"]

    assert response.status_code == 201
    assert created["role"] == "admin"
    assert len(created["invite_code"]) == 8
    assert set(created["invite_code"]) <= set(string.ascii_uppercase + string.digits)
    assert [c["id"] for c in created["configuration"]["categories"]] == ["bride", "groom", "mutual"]

    listed = client.get("/api/organizations", headers=alice_headers).json()["data"]
    assert [o["id"] for o in listed] == [created["id"]]


def test_create_organization_with_unknown_preset(client, alice_headers):
    response = client.post("/api/organizations", json={"name": "Gala", "event_type": "gala"}, headers=alice_headers)
    assert response.status_code == 400
    assert response.json()["error_code"] == "validation_error"


def test_join_by_invite_is_idempotent(client, organization, bob_headers):
    code = organization["invite_code"].lower()
    first = client.post("/api/organizations/join", json={"invite_code": code}, headers=bob_headers)
    second = client.post("/api/organizations/join", json={"invite_code": code}, headers=bob_headers)

    assert first.status_code == 200
    assert second.json()["data"]["role"] == "member"

    members = client.get(f"/api/organizations/{organization['id']}/members", headers=bob_headers).json()["data"]
    assert sorted(m["role"] for m in members) == ["admin", "member"]


def test_unknown_invite_code_is_404(client, bob_headers):
    response = client.post("/api/organizations/join", json={"invite_code": "ZZZZZZZZ"}, headers=bob_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "Invalid invite code"


def test_invite_preview_is_public(client, organization):
    response = client.get(f"/api/organizations/by-invite/{organization['invite_code']}")
    assert response.status_code == 200
    assert response.json()["data"] == {
        "id": organization["id"],
        "name": organization["name"],
        "event_type": "wedding",
    }


def test_non_member_is_403(client, organization, bob_headers):
    response = client.get(guests_url(organization), headers=bob_headers)
    assert response.status_code == 403
    assert response.json()["error_code"] == "access_denied"


def test_unknown_organization_is_404(client, alice_headers):
    response = client.get("/api/organizations/missing/guests", headers=alice_headers)
    assert response.status_code == 404


def test_configuration_writes_are_admin_only(client, organization, bob_member, bob_headers, alice_headers):
    url = f"/api/organizations/{organization['id']}/config"
    current = client.get(url, headers=bob_headers).json()["data"]["configuration"]

    denied = client.put(url, json={"configuration": current}, headers=bob_headers)
    assert denied.status_code == 403
    assert denied.json()["error_code"] == "admin_required"

    current["categories"] = current["categories"][:1]
    allowed = client.put(url, json={"configuration": current}, headers=alice_headers)
    assert allowed.status_code == 200
    assert len(allowed.json()["data"]["configuration"]["categories"]) == 1


def test_invalid_configuration_is_400(client, organization, alice_headers):
    url = f"/api/organizations/{organization['id']}/config"
    configuration = dict(organization["configuration"], categories=[])

    response = client.put(url, json={"configuration": configuration}, headers=alice_headers)
    body = response.json()

    assert response.status_code == 400
    assert body["error_code"] == "validation_error"
    assert body["details"]


def test_refresh_invite_code(client, organization, alice_headers, bob_member, bob_headers):
    url = f"/api/organizations/{organization['id']}/refresh-invite"
    assert client.post(url, headers=bob_headers).status_code == 403

    data = client.post(url, headers=alice_headers).json()["data"]
    assert data["invite_code"] != organization["invite_code"]
    assert data["invite_url"].endswith(f"/invite/{data['invite_code']}")


def test_invite_qr_png(client, organization, alice_headers):
    response = client.get(f"/api/organizations/{organization['id']}/invite-qr.png?size=128", headers=alice_headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.content[:8] == b"\x89PNG\r\n\x1a\n"


def test_event_presets(client):
    presets = client.get("/api/event-presets").json()["data"]["presets"]
    assert [p["name"] for p in presets] == ["birthday", "corporate", "wedding"]


def test_guest_crud_round(client, organization, bob_member, bob_headers):
    url = guests_url(organization)
    created = client.post(url, json={"name": "Sam", "family_color": "#112233"}, headers=bob_headers)
    assert created.status_code == 201
    guest = created.json()["data"]

    patched = client.patch(f"{url}/{guest['id']}", json={"confirmation_stage": "confirmed"}, headers=bob_headers)
    assert patched.json()["data"]["confirmation_stage"] == "confirmed"
    assert patched.json()["data"]["family_color"] == "#112233"

    deleted = client.delete(f"{url}/{guest['id']}", headers=bob_headers)
    assert deleted.json()["data"] == {"id": guest["id"], "name": "Sam"}
    assert client.get(f"{url}/{guest['id']}", headers=bob_headers).status_code == 404


def test_invalid_guest_body_is_400(client, organization, alice_headers):
    response = client.post(guests_url(organization), json={"name": "", "family_color": "red"}, headers=alice_headers)
    body = response.json()

    assert response.status_code == 400
    assert body["error_code"] == "validation_error"
    fields = {detail["field"] for detail in body["details"]}
    assert "body.name" in fields
    assert "body.family_color" in fields


def test_empty_categories_rejected(client, organization, alice_headers):
    guest = client.post(guests_url(organization), json={"name": "Sam"}, headers=alice_headers).json()["data"]
    response = client.patch(f"{guests_url(organization)}/{guest['id']}", json={"categories": []}, headers=alice_headers)

    assert response.status_code == 400
    stored = client.get(f"{guests_url(organization)}/{guest['id']}", headers=alice_headers).json()["data"]
    assert stored["categories"] == ["bride"]


def test_reorder_and_move_to_end(client, organization, alice_headers):
    url = guests_url(organization)
    ids = [client.post(url, json={"name": name}, headers=alice_headers).json()["data"]["id"] for name in ("A", "B", "C")]

    reordered = client.post(f"{url}/reorder", json={"guestIds": [ids[2], ids[0], ids[1]]}, headers=alice_headers)
    assert reordered.json()["data"]["guestIds"] == [ids[2], ids[0], ids[1]]

    client.post(f"{url}/{ids[2]}/move-to-end", headers=alice_headers)
    rows = client.get(url, headers=alice_headers).json()["data"]
    assert [r["id"] for r in rows] == [ids[0], ids[1], ids[2]]
    assert [r["display_order"] for r in rows] == [1, 2, 3]


def test_move_and_swap_notify_subscribers(client, hub, organization, alice_headers, bob_member):
    url = guests_url(organization)
    ids = [client.post(url, json={"name": name}, headers=alice_headers).json()["data"]["id"] for name in ("A", "B")]
    connection = asyncio.run(hub.subscribe(organization["id"], bob_member.id, bob_member.name))
    drain(connection)

    moved = client.post(f"{url}/{ids[0]}/move", json={"position": 2}, headers=alice_headers)
    assert moved.json()["data"]["display_order"] == 2
    swapped = client.post(f"{url}/swap", json={"guest1Id": ids[0], "guest2Id": ids[1]}, headers=alice_headers)
    assert swapped.status_code == 200

    events = drain(connection)
    assert [e["type"] for e in events] == ["guest_moved", "guests_swapped"]
    assert events[0]["action"] == "move_to_position"
    assert events[1]["guest1Id"] == ids[0]


def test_broadcast_requires_membership(client, organization, bob_headers):
    response = client.post(
        f"/api/organizations/{organization['id']}/broadcast",
        json={"type": "guest_deleted", "guestId": "g1"},
        headers=bob_headers,
    )
    assert response.status_code == 403


def test_broadcast_rejects_unknown_event_types(client, organization, alice_headers):
    response = client.post(
        f"/api/organizations/{organization['id']}/broadcast",
        json={"type": "user_connected", "user": {"id": "x", "name": "X"}},
        headers=alice_headers,
    )
    assert response.status_code == 400


def test_broadcast_relays_with_session_identity(client, hub, organization, alice, alice_headers, bob_member):
    connection = asyncio.run(hub.subscribe(organization["id"], bob_member.id, bob_member.name))
    drain(connection)

    response = client.post(
        f"/api/organizations/{organization['id']}/broadcast",
        json={
            "type": "guest_updated",
            "guestId": "g1",
            "guestName": "Sam",
            "updates": {"name": "Samuel"},
            "userId": "someone-else",
            "userName": "Mallory",
        },
        headers=alice_headers,
    )

    assert response.status_code == 200
    assert response.json()["data"] == {"type": "guest_updated", "delivered": 1}
    events = drain(connection)
    assert len(events) == 1
    assert events[0]["userId"] == alice.id
    assert events[0]["userName"] == "Alice"
    assert events[0]["updatedFields"] == ["name"]


def test_statistics_endpoint(client, organization, alice_headers):
    client.post(guests_url(organization), json={"name": "Sam", "confirmation_stage": "confirmed"}, headers=alice_headers)

    stats = client.get(f"/api/organizations/{organization['id']}/stats", headers=alice_headers).json()["data"]
    assert stats["total"] == 1
    assert stats["confirmed"] == 1
    assert stats["byCategory"]["bride"] == 1
