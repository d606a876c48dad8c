"""
HTTP tests for direct messages and notifications.

What we test:
    ✅ Sending over HTTP pushes message:received like the WebSocket path
    ✅ Conversation list and unread counters stay fresh through the cache
    ✅ POST /messages/{id}/read accepts a message id or a user id
    ✅ Only the sender may delete a message
    ✅ Rate limit rejects bursts and fails open without Redis
    ✅ Notification read / read-all / delete / clear
"""

import pytest

from conftest import FakeTransport, as_user
from social_api.config import settings


async def _send(client, sender, recipient, content="hello"):
    response = await client.post(
        "/messages", json={"recipient_id": recipient, "content": content}, headers=as_user(sender)
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestSendAndRead:

    @pytest.mark.asyncio
    async def test_http_send_pushes_to_recipient(self, client, gateway, make_user):
        alice, bob = await make_user(), await make_user()
        bob_socket = FakeTransport()
        gateway.connect(bob, bob_socket)

        sent = await _send(client, alice, bob, "over http")
        await gateway.router.flush()

        received = bob_socket.events("message:received")
        assert [m["data"]["message_id"] for m in received] == [sent["message_id"]]

    @pytest.mark.asyncio
    async def test_conversation_list_and_unread_stay_fresh(self, client, make_user, fake_redis):
        alice, bob = await make_user("alice"), await make_user("bob")
        await _send(client, alice, bob, "first")

        listing = await client.get("/messages/conversations", headers=as_user(bob))
        assert listing.json()["conversations"][0]["unread_count"] == 1
        assert (await client.get("/messages/unread", headers=as_user(bob))).json() == {"count": 1}
        assert f"unread:{bob}" in fake_redis.store

        await _send(client, alice, bob, "second")
        listing = await client.get("/messages/conversations", headers=as_user(bob))
        summary = listing.json()["conversations"][0]
        assert summary["other_user_id"] == alice
        assert summary["other_username"] == "alice"
        assert summary["last_message"]["content"] == "second"
        assert summary["unread_count"] == 2
        assert (await client.get("/messages/unread", headers=as_user(bob))).json() == {"count": 2}

    @pytest.mark.asyncio
    async def test_read_by_user_id_marks_conversation(self, client, gateway, make_user):
        alice, bob = await make_user(), await make_user()
        alice_socket = FakeTransport()
        gateway.connect(alice, alice_socket)
        await _send(client, alice, bob, "one")
        await _send(client, alice, bob, "two")
        assert (await client.get("/messages/unread", headers=as_user(bob))).json() == {"count": 2}

        receipt = await client.post(f"/messages/{alice}/read", headers=as_user(bob))
        assert receipt.json() == {"count": 2, "message": None}

        assert (await client.get("/messages/unread", headers=as_user(bob))).json() == {"count": 0}
        assert (await client.get(f"/messages/unread/{alice}", headers=as_user(bob))).json() == {"count": 0}
        await gateway.router.flush()
        assert alice_socket.events("conversation:read")[-1]["data"] == {"readBy": bob, "count": 2}

    @pytest.mark.asyncio
    async def test_read_by_message_id(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        sent = await _send(client, alice, bob)

        # The sender cannot mark their own message read
        assert (await client.post(f"/messages/{sent['message_id']}/read", headers=as_user(alice))).status_code == 404

        receipt = await client.post(f"/messages/{sent['message_id']}/read", headers=as_user(bob))
        body = receipt.json()
        assert body["count"] == 1
        assert body["message"]["is_read"] is True

        history = await client.get(f"/messages/conversations/{bob}", headers=as_user(alice))
        assert history.json()["messages"][0]["is_read"] is True

    @pytest.mark.asyncio
    async def test_only_sender_deletes(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        sent = await _send(client, alice, bob)
        await client.get(f"/messages/conversations/{alice}", headers=as_user(bob))

        assert (await client.delete(f"/messages/{sent['message_id']}", headers=as_user(bob))).status_code == 403
        assert (await client.delete(f"/messages/{sent['message_id']}", headers=as_user(alice))).status_code == 204

        history = await client.get(f"/messages/conversations/{alice}", headers=as_user(bob))
        assert history.json()["messages"] == []

    @pytest.mark.asyncio
    async def test_search(self, client, make_user):
        alice, bob = await make_user(), await make_user()
        await _send(client, alice, bob, "Lunch tomorrow?")
        await _send(client, bob, alice, "sure, lunch at noon")
        await _send(client, bob, alice, "unrelated")

        found = await client.get(f"/messages/search/{bob}?q=LUNCH", headers=as_user(alice))
        assert len(found.json()) == 2
        assert (await client.get(f"/messages/search/{bob}?q=l", headers=as_user(alice))).status_code == 422

    @pytest.mark.asyncio
    async def test_self_send_rejected(self, client, make_user):
        alice = await make_user()
        response = await client.post(
            "/messages", json={"recipient_id": alice, "content": "me"}, headers=as_user(alice)
        )
        assert response.status_code == 400
        assert response.json() == {"detail": "Cannot send a message to yourself"}


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_burst_is_rejected(self, client, make_user, monkeypatch):
        monkeypatch.setattr(settings, "message_rate_limit_per_minute", 2)
        alice, bob = await make_user(), await make_user()

        await _send(client, alice, bob)
        await _send(client, alice, bob)
        third = await client.post(
            "/messages", json={"recipient_id": bob, "content": "3"}, headers=as_user(alice)
        )
        assert third.status_code == 429

    @pytest.mark.asyncio
    async def test_counter_key_carries_expiry(self, client, make_user, fake_redis):
        alice, bob = await make_user(), await make_user()

        await _send(client, alice, bob)
        await _send(client, alice, bob)

        keys = [k for k in fake_redis.store if k.startswith(f"ratelimit:message:{alice}:")]
        assert sum(int(fake_redis.store[k]) for k in keys) == 2
        assert all(fake_redis.ttls[k] == 60 for k in keys)

    @pytest.mark.asyncio
    async def test_fails_open_without_redis(self, client, make_user, monkeypatch, broken_redis):
        monkeypatch.setattr(settings, "message_rate_limit_per_minute", 1)
        alice, bob = await make_user(), await make_user()

        await _send(client, alice, bob)
        await _send(client, alice, bob)
        listing = await client.get("/messages/conversations", headers=as_user(bob))
        assert listing.json()["conversations"][0]["unread_count"] == 2


class TestNotificationEndpoints:

    @pytest.mark.asyncio
    async def test_read_delete_clear(self, client, make_user):
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        await client.post(f"/follows/{alice}", headers=as_user(bob))
        await client.post(f"/follows/{alice}", headers=as_user(carol))
        await _send(client, bob, alice, "x" * 80)

        listing = await client.get("/notifications", headers=as_user(alice))
        notes = listing.json()["notifications"]
        assert len(notes) == 3
        message_note = next(n for n in notes if n["type"] == "message")
        assert message_note["message"] == "x" * settings.message_preview_length
        assert (await client.get("/notifications/unread/count", headers=as_user(alice))).json() == {"count": 3}

        first = notes[0]["notification_id"]
        assert (await client.post(f"/notifications/{first}/read", headers=as_user(alice))).status_code == 200
        assert (await client.post(f"/notifications/{first}/read", headers=as_user(alice))).status_code == 404
        assert (await client.get("/notifications/unread/count", headers=as_user(alice))).json() == {"count": 2}
        unread_only = await client.get("/notifications?unread=true", headers=as_user(alice))
        assert len(unread_only.json()["notifications"]) == 2

        read_all = await client.post("/notifications/read-all", headers=as_user(alice))
        assert read_all.json() == {"count": 2}
        assert (await client.get("/notifications/unread/count", headers=as_user(alice))).json() == {"count": 0}

        second = notes[1]["notification_id"]
        assert (await client.delete(f"/notifications/{second}", headers=as_user(bob))).status_code == 404
        assert (await client.delete(f"/notifications/{second}", headers=as_user(alice))).status_code == 204
        assert len((await client.get("/notifications", headers=as_user(alice))).json()["notifications"]) == 2

        cleared = await client.delete("/notifications", headers=as_user(alice))
        assert cleared.json() == {"count": 2}
        assert (await client.get("/notifications", headers=as_user(alice))).json()["notifications"] == []
