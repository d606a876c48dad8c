"""
HTTP tests for users, posts, likes, comments, reactions and follows.

The interesting part is cache coherency: each mutation must make the next
read reflect it even though the read path is served from Redis.
"""

import pytest

from conftest import FakeTransport, as_user


async def _create_post(client, author, content="hello world"):
    response = await client.post("/posts", json={"content": content}, headers=as_user(author))
    assert response.status_code == 201
    return response.json()["post_id"]


class TestUsers:

    @pytest.mark.asyncio
    async def test_create_and_fetch_profile(self, client, gateway):
        created = await client.post("/users", json={"username": "alice", "display_name": "Alice"})
        assert created.status_code == 201
        user_id = created.json()["user_id"]

        duplicate = await client.post("/users", json={"username": "alice"})
        assert duplicate.status_code == 409

        gateway.connect(user_id, FakeTransport())
        profile = await client.get(f"/users/{user_id}")
        assert profile.status_code == 200
        body = profile.json()
        assert body["username"] == "alice"
        assert body["is_online"] is True
        assert body["followers_count"] == 0

        online = await client.get("/users/online")
        assert online.json() == {"user_ids": [user_id], "count": 1}

    @pytest.mark.asyncio
    async def test_profile_presence_is_never_cached(self, client, gateway, make_user, fake_redis):
        alice = await make_user()
        await client.get(f"/users/{alice}")
        assert f"user:{alice}" in fake_redis.store

        gateway.connect(alice, FakeTransport())
        assert (await client.get(f"/users/{alice}")).json()["is_online"] is True

    @pytest.mark.asyncio
    async def test_unknown_user(self, client):
        assert (await client.get("/users/missing")).status_code == 404


class TestPostsAndLikes:

    @pytest.mark.asyncio
    async def test_like_is_visible_through_the_cache(self, client, make_user, fake_redis):
        author, fan = await make_user(), await make_user()
        post_id = await _create_post(client, author)

        first = await client.get(f"/posts/{post_id}", headers=as_user(fan))
        assert first.json()["like_count"] == 0
        assert first.json()["is_liked"] is False
        assert f"post:{post_id}" in fake_redis.store

        liked = await client.post(f"/posts/{post_id}/like", headers=as_user(fan))
        assert liked.json() == {"post_id": post_id, "liked": True, "like_count": 1}

        again = await client.get(f"/posts/{post_id}", headers=as_user(fan))
        assert again.json()["like_count"] == 1
        assert again.json()["is_liked"] is True

    @pytest.mark.asyncio
    async def test_like_is_idempotent_and_notifies_once(self, client, make_user, gateway):
        author, fan = await make_user(), await make_user()
        author_socket = FakeTransport()
        gateway.connect(author, author_socket)
        post_id = await _create_post(client, author)

        await client.post(f"/posts/{post_id}/like", headers=as_user(fan))
        second = await client.post(f"/posts/{post_id}/like", headers=as_user(fan))
        assert second.json()["like_count"] == 1

        await gateway.router.flush()
        notes = author_socket.events("notification:new")
        assert [n["data"]["type"] for n in notes] == ["like"]

    @pytest.mark.asyncio
    async def test_unlike_then_relike_within_window_is_not_renotified(self, client, make_user):
        author, fan = await make_user(), await make_user()
        post_id = await _create_post(client, author)

        await client.post(f"/posts/{post_id}/like", headers=as_user(fan))
        unliked = await client.delete(f"/posts/{post_id}/like", headers=as_user(fan))
        assert unliked.json()["like_count"] == 0
        await client.post(f"/posts/{post_id}/like", headers=as_user(fan))

        count = await client.get("/notifications/unread/count", headers=as_user(author))
        assert count.json() == {"count": 1}

    @pytest.mark.asyncio
    async def test_unlike_without_like_is_404(self, client, make_user):
        author = await make_user()
        post_id = await _create_post(client, author)
        response = await client.delete(f"/posts/{post_id}/like", headers=as_user(author))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_only_author_can_edit_or_delete(self, client, make_user):
        author, other = await make_user(), await make_user()
        post_id = await _create_post(client, author)

        assert (await client.patch(f"/posts/{post_id}", json={"content": "x"}, headers=as_user(other))).status_code == 403
        assert (await client.delete(f"/posts/{post_id}", headers=as_user(other))).status_code == 403

        edited = await client.patch(f"/posts/{post_id}", json={"content": "edited"}, headers=as_user(author))
        assert edited.json()["content"] == "edited"
        assert (await client.get(f"/posts/{post_id}")).json()["content"] == "edited"

        assert (await client.delete(f"/posts/{post_id}", headers=as_user(author))).status_code == 204
        assert (await client.get(f"/posts/{post_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_missing_identity_is_401(self, client):
        response = await client.post("/posts", json={"content": "anon"})
        assert response.status_code == 401


class TestFeed:

    @pytest.mark.asyncio
    async def test_new_post_from_followed_author_appears(self, client, make_user):
        reader, author, stranger = await make_user(), await make_user(), await make_user()
        await client.post(f"/follows/{author}", headers=as_user(reader))

        await _create_post(client, stranger, "not for you")
        first = await client.get("/posts/feed", headers=as_user(reader))
        assert first.json()["posts"] == []

        post_id = await _create_post(client, author, "for you")
        feed = await client.get("/posts/feed", headers=as_user(reader))
        assert [p["post_id"] for p in feed.json()["posts"]] == [post_id]

    @pytest.mark.asyncio
    async def test_cursor_pagination(self, client, make_user):
        author = await make_user()
        ids = [await _create_post(client, author, f"post {i}") for i in range(5)]

        page = await client.get(f"/posts/user/{author}?limit=2")
        body = page.json()
        assert body["has_more"] is True
        assert len(body["posts"]) == 2

        seen = [p["post_id"] for p in body["posts"]]
        while body["has_more"]:
            body = (await client.get(f"/posts/user/{author}?limit=2&cursor={body['next_cursor']}")).json()
            seen += [p["post_id"] for p in body["posts"]]
        assert sorted(seen) == sorted(ids)
        assert len(set(seen)) == 5


class TestCommentsAndReactions:

    @pytest.mark.asyncio
    async def test_reply_notifies_parent_author(self, client, make_user, gateway):
        author, commenter, replier = await make_user(), await make_user(), await make_user()
        commenter_socket = FakeTransport()
        gateway.connect(commenter, commenter_socket)
        post_id = await _create_post(client, author)

        comment = await client.post(
            f"/posts/{post_id}/comments", json={"content": "nice"}, headers=as_user(commenter)
        )
        assert comment.status_code == 201
        reply = await client.post(
            f"/posts/{post_id}/comments",
            json={"content": "agreed", "parent_id": comment.json()["comment_id"]},
            headers=as_user(replier),
        )
        assert reply.status_code == 201

        await gateway.router.flush()
        assert [n["data"]["type"] for n in commenter_socket.events("notification:new")] == ["reply"]

        post = await client.get(f"/posts/{post_id}")
        assert post.json()["comment_count"] == 2

        listed = await client.get(f"/posts/{post_id}/comments")
        assert [c["content"] for c in listed.json()["comments"]] == ["nice", "agreed"]

    @pytest.mark.asyncio
    async def test_reaction_counts_follow_changes(self, client, make_user):
        author, a, b = await make_user(), await make_user(), await make_user()
        post_id = await _create_post(client, author)

        await client.post(f"/posts/{post_id}/react", json={"emoji": "👍"}, headers=as_user(a))
        await client.post(f"/posts/{post_id}/react", json={"emoji": "👍"}, headers=as_user(b))
        counts = await client.get(f"/posts/{post_id}/reactions/counts", headers=as_user(a))
        assert counts.json()["counts"] == {"👍": 2}
        assert counts.json()["user_reaction"] == "👍"

        await client.post(f"/posts/{post_id}/react", json={"emoji": "😂"}, headers=as_user(b))
        counts = await client.get(f"/posts/{post_id}/reactions/counts")
        assert counts.json()["counts"] == {"👍": 1, "😂": 1}
        assert counts.json()["total"] == 2

        await client.delete(f"/posts/{post_id}/react", headers=as_user(a))
        counts = await client.get(f"/posts/{post_id}/reactions/counts")
        assert counts.json()["counts"] == {"😂": 1}

    @pytest.mark.asyncio
    async def test_reaction_list_follows_changes(self, client, make_user):
        author = await make_user()
        a, b = await make_user("anna"), await make_user("ben")
        post_id = await _create_post(client, author)

        await client.post(f"/posts/{post_id}/react", json={"emoji": "👍"}, headers=as_user(a))
        listed = await client.get(f"/posts/{post_id}/reactions")
        assert listed.status_code == 200
        assert [(r["username"], r["emoji"]) for r in listed.json()["reactions"]] == [("anna", "👍")]

        await client.post(f"/posts/{post_id}/react", json={"emoji": "❤️"}, headers=as_user(b))
        listed = await client.get(f"/posts/{post_id}/reactions")
        assert {r["username"] for r in listed.json()["reactions"]} == {"anna", "ben"}

        hearts = await client.get(f"/posts/{post_id}/reactions", params={"emoji": "❤️"})
        assert [r["user_id"] for r in hearts.json()["reactions"]] == [b]

        await client.delete(f"/posts/{post_id}/react", headers=as_user(a))
        listed = await client.get(f"/posts/{post_id}/reactions")
        assert [r["user_id"] for r in listed.json()["reactions"]] == [b]
        assert listed.json()["has_more"] is False

        missing = await client.get("/posts/nope/reactions")
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_emoji_rejected(self, client, make_user):
        author = await make_user()
        post_id = await _create_post(client, author)
        response = await client.post(f"/posts/{post_id}/react", json={"emoji": "🍕"}, headers=as_user(author))
        assert response.status_code == 400


class TestFollows:

    @pytest.mark.asyncio
    async def test_follow_lifecycle(self, client, make_user):
        alice, bob = await make_user(), await make_user()

        assert (await client.post(f"/follows/{alice}", headers=as_user(alice))).status_code == 400

        first = await client.post(f"/follows/{bob}", headers=as_user(alice))
        assert first.json()["created"] is True
        again = await client.post(f"/follows/{bob}", headers=as_user(alice))
        assert again.json()["created"] is False

        followers = await client.get(f"/follows/{bob}/followers")
        assert [u["user_id"] for u in followers.json()["users"]] == [alice]
        assert (await client.get(f"/users/{bob}")).json()["followers_count"] == 1

        status = await client.get(f"/follows/{bob}/status", headers=as_user(alice))
        assert status.json() == {"is_following": True, "is_followed_by": False, "is_mutual": False}

        assert (await client.delete(f"/follows/{bob}", headers=as_user(alice))).status_code == 204
        assert (await client.get(f"/follows/{bob}/followers")).json()["users"] == []
        assert (await client.get(f"/users/{bob}")).json()["followers_count"] == 0
        assert (await client.delete(f"/follows/{bob}", headers=as_user(alice))).status_code == 404

    @pytest.mark.asyncio
    async def test_remove_follower_owner_only(self, client, make_user):
        alice, bob, carol = await make_user(), await make_user(), await make_user()
        await client.post(f"/follows/{bob}", headers=as_user(alice))

        denied = await client.delete(f"/follows/{bob}/followers/{alice}", headers=as_user(carol))
        assert denied.status_code == 403

        removed = await client.delete(f"/follows/{bob}/followers/{alice}", headers=as_user(bob))
        assert removed.status_code == 204
        assert (await client.get(f"/follows/{alice}/following")).json()["users"] == []
