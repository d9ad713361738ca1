"""Tests for chat and friend message relay."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from conftest import frames

from projectchat.protocol import SendChatMessage, SendFriendMessage
from projectchat.relay import SlidingWindowRateLimiter
from projectchat.storage import StoreError


def chat(content="hello", room_id="r1", project_id="p1", **extra):
    return SendChatMessage(room_id=room_id, project_id=project_id, content=content, **extra)


@pytest_asyncio.fixture
async def pair(harness):
    """alice and bob, both joined to p1's rooms."""
    alice = await harness.connect("alice")
    bob = await harness.connect("bob")
    await harness.presence.join_project_rooms(alice, "p1")
    await harness.presence.join_project_rooms(bob, "p1")
    return alice, bob


class TestSlidingWindowRateLimiter:
    def test_window_slides(self):
        now = [0.0]
        limiter = SlidingWindowRateLimiter(limit=2, window=60, clock=lambda: now[0])

        assert limiter.is_allowed("c1")
        now[0] = 30.0
        assert limiter.is_allowed("c1")
        assert not limiter.is_allowed("c1")
        now[0] = 60.0
        assert limiter.is_allowed("c1")
        assert not limiter.is_allowed("c1")

    def test_keys_are_independent(self):
        limiter = SlidingWindowRateLimiter(limit=1, window=60)
        assert limiter.is_allowed("c1")
        assert limiter.is_allowed("c2")

    def test_cleanup(self):
        limiter = SlidingWindowRateLimiter(limit=1, window=60)
        limiter.is_allowed("c1")
        limiter.cleanup("c1")
        assert limiter.is_allowed("c1")


class TestRoomMessages:
    @pytest.mark.asyncio
    async def test_delivered_to_room_and_acknowledged(self, harness, pair):
        alice, bob = pair

        stored = await harness.relay.send_room_message(alice, chat("hello team"))

        assert stored["content"] == "hello team"
        assert stored["user"]["username"] == "alice"
        [broadcast] = frames(bob, "new_message")
        assert broadcast["roomId"] == "r1"
        assert broadcast["projectId"] == "p1"
        assert broadcast["message"]["id"] == stored["id"]
        [ack] = frames(alice, "message_sent")
        assert ack["message"]["id"] == stored["id"]
        assert frames(alice, "new_message") == []

    @pytest.mark.asyncio
    async def test_eleventh_message_rate_limited(self, harness, pair):
        alice, bob = pair

        for i in range(10):
            assert await harness.relay.send_room_message(alice, chat(f"message {i}")) is not None
        assert await harness.relay.send_room_message(alice, chat("one too many")) is None

        [error] = frames(alice, "error")
        assert error["code"] == "rate_limited"
        assert error["message"] == "Message rate limit exceeded"
        assert len(harness.store.chat_messages) == 10
        assert len(frames(bob, "new_message")) == 10

    @pytest.mark.asyncio
    async def test_rate_limit_is_per_connection(self, harness, pair):
        alice, _ = pair
        second = await harness.connect("alice")
        await harness.presence.join_project_rooms(second, "p1")

        for i in range(10):
            await harness.relay.send_room_message(alice, chat(f"message {i}"))

        assert await harness.relay.send_room_message(second, chat("other tab")) is not None

    @pytest.mark.asyncio
    async def test_invalid_payload_does_not_consume_quota(self, harness, pair):
        alice, _ = pair

        await harness.relay.send_room_message(alice, chat(content="   "))
        await harness.relay.send_room_message(alice, chat(room_id=None))
        for i in range(10):
            assert await harness.relay.send_room_message(alice, chat(f"message {i}")) is not None

        errors = frames(alice, "error")
        assert [e["message"] for e in errors] == ["Invalid message data", "Invalid message data"]
        assert {e["code"] for e in errors} == {"invalid_message"}

    @pytest.mark.asyncio
    async def test_content_truncated(self, harness, pair):
        alice, _ = pair

        stored = await harness.relay.send_room_message(alice, chat("x" * 6000))

        assert len(stored["content"]) == 5000

    @pytest.mark.asyncio
    async def test_room_of_another_project(self, harness, pair):
        alice, bob = pair

        # r3 belongs to p2, alice is a member of both projects
        assert await harness.relay.send_room_message(alice, chat(room_id="r3", project_id="p1")) is None

        [error] = frames(alice, "error")
        assert error["code"] == "not_found"
        assert error["message"] == "Chat room not found"
        assert harness.store.chat_messages == {}

    @pytest.mark.asyncio
    async def test_unknown_room(self, harness, pair):
        alice, _ = pair

        await harness.relay.send_room_message(alice, chat(room_id="nope"))

        assert frames(alice, "error")[0]["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_non_member_rejected(self, harness, pair):
        carol = await harness.connect("carol")

        assert await harness.relay.send_room_message(carol, chat()) is None

        [error] = frames(carol, "error")
        assert error["code"] == "permission_denied"
        assert error["message"] == "Not a project member"
        assert harness.store.chat_messages == {}

    @pytest.mark.asyncio
    async def test_reply_enrichment(self, harness, pair):
        alice, bob = pair
        original = await harness.relay.send_room_message(bob, chat("question?"))

        reply = await harness.relay.send_room_message(alice, chat("answer", reply_to_message_id=original["id"]))

        assert reply["reply_to"]["id"] == original["id"]
        assert reply["reply_to"]["user"]["username"] == "bob"
        assert frames(bob, "new_message")[-1]["message"]["reply_to"]["content"] == "question?"

    @pytest.mark.asyncio
    async def test_reply_lookup_failure_still_delivers(self, harness, pair):
        alice, bob = pair
        harness.store.get_chat_message = AsyncMock(side_effect=StoreError("timeout"))

        reply = await harness.relay.send_room_message(alice, chat("answer", reply_to_message_id="m-404"))

        assert reply is not None
        assert "reply_to" not in reply
        assert len(frames(bob, "new_message")) == 1

    @pytest.mark.asyncio
    async def test_store_failure_gives_generic_error(self, harness, pair):
        alice, bob = pair
        harness.store.insert_chat_message = AsyncMock(side_effect=StoreError("disk full"))

        assert await harness.relay.send_room_message(alice, chat()) is None

        [error] = frames(alice, "error")
        assert error["code"] == "internal_error"
        assert error["message"] == "Failed to send message"
        assert frames(bob, "new_message") == []


class TestFriendMessages:
    @pytest.mark.asyncio
    async def test_delivered_to_recipient_mailbox_only(self, harness):
        alice = await harness.connect("alice")
        bob_phone = await harness.connect("bob")
        bob_laptop = await harness.connect("bob")
        carol = await harness.connect("carol")
        for conn in (alice, bob_phone, bob_laptop, carol):
            await harness.presence.join_friends_chat(conn)

        stored = await harness.relay.send_friend_message(
            alice, SendFriendMessage(recipient_id="bob", content="  lunch?  ")
        )

        assert stored["content"] == "lunch?"
        for conn in (bob_phone, bob_laptop):
            [delivered] = frames(conn, "friend_message")
            assert delivered["senderId"] == "alice"
            assert delivered["message"]["id"] == stored["id"]
        assert frames(carol, "friend_message") == []
        assert frames(alice, "friend_message") == []
        [ack] = frames(alice, "friend_message_sent")
        assert ack["message"]["recipient_id"] == "bob"

    @pytest.mark.asyncio
    async def test_friendship_either_direction(self, harness):
        bob = await harness.connect("bob")

        stored = await harness.relay.send_friend_message(bob, SendFriendMessage(recipient_id="alice", content="hi"))

        assert stored is not None
        assert harness.store.friend_messages[0]["sender_id"] == "bob"

    @pytest.mark.asyncio
    async def test_not_friends(self, harness):
        alice = await harness.connect("alice")

        assert await harness.relay.send_friend_message(alice, SendFriendMessage(recipient_id="carol", content="hi")) is None

        [error] = frames(alice, "error")
        assert error["code"] == "permission_denied"
        assert error["message"] == "Not friends with this user"
        assert harness.store.friend_messages == []

    @pytest.mark.asyncio
    async def test_pending_friendship_is_not_friendship(self, harness):
        carol = await harness.connect("carol")

        await harness.relay.send_friend_message(carol, SendFriendMessage(recipient_id="dave", content="hi"))

        assert frames(carol, "error")[0]["code"] == "permission_denied"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, "", "   "])
    async def test_empty_content(self, harness, content):
        alice = await harness.connect("alice")

        await harness.relay.send_friend_message(alice, SendFriendMessage(recipient_id="bob", content=content))

        assert frames(alice, "error")[0]["code"] == "invalid_message"
        assert harness.store.friend_messages == []
