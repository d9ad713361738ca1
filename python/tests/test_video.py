"""Tests for call membership and signaling relay."""

import pytest
import pytest_asyncio
from conftest import frames

from projectchat.protocol import MAX_CALL_MESSAGE_LENGTH
from projectchat.registry import video_room

OFFER = {"type": "offer", "sdp": "v=0\r\no=- 1 2 IN IP4 127.0.0.1"}


@pytest_asyncio.fixture
async def call(harness):
    """alice and bob in call c1; carol connected but not in the call."""
    alice = await harness.connect("alice")
    bob = await harness.connect("bob")
    carol = await harness.connect("carol")
    await harness.video.join(alice, "c1")
    await harness.video.join(bob, "c1")
    return alice, bob, carol


class TestJoinLeave:
    @pytest.mark.asyncio
    async def test_join_announces_and_returns_roster(self, harness, call):
        alice, bob, _ = call

        [joined] = frames(alice, "video_participant_joined")
        assert joined == {
            "type": "video_participant_joined",
            "userId": "bob",
            "username": "bob",
            "avatarUrl": None,
            "roomId": "c1",
        }
        assert frames(alice, "video_current_participants")[0]["participants"] == []
        [roster] = frames(bob, "video_current_participants")
        assert roster["roomId"] == "c1"
        assert roster["participants"] == [
            {"userId": "alice", "username": "alice", "avatarUrl": "https://cdn.example/alice.png"}
        ]
        assert frames(bob, "video_participant_joined") == []

    @pytest.mark.asyncio
    async def test_leave(self, harness, call):
        alice, bob, _ = call

        await harness.video.leave(bob, "c1")

        [left] = frames(alice, "video_participant_left")
        assert left == {"type": "video_participant_left", "userId": "bob", "roomId": "c1"}
        assert not harness.registry.is_in_room(bob.id, video_room("c1"))
        assert harness.registry.is_registered(bob.id)

    @pytest.mark.asyncio
    async def test_disconnect_notifies_call(self, harness, call):
        alice, bob, carol = call

        await harness.disconnect(bob)

        assert len(frames(alice, "video_participant_left")) == 1
        assert frames(carol, "video_participant_left") == []


class TestSignalRelay:
    @pytest.mark.asyncio
    async def test_offer_reaches_target_only(self, harness, call):
        alice, bob, carol = call

        assert await harness.video.offer(alice, "c1", "bob", OFFER) is True

        [offer] = frames(bob, "video_offer")
        assert offer["userId"] == "alice"
        assert offer["username"] == "alice"
        assert offer["avatarUrl"] == "https://cdn.example/alice.png"
        assert offer["offer"] == OFFER
        assert offer["roomId"] == "c1"
        assert frames(carol, "video_offer") == []

    @pytest.mark.asyncio
    async def test_target_not_in_call_is_dropped_silently(self, harness, call):
        alice, _, carol = call
        sent_before = len(alice.websocket.sent)

        assert await harness.video.offer(alice, "c1", "carol", OFFER) is False
        assert await harness.video.ice_candidate(alice, "c1", "nobody", {"candidate": "x"}) is False

        assert carol.websocket.sent == []
        assert len(alice.websocket.sent) == sent_before

    @pytest.mark.asyncio
    async def test_answer_and_ice_candidate(self, harness, call):
        alice, bob, _ = call

        await harness.video.answer(bob, "c1", "alice", {"type": "answer", "sdp": "v=0"})
        await harness.video.ice_candidate(bob, "c1", "alice", {"candidate": "candidate:1"})

        [answer] = frames(alice, "video_answer")
        assert answer["userId"] == "bob"
        assert answer["answer"]["type"] == "answer"
        [candidate] = frames(alice, "video_ice_candidate")
        assert candidate == {
            "type": "video_ice_candidate",
            "userId": "bob",
            "candidate": {"candidate": "candidate:1"},
            "roomId": "c1",
        }

    @pytest.mark.asyncio
    async def test_relay_goes_to_one_connection_of_target(self, harness, call):
        alice, bob, _ = call
        bob_tablet = await harness.connect("bob")
        await harness.video.join(bob_tablet, "c1")

        await harness.video.offer(alice, "c1", "bob", OFFER)

        assert len(frames(bob, "video_offer")) + len(frames(bob_tablet, "video_offer")) == 1


class TestCallNotices:
    @pytest.mark.asyncio
    async def test_screen_share(self, harness, call):
        alice, bob, _ = call

        await harness.video.screen_share_started(alice, "c1")
        await harness.video.screen_share_stopped(alice, "c1")

        assert frames(bob, "screen_share_started") == [
            {"type": "screen_share_started", "userId": "alice", "username": "alice", "roomId": "c1"}
        ]
        assert frames(bob, "screen_share_stopped") == [
            {"type": "screen_share_stopped", "userId": "alice", "roomId": "c1"}
        ]
        assert frames(alice, "screen_share_started") == []

    @pytest.mark.asyncio
    async def test_call_message(self, harness, call):
        alice, bob, _ = call

        assert await harness.video.call_message(alice, "c1", "  can you hear me?  ") is True

        [line] = frames(bob, "video_call_message")
        assert line["message"] == "can you hear me?"
        assert line["userId"] == "alice"
        assert line["timestamp"]
        assert frames(alice, "video_call_message") == []

    @pytest.mark.asyncio
    async def test_long_call_message_truncated(self, harness, call):
        alice, bob, _ = call

        assert await harness.video.call_message(alice, "c1", "y" * (MAX_CALL_MESSAGE_LENGTH + 500)) is True

        [line] = frames(bob, "video_call_message")
        assert len(line["message"]) == MAX_CALL_MESSAGE_LENGTH
        assert frames(alice, "error") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [None, "", "   "])
    async def test_empty_call_message_dropped(self, harness, call, text):
        alice, bob, _ = call

        assert await harness.video.call_message(alice, "c1", text) is False
        assert frames(bob, "video_call_message") == []
