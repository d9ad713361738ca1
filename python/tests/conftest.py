"""
Shared fixtures for projectchat tests.

Components are wired the same way ProjectChatServer wires them, but
connections use an in-process fake socket so tests can inspect every frame.
"""

from __future__ import annotations

from typing import Any

import pytest

from projectchat.auth import AuthenticationGate, NoAuth
from projectchat.emitter import Emitter
from projectchat.lifecycle import LifecycleController
from projectchat.presence import PresenceManager
from projectchat.registry import Connection, ConnectionRegistry
from projectchat.relay import MessageRelay
from projectchat.storage import MemoryStore
from projectchat.tasks import DetachedTaskGroup
from projectchat.typing_indicators import TypingIndicators
from projectchat.video import VideoSignalingRouter

TYPING_TIMEOUT = 0.05


class FakeWebSocket:
    """Records outbound frames instead of writing them to a network."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str] | None = None
        self.fail_sends = False

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.fail_sends:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)


def frames(connection: Connection, frame_type: str) -> list[dict[str, Any]]:
    """Frames of one type received by a connection, in order."""
    return [frame for frame in connection.websocket.sent if frame["type"] == frame_type]


def seed_store() -> MemoryStore:
    """
    alice and bob are friends and both work on project p1.
    carol only works on p2, which alice owns.
    """
    store = MemoryStore()
    store.add_user("alice", full_name="Alice A.", avatar_url="https://cdn.example/alice.png")
    store.add_user("bob", full_name="Bob B.")
    store.add_user("carol")
    store.add_user("dave")

    store.add_friendship("alice", "bob")
    store.add_friendship("carol", "dave", status="pending")

    store.add_project_member("p1", "alice")
    store.add_project_member("p1", "bob")
    store.add_project_member("p1", "dave", status="removed")
    store.add_project_member("p2", "carol")
    store.set_project_owner("p2", "alice")

    store.add_chat_room("r1", "p1", name="general")
    store.add_chat_room("r2", "p1", name="random")
    store.add_chat_room("r3", "p2", name="design")
    return store


class Harness:
    """The real-time components around one MemoryStore."""

    def __init__(self, store: MemoryStore, typing_timeout: float = TYPING_TIMEOUT):
        self.store = store
        self.registry = ConnectionRegistry()
        self.tasks = DetachedTaskGroup("test")
        self.emitter = Emitter(self.registry)
        self.gate = AuthenticationGate(NoAuth(), store, self.registry)
        self.presence = PresenceManager(self.registry, self.emitter, store)
        self.relay = MessageRelay(self.emitter, store)
        self.typing = TypingIndicators(self.emitter, self.tasks, timeout=typing_timeout)
        self.video = VideoSignalingRouter(self.registry, self.emitter)
        self.lifecycle = LifecycleController(
            registry=self.registry,
            gate=self.gate,
            presence=self.presence,
            relay=self.relay,
            typing=self.typing,
            video=self.video,
            tasks=self.tasks,
        )

    async def connect(self, user_id: str) -> Connection:
        """Authenticate and register a connection the way the server does."""
        identity = await self.gate.authenticate(user_id)
        connection = Connection(FakeWebSocket(), identity)
        self.registry.register(connection)
        return connection

    async def disconnect(self, connection: Connection) -> set[str]:
        return await self.lifecycle.handle_disconnect(connection, "test")


@pytest.fixture
def store() -> MemoryStore:
    return seed_store()


@pytest.fixture
def harness(store: MemoryStore) -> Harness:
    return Harness(store)
